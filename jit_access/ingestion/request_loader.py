"""
IAM Request Loader for the JIT Access engine.

Reads IAM request documents (YAML) from disk and checks them before any
policy is touched. A request looks like::

    policies:
      - resource: projects/my-project
        bindings:
          - role: roles/viewer
            members:
              - user:someone@example.com
"""

import logging
import re
from pathlib import Path
from typing import Any, List, Union

import yaml
from pydantic import ValidationError

from ..exceptions import RequestValidationError
from ..models import SUPPORTED_SCOPE_PREFIXES, IAMRequest

logger = logging.getLogger(__name__)

# Request files are small; bytes past this are ignored.
MAX_REQUEST_BYTES = 64 * 1000

ALLOWED_MEMBER_KIND = "user"
_EMAIL = re.compile(r"^[^@\s<>,;]+@[^@\s<>,;]+\.[^@\s<>,;]+$")


def parse_iam_request(data: Any) -> IAMRequest:
    """
    Build an IAMRequest from already-decoded YAML/JSON data.

    Unknown fields are rejected.

    Raises:
        RequestValidationError: If the data does not have the request shape
    """
    if data is None:
        return IAMRequest()
    if not isinstance(data, dict):
        raise RequestValidationError([f"request must be a mapping, got {type(data).__name__}"])

    try:
        return IAMRequest.model_validate(data)
    except ValidationError as e:
        problems = [
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}"
            for err in e.errors()
        ]
        raise RequestValidationError(problems) from e


def load_iam_request(path: Union[str, Path]) -> IAMRequest:
    """
    Read an IAM request file.

    Args:
        path: Path to the YAML request file

    Returns:
        Parsed IAMRequest (empty when the file is empty)

    Raises:
        OSError: If the file cannot be read
        RequestValidationError: If the content is not a valid request
    """
    path = Path(path)
    # The limit applies to bytes, not decoded characters.
    with open(path, "rb") as f:
        content = f.read(MAX_REQUEST_BYTES)

    try:
        data = yaml.safe_load(content) if content.strip() else None
    except yaml.YAMLError as e:
        raise RequestValidationError([f"failed to parse {path}: {e}"]) from e

    request = parse_iam_request(data)
    logger.info(f"Loaded IAM request from {path} with {len(request.policies)} resource policies")
    return request


def find_request_problems(request: IAMRequest) -> List[str]:
    """
    Check an IAM request for unsupported scopes and members.

    Args:
        request: The request to check

    Returns:
        List of problems (empty if valid)
    """
    problems = []

    for policy in request.policies:
        if policy.scope_type not in SUPPORTED_SCOPE_PREFIXES:
            problems.append(
                f"resource {policy.resource!r} isn't one of [{', '.join(SUPPORTED_SCOPE_PREFIXES)}]"
            )

        for binding in policy.bindings:
            if not binding.role.strip():
                problems.append(f"binding on {policy.resource!r} has an empty role")

            for member in binding.members:
                parts = member.split(":", 1)
                if len(parts) < 2:
                    problems.append(f'member {member!r} is not a valid format (expected "user:<email>")')
                    continue

                kind, email = parts
                if kind != ALLOWED_MEMBER_KIND:
                    problems.append(f'member {member!r} is not of "user" type (got {kind!r})')
                if not _EMAIL.match(email):
                    problems.append(f"member {member!r} does not appear to be a valid email address (got {email!r})")

    return problems


def validate_iam_request(request: IAMRequest) -> IAMRequest:
    """
    Raise if the request has any problems, otherwise return it unchanged.

    Raises:
        RequestValidationError: Listing every problem found
    """
    problems = find_request_problems(request)
    if problems:
        raise RequestValidationError(problems)
    return request
