"""
Request Ingestion Package.

This package reads and validates IAM request documents.
"""

from .request_loader import (
    find_request_problems,
    load_iam_request,
    parse_iam_request,
    validate_iam_request,
)

__all__ = [
    "load_iam_request",
    "parse_iam_request",
    "find_request_problems",
    "validate_iam_request",
]
