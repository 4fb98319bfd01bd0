"""
Binding Reconciler for the JIT Access engine.

Pure merge logic over IAM policies. Both operations work on a deep copy of
the policy they are given and return the updated copy along with any
non-fatal decode errors; the caller's policy object is never touched.

Only managed bindings (condition title equal to the configured title) are
ever dropped or changed. Expired managed bindings are swept on every pass.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Set, Tuple

from ..config import DEFAULT_CONDITION_TITLE
from ..exceptions import ExpiryDecodeError
from ..models import CONDITIONAL_POLICY_VERSION, Binding, BindingRequest, Condition, Policy
from .expiry import Expiry

logger = logging.getLogger(__name__)


class ReconcileResult:
    """Updated policy plus the non-fatal errors met while producing it."""

    def __init__(self, policy: Policy, errors: Optional[List[ExpiryDecodeError]] = None):
        self.policy = policy
        self.errors = errors or []

    @property
    def warnings(self) -> List[str]:
        return [f"role {e.role}: {e}" if e.role else str(e) for e in self.errors]

    def __repr__(self) -> str:
        return f"ReconcileResult(bindings={len(self.policy.bindings)}, errors={len(self.errors)})"


def members_by_role(requested: Sequence[BindingRequest]) -> Dict[str, Set[str]]:
    """Union requested members per role; a role may appear in several requests."""
    result: Dict[str, Set[str]] = {}
    for binding in requested:
        result.setdefault(binding.role, set()).update(binding.members)
    return result


def _sweep(
    bindings: List[Binding],
    removals: Dict[str, Set[str]],
    condition_title: str,
    now: datetime,
) -> Tuple[List[Binding], List[ExpiryDecodeError]]:
    kept: List[Binding] = []
    errors: List[ExpiryDecodeError] = []

    for binding in bindings:
        if not binding.is_managed(condition_title):
            kept.append(binding)
            continue

        try:
            expiry = Expiry.decode(binding.condition.expression)
        except ExpiryDecodeError as e:
            # Undecodable bindings are preserved as-is.
            e.role = binding.role
            logger.warning(f"Failed to check expiry of binding for role {binding.role}: {e}")
            errors.append(e)
            kept.append(binding)
            continue

        if expiry.is_expired(now):
            logger.info(f"Removing expired binding for role {binding.role} (expired {expiry})")
            continue

        removal = removals.get(binding.role)
        if removal is None:
            kept.append(binding)
            continue

        remaining = [m for m in binding.members if m not in removal]
        if remaining:
            kept.append(binding.model_copy(update={"members": remaining}))
        else:
            logger.debug(f"Dropping binding for role {binding.role}: no members left")

    return kept, errors


def remove_bindings(
    policy: Policy,
    requested: Sequence[BindingRequest],
    condition_title: str = DEFAULT_CONDITION_TITLE,
    now: Optional[datetime] = None,
) -> ReconcileResult:
    """
    Remove requested members from managed bindings and sweep expired ones.

    Args:
        policy: Current policy of the scope
        requested: Bindings whose members should lose their managed access
        condition_title: Title identifying managed bindings
        now: Reference time for expiry checks (default: current UTC time)

    Returns:
        ReconcileResult with the updated policy and any decode errors
    """
    now = now or datetime.now(timezone.utc)
    updated = policy.model_copy(deep=True)

    updated.bindings, errors = _sweep(updated.bindings, members_by_role(requested), condition_title, now)
    if any(b.condition is not None for b in updated.bindings):
        updated.version = CONDITIONAL_POLICY_VERSION

    return ReconcileResult(updated, errors)


def add_bindings(
    policy: Policy,
    requested: Sequence[BindingRequest],
    expiry: Expiry,
    condition_title: str = DEFAULT_CONDITION_TITLE,
    condition_description: Optional[str] = None,
    now: Optional[datetime] = None,
) -> ReconcileResult:
    """
    Grant requested members their roles until ``expiry``.

    Existing managed grants for the requested members are replaced rather
    than duplicated, so re-applying a request only moves its expiry.

    Args:
        policy: Current policy of the scope
        requested: Bindings to grant
        expiry: When the new bindings stop applying
        condition_title: Title identifying managed bindings
        condition_description: Optional description for new conditions
        now: Reference time for expiry checks (default: current UTC time)

    Returns:
        ReconcileResult with the updated policy and any decode errors
    """
    removal = remove_bindings(policy, requested, condition_title, now)
    updated = removal.policy
    expression = expiry.encode()

    for role, members in members_by_role(requested).items():
        if not members:
            logger.warning(f"Skipping role {role}: no members requested")
            continue
        updated.bindings.append(
            Binding(
                role=role,
                members=sorted(members),
                condition=Condition(
                    title=condition_title,
                    expression=expression,
                    description=condition_description,
                ),
            )
        )

    updated.version = CONDITIONAL_POLICY_VERSION
    return ReconcileResult(updated, removal.errors)
