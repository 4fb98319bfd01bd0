"""
Exception hierarchy for the JIT Access engine.

Store errors are classified as transient (retried with backoff) or permanent
(surfaced immediately). Decode errors are non-fatal and travel alongside
successful results rather than being raised out of a reconciliation.
"""

from typing import List, Optional, Sequence, Tuple


class AccessEngineError(Exception):
    """Base class for all engine errors."""


class InvalidScopeError(AccessEngineError):
    """Scope is not under organizations/, folders/ or projects/."""

    def __init__(self, scope: str):
        self.scope = scope
        super().__init__(f"resource {scope!r} isn't one of [organizations, folders, projects]")


class StoreError(AccessEngineError):
    """Failure reported by a policy store client."""

    retryable = False

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class TransientStoreError(StoreError):
    """Network or server-side failure that may succeed on retry."""

    retryable = True


class PermanentStoreError(StoreError):
    """Non-retryable store failure, or a transient one that exhausted its retries."""


class ExpiryDecodeError(AccessEngineError):
    """A managed binding's condition expression could not be decoded."""

    def __init__(self, expression: str, reason: str, role: Optional[str] = None):
        self.expression = expression
        self.reason = reason
        self.role = role
        super().__init__(f"failed to decode expiry from {expression!r}: {reason}")


class ReconciliationCancelledError(AccessEngineError):
    """The caller cancelled the reconciliation or its deadline passed."""


class RequestValidationError(AccessEngineError):
    """One or more problems found in an IAM request document."""

    def __init__(self, problems: Sequence[str]):
        self.problems: List[str] = list(problems)
        super().__init__("invalid IAM request:\n" + "\n".join(f"  - {p}" for p in self.problems))


class ReconciliationError(AccessEngineError):
    """
    Composite error joining every scope-level failure of one invocation.

    Successful scopes are reported separately; this error only describes
    the scopes that did not complete.
    """

    def __init__(self, failures: Sequence[Tuple[str, Exception]]):
        self.failures: List[Tuple[str, Exception]] = list(failures)
        lines = [
            f"failed to handle policy update for resource {scope}: {error}"
            for scope, error in self.failures
        ]
        super().__init__("\n".join(lines))

    @property
    def errors(self) -> List[Exception]:
        return [error for _, error in self.failures]

    @property
    def scopes(self) -> List[str]:
        return [scope for scope, _ in self.failures]

    def __len__(self) -> int:
        return len(self.failures)
