"""
Retry Controller for the JIT Access engine.

Runs one fetch -> reconcile -> write cycle for a single scope and retries the
whole cycle on transient store failures. The policy is fetched again on
every attempt; nothing from a failed attempt is reused.
"""

import logging
import threading
import time
from typing import Callable, Optional

from tenacity import (
    RetryCallState,
    RetryError,
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    stop_after_delay,
    stop_when_event_set,
)
from tenacity.wait import wait_base

from ..config import DEFAULT_BACKOFF_BASE_SECONDS, DEFAULT_MAX_ATTEMPTS
from ..connectors.base_connector import PolicyStoreClient
from ..exceptions import PermanentStoreError, ReconciliationCancelledError, TransientStoreError
from ..models import CONDITIONAL_POLICY_VERSION, Policy
from .reconciler import ReconcileResult

logger = logging.getLogger(__name__)

PolicyTransform = Callable[[Policy], ReconcileResult]


class wait_fibonacci(wait_base):
    """Wait base * 1, 2, 3, 5, 8, ... seconds between attempts, optionally capped."""

    def __init__(self, base: float = DEFAULT_BACKOFF_BASE_SECONDS, max: Optional[float] = None):
        self.base = base
        self.max = max

    def __call__(self, retry_state: RetryCallState) -> float:
        a, b = 1, 2
        for _ in range(retry_state.attempt_number - 1):
            a, b = b, a + b
        delay = self.base * a
        if self.max is not None:
            delay = min(delay, self.max)
        return delay


class RetryController:
    """
    Bounded retry around a single scope's reconciliation cycle.

    Only TransientStoreError triggers a retry. Any other error, including
    cancellation, ends the cycle at once.
    """

    def __init__(
        self,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        wait: Optional[wait_base] = None,
        deadline_seconds: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the controller.

        Args:
            max_attempts: Attempts before giving up on a scope
            wait: Backoff strategy (default: Fibonacci from 500ms)
            deadline_seconds: Stop retrying once this much time has passed
            sleep: Sleep function used between attempts without a cancel event
        """
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

        self.max_attempts = max_attempts
        self.wait = wait if wait is not None else wait_fibonacci()
        self.deadline_seconds = deadline_seconds
        self.sleep = sleep

    def run(
        self,
        scope: str,
        store: PolicyStoreClient,
        transform: PolicyTransform,
        use_etag: bool = False,
        cancel_event: Optional[threading.Event] = None,
    ) -> ReconcileResult:
        """
        Reconcile one scope, retrying transient failures.

        Args:
            scope: Resource name of the scope
            store: Store client serving the scope's hierarchy level
            transform: Pure function applying the reconciliation to a fetched policy
            use_etag: Send the fetched etag back with the write
            cancel_event: Set by the caller to abandon the cycle

        Returns:
            ReconcileResult holding the written policy and non-fatal errors

        Raises:
            PermanentStoreError: On non-retryable failures or exhausted retries
            ReconciliationCancelledError: If cancelled
        """
        stop = stop_after_attempt(self.max_attempts)
        if self.deadline_seconds is not None:
            stop = stop | stop_after_delay(self.deadline_seconds)
        if cancel_event is not None:
            stop = stop | stop_when_event_set(cancel_event)

        def sleep(seconds: float):
            if cancel_event is not None:
                cancel_event.wait(seconds)
            else:
                self.sleep(seconds)

        def before_sleep(retry_state: RetryCallState):
            logger.warning(
                f"Attempt {retry_state.attempt_number} for {scope} failed: "
                f"{retry_state.outcome.exception()}; retrying in {retry_state.next_action.sleep:.1f}s"
            )

        retrying = Retrying(
            stop=stop,
            wait=self.wait,
            retry=retry_if_exception_type(TransientStoreError),
            sleep=sleep,
            before_sleep=before_sleep,
        )

        try:
            for attempt in retrying:
                with attempt:
                    result = self._attempt(scope, store, transform, use_etag, cancel_event)
        except RetryError as e:
            last_error = e.last_attempt.exception()
            if cancel_event is not None and cancel_event.is_set():
                raise ReconciliationCancelledError(f"reconciliation of {scope} was cancelled") from last_error
            attempts = e.last_attempt.attempt_number
            raise PermanentStoreError(
                f"giving up after {attempts} attempts: {last_error}",
                status=getattr(last_error, "status", None),
            ) from last_error

        return result

    def _attempt(
        self,
        scope: str,
        store: PolicyStoreClient,
        transform: PolicyTransform,
        use_etag: bool,
        cancel_event: Optional[threading.Event],
    ) -> ReconcileResult:
        _check_cancelled(scope, cancel_event)
        current = store.get_policy(scope, requested_policy_version=CONDITIONAL_POLICY_VERSION)

        result = transform(current)
        policy = result.policy
        if not use_etag:
            # Last writer wins.
            policy = policy.model_copy(update={"etag": None})

        _check_cancelled(scope, cancel_event)
        written = store.set_policy(scope, policy)
        return ReconcileResult(written, result.errors)


def _check_cancelled(scope: str, cancel_event: Optional[threading.Event]):
    if cancel_event is not None and cancel_event.is_set():
        raise ReconciliationCancelledError(f"reconciliation of {scope} was cancelled")
