"""
Reconciliation Orchestrator for the JIT Access engine.

Dispatches each requested scope to the store client of its hierarchy level,
reconciles it under the RetryController, and aggregates the outcome. A
failing scope never stops or rolls back the others: successful responses
are always returned, and every scope failure is joined into one
ReconciliationError.
"""

import logging
import threading
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from functools import partial
from typing import Callable, List, Optional, Sequence, Tuple, Union

from ..audit.audit_logger import AuditLogger
from ..config import EngineSettings
from ..connectors import build_store_clients
from ..connectors.base_connector import PolicyStoreClient
from ..exceptions import AccessEngineError, InvalidScopeError, PermanentStoreError, ReconciliationError
from ..models import (
    AuditRecord,
    IAMRequest,
    IAMResponse,
    Policy,
    ReconcileAction,
    ResourcePolicyRequest,
)
from .expiry import Expiry
from .reconciler import ReconcileResult, add_bindings, remove_bindings
from .retry import RetryController, wait_fibonacci

logger = logging.getLogger(__name__)

Requests = Union[IAMRequest, Sequence[ResourcePolicyRequest]]
ScopeResult = Tuple[ResourcePolicyRequest, Optional[IAMResponse], Optional[AccessEngineError]]


class ReconciliationOutcome:
    """Per-scope responses of one invocation plus the joined scope failures."""

    def __init__(self, invocation_id: str, responses: List[IAMResponse],
                 error: Optional[ReconciliationError] = None):
        self.invocation_id = invocation_id
        self.responses = responses
        self.error = error

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def partial_success(self) -> bool:
        return self.error is not None and len(self.responses) > 0

    @property
    def all_failed(self) -> bool:
        return self.error is not None and len(self.responses) == 0

    @property
    def warnings(self) -> List[str]:
        return [f"{r.resource}: {w}" for r in self.responses for w in r.warnings]

    def raise_for_errors(self):
        """Raise the joined ReconciliationError if any scope failed."""
        if self.error is not None:
            raise self.error

    def __bool__(self):
        return self.success

    def __repr__(self) -> str:
        failed = len(self.error) if self.error else 0
        return f"ReconciliationOutcome(succeeded={len(self.responses)}, failed={failed})"


class IAMReconciler:
    """
    Reconciles managed, time-bound IAM bindings across resource scopes.

    ``grant`` adds bindings expiring at a given instant; ``revoke`` removes
    requested members. Both sweep expired managed bindings from every scope
    they touch.
    """

    def __init__(
        self,
        organizations_client: PolicyStoreClient,
        folders_client: PolicyStoreClient,
        projects_client: PolicyStoreClient,
        settings: Optional[EngineSettings] = None,
        retry_controller: Optional[RetryController] = None,
        audit_logger: Optional[AuditLogger] = None,
    ):
        """
        Initialize the reconciler.

        Args:
            organizations_client: Store client for organizations/...
            folders_client: Store client for folders/...
            projects_client: Store client for projects/...
            settings: Engine settings (defaults apply when omitted)
            retry_controller: Overrides the controller built from settings
            audit_logger: Records one audit entry per scope when given
        """
        self.settings = settings or EngineSettings()
        self.clients = {
            "organizations": organizations_client,
            "folders": folders_client,
            "projects": projects_client,
        }
        self.retry_controller = retry_controller or RetryController(
            max_attempts=self.settings.max_attempts,
            wait=wait_fibonacci(self.settings.backoff_base_seconds, self.settings.max_backoff_seconds),
            deadline_seconds=self.settings.deadline_seconds,
        )
        self.audit_logger = audit_logger

        logger.info(f"Initialized IAMReconciler (condition_title={self.settings.condition_title!r})")

    @classmethod
    def from_settings(cls, settings: EngineSettings) -> "IAMReconciler":
        """Build a reconciler with store clients and audit logger from settings."""
        clients = build_store_clients(settings)
        audit_logger = AuditLogger(settings.audit_dir) if settings.audit_dir else None
        return cls(
            clients["organizations"],
            clients["folders"],
            clients["projects"],
            settings=settings,
            audit_logger=audit_logger,
        )

    def close(self):
        """Close every store client."""
        for client in self.clients.values():
            client.close()

    def grant(
        self,
        requests: Requests,
        expiry: Union[Expiry, datetime],
        condition_title: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> ReconciliationOutcome:
        """
        Grant the requested bindings until ``expiry`` on every scope.

        Args:
            requests: IAMRequest or list of ResourcePolicyRequest
            expiry: When the granted bindings stop applying
            condition_title: Overrides the configured condition title
            cancel_event: Set to abandon outstanding work
            now: Reference time for expiry sweeps (default: current time)

        Returns:
            ReconciliationOutcome with responses and joined scope failures
        """
        if not isinstance(expiry, Expiry):
            expiry = Expiry(instant=expiry)
        title = condition_title or self.settings.condition_title

        def transform(request: ResourcePolicyRequest, policy: Policy) -> ReconcileResult:
            return add_bindings(
                policy,
                request.bindings,
                expiry,
                condition_title=title,
                condition_description=self.settings.condition_description,
                now=now,
            )

        return self._run(ReconcileAction.GRANT, requests, transform, cancel_event, expiry)

    def revoke(
        self,
        requests: Requests,
        condition_title: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
        now: Optional[datetime] = None,
    ) -> ReconciliationOutcome:
        """
        Remove the requested members from managed bindings on every scope.

        Args:
            requests: IAMRequest or list of ResourcePolicyRequest
            condition_title: Overrides the configured condition title
            cancel_event: Set to abandon outstanding work
            now: Reference time for expiry sweeps (default: current time)

        Returns:
            ReconciliationOutcome with responses and joined scope failures
        """
        title = condition_title or self.settings.condition_title

        def transform(request: ResourcePolicyRequest, policy: Policy) -> ReconcileResult:
            return remove_bindings(policy, request.bindings, condition_title=title, now=now)

        return self._run(ReconcileAction.REVOKE, requests, transform, cancel_event)

    def _run(
        self,
        action: ReconcileAction,
        requests: Requests,
        transform: Callable[[ResourcePolicyRequest, Policy], ReconcileResult],
        cancel_event: Optional[threading.Event],
        expiry: Optional[Expiry] = None,
    ) -> ReconciliationOutcome:
        policies = requests.policies if isinstance(requests, IAMRequest) else list(requests)
        invocation_id = str(uuid.uuid4())
        logger.info(f"Starting {action.value} {invocation_id} for {len(policies)} scopes")

        process = partial(self._process_scope, action, transform, cancel_event, expiry, invocation_id)
        workers = min(self.settings.max_workers, len(policies))
        if workers > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="jit-access") as executor:
                results = list(executor.map(process, policies))
        else:
            results = [process(p) for p in policies]

        # Results are in request order regardless of completion order.
        responses = [response for _, response, _ in results if response is not None]
        failures = [(request.resource, error) for request, _, error in results if error is not None]
        error = ReconciliationError(failures) if failures else None

        logger.info(
            f"Finished {action.value} {invocation_id}: {len(responses)} succeeded, {len(failures)} failed"
        )
        return ReconciliationOutcome(invocation_id, responses, error)

    def _process_scope(
        self,
        action: ReconcileAction,
        transform: Callable[[ResourcePolicyRequest, Policy], ReconcileResult],
        cancel_event: Optional[threading.Event],
        expiry: Optional[Expiry],
        invocation_id: str,
        request: ResourcePolicyRequest,
    ) -> ScopeResult:
        try:
            store = self._client_for(request.resource)
            result = self.retry_controller.run(
                request.resource,
                store,
                partial(transform, request),
                use_etag=self.settings.use_etag,
                cancel_event=cancel_event,
            )
        except AccessEngineError as e:
            logger.error(f"Failed to {action.value} on {request.resource}: {e}")
            self._audit(action, request, invocation_id, expiry, error=e)
            return request, None, e
        except Exception as e:
            # Unclassified store failures still only fail their own scope.
            logger.exception(f"Unexpected error during {action.value} on {request.resource}")
            error = PermanentStoreError(f"unexpected error: {e!r}")
            error.__cause__ = e
            self._audit(action, request, invocation_id, expiry, error=error)
            return request, None, error

        response = IAMResponse(resource=request.resource, policy=result.policy, warnings=result.warnings)
        for warning in response.warnings:
            logger.warning(f"{request.resource}: {warning}")
        logger.info(
            f"Reconciled {request.resource}: {len(result.policy.bindings)} bindings, "
            f"{len(response.warnings)} warnings"
        )
        self._audit(action, request, invocation_id, expiry, warnings=response.warnings)
        return request, response, None

    def _client_for(self, scope: str) -> PolicyStoreClient:
        client = self.clients.get(scope.split("/")[0])
        if client is None:
            raise InvalidScopeError(scope)
        return client

    def _audit(
        self,
        action: ReconcileAction,
        request: ResourcePolicyRequest,
        invocation_id: str,
        expiry: Optional[Expiry],
        error: Optional[Exception] = None,
        warnings: Optional[List[str]] = None,
    ):
        if self.audit_logger is None:
            return

        record = AuditRecord(
            id=str(uuid.uuid4()),
            action=action,
            resource=request.resource,
            roles=sorted({b.role for b in request.bindings}),
            members=sorted({m for b in request.bindings for m in b.members}),
            expires_at=expiry.instant if expiry else None,
            success=error is None,
            error_message=str(error) if error else None,
            warnings=warnings or [],
            invocation_id=invocation_id,
        )
        self.audit_logger.log_event(record)
