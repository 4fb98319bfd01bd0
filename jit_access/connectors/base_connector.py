"""
Base Connector Classes for the JIT Access engine.

This module provides the foundation for policy store connectors, one per
resource-hierarchy level, with both a real API implementation and an
in-memory backend for mock mode and tests.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional, Union

from ..exceptions import PermanentStoreError, StoreError
from ..models import CONDITIONAL_POLICY_VERSION, Policy

logger = logging.getLogger(__name__)


class PolicyStoreClient(ABC):
    """
    Abstract base class for IAM policy store connectors.

    Implementations raise TransientStoreError for failures worth retrying
    and PermanentStoreError for everything else.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None, mock_mode: bool = False):
        """
        Initialize the connector.

        Args:
            config: Configuration dictionary with credentials, endpoints, etc.
            mock_mode: True for in-memory backends
        """
        self.config = config or {}
        self.mock_mode = mock_mode

        logger.info(f"Initialized {self.__class__.__name__} (mock_mode={mock_mode})")

    @abstractmethod
    def get_policy(self, scope: str, requested_policy_version: int = CONDITIONAL_POLICY_VERSION) -> Policy:
        """
        Fetch the current IAM policy of a scope.

        Args:
            scope: Resource name, e.g. projects/my-project
            requested_policy_version: Policy schema version to request

        Returns:
            The current Policy
        """
        pass

    @abstractmethod
    def set_policy(self, scope: str, policy: Policy) -> Policy:
        """
        Replace the IAM policy of a scope.

        Args:
            scope: Resource name, e.g. projects/my-project
            policy: Policy to write

        Returns:
            The policy as stored
        """
        pass

    def close(self):
        """Release any underlying resources."""


class InMemoryPolicyStore(PolicyStoreClient):
    """
    Dict-backed policy store.

    Failures can be scripted per call: each entry of ``get_errors`` or
    ``set_errors`` is consumed by one call, ``None`` entries let the call
    through. ``fail_set_always`` makes every write fail with the given error.
    """

    def __init__(self, policies: Optional[Dict[str, Union[Policy, Dict[str, Any]]]] = None,
                 config: Optional[Dict[str, Any]] = None):
        super().__init__(config, mock_mode=True)

        self.policies: Dict[str, Policy] = {}
        for scope, policy in (policies or {}).items():
            self.policies[scope] = policy if isinstance(policy, Policy) else Policy.from_api(policy)

        self.get_errors: List[Optional[StoreError]] = []
        self.set_errors: List[Optional[StoreError]] = []
        self.fail_get_always: Optional[StoreError] = None
        self.fail_set_always: Optional[StoreError] = None
        self.get_calls: List[str] = []
        self.set_calls: List[str] = []
        self.requested_versions: List[int] = []
        self._etag_counter = 0

    def get_policy(self, scope: str, requested_policy_version: int = CONDITIONAL_POLICY_VERSION) -> Policy:
        """Return a copy of the stored policy (empty if unknown)."""
        self.get_calls.append(scope)
        self.requested_versions.append(requested_policy_version)
        self._raise_scripted(self.get_errors, self.fail_get_always)

        policy = self.policies.get(scope, Policy())
        return policy.model_copy(deep=True)

    def set_policy(self, scope: str, policy: Policy) -> Policy:
        """Store a copy of the policy and return it with a fresh etag."""
        self.set_calls.append(scope)
        self._raise_scripted(self.set_errors, self.fail_set_always)

        current = self.policies.get(scope)
        if policy.etag and current is not None and current.etag and policy.etag != current.etag:
            raise PermanentStoreError(f"etag mismatch writing policy for {scope}", status=409)

        self._etag_counter += 1
        stored = policy.model_copy(deep=True, update={"etag": f"etag-{self._etag_counter}"})
        self.policies[scope] = stored

        logger.info(f"Mock stored policy for {scope} ({len(stored.bindings)} bindings)")
        return stored.model_copy(deep=True)

    def _raise_scripted(self, queue: List[Optional[StoreError]], always: Optional[StoreError]):
        if always is not None:
            raise always
        if queue:
            error = queue.pop(0)
            if error is not None:
                raise error
