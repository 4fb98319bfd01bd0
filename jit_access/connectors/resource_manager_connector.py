"""
Google Cloud Resource Manager Connector for the JIT Access engine.

Reads and writes IAM policies of organizations, folders and projects through
the Cloud Resource Manager v3 API. One connector instance serves one
hierarchy level.
"""

import logging
from typing import Any, Dict, Optional

import google.auth
import httplib2
from google.auth import exceptions as auth_exceptions
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError
from pydantic import ValidationError

from ..exceptions import PermanentStoreError, StoreError, TransientStoreError
from ..models import CONDITIONAL_POLICY_VERSION, SUPPORTED_SCOPE_PREFIXES, Policy
from .base_connector import PolicyStoreClient

logger = logging.getLogger(__name__)

CLOUD_PLATFORM_SCOPES = ["https://www.googleapis.com/auth/cloud-platform"]

# Rate limiting and server-side errors are worth another attempt.
RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
CONFLICT_STATUS_CODE = 409

# auditConfigs are written back as fetched but never modified here.
SET_POLICY_UPDATE_MASK = "bindings,etag,version"


class ResourceManagerConnector(PolicyStoreClient):
    """Cloud Resource Manager connector for one hierarchy level."""

    def __init__(self, collection: str, config: Optional[Dict[str, Any]] = None,
                 credentials: Any = None, service: Any = None):
        """
        Initialize the connector.

        Args:
            collection: One of organizations, folders, projects
            config: Connector settings (credentials_path, use_etag)
            credentials: Pre-built google-auth credentials (optional)
            service: Pre-built discovery client, mainly for tests (optional)
        """
        if collection not in SUPPORTED_SCOPE_PREFIXES:
            raise ValueError(f"Unsupported collection: {collection}")

        super().__init__(config, mock_mode=False)
        self.collection = collection
        # Conflicts only happen when the fetched etag is written back.
        self.retry_conflicts = bool(self.config.get("use_etag", False))

        if service is None:
            if credentials is None:
                credentials = self._load_credentials()
            service = build("cloudresourcemanager", "v3", credentials=credentials, cache_discovery=False)
        self.service = service

    def _load_credentials(self):
        credentials_path = self.config.get("credentials_path")
        if credentials_path:
            logger.info(f"Using service account credentials from {credentials_path}")
            return service_account.Credentials.from_service_account_file(
                credentials_path, scopes=CLOUD_PLATFORM_SCOPES
            )

        try:
            credentials, _ = google.auth.default(scopes=CLOUD_PLATFORM_SCOPES)
        except auth_exceptions.DefaultCredentialsError as e:
            raise PermanentStoreError(f"failed to find default credentials: {e}") from e
        return credentials

    def _collection_api(self):
        return getattr(self.service, self.collection)()

    def get_policy(self, scope: str, requested_policy_version: int = CONDITIONAL_POLICY_VERSION) -> Policy:
        """Fetch the IAM policy of a scope."""
        # Without requestedPolicyVersion=3 conditional bindings come back stripped.
        request = self._collection_api().getIamPolicy(
            resource=scope,
            body={"options": {"requestedPolicyVersion": requested_policy_version}},
        )
        action = f"get IAM policy for {scope}"
        return self._parse_policy(self._execute(request, action), action)

    def set_policy(self, scope: str, policy: Policy) -> Policy:
        """Write the IAM policy of a scope."""
        request = self._collection_api().setIamPolicy(
            resource=scope,
            body={"policy": policy.to_api(), "updateMask": SET_POLICY_UPDATE_MASK},
        )
        action = f"set IAM policy for {scope}"
        written = self._parse_policy(self._execute(request, action), action)
        logger.info(f"Set IAM policy for {scope} ({len(policy.bindings)} bindings)")
        return written

    def _execute(self, request: Any, action: str) -> Dict[str, Any]:
        try:
            # Retries are handled by the RetryController.
            return request.execute(num_retries=0)
        except HttpError as e:
            raise self._classify_http_error(e, action) from e
        except auth_exceptions.RefreshError as e:
            raise PermanentStoreError(f"failed to {action}: {e}") from e
        except (httplib2.HttpLib2Error, auth_exceptions.TransportError, OSError) as e:
            # OSError covers ssl.SSLError, socket timeouts and connection resets.
            raise TransientStoreError(f"failed to {action}: {e}") from e

    def _parse_policy(self, data: Any, action: str) -> Policy:
        try:
            return Policy.from_api(data)
        except ValidationError as e:
            raise PermanentStoreError(f"failed to {action}: unexpected policy payload: {e}") from e

    def _classify_http_error(self, error: HttpError, action: str) -> StoreError:
        status = error.resp.status if error.resp is not None else None
        message = f"failed to {action}: HTTP {status}: {error}"

        if status in RETRYABLE_STATUS_CODES:
            return TransientStoreError(message, status=status)
        if status == CONFLICT_STATUS_CODE and self.retry_conflicts:
            return TransientStoreError(message, status=status)
        return PermanentStoreError(message, status=status)

    def close(self):
        """Close the underlying HTTP client."""
        if hasattr(self.service, "close"):
            self.service.close()
