"""
Connectors Package for the JIT Access engine.

This package provides IAM policy store clients for the Google Cloud
resource hierarchy (organizations, folders, projects).
"""

from typing import Dict

from ..config import EngineSettings
from ..models import SUPPORTED_SCOPE_PREFIXES
from .base_connector import InMemoryPolicyStore, PolicyStoreClient
from .resource_manager_connector import ResourceManagerConnector


def build_store_clients(settings: EngineSettings) -> Dict[str, PolicyStoreClient]:
    """Create one store client per hierarchy level, keyed by scope prefix."""
    if settings.mock_mode:
        return {prefix: InMemoryPolicyStore() for prefix in SUPPORTED_SCOPE_PREFIXES}

    config = {
        "credentials_path": settings.credentials_path,
        "use_etag": settings.use_etag,
    }
    return {
        prefix: ResourceManagerConnector(prefix, config=config)
        for prefix in SUPPORTED_SCOPE_PREFIXES
    }


__all__ = [
    "PolicyStoreClient",
    "InMemoryPolicyStore",
    "ResourceManagerConnector",
    "build_store_clients",
]
