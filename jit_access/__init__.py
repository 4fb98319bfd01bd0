"""
JIT Access Engine

Grants principals temporary, self-expiring IAM access on Google Cloud
organizations, folders and projects, and removes that access again.

Each invocation fetches the current IAM policy of every requested scope,
merges in or removes managed time-bound bindings, sweeps expired ones and
writes the policy back, retrying transient failures.
"""

__version__ = "1.0.0"
__author__ = "JIT Access Team"
__email__ = "team@example.com"

from .config import EngineSettings, load_settings
from .engine.expiry import Expiry
from .engine.orchestrator import IAMReconciler, ReconciliationOutcome

__all__ = [
    "EngineSettings",
    "load_settings",
    "Expiry",
    "IAMReconciler",
    "ReconciliationOutcome",
]
