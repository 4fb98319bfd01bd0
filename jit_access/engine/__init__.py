"""
Reconciliation Engine Package.

This package provides the expiry codec, the binding reconciler, the retry
controller and the orchestrator that applies requests across scopes.
"""

from .expiry import Expiry
from .orchestrator import IAMReconciler, ReconciliationOutcome
from .reconciler import ReconcileResult, add_bindings, remove_bindings
from .retry import RetryController, wait_fibonacci

__all__ = [
    "Expiry",
    "IAMReconciler",
    "ReconciliationOutcome",
    "ReconcileResult",
    "add_bindings",
    "remove_bindings",
    "RetryController",
    "wait_fibonacci",
]
