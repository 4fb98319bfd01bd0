"""
Shared fixtures for the JIT Access test suite.
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

# Wide terminal so Rich does not wrap CLI output around long tmp paths.
os.environ.setdefault("COLUMNS", "200")

from jit_access.config import DEFAULT_CONDITION_TITLE, EngineSettings
from jit_access.connectors import InMemoryPolicyStore
from jit_access.engine.expiry import Expiry
from jit_access.engine.orchestrator import IAMReconciler
from jit_access.engine.retry import RetryController, wait_fibonacci
from jit_access.models import Binding, Condition


def pytest_configure(config):
    config.addinivalue_line("markers", "integration: end-to-end tests across several components")


@pytest.fixture
def now():
    """Fixed reference time, truncated to whole seconds like encoded expiries."""
    return datetime(2024, 5, 1, 12, 0, 0, tzinfo=timezone.utc)


def managed_binding(role, members, instant, title=DEFAULT_CONDITION_TITLE):
    """Binding carrying a managed expiry condition."""
    return Binding(
        role=role,
        members=list(members),
        condition=Condition(title=title, expression=Expiry(instant=instant).encode()),
    )


@pytest.fixture
def make_managed_binding():
    return managed_binding


@pytest.fixture
def future_expiry(now):
    return Expiry(instant=now + timedelta(hours=2))


@pytest.fixture
def stores():
    """One in-memory store per hierarchy level."""
    return {
        "organizations": InMemoryPolicyStore(),
        "folders": InMemoryPolicyStore(),
        "projects": InMemoryPolicyStore(),
    }


@pytest.fixture
def sleeps():
    """Backoff sleeps recorded instead of performed."""
    return []


@pytest.fixture
def retry_controller(sleeps):
    return RetryController(max_attempts=5, wait=wait_fibonacci(0.5), sleep=sleeps.append)


@pytest.fixture
def reconciler(stores, retry_controller):
    return IAMReconciler(
        stores["organizations"],
        stores["folders"],
        stores["projects"],
        settings=EngineSettings(),
        retry_controller=retry_controller,
    )
