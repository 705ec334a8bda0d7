"""
Shared fixtures for the ALM Engine tests.
"""

from datetime import datetime, timedelta, timezone

import pytest

from alm_engine.audit import MemoryReportSink
from alm_engine.engine import PassLock, PolicyEvaluator, ReconciliationEngine
from alm_engine.models import AccountRecord, LifecyclePolicy, LockState
from alm_engine.store import InMemoryAccountStore

PASS_TIME = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def pass_time():
    """Fixed evaluation time T for a pass."""
    return PASS_TIME


@pytest.fixture
def make_record():
    """Factory for account records relative to the pass time."""

    def _make(username="alice", expires_in_days=None, lock_state=LockState.ACTIVE, **kwargs):
        expires_at = None
        if expires_in_days is not None:
            expires_at = PASS_TIME + timedelta(days=expires_in_days)
        return AccountRecord(
            username=username,
            created_at=kwargs.pop("created_at", PASS_TIME - timedelta(days=365)),
            expires_at=expires_at,
            lock_state=lock_state,
            **kwargs,
        )

    return _make


@pytest.fixture
def evaluator():
    """Evaluator with an explicit, empty-protection policy."""
    return PolicyEvaluator(policy=LifecyclePolicy(warn_days=7, protected_accounts=[]))


@pytest.fixture
def store():
    return InMemoryAccountStore()


@pytest.fixture
def report_sink():
    return MemoryReportSink()


@pytest.fixture
def engine(store, evaluator, report_sink):
    """Reconciliation engine over the in-memory store."""
    return ReconciliationEngine(
        store=store,
        evaluator=evaluator,
        report_sink=report_sink,
        pass_lock=PassLock(),
    )
