"""
Account Lifecycle Manager (ALM Engine)

Reconciles local account state against lifecycle policy: accounts whose
expiration date has passed are locked, exactly once, with an audit trail.

The engine is driven by an external scheduler (cron or a systemd timer)
through a single idempotent entry point, `almctl run-pass`.
"""

__version__ = "1.0.0"
__author__ = "ALM Engine Team"
__email__ = "team@example.com"

from .engine.pass_lock import PassLock
from .engine.policy_evaluator import PolicyEvaluator
from .engine.reconciler import ReconciliationEngine

__all__ = [
    "PassLock",
    "PolicyEvaluator",
    "ReconciliationEngine",
]
