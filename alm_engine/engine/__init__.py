"""
Reconciliation Engine Package.

This package provides the policy evaluation and pass orchestration
components that lock expired accounts.
"""

from .pass_lock import PassLock
from .policy_evaluator import PolicyEvaluator
from .reconciler import ReconciliationEngine

__all__ = [
    "PassLock",
    "PolicyEvaluator",
    "ReconciliationEngine",
]
