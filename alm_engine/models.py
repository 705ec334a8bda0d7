"""
Core data models for the ALM Engine.

This module defines the Pydantic models used throughout the system
for account records, policy decisions, audit entries and pass reports.
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def utcnow() -> datetime:
    """Current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LockState(str, Enum):
    """Authentication state of a local account."""
    ACTIVE = "ACTIVE"
    LOCKED = "LOCKED"


class PolicyDecision(str, Enum):
    """Outcome of evaluating one account at one point in time."""
    NO_ACTION = "NO_ACTION"
    LOCK = "LOCK"
    ALREADY_LOCKED = "ALREADY_LOCKED"
    INVALID_RECORD = "INVALID_RECORD"


class PassOutcome(str, Enum):
    """How a reconciliation pass ended."""
    COMPLETED = "COMPLETED"
    ABORTED = "ABORTED"
    SKIPPED = "SKIPPED"


# Audit reasons
REASON_EXPIRED = "expired"
REASON_ALREADY_LOCKED = "no-op-already-locked"

SKIPPED_MESSAGE = "skipped: pass already running"


class AccountRecord(BaseModel):
    """One user identity as seen by the account store."""
    username: Optional[str] = Field(None, description="Unique login name")
    created_at: Optional[datetime] = Field(None, description="When the account was created")
    expires_at: Optional[datetime] = Field(None, description="Account expiration; None means never")
    lock_state: Optional[LockState] = Field(None, description="None when the store could not tell")
    last_policy_check_at: Optional[datetime] = Field(None, description="Last reconciliation touch")
    uid: Optional[int] = Field(None, description="Numeric user id, if known")
    defects: List[str] = Field(default_factory=list, description="Problems found while reading the record")

    @field_validator("created_at", "expires_at", "last_policy_check_at")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Store every timestamp as aware UTC."""
        return ensure_utc(v)

    @property
    def is_locked(self) -> bool:
        return self.lock_state == LockState.LOCKED


class AuditEntry(BaseModel):
    """One account touched during a pass. Immutable once created."""
    model_config = ConfigDict(frozen=True)

    username: str
    previous_state: LockState
    new_state: LockState
    timestamp: datetime
    reason: str

    @field_validator("timestamp")
    @classmethod
    def normalize_timestamp(cls, v: datetime) -> datetime:
        return ensure_utc(v)


class AccountError(BaseModel):
    """A per-account failure recorded during a pass."""
    username: Optional[str] = None
    error_type: str = Field(..., description="Exception class name, e.g. WriteRejected")
    message: str = ""


class PassReport(BaseModel):
    """Aggregated, auditable outcome of one reconciliation pass."""
    pass_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    evaluated_at: datetime = Field(..., description="Evaluation time the pass ran against")
    started_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None
    outcome: PassOutcome = PassOutcome.COMPLETED
    processed: int = 0
    locked: int = 0
    already_locked: int = 0
    skipped_invalid: int = 0
    errors: List[AccountError] = Field(default_factory=list)
    audit_entries: List[AuditEntry] = Field(default_factory=list)
    expiring_soon: List[str] = Field(default_factory=list)
    cancelled: bool = False
    fatal_error: Optional[str] = None
    message: Optional[str] = None
    report_persisted: bool = False

    @field_validator("evaluated_at", "started_at", "completed_at")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @property
    def error_count(self) -> int:
        return len(self.errors)

    @property
    def exit_code(self) -> int:
        """Process exit code for the scheduler: 0 completed, 1 aborted, 2 skipped."""
        if self.outcome == PassOutcome.ABORTED:
            return 1
        if self.outcome == PassOutcome.SKIPPED:
            return 2
        return 0

    def summary(self) -> str:
        """One-line human readable summary."""
        return (
            f"pass {self.pass_id} {self.outcome.value.lower()}: "
            f"processed={self.processed} locked={self.locked} "
            f"already_locked={self.already_locked} skipped_invalid={self.skipped_invalid} "
            f"errors={self.error_count}{' (cancelled)' if self.cancelled else ''}"
        )


class LifecyclePolicy(BaseModel):
    """Tunable lifecycle policy loaded from lifecycle_policy.yaml."""
    warn_days: int = Field(7, ge=0, description="Days before expiry to start warning")
    protected_accounts: List[str] = Field(default_factory=list, description="Never locked by a pass")
