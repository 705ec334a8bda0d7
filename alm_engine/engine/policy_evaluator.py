"""
Policy Evaluator for the ALM Engine.

Decides what a reconciliation pass should do with one account at one
point in time. Evaluation is a pure function of the record, the
evaluation time and the loaded lifecycle policy.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import List, Optional, Union

import yaml
from pydantic import ValidationError

from ..exceptions import ConfigurationError
from ..models import AccountRecord, LifecyclePolicy, LockState, PolicyDecision, ensure_utc

logger = logging.getLogger(__name__)

DEFAULT_POLICY_FILE = Path(__file__).parent / "lifecycle_policy.yaml"


class PolicyEvaluator:
    """
    Maps an account record to a lifecycle decision.

    Reads warn_days and protected_accounts from lifecycle_policy.yaml.
    """

    def __init__(
        self,
        policy_file: Optional[Union[str, Path]] = None,
        policy: Optional[LifecyclePolicy] = None,
    ):
        """
        Initialize the policy evaluator.

        Args:
            policy_file: YAML file with the lifecycle policy.
                         Defaults to lifecycle_policy.yaml in the engine directory.
            policy: Explicit policy object; takes precedence over policy_file.
        """
        self.policy_file = Path(policy_file) if policy_file else DEFAULT_POLICY_FILE
        self.policy = policy if policy is not None else self._load_policy()

    def _load_policy(self) -> LifecyclePolicy:
        """Load the lifecycle policy from YAML."""
        if not self.policy_file.exists():
            logger.warning(f"Lifecycle policy file not found: {self.policy_file}, using defaults")
            return LifecyclePolicy()

        try:
            with open(self.policy_file, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
            policy = LifecyclePolicy(**data)
        except (OSError, yaml.YAMLError, ValidationError, TypeError) as e:
            raise ConfigurationError(f"Invalid lifecycle policy {self.policy_file}: {e}") from e

        logger.info(f"Loaded lifecycle policy from {self.policy_file}")
        return policy

    def evaluate(self, record: AccountRecord, now: datetime) -> PolicyDecision:
        """
        Evaluate one account.

        Args:
            record: The account as read from the store
            now: Evaluation time

        Returns:
            NO_ACTION when there is no expiry, the expiry lies in the future,
            or the account is protected; LOCK for an expired active account;
            ALREADY_LOCKED for an expired locked account; INVALID_RECORD for
            anything malformed.
        """
        if self.validate_record(record):
            return PolicyDecision.INVALID_RECORD

        if record.expires_at is None:
            return PolicyDecision.NO_ACTION

        if ensure_utc(now) < ensure_utc(record.expires_at):
            return PolicyDecision.NO_ACTION

        if record.lock_state == LockState.LOCKED:
            return PolicyDecision.ALREADY_LOCKED

        if record.username in self.policy.protected_accounts:
            logger.debug(f"Account {record.username} is expired but protected")
            return PolicyDecision.NO_ACTION

        return PolicyDecision.LOCK

    def validate_record(self, record: AccountRecord) -> List[str]:
        """
        Check a record for completeness.

        Returns:
            List of problems (empty if the record is usable)
        """
        problems = list(record.defects)

        if not record.username or not record.username.strip():
            problems.append("username is missing")

        if record.lock_state is None:
            problems.append("lock state is unknown")

        return problems

    def is_expiring_soon(self, record: AccountRecord, now: datetime) -> bool:
        """True when an active account expires within warn_days but has not expired yet."""
        if record.expires_at is None or record.lock_state != LockState.ACTIVE:
            return False

        now = ensure_utc(now)
        return now < record.expires_at <= now + timedelta(days=self.policy.warn_days)

    def reload_policy(self):
        """Reload the lifecycle policy file."""
        logger.info("Reloading lifecycle policy")
        self.policy = self._load_policy()
