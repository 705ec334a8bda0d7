"""
In-memory account store.

Keeps accounts in a dict guarded by a lock. Used for tests, demos and
as the reference behaviour for the other adapters.
"""

import logging
import threading
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional

from ..exceptions import RecordNotFound, StoreUnavailable
from ..models import AccountRecord, LockState, ensure_utc
from .base import AccountStore

logger = logging.getLogger(__name__)


class InMemoryAccountStore(AccountStore):
    """Dict-backed account store with per-write atomicity."""

    def __init__(
        self,
        accounts: Optional[Iterable[AccountRecord]] = None,
        config: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(config)
        self._lock = threading.Lock()
        self._order: List[str] = []
        self.accounts: Dict[str, AccountRecord] = {}
        self.available = True

        for record in accounts or []:
            self.add_account(record)

    def add_account(self, record: AccountRecord) -> None:
        """Insert or replace an account, keeping insertion order for enumeration."""
        with self._lock:
            key = record.username or f"<invalid:{len(self._order)}>"
            if key not in self.accounts:
                self._order.append(key)
            self.accounts[key] = record.model_copy(deep=True)

    def list_accounts(self) -> Iterator[AccountRecord]:
        if not self.available:
            raise StoreUnavailable("In-memory store marked unavailable")

        with self._lock:
            snapshot = [self.accounts[key].model_copy(deep=True) for key in self._order]
        return iter(snapshot)

    def get_account(self, username: str) -> AccountRecord:
        with self._lock:
            record = self.accounts.get(username)
            if record is None or record.username != username:
                raise RecordNotFound(f"Account {username} not found", username=username)
            return record.model_copy(deep=True)

    def set_lock_state(
        self, username: str, state: LockState, checked_at: Optional[datetime] = None
    ) -> AccountRecord:
        with self._lock:
            record = self.accounts.get(username)
            if record is None or record.username != username:
                raise RecordNotFound(f"Account {username} not found", username=username)

            updates: Dict[str, Any] = {"lock_state": state}
            if checked_at is not None:
                updates["last_policy_check_at"] = ensure_utc(checked_at)
            updated = record.model_copy(update=updates)
            self.accounts[username] = updated

        logger.info(f"Set lock state of {username} to {state.value}")
        return updated.model_copy(deep=True)
