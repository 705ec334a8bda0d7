"""
Base Account Store for the ALM Engine.

This module provides the abstract interface every account store adapter
implements, whether it is backed by the OS shadow database, a JSON file,
or plain memory for tests.
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterator, Optional

from ..exceptions import RecordNotFound
from ..models import AccountRecord, LockState

logger = logging.getLogger(__name__)


class AccountStore(ABC):
    """
    Abstract base class for account store adapters.

    Adapters are the only place that touches the underlying identity
    database. Each single-record write must be atomic on its own; the
    reconciliation engine does not lock individual accounts.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize the store.

        Args:
            config: Adapter specific configuration (paths, uid ranges, etc.)
        """
        self.config = config or {}
        self.store_name = self.__class__.__name__.replace("AccountStore", "").lower() or "base"

        logger.info(f"Initialized {self.__class__.__name__}")

    @abstractmethod
    def list_accounts(self) -> Iterator[AccountRecord]:
        """
        Enumerate all accounts.

        The backing database is opened when this is called, so an unavailable
        store raises StoreUnavailable here rather than on first iteration.
        The returned iterator is lazy and single use; call again for a fresh
        enumeration.

        Raises:
            StoreUnavailable: if the identity database cannot be opened
        """

    @abstractmethod
    def set_lock_state(
        self, username: str, state: LockState, checked_at: Optional[datetime] = None
    ) -> AccountRecord:
        """
        Change the lock state of one account.

        Args:
            username: Account to modify
            state: Target lock state
            checked_at: Reconciliation time, written back as last_policy_check_at

        Returns:
            The updated AccountRecord

        Raises:
            RecordNotFound: if the account does not exist
            WriteRejected: if the store refuses the mutation
        """

    def get_account(self, username: str) -> AccountRecord:
        """
        Look up a single account.

        The default implementation scans list_accounts(); adapters with an
        index should override it.

        Raises:
            RecordNotFound: if no account has this username
        """
        for record in self.list_accounts():
            if record.username == username:
                return record
        raise RecordNotFound(f"Account {username} not found", username=username)

    def get_store_name(self) -> str:
        """Get the short name of this store backend."""
        return self.store_name
