"""
JSON file account store for the ALM Engine.

Persists account records to a single JSON document. Every write takes an
exclusive flock on a sidecar lock file, re-reads the document, applies the
change and atomically replaces the file, so a single record write is never
lost or torn even when two processes write at once.
"""

import fcntl
import json
import logging
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterator, Optional, Union

from pydantic import ValidationError

from ..exceptions import RecordNotFound, StoreUnavailable, WriteRejected
from ..models import AccountRecord, LockState, ensure_utc, utcnow
from .base import AccountStore
from .fileutil import atomic_write_text

logger = logging.getLogger(__name__)


class JsonAccountStore(AccountStore):
    """
    Account store backed by a JSON file.

    Layout::

        {
          "accounts": {"alice": {...AccountRecord...}, ...},
          "last_updated": "2026-01-01T00:00:00+00:00"
        }
    """

    def __init__(self, path: Union[str, Path], config: Optional[Dict[str, Any]] = None):
        """
        Initialize the store.

        Args:
            path: Location of the JSON document. It is not created until the
                  first write, so listing a missing file reports the store
                  as unavailable.
        """
        super().__init__(config)
        self.path = Path(path)
        self.lock_path = self.path.with_name(self.path.name + ".lock")

    def list_accounts(self) -> Iterator[AccountRecord]:
        document = self._read_document()
        return self._iter_records(document.get("accounts", {}))

    def get_account(self, username: str) -> AccountRecord:
        accounts = self._read_document().get("accounts", {})
        if username not in accounts:
            raise RecordNotFound(f"Account {username} not found", username=username)
        return self._to_record(username, accounts[username])

    def set_lock_state(
        self, username: str, state: LockState, checked_at: Optional[datetime] = None
    ) -> AccountRecord:
        try:
            with self._write_lock():
                document = self._read_document()
                accounts = document.setdefault("accounts", {})
                if username not in accounts:
                    raise RecordNotFound(f"Account {username} not found", username=username)

                data = dict(accounts[username])
                data["lock_state"] = state.value
                if checked_at is not None:
                    data["last_policy_check_at"] = ensure_utc(checked_at).isoformat()
                accounts[username] = data

                self._write_document(document)
        except RecordNotFound:
            raise
        except StoreUnavailable as e:
            raise WriteRejected(str(e), username=username) from e
        except OSError as e:
            raise WriteRejected(f"Failed to write {self.path}: {e}", username=username) from e

        logger.info(f"Set lock state of {username} to {state.value} in {self.path}")
        return self._to_record(username, data)

    def upsert_account(self, record: AccountRecord) -> None:
        """Insert or replace an account. Administrative use only."""
        if not record.username:
            raise ValueError("Cannot store an account without a username")

        with self._write_lock():
            if self.path.exists():
                document = self._read_document()
            else:
                document = {"accounts": {}}
            document.setdefault("accounts", {})[record.username] = record.model_dump(
                mode="json", exclude={"defects"}
            )
            self._write_document(document)

        logger.info(f"Stored account {record.username} in {self.path}")

    def _iter_records(self, accounts: Dict[str, Any]) -> Iterator[AccountRecord]:
        for username, data in accounts.items():
            yield self._to_record(username, data)

    def _to_record(self, username: str, data: Any) -> AccountRecord:
        """Convert a stored entry to an AccountRecord, flagging it if malformed."""
        if not isinstance(data, dict):
            return AccountRecord(username=username, defects=["entry is not an object"])

        data = {**data, "username": data.get("username", username)}
        if data["username"] != username:
            return AccountRecord(
                username=username,
                defects=[f"username field {data['username']!r} does not match key"],
            )

        try:
            return AccountRecord(**data)
        except ValidationError as e:
            logger.warning(f"Malformed account entry {username!r} in {self.path}: {e}")
            return AccountRecord(
                username=username,
                defects=[f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()],
            )

    def _read_document(self) -> Dict[str, Any]:
        try:
            with open(self.path, encoding="utf-8") as f:
                document = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StoreUnavailable(f"Cannot open account store {self.path}: {e}") from e

        if not isinstance(document, dict):
            raise StoreUnavailable(f"Account store {self.path} is not a JSON object")
        return document

    def _write_document(self, document: Dict[str, Any]) -> None:
        document["last_updated"] = utcnow().isoformat()
        atomic_write_text(self.path, json.dumps(document, indent=2, default=str))

    @contextmanager
    def _write_lock(self):
        """Exclusive flock serializing writers across processes."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.lock_path, "a") as fh:
            fcntl.flock(fh, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(fh, fcntl.LOCK_UN)
