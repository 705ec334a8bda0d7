"""
Shadow Account Store for the ALM Engine.

Reads local accounts from /etc/shadow and /etc/passwd and locks them with
``usermod -L``. This is the only place that knows about the shadow text
format; everything above it works on AccountRecord.

shadow(5) fields::

    name:password:lastchg:min:max:warn:inactive:expire:reserved

``expire`` is the account expiration date in days since 1970-01-01 (set by
``chage -E`` or ``useradd -e``). A password hash starting with ``!`` means
the password is locked.
"""

import json
import logging
import os
import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple

from ..exceptions import RecordNotFound, StoreUnavailable, WriteRejected
from ..models import AccountRecord, LockState, ensure_utc
from .base import AccountStore
from .fileutil import atomic_write_text

logger = logging.getLogger(__name__)

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

# Pinned binaries for exec
BIN = {
    "usermod": "/usr/sbin/usermod",
}

# usermod(8) exit status for "specified user doesn't exist"
USERMOD_NO_SUCH_USER = 6

SHADOW_FIELDS = 9


def days_to_datetime(days: int) -> datetime:
    """Convert a shadow day count to an aware UTC datetime at midnight."""
    return EPOCH + timedelta(days=days)


def datetime_to_days(value: datetime) -> int:
    """Convert a datetime to a shadow day count (floor)."""
    return (ensure_utc(value) - EPOCH).days


class ShadowAccountStore(AccountStore):
    """
    Account store over the local shadow database.

    Configuration keys:
        shadow_path: path to the shadow file (default /etc/shadow)
        passwd_path: path to the passwd file (default /etc/passwd)
        min_uid / max_uid: only accounts in this uid range are managed
                           (defaults 1000 / 60000, matching login.defs)
        state_file: JSON file holding last_policy_check_at per account
        usermod_path: override for the usermod binary
        timeout: seconds to wait for usermod
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.shadow_path = Path(self.config.get("shadow_path", "/etc/shadow"))
        self.passwd_path = Path(self.config.get("passwd_path", "/etc/passwd"))
        self.min_uid = int(self.config.get("min_uid", 1000))
        self.max_uid = int(self.config.get("max_uid", 60000))
        state_file = self.config.get("state_file")
        self.state_file = Path(state_file) if state_file else None
        self.usermod_path = self.config.get("usermod_path", BIN["usermod"])
        self.timeout = int(self.config.get("timeout", 30))

    def list_accounts(self) -> Iterator[AccountRecord]:
        shadow_lines = self._read_lines(self.shadow_path)
        uids = self._load_uids()
        checks = self._load_check_times()
        return self._iter_records(shadow_lines, uids, checks)

    def set_lock_state(
        self, username: str, state: LockState, checked_at: Optional[datetime] = None
    ) -> AccountRecord:
        try:
            current = self.get_account(username)
        except StoreUnavailable as e:
            raise WriteRejected(str(e), username=username) from e

        flag = "-L" if state == LockState.LOCKED else "-U"
        rc, _, err = self._run_usermod([flag, "--", username])
        if rc == USERMOD_NO_SUCH_USER:
            raise RecordNotFound(f"usermod: user {username} does not exist", username=username)
        if rc != 0:
            raise WriteRejected(
                f"usermod {flag} {username} failed (rc={rc}): {err}", username=username
            )

        logger.info(f"{'Locked' if state == LockState.LOCKED else 'Unlocked'} user: {username}")

        updates: Dict[str, Any] = {"lock_state": state}
        if checked_at is not None:
            checked_at = ensure_utc(checked_at)
            updates["last_policy_check_at"] = checked_at
            self._record_check_time(username, checked_at)
        return current.model_copy(update=updates)

    def parse_shadow_line(
        self, line: str, uids: Dict[str, int], checks: Dict[str, datetime]
    ) -> AccountRecord:
        """Turn one shadow line into an AccountRecord, collecting defects instead of raising."""
        fields = line.split(":")
        defects: List[str] = []

        if len(fields) != SHADOW_FIELDS:
            defects.append(f"expected {SHADOW_FIELDS} fields, found {len(fields)}")
            fields = (fields + [""] * SHADOW_FIELDS)[:SHADOW_FIELDS]

        username = fields[0].strip() or None
        password = fields[1]

        lock_state: Optional[LockState]
        if password == "":
            # No password field at all: cannot tell how authentication behaves
            lock_state = None
            defects.append("empty password field")
        elif password.startswith("!"):
            lock_state = LockState.LOCKED
        else:
            lock_state = LockState.ACTIVE

        expires_at = None
        expire_field = fields[7].strip()
        if expire_field:
            try:
                expire_days = int(expire_field)
            except ValueError:
                defects.append(f"expire field is not a number: {expire_field!r}")
            else:
                # 0 is ambiguous in shadow(5); treated as "never expires"
                if expire_days > 0:
                    expires_at = days_to_datetime(expire_days)
                elif expire_days < 0:
                    defects.append(f"negative expire field: {expire_days}")

        uid = uids.get(username) if username else None
        if username and uid is None:
            defects.append("no matching passwd entry")

        return AccountRecord(
            username=username,
            expires_at=expires_at,
            lock_state=lock_state,
            last_policy_check_at=checks.get(username) if username else None,
            uid=uid,
            defects=defects,
        )

    def _iter_records(
        self, lines: List[str], uids: Dict[str, int], checks: Dict[str, datetime]
    ) -> Iterator[AccountRecord]:
        for line in lines:
            line = line.rstrip("\n")
            if not line.strip() or line.lstrip().startswith("#"):
                continue

            record = self.parse_shadow_line(line, uids, checks)
            if record.uid is not None and not (self.min_uid <= record.uid <= self.max_uid):
                logger.debug(f"Skipping system account {record.username} (uid {record.uid})")
                continue
            yield record

    def _read_lines(self, path: Path) -> List[str]:
        try:
            with open(path, encoding="utf-8") as f:
                return f.readlines()
        except OSError as e:
            raise StoreUnavailable(f"Cannot open identity database {path}: {e}") from e

    def _load_uids(self) -> Dict[str, int]:
        uids: Dict[str, int] = {}
        for line in self._read_lines(self.passwd_path):
            fields = line.rstrip("\n").split(":")
            if len(fields) < 3 or not fields[0] or fields[0].startswith("#"):
                continue
            try:
                uids[fields[0]] = int(fields[2])
            except ValueError:
                logger.warning(f"Ignoring passwd entry with bad uid: {fields[0]}")
        return uids

    def _load_check_times(self) -> Dict[str, datetime]:
        if not self.state_file or not self.state_file.exists():
            return {}

        try:
            with open(self.state_file, encoding="utf-8") as f:
                data = json.load(f)
            return {
                name: ensure_utc(datetime.fromisoformat(ts))
                for name, ts in data.get("last_policy_check_at", {}).items()
            }
        except (OSError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring unreadable state file {self.state_file}: {e}")
            return {}

    def _record_check_time(self, username: str, checked_at: datetime) -> None:
        if not self.state_file:
            return

        checks = {name: ts.isoformat() for name, ts in self._load_check_times().items()}
        checks[username] = checked_at.isoformat()
        try:
            atomic_write_text(
                self.state_file, json.dumps({"last_policy_check_at": checks}, indent=2)
            )
        except OSError as e:
            # The lock itself already happened; the timestamp is observability only
            logger.error(f"Failed to save state to {self.state_file}: {e}")

    def _run_usermod(self, args: List[str]) -> Tuple[int, str, str]:
        """Run the pinned usermod binary. Returns (returncode, stdout, stderr)."""
        if not os.path.exists(self.usermod_path):
            return 127, "", f"binary not found: {self.usermod_path}"
        try:
            p = subprocess.run(
                [self.usermod_path] + args,
                capture_output=True,
                text=True,
                check=False,
                timeout=self.timeout,
            )
            return p.returncode, p.stdout.strip(), p.stderr.strip()
        except subprocess.TimeoutExpired:
            return 124, "", f"usermod timed out after {self.timeout}s"
        except OSError as e:
            return 127, "", str(e)
