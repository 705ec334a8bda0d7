"""
Reconciliation Engine for the ALM Engine.

Runs one pass over every account in the store: evaluates the lifecycle
policy, locks expired accounts, and produces an ordered audit report.
Passes are guarded by a non-blocking pass lock so overlapping scheduled
runs skip instead of stacking.
"""

import logging
import threading
from datetime import datetime
from typing import List, Optional, Tuple

from ..audit.report_sink import ReportSink
from ..exceptions import PassAlreadyRunning, RecordNotFound, ReportSinkFailure, StoreUnavailable, WriteRejected
from ..models import (
    REASON_ALREADY_LOCKED,
    REASON_EXPIRED,
    SKIPPED_MESSAGE,
    AccountError,
    AccountRecord,
    AuditEntry,
    LockState,
    PassOutcome,
    PassReport,
    PolicyDecision,
    ensure_utc,
    utcnow,
)
from ..store.base import AccountStore
from .pass_lock import PassLock
from .policy_evaluator import PolicyEvaluator

logger = logging.getLogger(__name__)


class ReconciliationEngine:
    """
    Applies lifecycle transitions to all accounts, one pass at a time.

    The engine keeps no state between passes. Each account is an
    independent unit of work: a failed write is recorded against that
    account and the pass moves on. Only an unavailable store aborts a pass.
    """

    def __init__(
        self,
        store: AccountStore,
        evaluator: Optional[PolicyEvaluator] = None,
        report_sink: Optional[ReportSink] = None,
        pass_lock: Optional[PassLock] = None,
        verbose_audit: bool = False,
    ):
        """
        Initialize the engine.

        Args:
            store: Account store adapter to read from and write to
            evaluator: Policy evaluator (default policy if None)
            report_sink: Where finished pass reports go (none if None)
            pass_lock: Lock guarding against overlapping passes
                       (process-local lock if None)
            verbose_audit: Also audit accounts that were already locked
        """
        self.store = store
        self.evaluator = evaluator or PolicyEvaluator()
        self.report_sink = report_sink
        self.pass_lock = pass_lock or PassLock()
        self.verbose_audit = verbose_audit
        self.cancel_event = threading.Event()

        logger.info(
            f"Initialized ReconciliationEngine with {self.store.__class__.__name__} "
            f"(verbose_audit={verbose_audit})"
        )

    def cancel(self) -> None:
        """
        Ask a running pass to stop after the current account.

        The request is cleared when that pass finishes; later passes run normally.
        """
        logger.warning("Cancellation requested for reconciliation pass")
        self.cancel_event.set()

    def run_pass(
        self,
        now: Optional[datetime] = None,
        cancel_event: Optional[threading.Event] = None,
        verbose_audit: Optional[bool] = None,
    ) -> PassReport:
        """
        Run one reconciliation pass.

        Args:
            now: Evaluation time (defaults to the current UTC time)
            cancel_event: Event checked before each account; defaults to
                          the engine's own cancel_event
            verbose_audit: Override the engine's verbose_audit setting

        Returns:
            PassReport. Its exit_code is 0 when the pass completed (possibly
            cancelled), 1 when the store or the pass lock file was unavailable
            and 2 when another pass was already running.
        """
        now = ensure_utc(now) if now is not None else utcnow()
        cancel_event = cancel_event if cancel_event is not None else self.cancel_event
        verbose = self.verbose_audit if verbose_audit is None else verbose_audit

        report = PassReport(evaluated_at=now)

        try:
            self.pass_lock.acquire()
        except PassAlreadyRunning as e:
            logger.warning(f"Skipping reconciliation pass {report.pass_id}: {e}")
            report.outcome = PassOutcome.SKIPPED
            report.message = SKIPPED_MESSAGE
            report.completed_at = utcnow()
            return report
        except OSError as e:
            logger.error(f"Cannot take pass lock, aborting pass {report.pass_id}: {e}")
            report.outcome = PassOutcome.ABORTED
            report.fatal_error = f"pass lock unavailable: {e}"
            report.completed_at = utcnow()
            self._flush_report(report)
            return report

        logger.info(f"Starting reconciliation pass {report.pass_id} at {now.isoformat()}")

        try:
            self._reconcile(report, now, cancel_event, verbose)
        finally:
            # A cancel request only applies to the pass in flight
            self.cancel_event.clear()
            self.pass_lock.release()

        report.completed_at = utcnow()
        self._flush_report(report)

        log = logger.error if report.outcome == PassOutcome.ABORTED else logger.info
        log(f"Completed {report.summary()}")
        return report

    def plan(self, now: Optional[datetime] = None) -> List[Tuple[AccountRecord, PolicyDecision]]:
        """
        Evaluate every account without applying anything.

        Does not take the pass lock and never writes.

        Raises:
            StoreUnavailable: if the store cannot be read
        """
        now = ensure_utc(now) if now is not None else utcnow()
        return [(record, self.evaluator.evaluate(record, now)) for record in self.store.list_accounts()]

    def _reconcile(
        self,
        report: PassReport,
        now: datetime,
        cancel_event: threading.Event,
        verbose: bool,
    ) -> None:
        """Enumerate and process accounts. Must be called with the pass lock held."""
        try:
            records = iter(self.store.list_accounts())
        except StoreUnavailable as e:
            logger.error(f"Account store unavailable, aborting pass {report.pass_id}: {e}")
            report.outcome = PassOutcome.ABORTED
            report.fatal_error = str(e)
            return

        while True:
            if cancel_event.is_set():
                logger.warning(
                    f"Pass {report.pass_id} cancelled after {report.processed} accounts"
                )
                report.cancelled = True
                return

            try:
                record = next(records)
            except StopIteration:
                return
            except StoreUnavailable as e:
                # Transitions already applied stay applied
                logger.error(f"Account store failed mid-pass {report.pass_id}: {e}")
                report.outcome = PassOutcome.ABORTED
                report.fatal_error = str(e)
                return

            self._process_account(report, record, now, verbose)

    def _process_account(
        self, report: PassReport, record: AccountRecord, now: datetime, verbose: bool
    ) -> None:
        """Evaluate one account and apply its transition."""
        report.processed += 1
        decision = self.evaluator.evaluate(record, now)

        if decision == PolicyDecision.INVALID_RECORD:
            report.skipped_invalid += 1
            problems = self.evaluator.validate_record(record)
            logger.warning(f"Skipping invalid account record {record.username!r}: {'; '.join(problems)}")
            return

        if self.evaluator.is_expiring_soon(record, now):
            report.expiring_soon.append(record.username)

        if decision == PolicyDecision.NO_ACTION:
            return

        if decision == PolicyDecision.ALREADY_LOCKED:
            report.already_locked += 1
            logger.debug(f"Account {record.username} already locked")
            if verbose:
                report.audit_entries.append(
                    AuditEntry(
                        username=record.username,
                        previous_state=LockState.LOCKED,
                        new_state=LockState.LOCKED,
                        timestamp=now,
                        reason=REASON_ALREADY_LOCKED,
                    )
                )
            return

        try:
            self.store.set_lock_state(record.username, LockState.LOCKED, checked_at=now)
        except (RecordNotFound, WriteRejected) as e:
            logger.error(f"Failed to lock expired account {record.username}: {e}")
            report.errors.append(
                AccountError(username=record.username, error_type=type(e).__name__, message=str(e))
            )
            return
        except Exception as e:
            logger.exception(f"Unexpected error locking account {record.username}")
            report.errors.append(
                AccountError(username=record.username, error_type=type(e).__name__, message=str(e))
            )
            return

        report.locked += 1
        report.audit_entries.append(
            AuditEntry(
                username=record.username,
                previous_state=LockState.ACTIVE,
                new_state=LockState.LOCKED,
                timestamp=now,
                reason=REASON_EXPIRED,
            )
        )
        logger.info(f"Locked expired account {record.username} (expired {record.expires_at.isoformat()})")

    def _flush_report(self, report: PassReport) -> None:
        """Hand the finished report to the sink exactly once. Failures are logged only."""
        if self.report_sink is None:
            return

        report.report_persisted = True
        try:
            self.report_sink.append(report)
        except (ReportSinkFailure, OSError) as e:
            report.report_persisted = False
            logger.error(f"Failed to persist report for pass {report.pass_id}: {e}")
