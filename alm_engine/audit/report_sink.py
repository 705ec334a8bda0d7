"""
Report Sink Module.

This module provides durable storage for pass reports. Each pass is
appended as one JSON line to a daily log file; lines are never rewritten.
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Union

from pydantic import ValidationError

from ..exceptions import ReportSinkFailure
from ..models import PassReport, ensure_utc

logger = logging.getLogger(__name__)


class ReportSink(ABC):
    """Destination for completed pass reports."""

    @abstractmethod
    def append(self, report: PassReport) -> None:
        """
        Persist one pass report.

        Raises:
            ReportSinkFailure: if the report could not be written
        """


class MemoryReportSink(ReportSink):
    """Keeps reports in a list. Used by tests and the API when no report_dir is set."""

    def __init__(self):
        self.reports: List[PassReport] = []

    def append(self, report: PassReport) -> None:
        self.reports.append(report.model_copy(deep=True))

    def get_reports(self, limit: int = 100, since: Optional[datetime] = None) -> List[PassReport]:
        reports = [r for r in reversed(self.reports) if since is None or r.started_at >= ensure_utc(since)]
        return reports[:limit]


class JsonlReportSink(ReportSink):
    """
    Append-only JSONL report log.

    Writes to ``<report_dir>/passes_YYYY-MM-DD.jsonl``, one line per pass,
    dated by the pass start time.
    """

    def __init__(self, report_dir: Union[str, Path] = "reports"):
        """
        Initialize the report sink.

        Args:
            report_dir: Directory to store pass reports
        """
        self.report_dir = Path(report_dir)

    def append(self, report: PassReport) -> None:
        date_str = report.started_at.strftime("%Y-%m-%d")
        log_file = self.report_dir / f"passes_{date_str}.jsonl"

        try:
            self.report_dir.mkdir(parents=True, exist_ok=True)
            with open(log_file, "a", encoding="utf-8") as f:
                f.write(json.dumps(report.model_dump(mode="json")) + "\n")
                f.flush()
        except (OSError, TypeError, ValueError) as e:
            logger.error(f"Failed to write pass report {report.pass_id}: {e}")
            raise ReportSinkFailure(f"Cannot write pass report to {log_file}: {e}") from e

        logger.info(f"Logged pass report {report.pass_id} to {log_file}")

    def get_reports(
        self,
        limit: int = 100,
        since: Optional[datetime] = None,
    ) -> List[PassReport]:
        """
        Retrieve stored pass reports, most recent first.

        Args:
            limit: Maximum number of reports to return
            since: Only reports started at or after this time

        Returns:
            List of PassReports
        """
        results: List[PassReport] = []
        since = ensure_utc(since)

        if not self.report_dir.exists():
            return results

        for log_file in sorted(self.report_dir.glob("passes_*.jsonl"), reverse=True):
            if len(results) >= limit:
                break

            try:
                with open(log_file, encoding="utf-8") as f:
                    lines = f.readlines()
            except OSError as e:
                logger.error(f"Failed to read report file {log_file}: {e}")
                continue

            for line in reversed(lines):
                if len(results) >= limit:
                    break
                if not line.strip():
                    continue

                try:
                    report = PassReport(**json.loads(line))
                except (json.JSONDecodeError, ValidationError, TypeError) as e:
                    logger.warning(f"Failed to parse pass report in {log_file}: {e}")
                    continue

                if since and report.started_at < since:
                    continue
                results.append(report)

        return results

    def latest_report(self) -> Optional[PassReport]:
        """The most recently written report, if any."""
        reports = self.get_reports(limit=1)
        return reports[0] if reports else None
