"""
Tests for the pass report sinks.
"""

import json
from datetime import datetime, timedelta, timezone

import pytest

from alm_engine.audit import JsonlReportSink, MemoryReportSink
from alm_engine.exceptions import ReportSinkFailure
from alm_engine.models import AuditEntry, LockState, PassOutcome, PassReport


def _report(started_at, **kwargs):
    return PassReport(evaluated_at=started_at, started_at=started_at, **kwargs)


class TestJsonlReportSink:
    """Tests for JsonlReportSink."""

    def test_append_writes_daily_file(self, tmp_path, pass_time):
        sink = JsonlReportSink(tmp_path / "reports")
        report = _report(pass_time, locked=1, audit_entries=[
            AuditEntry(username="alice", previous_state=LockState.ACTIVE,
                       new_state=LockState.LOCKED, timestamp=pass_time, reason="expired"),
        ])

        sink.append(report)

        log_file = tmp_path / "reports" / "passes_2026-03-01.jsonl"
        lines = log_file.read_text().splitlines()
        assert len(lines) == 1
        data = json.loads(lines[0])
        assert data["pass_id"] == report.pass_id
        assert data["audit_entries"][0]["username"] == "alice"
        assert data["outcome"] == "COMPLETED"

    def test_reports_are_appended_not_rewritten(self, tmp_path, pass_time):
        sink = JsonlReportSink(tmp_path)
        sink.append(_report(pass_time))
        sink.append(_report(pass_time + timedelta(hours=1)))

        assert len((tmp_path / "passes_2026-03-01.jsonl").read_text().splitlines()) == 2

    def test_get_reports_most_recent_first(self, tmp_path, pass_time):
        sink = JsonlReportSink(tmp_path)
        first = _report(pass_time - timedelta(days=1))
        second = _report(pass_time)
        third = _report(pass_time + timedelta(hours=2), outcome=PassOutcome.ABORTED)
        for report in (first, second, third):
            sink.append(report)

        ids = [r.pass_id for r in sink.get_reports()]

        assert ids == [third.pass_id, second.pass_id, first.pass_id]
        assert sink.latest_report().outcome == PassOutcome.ABORTED

    def test_get_reports_limit_and_since(self, tmp_path, pass_time):
        sink = JsonlReportSink(tmp_path)
        for days in range(5):
            sink.append(_report(pass_time - timedelta(days=days)))

        assert len(sink.get_reports(limit=2)) == 2
        recent = sink.get_reports(since=pass_time - timedelta(days=1))
        assert len(recent) == 2

    def test_malformed_lines_are_skipped(self, tmp_path, pass_time):
        sink = JsonlReportSink(tmp_path)
        sink.append(_report(pass_time))
        with open(tmp_path / "passes_2026-03-01.jsonl", "a") as f:
            f.write("{broken\n\n")

        assert len(sink.get_reports()) == 1

    def test_empty_directory(self, tmp_path):
        sink = JsonlReportSink(tmp_path / "nothing")
        assert sink.get_reports() == []
        assert sink.latest_report() is None

    def test_unwritable_directory_raises(self, tmp_path, pass_time):
        blocker = tmp_path / "file"
        blocker.write_text("not a directory")
        sink = JsonlReportSink(blocker / "reports")

        with pytest.raises(ReportSinkFailure):
            sink.append(_report(pass_time))


class TestMemoryReportSink:

    def test_stores_copies(self, pass_time):
        sink = MemoryReportSink()
        report = _report(pass_time)
        sink.append(report)
        report.locked = 99

        assert sink.reports[0].locked == 0

    def test_get_reports(self, pass_time):
        sink = MemoryReportSink()
        old = _report(pass_time - timedelta(days=3))
        new = _report(pass_time)
        sink.append(old)
        sink.append(new)

        assert [r.pass_id for r in sink.get_reports()] == [new.pass_id, old.pass_id]
        assert [r.pass_id for r in sink.get_reports(since=pass_time)] == [new.pass_id]


def test_report_timestamps_are_utc():
    local = timezone(timedelta(hours=5))
    report = _report(datetime(2026, 3, 1, 17, 0, tzinfo=local))
    assert report.started_at == datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)
    assert report.started_at.utcoffset() == timedelta(0)
