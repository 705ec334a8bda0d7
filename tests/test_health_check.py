"""
Tests for scripts/health_check.py.
"""

import importlib.util
from datetime import timedelta
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import requests

SCRIPT = Path(__file__).resolve().parent.parent / "scripts" / "health_check.py"


@pytest.fixture(scope="module")
def health_check():
    spec = importlib.util.spec_from_file_location("health_check", SCRIPT)
    module = importlib.util.module_from_spec(spec)
    spec.loader.exec_module(module)
    return module


def _response(payload, status_code=200):
    response = MagicMock()
    response.status_code = status_code
    response.json.return_value = payload
    response.elapsed = timedelta(milliseconds=12)
    return response


def _report(started_at, **kwargs):
    report = {"pass_id": "p1", "outcome": "COMPLETED", "started_at": started_at.isoformat(),
              "errors": [], "cancelled": False}
    report.update(kwargs)
    return report


class TestEvaluateReport:

    def test_recent_clean_pass_is_healthy(self, health_check, pass_time):
        checker = health_check.HealthChecker()
        result = checker.evaluate_report(_report(pass_time - timedelta(hours=2)), now=pass_time)
        assert result["status"] == "healthy"
        assert result["age_hours"] == 2

    def test_stale_pass_is_degraded(self, health_check, pass_time):
        checker = health_check.HealthChecker()
        result = checker.evaluate_report(_report(pass_time - timedelta(hours=40)), now=pass_time)
        assert result["status"] == "degraded"

    def test_pass_with_errors_is_degraded(self, health_check, pass_time):
        checker = health_check.HealthChecker()
        report = _report(pass_time, errors=[{"username": "u3", "error_type": "WriteRejected", "message": ""}])
        assert checker.evaluate_report(report, now=pass_time)["status"] == "degraded"

    def test_aborted_pass_is_unhealthy(self, health_check, pass_time):
        checker = health_check.HealthChecker()
        report = _report(pass_time, outcome="ABORTED")
        assert checker.evaluate_report(report, now=pass_time)["status"] == "unhealthy"


class TestRunAllChecks:

    def test_all_healthy(self, health_check):
        from alm_engine.models import utcnow

        def fake_get(url, params=None, timeout=None):
            if url.endswith("/health"):
                return _response({"status": "healthy"})
            return _response([_report(utcnow() - timedelta(hours=1))])

        with patch.object(health_check.requests, "get", side_effect=fake_get):
            results = health_check.HealthChecker("http://alm:8000/").run_all_checks()

        assert results["overall_status"] == "healthy"
        assert results["recommendations"] == []

    def test_api_down_is_unhealthy(self, health_check):
        with patch.object(health_check.requests, "get", side_effect=requests.ConnectionError("refused")):
            results = health_check.HealthChecker().run_all_checks()

        assert results["overall_status"] == "unhealthy"
        assert results["checks"]["api"]["status"] == "unhealthy"

    def test_no_reports_is_degraded(self, health_check):
        def fake_get(url, params=None, timeout=None):
            if url.endswith("/health"):
                return _response({"status": "healthy"})
            return _response([])

        with patch.object(health_check.requests, "get", side_effect=fake_get):
            results = health_check.HealthChecker().run_all_checks()

        assert results["overall_status"] == "degraded"
        assert results["checks"]["last_pass"]["error"] == "no pass reports recorded"
