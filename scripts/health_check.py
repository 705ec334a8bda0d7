#!/usr/bin/env python3
"""
ALM Engine Health Check Script.

Checks that the API answers, and that the scheduler is actually running
passes: the most recent pass report must be recent and must not have
aborted.
"""

import argparse
import json
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import requests

# Configure logging
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(levelname)s - %(message)s')
logger = logging.getLogger(__name__)

STATUS_RANK = {"healthy": 0, "degraded": 1, "unhealthy": 2}


class HealthChecker:
    """Health checker for a running ALM Engine."""

    def __init__(self, api_url: str = "http://localhost:8000", max_report_age_hours: float = 36.0,
                 timeout: float = 10.0):
        self.api_url = api_url.rstrip('/')
        self.max_report_age = timedelta(hours=max_report_age_hours)
        self.timeout = timeout
        self.results: Dict[str, Any] = {}

    def run_all_checks(self) -> Dict[str, Any]:
        """Run all health checks."""
        logger.info("Starting health check...")

        self.results = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "overall_status": "unknown",
            "checks": {},
            "recommendations": []
        }

        self._check_api_health()
        self._check_last_pass()
        self._calculate_overall_status()

        logger.info(f"Health check completed. Overall status: {self.results['overall_status']}")
        return self.results

    def _check_api_health(self):
        """Check API service health."""
        try:
            response = requests.get(f"{self.api_url}/health", timeout=self.timeout)
        except requests.RequestException as e:
            self.results["checks"]["api"] = {"status": "unhealthy", "error": str(e)}
            self.results["recommendations"].append("Start the API server (almctl serve)")
            return

        if response.status_code != 200:
            self.results["checks"]["api"] = {"status": "unhealthy", "error": f"HTTP {response.status_code}"}
            return

        health_data = response.json()
        self.results["checks"]["api"] = {
            "status": "healthy" if health_data.get("status") == "healthy" else "degraded",
            "response_time": response.elapsed.total_seconds(),
            "details": health_data
        }

    def _check_last_pass(self):
        """Check that a pass ran recently and did not abort."""
        try:
            response = requests.get(f"{self.api_url}/passes", params={"limit": 1}, timeout=self.timeout)
            response.raise_for_status()
            reports = response.json()
        except (requests.RequestException, ValueError) as e:
            self.results["checks"]["last_pass"] = {"status": "unhealthy", "error": str(e)}
            return

        if not reports:
            self.results["checks"]["last_pass"] = {"status": "degraded", "error": "no pass reports recorded"}
            self.results["recommendations"].append("Schedule 'almctl run-pass' (cron or systemd timer)")
            return

        latest = reports[0]
        self.results["checks"]["last_pass"] = self.evaluate_report(latest)

        if self.results["checks"]["last_pass"]["status"] != "healthy":
            self.results["recommendations"].append("Investigate the most recent reconciliation pass")

    def evaluate_report(self, report: Dict[str, Any], now: Optional[datetime] = None) -> Dict[str, Any]:
        """Classify one serialized pass report."""
        now = now or datetime.now(timezone.utc)
        started_at = datetime.fromisoformat(report["started_at"])
        if started_at.tzinfo is None:
            started_at = started_at.replace(tzinfo=timezone.utc)
        age = now - started_at

        check = {
            "pass_id": report.get("pass_id"),
            "outcome": report.get("outcome"),
            "age_hours": round(age.total_seconds() / 3600, 2),
            "errors": len(report.get("errors", [])),
            "status": "healthy",
        }

        if report.get("outcome") == "ABORTED":
            check["status"] = "unhealthy"
        elif age > self.max_report_age or check["errors"] or report.get("cancelled"):
            check["status"] = "degraded"

        return check

    def _calculate_overall_status(self):
        """Overall status is the worst individual status."""
        statuses = [c.get("status", "unhealthy") for c in self.results["checks"].values()]
        worst = max(statuses, key=lambda s: STATUS_RANK.get(s, 2), default="unhealthy")
        self.results["overall_status"] = worst


def main() -> int:
    parser = argparse.ArgumentParser(description="ALM Engine health check")
    parser.add_argument("--api-url", default="http://localhost:8000")
    parser.add_argument("--max-report-age-hours", type=float, default=36.0)
    parser.add_argument("--json", action="store_true", help="Print results as JSON")
    args = parser.parse_args()

    checker = HealthChecker(args.api_url, args.max_report_age_hours)
    results = checker.run_all_checks()

    if args.json:
        print(json.dumps(results, indent=2))
    else:
        for name, check in results["checks"].items():
            print(f"{name}: {check['status']}")
        for rec in results["recommendations"]:
            print(f"  - {rec}")

    return STATUS_RANK.get(results["overall_status"], 2)


if __name__ == "__main__":
    sys.exit(main())
