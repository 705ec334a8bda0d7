"""
Audit Package.

Exports the pass report sinks.
"""

from .report_sink import JsonlReportSink, MemoryReportSink, ReportSink

__all__ = ["ReportSink", "JsonlReportSink", "MemoryReportSink"]
