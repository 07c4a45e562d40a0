"""
Suite reporting module.

Generates markdown/JSON reports from suite results.
"""

from .report_generator import ReportConfig, SuiteReportGenerator

__all__ = ["ReportConfig", "SuiteReportGenerator"]
