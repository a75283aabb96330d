"""Run reporting."""

from reporting.report import ApplyReport, ReportEntry

__all__ = ['ApplyReport', 'ReportEntry']
