from devteam.monitoring.progress_monitor import ProgressMonitor, ProgressSample
from devteam.monitoring.reports import build_report, render_markdown
from devteam.monitoring.snapshots import (
    AlertType,
    DashboardData,
    ProgressAlert,
    ProgressReport,
    ProgressSnapshot,
    ReportType,
    RiskFactor,
)

__all__ = [
    "AlertType",
    "DashboardData",
    "ProgressAlert",
    "ProgressMonitor",
    "ProgressReport",
    "ProgressSample",
    "ProgressSnapshot",
    "ReportType",
    "RiskFactor",
    "build_report",
    "render_markdown",
]
