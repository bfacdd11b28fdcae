"""Telemetry integrations for covlens."""

from covlens.telemetry.sentry_integration import (
    init_sentry,
    is_sentry_enabled,
    record_report_parsed,
    report_span,
    set_project_root,
)

__all__ = [
    "init_sentry",
    "is_sentry_enabled",
    "record_report_parsed",
    "report_span",
    "set_project_root",
]
