"""One-line coverage status for a workspace."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from covlens.workspace import WorkspaceSnapshot


class CoverageStatus(str, Enum):
    """Lifecycle state of workspace coverage."""

    INACTIVE = "inactive"
    FOUND = "found"
    NOT_COMPUTED = "not_computed"
    LOADING = "loading"
    ACTIVE = "active"
    ERROR = "error"


@dataclass(frozen=True)
class StatusDisplay:
    status: CoverageStatus
    text: str
    tooltip: str


# status -> (text template, default details)
_DISPLAY: dict[CoverageStatus, tuple[str, str]] = {
    CoverageStatus.INACTIVE: ("No Karma Config", "No karma config found"),
    CoverageStatus.FOUND: ("Karma: Ready", "Karma config found"),
    CoverageStatus.NOT_COMPUTED: ("Coverage: Not Computed", "Run tests to generate coverage"),
    CoverageStatus.LOADING: ("Loading Coverage...", "Parsing coverage file..."),
    CoverageStatus.ACTIVE: ("Coverage: {details}", "Coverage data loaded"),
    CoverageStatus.ERROR: ("Coverage Error", "Error loading coverage"),
}


def describe_status(status: CoverageStatus, details: str | None = None) -> StatusDisplay:
    """Return the text and tooltip shown for *status*."""
    template, default_details = _DISPLAY[status]
    if status is CoverageStatus.ACTIVE:
        text = template.format(details=details or "N/A")
    else:
        text = template
    # The loading tooltip is fixed; the inactive one ignores details too.
    if status in (CoverageStatus.LOADING, CoverageStatus.INACTIVE):
        tooltip = default_details
    else:
        tooltip = details or default_details
    return StatusDisplay(status=status, text=text, tooltip=tooltip)


def status_for_snapshot(snapshot: WorkspaceSnapshot) -> StatusDisplay:
    """Summarize a loaded workspace as a status line.

    No sources gives ``inactive``. Sources without any data give
    ``not_computed``. Otherwise the status is ``active`` with the overall
    line coverage, noting how many sources loaded when there are several.
    """
    total = len(snapshot.sources)
    if total == 0:
        return describe_status(
            CoverageStatus.INACTIVE, "No karma configs with coverageReporter found"
        )

    loaded = snapshot.loaded_count
    if loaded == 0:
        details = (
            "Run tests to generate coverage"
            if total == 1
            else f"{total} configs - Run tests to generate coverage"
        )
        return describe_status(CoverageStatus.NOT_COMPUTED, details)

    percentage = f"{snapshot.summary.line_rate * 100:.1f}%"
    if loaded == total:
        details = percentage if total == 1 else f"{percentage} ({total} configs)"
    else:
        details = f"{percentage} ({loaded}/{total} configs)"
    return describe_status(CoverageStatus.ACTIVE, details)
