"""Per-line coverage markers.

Markers describe how a line should be shown (covered, partially covered or
uncovered, plus a hit-count badge) without committing to a renderer. The
terminal reporter draws them as a table; editors can map them to gutter
icons.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from covlens.adapters.coverage.cobertura import condition_percentage, parse_condition_coverage

if TYPE_CHECKING:
    from covlens.adapters.coverage.base import FileCoverage, LineCoverage

_BADGE_CAP = 100


class MarkerKind(str, Enum):
    """How a line is covered."""

    COVERED = "covered"
    PARTIAL = "partial"
    UNCOVERED = "uncovered"


@dataclass(frozen=True)
class LineMarker:
    """Display data for one line."""

    line_number: int
    kind: MarkerKind
    hits: int
    badge: str


def _branches_incomplete(line: LineCoverage) -> bool:
    counts = parse_condition_coverage(line.condition_coverage)
    if counts is not None:
        covered, total = counts
        return covered < total
    percentage = condition_percentage(line.condition_coverage)
    return percentage is not None and percentage < 100


def classify_line(line: LineCoverage) -> MarkerKind:
    """Classify a line as covered, partial or uncovered.

    A branch line is partial when its condition data shows missed branches.
    Branch lines with no parseable condition data are treated as covered.
    """
    if not line.is_covered:
        return MarkerKind.UNCOVERED
    if line.is_branch and line.condition_coverage and _branches_incomplete(line):
        return MarkerKind.PARTIAL
    return MarkerKind.COVERED


def badge_text(hits: int) -> str:
    """Return the hit-count badge: empty for 0, capped at ``99+``."""
    if hits <= 0:
        return ""
    if hits >= _BADGE_CAP:
        return "99+"
    return str(hits)


def build_markers(file_coverage: FileCoverage, line_count: int | None = None) -> list[LineMarker]:
    """Build markers for every line of *file_coverage*, sorted by line.

    Args:
        file_coverage: Coverage of one source file.
        line_count: Number of lines in the source as it is now. Lines beyond
            it (stale reports) are dropped.
    """
    markers: list[LineMarker] = []
    for line_number in sorted(file_coverage.lines):
        if line_count is not None and not 1 <= line_number <= line_count:
            continue
        line = file_coverage.lines[line_number]
        markers.append(
            LineMarker(
                line_number=line_number,
                kind=classify_line(line),
                hits=line.hits,
                badge=badge_text(line.hits),
            )
        )
    return markers


def hover_text(line: LineCoverage) -> str:
    """Describe a line's coverage as Markdown."""
    if not line.is_covered:
        return (
            "### Line Not Covered\n\n"
            "**Execution Count:** 0 (never executed)\n\n"
            "This line was not executed during tests.\n\n"
            "**Suggestions:**\n"
            "- Add a test case that exercises this code path\n"
            "- Check if this code is reachable\n"
            "- Consider removing dead code if unreachable"
        )

    plural = "" if line.hits == 1 else "s"
    parts = [
        "### Line Covered\n\n",
        f"**Execution Count:** {line.hits} time{plural}\n\n",
    ]
    if not (line.is_branch and line.condition_coverage):
        parts.append("*This line is well tested*")
        return "".join(parts)

    counts = parse_condition_coverage(line.condition_coverage)
    percentage = condition_percentage(line.condition_coverage)
    if counts is None or percentage is None:
        parts.append(f"**Branch Coverage:** {line.condition_coverage}\n\n")
        return "".join(parts)

    covered, total = counts
    parts.append(f"**Branch Coverage:** {percentage}% ({covered}/{total} branches)\n\n")
    if covered < total:
        parts.append("*Some branches not covered*\n\nAdd tests for missing conditional paths")
    else:
        parts.append("*All branches covered*")
    return "".join(parts)
