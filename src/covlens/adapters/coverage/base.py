"""Base classes and data models for coverage report parsers."""

from __future__ import annotations

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path


def rate(covered: int, total: int) -> float:
    """Return ``covered / total``, or 0.0 when there is nothing to cover."""
    if total <= 0:
        return 0.0
    return covered / total


def resolve_source_path(filename: str, base_dir: str | Path | None) -> str:
    """Resolve a report filename against *base_dir*.

    Absolute filenames, and any filename when no base directory is given,
    are returned unchanged. Relative filenames are joined with the base
    directory and normalized to an absolute path.
    """
    if not base_dir or not filename or os.path.isabs(filename):
        return filename
    return os.path.abspath(os.path.join(os.fspath(base_dir), filename))


@dataclass(frozen=True)
class LineCoverage:
    """Coverage data for a single executable line."""

    line_number: int
    """1-based line number, unique within a file."""

    hits: int
    """Number of times the line was executed."""

    is_branch: bool = False
    """Whether a conditional was recorded at this line."""

    condition_coverage: str | None = None
    """Raw Cobertura condition text, e.g. ``"50% (1/2)"``."""

    @property
    def is_covered(self) -> bool:
        """Return True if this line was executed at least once."""
        return self.hits > 0


@dataclass(frozen=True)
class FileCoverage:
    """Coverage data for a single source file."""

    filename: str
    """Path as it appears in the report, resolved against the base directory."""

    line_rate: float = 0.0
    """Fraction of covered lines (0.0 to 1.0)."""

    branch_rate: float = 0.0
    """Fraction of covered branches (0.0 to 1.0)."""

    lines: Mapping[int, LineCoverage] = field(default_factory=dict)
    """Line number to line coverage."""

    @property
    def total_lines(self) -> int:
        """Number of executable lines."""
        return len(self.lines)

    @property
    def covered_lines(self) -> int:
        """Number of lines executed at least once."""
        return sum(1 for line in self.lines.values() if line.is_covered)

    def uncovered_line_numbers(self) -> list[int]:
        """Return sorted numbers of lines that were never executed."""
        return sorted(num for num, line in self.lines.items() if not line.is_covered)

    def uncovered_ranges(self) -> list[tuple[int, int]]:
        """Return ranges of consecutive uncovered lines as ``(start, end)``."""
        ranges: list[tuple[int, int]] = []
        for num in self.uncovered_line_numbers():
            if ranges and num == ranges[-1][1] + 1:
                ranges[-1] = (ranges[-1][0], num)
            else:
                ranges.append((num, num))
        return ranges


@dataclass(frozen=True)
class CoverageSummary:
    """Whole-report aggregate line and branch statistics."""

    lines_covered: int = 0
    lines_total: int = 0
    branches_covered: int = 0
    branches_total: int = 0

    @property
    def line_rate(self) -> float:
        """Fraction of covered lines, 0.0 when there are no lines."""
        return rate(self.lines_covered, self.lines_total)

    @property
    def branch_rate(self) -> float:
        """Fraction of covered branches, 0.0 when there are no branches."""
        return rate(self.branches_covered, self.branches_total)


@dataclass(frozen=True)
class SummaryAccumulator:
    """Immutable running totals threaded through a report scan.

    Each ``add_*`` call returns a new accumulator; nothing is mutated.
    """

    lines_covered: int = 0
    lines_total: int = 0
    branches_covered: int = 0
    branches_total: int = 0

    def add_line(self, hits: int) -> SummaryAccumulator:
        """Count one parsed line."""
        return SummaryAccumulator(
            lines_covered=self.lines_covered + (1 if hits > 0 else 0),
            lines_total=self.lines_total + 1,
            branches_covered=self.branches_covered,
            branches_total=self.branches_total,
        )

    def add_branches(self, covered: int, total: int) -> SummaryAccumulator:
        """Count *covered* of *total* branches."""
        return SummaryAccumulator(
            lines_covered=self.lines_covered,
            lines_total=self.lines_total,
            branches_covered=self.branches_covered + covered,
            branches_total=self.branches_total + total,
        )

    def merge(self, other: SummaryAccumulator) -> SummaryAccumulator:
        """Return the sum of two accumulators."""
        return SummaryAccumulator(
            lines_covered=self.lines_covered + other.lines_covered,
            lines_total=self.lines_total + other.lines_total,
            branches_covered=self.branches_covered + other.branches_covered,
            branches_total=self.branches_total + other.branches_total,
        )

    def to_summary(self) -> CoverageSummary:
        """Freeze the totals into a CoverageSummary."""
        return CoverageSummary(
            lines_covered=self.lines_covered,
            lines_total=self.lines_total,
            branches_covered=self.branches_covered,
            branches_total=self.branches_total,
        )


@dataclass(frozen=True)
class CoverageData:
    """Result of parsing one coverage report.

    The summary is accumulated while scanning the report records, it is not
    recomputed from the per-file entries.
    """

    files: Mapping[str, FileCoverage] = field(default_factory=dict)
    """Resolved filename to file coverage."""

    summary: CoverageSummary = field(default_factory=CoverageSummary)
    """Aggregate statistics over every parsed record."""

    source_format: str = ""
    """Report format the data came from (``cobertura`` or ``lcov``)."""

    report_path: str = ""
    """Path of the parsed report file."""

    def get_file(self, filename: str) -> FileCoverage | None:
        """Return coverage for *filename*, or None when the report has none."""
        return self.files.get(filename)


class CoverageReportParser(ABC):
    """Abstract base class for coverage report parsers.

    Each concrete parser reads one native report format and translates it
    into the unified :class:`CoverageData` model.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Report format identifier (e.g. 'cobertura', 'lcov')."""

    @abstractmethod
    def parse(
        self, report_path: str | Path, base_dir: str | Path | None = None
    ) -> CoverageData | None:
        """Parse a report file into unified coverage data.

        Args:
            report_path: Path to the native coverage report.
            base_dir: Directory used to resolve relative source filenames.

        Returns:
            Parsed coverage data, or None when the report does not exist or
            is not a valid report of this format.
        """
