"""Workspace-level coverage: sources, loading and file lookup.

A workspace may hold several coverage sources: an explicitly configured
report pair from ``.covlens.yml`` and any number of Karma configs (monorepos
commonly have one per package). Each source is parsed independently; lookups
search the loaded sources in discovery order.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import TYPE_CHECKING

from covlens.adapters.coverage.base import CoverageSummary
from covlens.adapters.coverage.selector import parse_coverage
from covlens.adapters.karma import KarmaConfigDetector
from covlens.config import CONFIG_FILENAME, CovlensConfig, load_config

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping

    from covlens.adapters.coverage.base import CoverageData, FileCoverage

logger = logging.getLogger(__name__)


def normalize_path(file_path: str | Path, workspace_root: str | Path) -> str:
    """Normalize a path for comparison.

    Absolute paths under *workspace_root* become root-relative; separators
    are normalized to ``/``.
    """
    path = os.fspath(file_path)
    root = os.fspath(workspace_root)
    if root and os.path.isabs(path):
        abs_root = os.path.abspath(root)
        abs_path = os.path.abspath(path)
        if abs_path == abs_root or abs_path.startswith(abs_root.rstrip(os.sep) + os.sep):
            path = os.path.relpath(abs_path, abs_root)
    return path.replace("\\", "/")


def _is_segment_suffix(path: str, suffix: str) -> bool:
    """Return True if *suffix* ends *path* at a ``/`` boundary."""
    if not suffix or not path.endswith(suffix):
        return False
    if len(path) == len(suffix):
        return True
    return path[-len(suffix) - 1] == "/" or suffix.startswith("/")


def find_file_coverage(
    file_path: str | Path,
    coverage_sets: Iterable[CoverageData],
    workspace_root: str | Path,
) -> FileCoverage | None:
    """Find coverage for *file_path* across several coverage reports.

    A report entry matches when its normalized filename equals the query,
    ends with it, or is a trailing part of it. The first match in iteration
    order wins.
    """
    wanted = normalize_path(file_path, workspace_root)
    for data in coverage_sets:
        for filename, file_coverage in data.files.items():
            candidate = normalize_path(filename, workspace_root)
            if (
                candidate == wanted
                or _is_segment_suffix(wanted, candidate)
                or _is_segment_suffix(candidate, wanted)
            ):
                return file_coverage
    return None


def aggregate_summary(coverage_sets: Iterable[CoverageData]) -> CoverageSummary:
    """Sum the summaries of several reports into one."""
    lines_covered = lines_total = branches_covered = branches_total = 0
    for data in coverage_sets:
        lines_covered += data.summary.lines_covered
        lines_total += data.summary.lines_total
        branches_covered += data.summary.branches_covered
        branches_total += data.summary.branches_total
    return CoverageSummary(
        lines_covered=lines_covered,
        lines_total=lines_total,
        branches_covered=branches_covered,
        branches_total=branches_total,
    )


@dataclass(frozen=True)
class CoverageSource:
    """One place coverage is loaded from."""

    name: str
    """Display name (config path relative to the workspace root)."""

    cobertura_path: Path | None = None
    """Expected Cobertura report, if any."""

    lcov_path: Path | None = None
    """Expected LCOV report, if any."""

    base_dir: Path | None = None
    """Directory relative source filenames resolve against."""

    def report_paths(self) -> list[Path]:
        """Return the configured report paths (existing or not)."""
        return [p for p in (self.cobertura_path, self.lcov_path) if p is not None]

    def load(self) -> CoverageData | None:
        """Parse this source's reports, Cobertura first."""
        return parse_coverage(self.cobertura_path, self.lcov_path, self.base_dir)


@dataclass(frozen=True)
class WorkspaceSnapshot:
    """Coverage loaded from every source at one point in time."""

    sources: tuple[CoverageSource, ...] = ()
    coverage: Mapping[str, CoverageData] = field(default_factory=dict)
    """Source name to parsed coverage, for sources that produced data."""

    summary: CoverageSummary = field(default_factory=CoverageSummary)
    """Aggregate over all loaded sources."""

    missing: tuple[str, ...] = ()
    """Names of sources without coverage data."""

    @property
    def loaded_count(self) -> int:
        return len(self.coverage)

    def find_file(self, file_path: str | Path, workspace_root: str | Path) -> FileCoverage | None:
        """Look up coverage for *file_path* across every loaded source."""
        return find_file_coverage(file_path, self.coverage.values(), workspace_root)


class CoverageWorkspace:
    """Coverage sources of one workspace directory.

    Args:
        root: Workspace root directory.
        config: Loaded configuration; read from ``<root>/.covlens.yml`` when
            omitted.
    """

    def __init__(self, root: str | Path, config: CovlensConfig | None = None) -> None:
        self.root = Path(root).resolve()
        self.config = config or load_config(self.root)
        self.detector = KarmaConfigDetector(self.root, self.config.discovery)

    def _explicit_source(self) -> CoverageSource | None:
        report = self.config.report
        if not report.is_configured:
            return None
        base_dir = self.root / report.base_dir if report.base_dir else self.root
        return CoverageSource(
            name=CONFIG_FILENAME,
            cobertura_path=self.root / report.cobertura if report.cobertura else None,
            lcov_path=self.root / report.lcov if report.lcov else None,
            base_dir=base_dir,
        )

    def discover_sources(self) -> list[CoverageSource]:
        """Return coverage sources, explicit report first, then Karma configs."""
        sources: list[CoverageSource] = []
        explicit = self._explicit_source()
        if explicit is not None:
            sources.append(explicit)

        if not self.config.discovery.enabled:
            return sources

        for karma in self.detector.load_configs():
            name = normalize_path(karma.config_path, self.root)
            if not karma.coverage_dir:
                logger.info("Skipping %s: no coverageReporter dir", name)
                continue
            sources.append(
                CoverageSource(
                    name=name,
                    cobertura_path=self.detector.get_coverage_file_path(karma, "cobertura"),
                    lcov_path=self.detector.get_coverage_file_path(karma, "lcov"),
                    base_dir=karma.config_dir,
                )
            )
        logger.debug("Discovered %d coverage sources in %s", len(sources), self.root)
        return sources

    def load(self, sources: list[CoverageSource] | None = None) -> WorkspaceSnapshot:
        """Parse every source from scratch.

        Args:
            sources: Sources to load; discovered when omitted.
        """
        if sources is None:
            sources = self.discover_sources()

        coverage: dict[str, CoverageData] = {}
        missing: list[str] = []
        for source in sources:
            data = source.load()
            if data is None:
                logger.info("%s: no coverage files found", source.name)
                missing.append(source.name)
                continue
            coverage[source.name] = data
            logger.info(
                "%s: %.1f%% coverage (%d/%d lines)",
                source.name,
                data.summary.line_rate * 100,
                data.summary.lines_covered,
                data.summary.lines_total,
            )

        return WorkspaceSnapshot(
            sources=tuple(sources),
            coverage=coverage,
            summary=aggregate_summary(coverage.values()),
            missing=tuple(missing),
        )

    def report_paths(self, sources: list[CoverageSource] | None = None) -> list[Path]:
        """Return every report path the given (or discovered) sources read."""
        if sources is None:
            sources = self.discover_sources()
        paths: list[Path] = []
        for source in sources:
            for path in source.report_paths():
                if path not in paths:
                    paths.append(path)
        return paths
