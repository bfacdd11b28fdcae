"""LCOV tracefile parser.

LCOV (``lcov.info``) is the line-oriented text format written by
karma-coverage, Istanbul/nyc, geninfo and llvm-cov. Each source file is a
record opened by ``SF:`` and closed by ``end_of_record``; in between, ``DA:``
lines carry per-line hit counts and ``BRDA:`` lines carry branch outcomes.
"""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from pathlib import Path

from covlens.adapters.coverage.base import (
    CoverageData,
    CoverageReportParser,
    FileCoverage,
    LineCoverage,
    SummaryAccumulator,
    rate,
    resolve_source_path,
)

logger = logging.getLogger(__name__)

# ── Constants ────────────────────────────────────────────────────

# LCOV record keys
_LCOV_SF = "SF"
_LCOV_DA = "DA"
_LCOV_BRDA = "BRDA"
_LCOV_END = "end_of_record"
_LCOV_DA_PARTS = 2
_LCOV_BRDA_PARTS = 4

# BRDA "taken" values meaning the branch never ran ("-": block not instrumented)
_NOT_TAKEN = frozenset({"0", "-"})


@dataclass
class _LcovRecordState:
    """Per-record scan state; ``path is None`` means no record is open."""

    path: str | None = None
    lines: dict[int, LineCoverage] = field(default_factory=dict)
    totals: SummaryAccumulator = field(default_factory=SummaryAccumulator)


def _parse_int(value: str) -> int | None:
    try:
        return int(value.strip())
    except ValueError:
        return None


# ── Parser ───────────────────────────────────────────────────────


class LcovParser(CoverageReportParser):
    """Parser for LCOV tracefiles."""

    @property
    def name(self) -> str:
        return "lcov"

    def parse(
        self, report_path: str | Path, base_dir: str | Path | None = None
    ) -> CoverageData | None:
        """Parse an LCOV file.

        Returns None when the file is missing or cannot be read as text.
        """
        path = Path(report_path)
        if not path.is_file():
            logger.info("LCOV file not found: %s", path)
            return None

        try:
            content = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.error("Failed to read LCOV file %s: %s", path, e)
            return None

        data = self.parse_text(content, base_dir, report_path=str(path))
        logger.info(
            "Parsed LCOV: %d files, %.1f%% line coverage",
            len(data.files),
            data.summary.line_rate * 100,
        )
        return data

    def parse_text(
        self,
        content: str,
        base_dir: str | Path | None = None,
        report_path: str = "",
    ) -> CoverageData:
        """Parse LCOV text into coverage data.

        Record totals are committed to the report summary when the record's
        ``end_of_record`` is reached, so a record that is never closed
        contributes neither a file nor counts.
        """
        files: dict[str, FileCoverage] = {}
        totals = SummaryAccumulator()
        state = _LcovRecordState()

        for raw_line in content.splitlines():
            line = raw_line.strip()
            if not line:
                continue
            if line == _LCOV_END:
                if state.path is not None:
                    files[state.path] = self._close_record(state)
                    totals = totals.merge(state.totals)
                    state = _LcovRecordState()
                continue

            key, sep, value = line.partition(":")
            if not sep:
                continue
            if key == _LCOV_SF:
                if state.path is not None:
                    logger.debug("Record for %s was not terminated; dropping it", state.path)
                state = _LcovRecordState(path=resolve_source_path(value.strip(), base_dir))
            elif state.path is None:
                continue
            elif key == _LCOV_DA:
                state = self._apply_da(value, state)
            elif key == _LCOV_BRDA:
                state = self._apply_brda(value, state)

        if state.path is not None:
            logger.debug("Trailing record for %s has no end_of_record; dropping it", state.path)

        return CoverageData(
            files=files,
            summary=totals.to_summary(),
            source_format=self.name,
            report_path=report_path,
        )

    @staticmethod
    def _apply_da(value: str, state: _LcovRecordState) -> _LcovRecordState:
        """Apply ``DA:<line>,<hits>[,<checksum>]``."""
        parts = value.split(",")
        if len(parts) < _LCOV_DA_PARTS:
            logger.debug("Ignoring malformed DA record: %s", value)
            return state
        line_number = _parse_int(parts[0])
        if line_number is None or line_number < 1:
            logger.debug("Ignoring DA record without a usable line number: %s", value)
            return state
        hits = max(0, _parse_int(parts[1]) or 0)

        state.lines[line_number] = LineCoverage(line_number=line_number, hits=hits)
        state.totals = state.totals.add_line(hits)
        return state

    @staticmethod
    def _apply_brda(value: str, state: _LcovRecordState) -> _LcovRecordState:
        """Apply ``BRDA:<line>,<block>,<branch>,<taken>``."""
        parts = value.split(",")
        if len(parts) < _LCOV_BRDA_PARTS:
            logger.debug("Ignoring malformed BRDA record: %s", value)
            return state
        line_number = _parse_int(parts[0])
        taken = parts[3].strip() not in _NOT_TAKEN

        existing = state.lines.get(line_number) if line_number is not None else None
        if existing is not None:
            state.lines[existing.line_number] = dataclasses.replace(existing, is_branch=True)
        else:
            logger.debug("BRDA for line %s precedes its DA record", parts[0])

        state.totals = state.totals.add_branches(1 if taken else 0, 1)
        return state

    @staticmethod
    def _close_record(state: _LcovRecordState) -> FileCoverage:
        assert state.path is not None
        covered = sum(1 for line in state.lines.values() if line.is_covered)
        return FileCoverage(
            filename=state.path,
            line_rate=rate(covered, len(state.lines)),
            branch_rate=0.0,
            lines=dict(state.lines),
        )
