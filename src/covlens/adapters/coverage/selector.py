"""Pick the first coverage report that parses: Cobertura, then LCOV."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from covlens.adapters.coverage.cobertura import CoberturaParser
from covlens.adapters.coverage.lcov import LcovParser
from covlens.telemetry.sentry_integration import record_report_parsed, report_span

if TYPE_CHECKING:
    from pathlib import Path

    from covlens.adapters.coverage.base import CoverageData, CoverageReportParser

logger = logging.getLogger(__name__)


def _parse_with(
    parser: CoverageReportParser,
    report_path: str | Path,
    base_dir: str | Path | None,
) -> CoverageData | None:
    with report_span(parser.name, report_path) as span:
        data = parser.parse(report_path, base_dir)
        span.set_data("coverage.found", data is not None)
        if data is not None:
            span.set_data("coverage.files", len(data.files))
    record_report_parsed(parser.name, data)
    return data


def parse_coverage(
    cobertura_path: str | Path | None = None,
    lcov_path: str | Path | None = None,
    base_dir: str | Path | None = None,
) -> CoverageData | None:
    """Parse coverage from a Cobertura report, falling back to LCOV.

    The first report that parses wins; the two formats are never merged or
    cross-checked.

    Args:
        cobertura_path: Path to a Cobertura XML report, if any.
        lcov_path: Path to an LCOV tracefile, if any.
        base_dir: Directory used to resolve relative source filenames.

    Returns:
        The parsed coverage data, or None when neither report is given,
        exists, or parses.
    """
    if cobertura_path:
        data = _parse_with(CoberturaParser(), cobertura_path, base_dir)
        if data is not None:
            return data

    if lcov_path:
        data = _parse_with(LcovParser(), lcov_path, base_dir)
        if data is not None:
            return data

    logger.debug("No coverage data (cobertura=%s, lcov=%s)", cobertura_path, lcov_path)
    return None
