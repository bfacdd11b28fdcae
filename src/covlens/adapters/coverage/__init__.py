"""Coverage report parsers for the unified line-level coverage model."""

from covlens.adapters.coverage.base import (
    CoverageData,
    CoverageReportParser,
    CoverageSummary,
    FileCoverage,
    LineCoverage,
    SummaryAccumulator,
    rate,
    resolve_source_path,
)
from covlens.adapters.coverage.cobertura import (
    CoberturaParser,
    condition_percentage,
    parse_condition_coverage,
)
from covlens.adapters.coverage.lcov import LcovParser
from covlens.adapters.coverage.selector import parse_coverage

__all__ = [
    "CoberturaParser",
    "CoverageData",
    "CoverageReportParser",
    "CoverageSummary",
    "FileCoverage",
    "LcovParser",
    "LineCoverage",
    "SummaryAccumulator",
    "condition_percentage",
    "parse_condition_coverage",
    "parse_coverage",
    "rate",
    "resolve_source_path",
]
