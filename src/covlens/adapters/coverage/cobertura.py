"""Cobertura XML report parser.

Cobertura is the XML coverage format written by karma-coverage, Istanbul,
coverage.py, Coverlet and most JVM tools. Reports nest
``coverage/packages/package/classes/class/lines/line``, with precomputed
``line-rate``/``branch-rate`` attributes on every class.
"""

from __future__ import annotations

import logging
import math
import re
from pathlib import Path
from typing import TYPE_CHECKING

from defusedxml import DefusedXmlException, ElementTree
from defusedxml.ElementTree import ParseError as DefusedParseError

from covlens.adapters.coverage.base import (
    CoverageData,
    CoverageReportParser,
    FileCoverage,
    LineCoverage,
    SummaryAccumulator,
    resolve_source_path,
)

if TYPE_CHECKING:
    from xml.etree.ElementTree import Element as XmlElement

logger = logging.getLogger(__name__)

_CONDITION_COUNTS_RE = re.compile(r"(\d+)/(\d+)")
_CONDITION_PERCENT_RE = re.compile(r"(\d+)%")


# ── Attribute helpers ────────────────────────────────────────────


def _local_name(elem: XmlElement) -> str:
    return elem.tag.split("}")[-1] if "}" in elem.tag else elem.tag


def _int_attr(element: XmlElement, key: str, default: int = 0) -> int:
    value = element.get(key)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        return default


def _float_attr(element: XmlElement, key: str, default: float = 0.0) -> float:
    value = element.get(key)
    if value is None:
        return default
    try:
        result = float(value)
    except ValueError:
        return default
    return result if math.isfinite(result) else default


def _repeated_children(parent: XmlElement, wrapper: str, tag: str) -> list[XmlElement]:
    """Return every ``<tag>`` inside ``<wrapper>`` children of *parent*.

    A repeated element may be absent, occur once or occur many times; all
    three come back as a list so callers iterate without special cases.
    """
    return [
        child
        for container in parent
        if _local_name(container) == wrapper
        for child in container
        if _local_name(child) == tag
    ]


def parse_condition_coverage(text: str | None) -> tuple[int, int] | None:
    """Extract ``(covered, total)`` from Cobertura condition text.

    ``"50% (1/2)"`` yields ``(1, 2)``. Text without a ``covered/total`` pair
    yields None, meaning the line carries no usable branch data.
    """
    if not text:
        return None
    match = _CONDITION_COUNTS_RE.search(text)
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def condition_percentage(text: str | None) -> int | None:
    """Extract the ``P%`` part of Cobertura condition text, if present."""
    if not text:
        return None
    match = _CONDITION_PERCENT_RE.search(text)
    if match is None:
        return None
    return int(match.group(1))


# ── Parser ───────────────────────────────────────────────────────


class CoberturaParser(CoverageReportParser):
    """Parser for Cobertura XML coverage reports."""

    @property
    def name(self) -> str:
        return "cobertura"

    def parse(
        self, report_path: str | Path, base_dir: str | Path | None = None
    ) -> CoverageData | None:
        """Parse a Cobertura XML report.

        Returns None when the report is missing, is not well-formed XML, or
        has no ``<coverage>`` root element.
        """
        path = Path(report_path)
        if not path.is_file():
            logger.info("Cobertura file not found: %s", path)
            return None

        try:
            tree = ElementTree.parse(path)
        except (DefusedParseError, DefusedXmlException, OSError) as e:
            logger.error("Failed to parse Cobertura XML %s: %s", path, e)
            return None

        root = tree.getroot()
        if root is None or _local_name(root) != "coverage":
            logger.error("Invalid Cobertura XML %s: no coverage element", path)
            return None

        files: dict[str, FileCoverage] = {}
        totals = SummaryAccumulator()

        for package in _repeated_children(root, "packages", "package"):
            for class_elem in _repeated_children(package, "classes", "class"):
                file_coverage, totals = self._parse_class(class_elem, base_dir, totals)
                if file_coverage.filename in files:
                    logger.debug(
                        "Class for %s overrides an earlier class with the same filename",
                        file_coverage.filename,
                    )
                files[file_coverage.filename] = file_coverage

        summary = totals.to_summary()
        logger.info(
            "Parsed Cobertura: %d files, %.1f%% line coverage",
            len(files),
            summary.line_rate * 100,
        )
        return CoverageData(
            files=files,
            summary=summary,
            source_format=self.name,
            report_path=str(path),
        )

    def _parse_class(
        self,
        class_elem: XmlElement,
        base_dir: str | Path | None,
        totals: SummaryAccumulator,
    ) -> tuple[FileCoverage, SummaryAccumulator]:
        """Parse one ``<class>`` element, returning its file and the new totals."""
        filename = resolve_source_path(class_elem.get("filename", ""), base_dir)
        lines: dict[int, LineCoverage] = {}

        for line_elem in _repeated_children(class_elem, "lines", "line"):
            line = self._parse_line(line_elem)
            if line is None:
                continue
            lines[line.line_number] = line
            totals = totals.add_line(line.hits)
            if line.is_branch:
                counts = parse_condition_coverage(line.condition_coverage)
                if counts is not None:
                    totals = totals.add_branches(*counts)

        file_coverage = FileCoverage(
            filename=filename,
            line_rate=_float_attr(class_elem, "line-rate"),
            branch_rate=_float_attr(class_elem, "branch-rate"),
            lines=lines,
        )
        return file_coverage, totals

    @staticmethod
    def _parse_line(line_elem: XmlElement) -> LineCoverage | None:
        number = _int_attr(line_elem, "number")
        if number < 1:
            logger.debug("Skipping <line> without a usable number: %r", line_elem.attrib)
            return None
        return LineCoverage(
            line_number=number,
            hits=max(0, _int_attr(line_elem, "hits")),
            is_branch=line_elem.get("branch") == "true",
            condition_coverage=line_elem.get("condition-coverage"),
        )
