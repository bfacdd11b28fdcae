"""Terminal reporter with rich output formatting."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from covlens.markers import MarkerKind, build_markers

if TYPE_CHECKING:
    from covlens.adapters.coverage.base import CoverageData, CoverageSummary, FileCoverage
    from covlens.config import DisplayConfig
    from covlens.status import StatusDisplay
    from covlens.workspace import WorkspaceSnapshot

console = Console()

_HIGH_THRESHOLD = 80.0
_MEDIUM_THRESHOLD = 50.0

_MARKER_STYLES = {
    MarkerKind.COVERED: ("green", "●"),
    MarkerKind.PARTIAL: ("yellow", "◐"),
    MarkerKind.UNCOVERED: ("red", "○"),
}


def coverage_color(percentage: float) -> str:
    """Return a Rich color name for a coverage percentage."""
    if percentage >= _HIGH_THRESHOLD:
        return "green"
    if percentage >= _MEDIUM_THRESHOLD:
        return "yellow"
    return "red"


def short_name(filename: str) -> str:
    """Return the last path component of a report filename."""
    return filename.replace("\\", "/").rsplit("/", 1)[-1] or filename


def top_files(data: CoverageData, limit: int) -> list[FileCoverage]:
    """Return up to *limit* files with the highest line rate."""
    return sorted(data.files.values(), key=lambda f: f.line_rate, reverse=True)[:limit]


def files_needing_improvement(
    data: CoverageData, threshold: float, limit: int
) -> list[FileCoverage]:
    """Return up to *limit* lowest-covered files below *threshold* percent."""
    lowest = sorted(data.files.values(), key=lambda f: f.line_rate)[:limit]
    return [f for f in lowest if f.line_rate * 100 < threshold]


class CoverageReporter:
    """Rich terminal output for coverage summaries and per-line markers."""

    def __init__(self) -> None:
        """Initialize the reporter."""
        self.console = console

    def print_header(self, title: str) -> None:
        """Print a bold header."""
        self.console.print(f"\n[bold cyan]{title}[/bold cyan]\n")

    def print_success(self, message: str) -> None:
        """Print a success message."""
        self.console.print(f"[green]✓[/green] {message}")

    def print_error(self, message: str) -> None:
        """Print an error message."""
        self.console.print(f"[red]✗[/red] {message}")

    def print_warning(self, message: str) -> None:
        """Print a warning message."""
        self.console.print(f"[yellow]⚠[/yellow] {message}")

    def print_info(self, message: str) -> None:
        """Print an info message."""
        self.console.print(f"[dim]{message}[/dim]")

    # ── Summaries ──────────────────────────────────────────────────────

    def _print_rates(self, summary: CoverageSummary) -> None:
        line_pct = summary.line_rate * 100
        line_color = coverage_color(line_pct)
        self.console.print(
            f"  Lines:    [bold {line_color}]{line_pct:.1f}%[/bold {line_color}] "
            f"[dim]({summary.lines_covered}/{summary.lines_total})[/dim]"
        )
        if summary.branches_total > 0:
            branch_pct = summary.branch_rate * 100
            branch_color = coverage_color(branch_pct)
            self.console.print(
                f"  Branches: [bold {branch_color}]{branch_pct:.1f}%[/bold {branch_color}] "
                f"[dim]({summary.branches_covered}/{summary.branches_total})[/dim]"
            )

    def print_coverage_details(
        self,
        data: CoverageData,
        display: DisplayConfig,
        report_files: list[tuple[str, Path | None]] | None = None,
    ) -> None:
        """Print one report: totals, best and worst files, report files.

        Args:
            data: Parsed coverage.
            display: Thresholds and list sizes.
            report_files: ``(label, path)`` pairs to list with an existence
                mark; a None path is shown as not configured.
        """
        self.console.print(
            Panel(
                f"[bold white]Coverage[/bold white] [dim]{data.source_format}[/dim]",
                border_style="cyan",
                padding=(0, 2),
            )
        )
        self._print_rates(data.summary)
        self.console.print(f"  Files:    {len(data.files)}")

        best = top_files(data, display.top_files)
        if best:
            table = Table(title="Top Coverage Files", title_style="bold green")
            table.add_column("#", justify="right")
            table.add_column("File", style="bold")
            table.add_column("Line Coverage", justify="right")
            for idx, file_cov in enumerate(best, start=1):
                pct = file_cov.line_rate * 100
                color = coverage_color(pct)
                table.add_row(str(idx), short_name(file_cov.filename), f"[{color}]{pct:.1f}%[/{color}]")
            self.console.print(table)

        weak = files_needing_improvement(data, display.improvement_threshold, display.top_files)
        if weak:
            table = Table(title="Files Needing Improvement", title_style="bold yellow")
            table.add_column("File", style="bold")
            table.add_column("Line Coverage", justify="right")
            table.add_column("Uncovered Lines")
            for file_cov in weak:
                pct = file_cov.line_rate * 100
                color = coverage_color(pct)
                ranges = ", ".join(
                    str(start) if start == end else f"{start}-{end}"
                    for start, end in file_cov.uncovered_ranges()
                )
                table.add_row(
                    short_name(file_cov.filename),
                    f"[{color}]{pct:.1f}%[/{color}]",
                    f"[dim]{ranges or '-'}[/dim]",
                )
            self.console.print(table)

        if report_files:
            self.print_report_files(report_files)

    def print_report_files(self, report_files: list[tuple[str, Path | None]]) -> None:
        """List report files with an existence mark."""
        self.console.print("\n[bold]Coverage Files:[/bold]")
        for label, path in report_files:
            if path is None:
                self.console.print(f"  [red]✗[/red] {label}: [dim]Not configured[/dim]")
            elif path.is_file():
                self.console.print(f"  [green]✓[/green] {label}: {self._relative(path)}")
            else:
                self.console.print(f"  [red]✗[/red] {label}: {self._relative(path)}")

    def print_workspace_overview(self, snapshot: WorkspaceSnapshot) -> None:
        """Print every source of a workspace followed by overall totals."""
        self.console.print(
            Panel(
                f"[bold white]{len(snapshot.sources)} coverage sources[/bold white]",
                border_style="cyan",
                padding=(0, 2),
            )
        )
        for idx, source in enumerate(snapshot.sources, start=1):
            data = snapshot.coverage.get(source.name)
            if data is None:
                self.console.print(f"{idx}. [red]✗[/red] [bold]{source.name}[/bold]")
                self.console.print("  [dim]No coverage data - run tests[/dim]")
                continue
            self.console.print(f"{idx}. [green]✓[/green] [bold]{source.name}[/bold]")
            self._print_rates(data.summary)
            self.console.print(f"  Files:    {len(data.files)}")

        if snapshot.summary.lines_total > 0:
            self.console.print("\n[bold cyan]Overall Coverage[/bold cyan]")
            self._print_rates(snapshot.summary)

    def print_file_markers(self, file_coverage: FileCoverage, line_count: int | None = None) -> None:
        """Print a per-line coverage table for one file."""
        markers = build_markers(file_coverage, line_count)
        table = Table(title=self._relative(Path(file_coverage.filename)), title_style="bold cyan")
        table.add_column("Line", justify="right")
        table.add_column("", justify="center")
        table.add_column("Hits", justify="right")
        table.add_column("Branches")

        for marker in markers:
            color, icon = _MARKER_STYLES[marker.kind]
            line = file_coverage.lines[marker.line_number]
            table.add_row(
                str(marker.line_number),
                f"[{color}]{icon}[/{color}]",
                marker.badge or "[red]0[/red]",
                f"[dim]{line.condition_coverage}[/dim]" if line.condition_coverage else "",
            )

        self.console.print(table)
        pct = file_coverage.line_rate * 100
        color = coverage_color(pct)
        self.console.print(
            f"  [{color}]{pct:.1f}%[/{color}] line coverage "
            f"[dim]({file_coverage.covered_lines}/{file_coverage.total_lines})[/dim]"
        )

    def print_status(self, display: StatusDisplay) -> None:
        """Print a one-line status with its tooltip dimmed below it."""
        self.console.print(f"[bold]{display.text}[/bold]")
        if display.tooltip and display.tooltip not in display.text:
            self.console.print(f"[dim]{display.tooltip}[/dim]")

    def _relative(self, path: Path) -> str:
        """Strip the current working directory from a path for display."""
        try:
            return str(path.relative_to(Path.cwd()))
        except ValueError:
            return str(path)


# Singleton instance for easy import
reporter = CoverageReporter()
