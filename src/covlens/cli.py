"""covlens CLI: top-level command group."""

from __future__ import annotations

import json
import logging
import os
import sys
import time
from dataclasses import asdict
from pathlib import Path
from typing import Any

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.markdown import Markdown
from rich.table import Table

from covlens import __version__
from covlens.adapters.coverage.selector import parse_coverage
from covlens.adapters.karma import KarmaConfigDetector
from covlens.config import CONFIG_FILENAME, DisplayConfig, load_config, validate_config
from covlens.markers import build_markers, hover_text
from covlens.reporters.terminal import files_needing_improvement, reporter, top_files
from covlens.status import CoverageStatus, describe_status, status_for_snapshot
from covlens.telemetry.sentry_integration import init_sentry, set_project_root
from covlens.watchers.coverage_files import CoverageFileWatcher
from covlens.workspace import CoverageWorkspace, WorkspaceSnapshot, normalize_path

logger = logging.getLogger(__name__)
console = Console()

_PATH_OPTION_KWARGS: dict[str, Any] = {
    "default": ".",
    "type": click.Path(exists=True, file_okay=False, resolve_path=True),
    "help": "Workspace root directory.",
}


def _configure_logging(*, verbose: bool) -> None:
    """Route covlens log records through rich; DEBUG when verbose."""
    package_logger = logging.getLogger("covlens")
    if not any(isinstance(h, RichHandler) for h in package_logger.handlers):
        package_logger.addHandler(RichHandler(console=Console(stderr=True), show_path=False))
    package_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


def _init_sentry_from_env() -> None:
    """Initialize Sentry from environment variables (pre-config-load).

    Provides early error capture even before ``.covlens.yml`` is parsed.
    """
    from covlens.config import SentryConfig

    enabled_raw = os.environ.get("COVLENS_SENTRY_ENABLED", "").strip().lower()
    if enabled_raw not in {"1", "true", "yes"}:
        return

    dsn = os.environ.get("COVLENS_SENTRY_DSN", "").strip()
    if not dsn:
        return

    config = SentryConfig(
        enabled=True,
        dsn=dsn,
        traces_sample_rate=float(os.environ.get("COVLENS_SENTRY_TRACES_SAMPLE_RATE", "0.0")),
    )
    init_sentry(config)


def _coverage_to_dict(data: Any, display: DisplayConfig) -> dict[str, Any]:
    """Convert CoverageData to a JSON-serializable dict."""
    summary = data.summary
    return {
        "format": data.source_format,
        "report_path": data.report_path,
        "summary": {
            "lines_covered": summary.lines_covered,
            "lines_total": summary.lines_total,
            "line_rate": summary.line_rate,
            "branches_covered": summary.branches_covered,
            "branches_total": summary.branches_total,
            "branch_rate": summary.branch_rate,
        },
        "files": [
            {
                "filename": f.filename,
                "line_rate": f.line_rate,
                "branch_rate": f.branch_rate,
                "covered_lines": f.covered_lines,
                "total_lines": f.total_lines,
                "uncovered_ranges": [list(r) for r in f.uncovered_ranges()],
            }
            for f in data.files.values()
        ],
        "top_files": [f.filename for f in top_files(data, display.top_files)],
        "needs_improvement": [
            f.filename
            for f in files_needing_improvement(
                data, display.improvement_threshold, display.top_files
            )
        ],
    }


def _snapshot_to_dict(snapshot: WorkspaceSnapshot, display: DisplayConfig) -> dict[str, Any]:
    summary = snapshot.summary
    return {
        "sources": [
            {
                "name": source.name,
                "cobertura": str(source.cobertura_path) if source.cobertura_path else None,
                "lcov": str(source.lcov_path) if source.lcov_path else None,
                "coverage": (
                    _coverage_to_dict(snapshot.coverage[source.name], display)
                    if source.name in snapshot.coverage
                    else None
                ),
            }
            for source in snapshot.sources
        ],
        "missing": list(snapshot.missing),
        "summary": {
            "lines_covered": summary.lines_covered,
            "lines_total": summary.lines_total,
            "line_rate": summary.line_rate,
            "branches_covered": summary.branches_covered,
            "branches_total": summary.branches_total,
            "branch_rate": summary.branch_rate,
        },
        "status": status_for_snapshot(snapshot).text,
    }


def _load_workspace(path: str) -> CoverageWorkspace:
    try:
        workspace = CoverageWorkspace(path)
    except Exception as e:
        reporter.print_error(f"Failed to load configuration: {e}")
        raise click.Abort from e
    init_sentry(workspace.config.sentry)
    set_project_root(workspace.root)
    return workspace


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Show debug logging.")
@click.version_option(version=__version__, prog_name="covlens")
@click.pass_context
def cli(ctx: click.Context, *, verbose: bool) -> None:
    """covlens: line and branch coverage from Cobertura and LCOV reports."""
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose
    _configure_logging(verbose=verbose)
    _init_sentry_from_env()


# ── covlens summary ───────────────────────────────────────────────


@cli.command()
@click.option("--path", **_PATH_OPTION_KWARGS)
@click.option(
    "--cobertura",
    type=click.Path(dir_okay=False, resolve_path=True),
    default=None,
    help="Cobertura XML report (skips Karma discovery).",
)
@click.option(
    "--lcov",
    type=click.Path(dir_okay=False, resolve_path=True),
    default=None,
    help="LCOV tracefile (skips Karma discovery).",
)
@click.option(
    "--base-dir",
    type=click.Path(file_okay=False, resolve_path=True),
    default=None,
    help="Directory relative source paths resolve against (default: --path).",
)
@click.option("--json-output", "as_json", is_flag=True, help="Output raw JSON instead of tables.")
def summary(
    path: str,
    cobertura: str | None,
    lcov: str | None,
    base_dir: str | None,
    *,
    as_json: bool,
) -> None:
    """Show line and branch coverage.

    Example:
      covlens summary
      covlens summary --lcov coverage/lcov.info --json-output
    """
    workspace = _load_workspace(path)
    display = workspace.config.display

    if cobertura or lcov:
        data = parse_coverage(cobertura, lcov, base_dir or path)
        if as_json:
            click.echo(
                json.dumps(_coverage_to_dict(data, display) if data else {"coverage": None}, indent=2)
            )
        if data is None:
            if not as_json:
                reporter.print_error("No coverage data found")
            sys.exit(1)
        if not as_json:
            reporter.print_coverage_details(
                data,
                display,
                [
                    ("Cobertura", Path(cobertura) if cobertura else None),
                    ("LCOV", Path(lcov) if lcov else None),
                ],
            )
        return

    snapshot = workspace.load()
    if as_json:
        click.echo(json.dumps(_snapshot_to_dict(snapshot, display), indent=2))
        if snapshot.loaded_count == 0:
            sys.exit(1)
        return

    if not snapshot.sources:
        reporter.print_warning(
            f"No coverage sources: no Karma config with coverageReporter and no "
            f"report configured in {CONFIG_FILENAME}"
        )
        sys.exit(1)

    if len(snapshot.sources) == 1:
        source = snapshot.sources[0]
        data = snapshot.coverage.get(source.name)
        if data is None:
            reporter.print_error(f"{source.name}: no coverage data")
            reporter.print_info("Run tests to generate coverage files")
            reporter.print_report_files(
                [("Cobertura", source.cobertura_path), ("LCOV", source.lcov_path)]
            )
            sys.exit(1)
        reporter.print_header(source.name)
        reporter.print_coverage_details(
            data, display, [("Cobertura", source.cobertura_path), ("LCOV", source.lcov_path)]
        )
        return

    reporter.print_workspace_overview(snapshot)
    if snapshot.loaded_count == 0:
        sys.exit(1)


# ── covlens show ──────────────────────────────────────────────────


@cli.command()
@click.argument("source_file", type=click.Path(dir_okay=False))
@click.option("--path", **_PATH_OPTION_KWARGS)
@click.option(
    "--line",
    "line_number",
    type=int,
    default=None,
    help="Describe a single line instead of printing the whole table.",
)
@click.option("--json-output", "as_json", is_flag=True, help="Output raw JSON instead of tables.")
def show(source_file: str, path: str, line_number: int | None, *, as_json: bool) -> None:
    """Show per-line coverage markers for SOURCE_FILE.

    Example:
      covlens show src/app/button.component.ts
      covlens show src/app/button.component.ts --line 42
    """
    workspace = _load_workspace(path)
    snapshot = workspace.load()

    source_path = Path(source_file)
    if not source_path.is_absolute():
        source_path = (Path.cwd() / source_path).resolve()
    line_count: int | None = None
    if source_path.is_file():
        line_count = len(source_path.read_text(encoding="utf-8", errors="replace").splitlines())

    file_coverage = snapshot.find_file(source_path, workspace.root)
    if file_coverage is None:
        reporter.print_warning(f"No coverage data for {normalize_path(source_path, workspace.root)}")
        raise click.Abort

    if line_number is not None:
        line = file_coverage.lines.get(line_number)
        if line is None:
            reporter.print_info(f"Line {line_number} is not executable code")
            return
        if as_json:
            click.echo(json.dumps({"line": line_number, "hover": hover_text(line)}, indent=2))
        else:
            console.print(Markdown(hover_text(line)))
        return

    if as_json:
        markers = build_markers(file_coverage, line_count)
        click.echo(
            json.dumps(
                {
                    "file": file_coverage.filename,
                    "line_rate": file_coverage.line_rate,
                    "markers": [{**asdict(m), "kind": m.kind.value} for m in markers],
                },
                indent=2,
            )
        )
        return

    reporter.print_file_markers(file_coverage, line_count)


# ── covlens configs ───────────────────────────────────────────────


@cli.command()
@click.option("--path", **_PATH_OPTION_KWARGS)
@click.option("--json-output", "as_json", is_flag=True, help="Output raw JSON instead of tables.")
def configs(path: str, *, as_json: bool) -> None:
    """List detected Karma configs and where their reports are expected.

    Example:
      covlens configs
    """
    workspace = _load_workspace(path)
    detector: KarmaConfigDetector = workspace.detector
    karma_configs = detector.load_configs()

    rows: list[dict[str, Any]] = []
    for karma in karma_configs:
        row: dict[str, Any] = {
            "config": normalize_path(karma.config_path, workspace.root),
            "coverage_dir": karma.coverage_dir,
            "reporters": [r.type for r in karma.reporters],
        }
        for report_type in ("cobertura", "lcov"):
            report_path = detector.get_coverage_file_path(karma, report_type)
            row[report_type] = str(report_path) if report_path else None
            row[f"{report_type}_exists"] = bool(report_path and report_path.is_file())
        rows.append(row)

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    if not rows:
        reporter.print_status(describe_status(CoverageStatus.INACTIVE))
        return

    table = Table(title="Karma Configs", title_style="bold cyan")
    table.add_column("Config", style="bold")
    table.add_column("Coverage Dir")
    table.add_column("Cobertura")
    table.add_column("LCOV")

    def _cell(row: dict[str, Any], report_type: str) -> str:
        if row[report_type] is None:
            return "[dim]not configured[/dim]"
        mark = "[green]✓[/green]" if row[f"{report_type}_exists"] else "[red]✗[/red]"
        return f"{mark} {normalize_path(row[report_type], workspace.root)}"

    for row in rows:
        table.add_row(
            row["config"],
            row["coverage_dir"] or "[yellow]none[/yellow]",
            _cell(row, "cobertura"),
            _cell(row, "lcov"),
        )
    console.print(table)
    reporter.print_status(describe_status(CoverageStatus.FOUND, f"{len(rows)} Karma config(s) found"))


# ── covlens status ────────────────────────────────────────────────


@cli.command()
@click.option("--path", **_PATH_OPTION_KWARGS)
def status(path: str) -> None:
    """Print a one-line coverage status.

    Example:
      covlens status
    """
    workspace = _load_workspace(path)
    reporter.print_status(status_for_snapshot(workspace.load()))


# ── covlens watch ─────────────────────────────────────────────────


@cli.command()
@click.option("--path", **_PATH_OPTION_KWARGS)
@click.option(
    "--max-events",
    default=None,
    type=int,
    help="Stop after this many reloads (default: unlimited).",
)
def watch(path: str, max_events: int | None) -> None:
    """Reload coverage whenever a report file changes.

    Example:
      covlens watch
    """
    workspace = _load_workspace(path)
    sources = workspace.discover_sources()
    if not sources:
        reporter.print_status(describe_status(CoverageStatus.INACTIVE))
        raise click.Abort

    directories = {p.parent for p in workspace.report_paths(sources)}
    watcher = CoverageFileWatcher(directories, workspace.config.watch)
    watcher.start()

    reporter.print_status(status_for_snapshot(workspace.load(sources)))
    console.print("[dim]Watching coverage files. Press Ctrl+C to stop[/dim]\n")

    events = 0
    try:
        while max_events is None or events < max_events:
            event = watcher.poll()
            if event is not None:
                events += 1
                for change in event.changes:
                    reporter.print_info(
                        f"{change.change_type}: {normalize_path(change.path, workspace.root)}"
                    )
                reporter.print_status(describe_status(CoverageStatus.LOADING))
                try:
                    snapshot = workspace.load(sources)
                except OSError as e:
                    logger.exception("Coverage reload failed")
                    reporter.print_status(describe_status(CoverageStatus.ERROR, str(e)))
                else:
                    reporter.print_status(status_for_snapshot(snapshot))
                continue
            time.sleep(workspace.config.watch.poll_interval)
    except KeyboardInterrupt:
        console.print("\n[yellow]Watch mode stopped[/yellow]")
    finally:
        watcher.stop()


# ── covlens config ────────────────────────────────────────────────


@cli.group("config")
def config_group() -> None:
    """Inspect `.covlens.yml` configuration."""


@config_group.command("validate")
@click.option(
    "--path",
    default=".",
    type=click.Path(exists=True, file_okay=False, resolve_path=True),
    help="Project root directory.",
)
def config_validate(path: str) -> None:
    """Validate `.covlens.yml` configuration.

    Example:
      covlens config validate
    """
    try:
        config = load_config(path)
    except Exception as e:
        reporter.print_error(f"Failed to load configuration: {e}")
        raise click.Abort from e

    errors = validate_config(config)

    if not errors:
        reporter.print_success("Configuration is valid!")
        return

    reporter.print_error(f"Found {len(errors)} configuration error(s):")
    console.print()

    for idx, error in enumerate(errors, start=1):
        console.print(f"  {idx}. [red]{error}[/red]")

    console.print()
    console.print(
        f"[dim]Fix these errors in {CONFIG_FILENAME} and run 'covlens config validate' again.[/dim]"
    )
    raise click.Abort


if __name__ == "__main__":
    cli()
