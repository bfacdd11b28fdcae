"""Tests for the covlens CLI commands."""

from __future__ import annotations

import json
import logging
from collections.abc import Generator
from pathlib import Path

import pytest
from click.testing import CliRunner

from covlens import __version__
from covlens.cli import cli
from covlens.watchers.coverage_files import CoverageFileWatcher, FileChange, WatchEvent

_KARMA = """\
module.exports = function (config) {
  config.set({
    frameworks: ['jasmine'],
    coverageReporter: {
      dir: require('path').join(__dirname, './coverage/app'),
      subdir: '.',
      reporters: [
        { type: 'html' },
        { type: 'lcovonly', subdir: '.' },
        { type: 'lcov', subdir: 'report-lcov' },
      ],
    },
  });
};
"""

_LCOV = """\
TN:
SF:src/app.js
DA:1,5
DA:2,5
DA:3,0
DA:4,0
BRDA:2,0,0,3
BRDA:2,0,1,0
end_of_record
"""


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None]:
    """Keep env-driven config and the package logger from leaking between tests."""
    for var in ("COVLENS_SENTRY_ENABLED", "COVLENS_SENTRY_DSN", "COVLENS_COBERTURA", "COVLENS_LCOV"):
        monkeypatch.delenv(var, raising=False)
    package_logger = logging.getLogger("covlens")
    handlers = list(package_logger.handlers)
    level = package_logger.level
    yield
    package_logger.handlers[:] = handlers
    package_logger.setLevel(level)


def _karma_workspace(root: Path, *, with_report: bool = True) -> Path:
    (root / "karma.conf.js").write_text(_KARMA, encoding="utf-8")
    (root / "src").mkdir()
    (root / "src" / "app.js").write_text("a\nb\nc\nd\ne\n", encoding="utf-8")
    report = root / "coverage" / "app" / "report-lcov" / "lcov.info"
    if with_report:
        report.parent.mkdir(parents=True)
        report.write_text(_LCOV, encoding="utf-8")
    return report


def test_version() -> None:
    result = CliRunner().invoke(cli, ["--version"])
    assert result.exit_code == 0
    assert __version__ in result.output


def test_help() -> None:
    result = CliRunner().invoke(cli, ["--help"])
    assert result.exit_code == 0
    for command in ("summary", "show", "configs", "status", "watch", "config"):
        assert command in result.output


class TestSummary:
    def test_explicit_lcov(self, tmp_path: Path) -> None:
        report = tmp_path / "lcov.info"
        report.write_text(_LCOV, encoding="utf-8")

        result = CliRunner().invoke(cli, ["summary", "--path", str(tmp_path), "--lcov", str(report)])

        assert result.exit_code == 0, result.output
        assert "50.0%" in result.output
        assert "(2/4)" in result.output

    def test_explicit_lcov_json(self, tmp_path: Path) -> None:
        report = tmp_path / "lcov.info"
        report.write_text(_LCOV, encoding="utf-8")

        result = CliRunner().invoke(
            cli, ["summary", "--path", str(tmp_path), "--lcov", str(report), "--json-output"]
        )

        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert payload["format"] == "lcov"
        assert payload["summary"]["lines_covered"] == 2
        assert payload["summary"]["lines_total"] == 4
        assert payload["summary"]["branches_total"] == 2
        assert payload["files"][0]["filename"] == str(tmp_path.resolve() / "src" / "app.js")
        assert payload["files"][0]["uncovered_ranges"] == [[3, 4]]

    def test_missing_report_exits_nonzero(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(
            cli, ["summary", "--path", str(tmp_path), "--lcov", str(tmp_path / "nope.info")]
        )

        assert result.exit_code == 1
        assert "No coverage data found" in result.output

    def test_karma_workspace(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path)

        result = CliRunner().invoke(cli, ["summary", "--path", str(tmp_path)])

        assert result.exit_code == 0, result.output
        assert "karma.conf.js" in result.output
        assert "50.0%" in result.output

    def test_karma_workspace_without_report(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path, with_report=False)

        result = CliRunner().invoke(cli, ["summary", "--path", str(tmp_path)])

        assert result.exit_code == 1
        assert "no coverage data" in result.output
        assert "Run tests to generate coverage files" in result.output

    def test_workspace_json(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path)

        result = CliRunner().invoke(cli, ["summary", "--path", str(tmp_path), "--json-output"])

        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        assert [s["name"] for s in payload["sources"]] == ["karma.conf.js"]
        assert payload["missing"] == []
        assert payload["status"] == "Coverage: 50.0%"

    def test_empty_workspace(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["summary", "--path", str(tmp_path)])

        assert result.exit_code == 1
        assert "No coverage sources" in result.output


class TestShow:
    def test_markers_json(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path)

        result = CliRunner().invoke(
            cli,
            ["show", str(tmp_path / "src" / "app.js"), "--path", str(tmp_path), "--json-output"],
        )

        assert result.exit_code == 0, result.output
        payload = json.loads(result.stdout)
        kinds = {m["line_number"]: m["kind"] for m in payload["markers"]}
        assert kinds == {1: "covered", 2: "covered", 3: "uncovered", 4: "uncovered"}
        assert payload["markers"][0]["badge"] == "5"

    def test_marker_table(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path)

        result = CliRunner().invoke(
            cli, ["show", str(tmp_path / "src" / "app.js"), "--path", str(tmp_path)]
        )

        assert result.exit_code == 0, result.output
        assert "50.0% line coverage" in result.output

    def test_single_line_hover(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path)

        result = CliRunner().invoke(
            cli,
            ["show", str(tmp_path / "src" / "app.js"), "--path", str(tmp_path), "--line", "3"],
        )

        assert result.exit_code == 0, result.output
        assert "Line Not Covered" in result.output

    def test_non_executable_line(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path)

        result = CliRunner().invoke(
            cli,
            ["show", str(tmp_path / "src" / "app.js"), "--path", str(tmp_path), "--line", "5"],
        )

        assert result.exit_code == 0
        assert "not executable" in result.output

    def test_unknown_file_aborts(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path)

        result = CliRunner().invoke(
            cli, ["show", str(tmp_path / "src" / "other.js"), "--path", str(tmp_path)]
        )

        assert result.exit_code == 1
        assert "No coverage data for src/other.js" in result.output


class TestConfigs:
    def test_json_rows(self, tmp_path: Path) -> None:
        report = _karma_workspace(tmp_path)

        result = CliRunner().invoke(cli, ["configs", "--path", str(tmp_path), "--json-output"])

        assert result.exit_code == 0, result.output
        rows = json.loads(result.stdout)
        assert len(rows) == 1
        assert rows[0]["config"] == "karma.conf.js"
        assert rows[0]["reporters"] == ["html", "lcovonly", "lcov"]
        assert rows[0]["cobertura"] is None
        assert rows[0]["lcov"] == str(report.resolve())
        assert rows[0]["lcov_exists"] is True

    def test_table(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path)

        result = CliRunner().invoke(cli, ["configs", "--path", str(tmp_path)])

        assert result.exit_code == 0, result.output
        assert "Karma: Ready" in result.output

    def test_no_configs(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["configs", "--path", str(tmp_path)])

        assert result.exit_code == 0
        assert "No Karma Config" in result.output


class TestStatus:
    def test_active(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path)

        result = CliRunner().invoke(cli, ["status", "--path", str(tmp_path)])

        assert result.exit_code == 0
        assert "Coverage: 50.0%" in result.output

    def test_not_computed(self, tmp_path: Path) -> None:
        _karma_workspace(tmp_path, with_report=False)

        result = CliRunner().invoke(cli, ["status", "--path", str(tmp_path)])

        assert "Coverage: Not Computed" in result.output
        assert "Run tests to generate coverage" in result.output


class TestWatch:
    def test_reloads_on_change(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        report = _karma_workspace(tmp_path)
        event = WatchEvent(
            changes=[FileChange(path=str(report), change_type="modified", timestamp=0.0)]
        )
        monkeypatch.setattr(CoverageFileWatcher, "poll", lambda self: event)
        monkeypatch.setattr("covlens.cli.time.sleep", lambda _s: None)

        result = CliRunner().invoke(
            cli, ["watch", "--path", str(tmp_path), "--max-events", "1"]
        )

        assert result.exit_code == 0, result.output
        assert "modified: coverage/app/report-lcov/lcov.info" in result.output
        assert "Loading Coverage..." in result.output
        assert result.output.count("Coverage: 50.0%") == 2

    def test_keyboard_interrupt_stops(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        _karma_workspace(tmp_path)

        def _interrupt(self: CoverageFileWatcher) -> None:
            raise KeyboardInterrupt

        monkeypatch.setattr(CoverageFileWatcher, "poll", _interrupt)

        result = CliRunner().invoke(cli, ["watch", "--path", str(tmp_path)])

        assert result.exit_code == 0
        assert "Watch mode stopped" in result.output

    def test_no_sources_aborts(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["watch", "--path", str(tmp_path)])

        assert result.exit_code == 1
        assert "No Karma Config" in result.output


class TestConfigValidate:
    def test_valid(self, tmp_path: Path) -> None:
        result = CliRunner().invoke(cli, ["config", "validate", "--path", str(tmp_path)])

        assert result.exit_code == 0
        assert "Configuration is valid!" in result.output

    def test_invalid(self, tmp_path: Path) -> None:
        (tmp_path / ".covlens.yml").write_text(
            "display:\n  top_files: 0\nwatch:\n  poll_interval: 0\n", encoding="utf-8"
        )

        result = CliRunner().invoke(cli, ["config", "validate", "--path", str(tmp_path)])

        assert result.exit_code == 1
        assert "Found 2 configuration error(s)" in result.output
        assert "display.top_files" in result.output
