"""Tests for .covlens.yml parsing and validation (config.py)."""

from __future__ import annotations

from pathlib import Path

import pytest

from covlens.config import (
    CONFIG_FILENAME,
    CovlensConfig,
    DisplayConfig,
    ProjectConfig,
    WatchConfig,
    load_config,
    validate_config,
)


def _write_config(root: Path, content: str) -> None:
    (root / CONFIG_FILENAME).write_text(content, encoding="utf-8")


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for var in (
        "COVLENS_COBERTURA",
        "COVLENS_LCOV",
        "COVLENS_SENTRY_ENABLED",
        "COVLENS_SENTRY_DSN",
        "COVLENS_SENTRY_TRACES_SAMPLE_RATE",
    ):
        monkeypatch.delenv(var, raising=False)


class TestLoadConfigDefaults:
    def test_missing_file_uses_defaults(self, tmp_path: Path) -> None:
        config = load_config(tmp_path)

        assert config.project.root == str(tmp_path.resolve())
        assert config.report.is_configured is False
        assert config.discovery.enabled is True
        assert config.discovery.pattern == "*conf.js"
        assert config.discovery.exclude == ["**/node_modules/**"]
        assert config.discovery.max_configs == 20
        assert config.display.improvement_threshold == 80.0
        assert config.display.top_files == 5
        assert config.watch.poll_interval == 1.0
        assert config.watch.patterns == ["**/*.xml", "**/lcov.info"]
        assert config.raw == {}

    def test_empty_file(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "")

        assert load_config(tmp_path).raw == {}

    def test_non_mapping_top_level_ignored(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        _write_config(tmp_path, "- just\n- a list\n")

        config = load_config(tmp_path)

        assert config.raw == {}
        assert "not a mapping" in caplog.text


class TestLoadConfigSections:
    def test_all_sections(self, tmp_path: Path) -> None:
        _write_config(
            tmp_path,
            """\
report:
  cobertura: coverage/cobertura.xml
  lcov: coverage/lcov.info
  base_dir: web
discovery:
  enabled: false
  pattern: "karma*.js"
  exclude: ["dist/**"]
  max_configs: 3
display:
  improvement_threshold: 60
  top_files: 10
watch:
  poll_interval: 2.5
  debounce_delay: 0
  patterns: ["**/*.info"]
""",
        )

        config = load_config(tmp_path)

        assert config.report.cobertura == "coverage/cobertura.xml"
        assert config.report.lcov == "coverage/lcov.info"
        assert config.report.base_dir == "web"
        assert config.report.is_configured is True
        assert config.discovery.enabled is False
        assert config.discovery.pattern == "karma*.js"
        assert config.discovery.exclude == ["dist/**"]
        assert config.discovery.max_configs == 3
        assert config.display.improvement_threshold == 60.0
        assert config.display.top_files == 10
        assert config.watch.poll_interval == 2.5
        assert config.watch.debounce_delay == 0.0
        assert config.watch.patterns == ["**/*.info"]

    def test_section_not_a_mapping_uses_defaults(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "display: loud\n")

        assert load_config(tmp_path).display == DisplayConfig()

    def test_env_var_placeholders_resolved(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("REPORT_DIR", "build/reports")
        _write_config(tmp_path, "report:\n  lcov: ${REPORT_DIR}/lcov.info\n")

        assert load_config(tmp_path).report.lcov == "build/reports/lcov.info"

    def test_unset_env_var_resolves_empty(
        self, tmp_path: Path, caplog: pytest.LogCaptureFixture
    ) -> None:
        _write_config(tmp_path, "report:\n  lcov: ${COVLENS_TEST_UNSET}\n")

        assert load_config(tmp_path).report.lcov == ""
        assert "COVLENS_TEST_UNSET" in caplog.text

    def test_report_env_fallback(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COVLENS_LCOV", "out/lcov.info")

        report = load_config(tmp_path).report

        assert report.lcov == "out/lcov.info"
        assert report.cobertura == ""

    def test_file_takes_precedence_over_env(
        self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setenv("COVLENS_COBERTURA", "env.xml")
        _write_config(tmp_path, "report:\n  cobertura: file.xml\n")

        assert load_config(tmp_path).report.cobertura == "file.xml"


class TestValidateConfig:
    def test_defaults_are_valid(self, tmp_path: Path) -> None:
        assert validate_config(load_config(tmp_path)) == []

    def test_missing_root(self) -> None:
        errors = validate_config(CovlensConfig(project=ProjectConfig(root="")))

        assert "project.root is required" in errors

    @pytest.mark.parametrize(
        ("display", "fragment"),
        [
            (DisplayConfig(improvement_threshold=120.0), "improvement_threshold"),
            (DisplayConfig(improvement_threshold=-1.0), "improvement_threshold"),
            (DisplayConfig(top_files=0), "top_files"),
        ],
    )
    def test_display_errors(self, display: DisplayConfig, fragment: str) -> None:
        config = CovlensConfig(project=ProjectConfig(root="."), display=display)

        errors = validate_config(config)

        assert len(errors) == 1
        assert fragment in errors[0]

    def test_watch_errors(self) -> None:
        config = CovlensConfig(
            project=ProjectConfig(root="."),
            watch=WatchConfig(poll_interval=0, debounce_delay=-1),
        )

        errors = validate_config(config)

        assert len(errors) == 2
        assert any("poll_interval" in e for e in errors)
        assert any("debounce_delay" in e for e in errors)

    def test_discovery_errors(self, tmp_path: Path) -> None:
        _write_config(tmp_path, "discovery:\n  pattern: ''\n  max_configs: 0\n")

        errors = validate_config(load_config(tmp_path))

        assert "discovery.pattern must not be empty" in errors
        assert any("max_configs" in e for e in errors)
