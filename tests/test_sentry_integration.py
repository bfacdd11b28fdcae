"""Tests for Sentry integration (telemetry/sentry_integration.py)."""

from __future__ import annotations

from collections.abc import Generator
from pathlib import Path
from typing import Any
from unittest.mock import MagicMock, call, patch

import pytest

from covlens.adapters.coverage.selector import parse_coverage
from covlens.config import SentryConfig, _validate_sentry_config, load_config
from covlens.telemetry import sentry_integration

_LCOV = "SF:src/app.js\nDA:1,1\nDA:2,0\nend_of_record\n"


@pytest.fixture(autouse=True)
def _reset_sentry_state() -> Generator[None]:
    """Reset Sentry singleton state between tests."""
    sentry_integration._state.update(initialized=False, project_root="")
    yield
    sentry_integration._state.update(initialized=False, project_root="")


@pytest.fixture
def enabled_sdk() -> Generator[MagicMock]:
    """Pretend Sentry is initialized, backed by a mock SDK."""
    mock_sdk = MagicMock()
    sentry_integration._state["initialized"] = True
    with patch.object(sentry_integration, "sentry_sdk", mock_sdk, create=True):
        yield mock_sdk


def _patched_sdk(mock_sdk: MagicMock) -> Any:
    return patch.multiple(
        sentry_integration,
        sentry_sdk=mock_sdk,
        _LoggingIntegration=MagicMock(),
        _sentry_available=True,
        create=True,
    )


def _frame_event(filename: str, abs_path: str) -> dict[str, Any]:
    return {
        "exception": {
            "values": [
                {
                    "value": f"Cannot parse {abs_path}",
                    "stacktrace": {
                        "frames": [
                            {
                                "filename": filename,
                                "abs_path": abs_path,
                                "vars": {"content": "SF:src/app.js\nDA:1,1\n"},
                            }
                        ]
                    },
                }
            ]
        }
    }


# ---------------------------------------------------------------------------
# init_sentry
# ---------------------------------------------------------------------------


class TestInitSentry:
    def test_disabled_does_not_call_sdk(self) -> None:
        mock_sdk = MagicMock()

        with _patched_sdk(mock_sdk):
            sentry_integration.init_sentry(
                SentryConfig(enabled=False, dsn="https://key@sentry.io/123")
            )

        mock_sdk.init.assert_not_called()
        assert not sentry_integration.is_sentry_enabled()

    def test_enabled_without_dsn_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        sentry_integration.init_sentry(SentryConfig(enabled=True, dsn=""))

        assert not sentry_integration.is_sentry_enabled()
        assert "no DSN configured" in caplog.text

    def test_sdk_missing_warns(self, caplog: pytest.LogCaptureFixture) -> None:
        with patch.object(sentry_integration, "_sentry_available", False):
            sentry_integration.init_sentry(
                SentryConfig(enabled=True, dsn="https://key@sentry.io/123")
            )

        assert not sentry_integration.is_sentry_enabled()
        assert "not installed" in caplog.text

    def test_valid_config_scrubs_before_sending(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.delenv("CI", raising=False)
        mock_sdk = MagicMock()

        with _patched_sdk(mock_sdk):
            sentry_integration.init_sentry(
                SentryConfig(enabled=True, dsn="https://key@sentry.io/123", traces_sample_rate=0.5)
            )

        assert sentry_integration.is_sentry_enabled()
        kwargs = mock_sdk.init.call_args[1]
        assert kwargs["release"].startswith("covlens@")
        assert kwargs["environment"] == "local"
        assert kwargs["traces_sample_rate"] == 0.5
        assert kwargs["send_default_pii"] is False
        assert kwargs["before_send"] is sentry_integration._before_send
        assert kwargs["before_send_transaction"] is sentry_integration._before_send

    def test_ci_environment(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("CI", "true")
        mock_sdk = MagicMock()

        with _patched_sdk(mock_sdk):
            sentry_integration.init_sentry(
                SentryConfig(enabled=True, dsn="https://key@sentry.io/123")
            )

        assert mock_sdk.init.call_args[1]["environment"] == "ci"

    def test_idempotent(self) -> None:
        config = SentryConfig(enabled=True, dsn="https://key@sentry.io/123", environment="test")
        mock_sdk = MagicMock()

        with _patched_sdk(mock_sdk):
            sentry_integration.init_sentry(config)
            sentry_integration.init_sentry(config)

        assert mock_sdk.init.call_count == 1


# ---------------------------------------------------------------------------
# Report path scrubbing
# ---------------------------------------------------------------------------


class TestScrubbing:
    def test_project_paths_become_relative(self) -> None:
        sentry_integration.set_project_root("/work/shop")

        scrub = sentry_integration._scrub_path
        assert scrub("/work/shop/coverage/lcov.info") == "<project>/coverage/lcov.info"
        assert scrub("/work/other/lcov.info") == "/work/other/lcov.info"

    def test_home_directories_hidden(self) -> None:
        scrub = sentry_integration._scrub_path
        assert scrub("/Users/jane/app/cobertura.xml") == "/~/app/cobertura.xml"
        assert scrub("read /home/joe/x.info failed") == "read /~/x.info failed"

    def test_filesystem_root_is_not_a_project(self) -> None:
        sentry_integration.set_project_root("/")

        assert sentry_integration._scrub_path("/srv/lcov.info") == "/srv/lcov.info"

    def test_frames_lose_locals_and_paths(self) -> None:
        sentry_integration.set_project_root("/work/shop")
        event = _frame_event("covlens/adapters/coverage/lcov.py", "/work/shop/coverage/lcov.info")

        scrubbed = sentry_integration._scrub_event(event)

        value = scrubbed["exception"]["values"][0]
        frame = value["stacktrace"]["frames"][0]
        assert "vars" not in frame
        assert frame["abs_path"] == "<project>/coverage/lcov.info"
        assert value["value"] == "Cannot parse <project>/coverage/lcov.info"

    def test_span_data_and_descriptions(self) -> None:
        sentry_integration.set_project_root("/work/shop")
        event: dict[str, Any] = {
            "type": "transaction",
            "transaction": "covlens summary /work/shop",
            "spans": [
                {
                    "op": "coverage.parse",
                    "description": "lcov: /work/shop/coverage/lcov.info",
                    "data": {
                        "coverage.report": "/work/shop/coverage/lcov.info",
                        "coverage.files": 3,
                    },
                }
            ],
        }

        scrubbed = sentry_integration._before_send(event, {})

        assert scrubbed is not None
        span = scrubbed["spans"][0]
        assert span["description"] == "lcov: <project>/coverage/lcov.info"
        assert span["data"] == {
            "coverage.report": "<project>/coverage/lcov.info",
            "coverage.files": 3,
        }
        assert scrubbed["transaction"] == "covlens summary <project>"

    def test_breadcrumbs_and_log_entries(self) -> None:
        event: dict[str, Any] = {
            "breadcrumbs": {
                "values": [
                    {"message": "Cannot read Karma config /home/jane/app/karma.conf.js"},
                ]
            },
            "logentry": {
                "message": "Cobertura report %s is malformed",
                "params": ["/home/jane/c.xml"],
            },
        }

        scrubbed = sentry_integration._scrub_event(event)

        crumb = scrubbed["breadcrumbs"]["values"][0]
        assert crumb["message"] == "Cannot read Karma config /~/app/karma.conf.js"
        assert scrubbed["logentry"]["params"] == ["/~/c.xml"]

    def test_contexts_tags_and_credentials(self) -> None:
        event: dict[str, Any] = {
            "server_name": "build-agent-7",
            "tags": {"coverage.format": "cobertura"},
            "contexts": {"coverage_report": {"coverage.report": "/home/jane/c.xml"}},
            "extra": {"dsn": "https://key@sentry.io/1", "note": "token=abc123 used"},
        }

        scrubbed = sentry_integration._scrub_event(event)

        assert "server_name" not in scrubbed
        assert scrubbed["tags"] == {"coverage.format": "cobertura"}
        assert scrubbed["contexts"]["coverage_report"]["coverage.report"] == "/~/c.xml"
        assert scrubbed["extra"]["dsn"] == "[REDACTED]"
        assert "abc123" not in scrubbed["extra"]["note"]


# ---------------------------------------------------------------------------
# Report spans and metrics
# ---------------------------------------------------------------------------


class TestReportSpan:
    def test_noop_when_disabled(self) -> None:
        with sentry_integration.report_span("lcov", "/tmp/lcov.info") as span:
            span.set_data("coverage.found", True)

        assert isinstance(span, sentry_integration._NoOpSpan)

    def test_scope_tagged_with_format(self, enabled_sdk: MagicMock) -> None:
        sentry_integration.set_project_root("/work/shop")

        with sentry_integration.report_span("cobertura", "/work/shop/coverage/cobertura.xml"):
            pass

        scope = enabled_sdk.new_scope.return_value.__enter__.return_value
        scope.set_tag.assert_called_once_with("coverage.format", "cobertura")
        scope.set_context.assert_called_once_with(
            "coverage_report",
            {
                "coverage.format": "cobertura",
                "coverage.report": "<project>/coverage/cobertura.xml",
                "coverage.report_name": "cobertura.xml",
            },
        )
        enabled_sdk.start_span.assert_called_once_with(
            op="coverage.parse", description="cobertura: cobertura.xml"
        )

    def test_span_data_scrubbed(self, enabled_sdk: MagicMock) -> None:
        with sentry_integration.report_span("lcov", "/home/jane/app/lcov.info"):
            pass

        span = enabled_sdk.start_span.return_value.__enter__.return_value
        span.set_data.assert_any_call("coverage.report", "/~/app/lcov.info")
        span.set_data.assert_any_call("coverage.format", "lcov")


class TestMetrics:
    def test_noop_when_disabled(self) -> None:
        mock_sdk = MagicMock()
        with patch.object(sentry_integration, "sentry_sdk", mock_sdk, create=True):
            sentry_integration.record_report_parsed("lcov", None)

        mock_sdk.metrics.count.assert_not_called()

    def test_failed_parse_counted(self, enabled_sdk: MagicMock) -> None:
        sentry_integration.record_report_parsed("cobertura", None)

        enabled_sdk.metrics.count.assert_called_once_with(
            "coverage.parse_failed", 1.0, attributes={"format": "cobertura"}
        )
        enabled_sdk.metrics.gauge.assert_not_called()


class TestSelectorTelemetry:
    def test_successful_parse_traced(self, enabled_sdk: MagicMock, tmp_path: Path) -> None:
        report = tmp_path / "lcov.info"
        report.write_text(_LCOV, encoding="utf-8")

        data = parse_coverage(lcov_path=report, base_dir=tmp_path)

        assert data is not None
        span = enabled_sdk.start_span.return_value.__enter__.return_value
        span.set_data.assert_any_call("coverage.found", True)
        span.set_data.assert_any_call("coverage.files", 1)
        enabled_sdk.metrics.count.assert_called_once_with(
            "coverage.parsed", 1.0, attributes={"format": "lcov"}
        )
        enabled_sdk.metrics.gauge.assert_called_once_with(
            "coverage.line_rate", 0.5, unit="ratio", attributes={"format": "lcov"}
        )

    def test_cobertura_failure_then_lcov(self, enabled_sdk: MagicMock, tmp_path: Path) -> None:
        report = tmp_path / "lcov.info"
        report.write_text(_LCOV, encoding="utf-8")

        parse_coverage(cobertura_path=tmp_path / "missing.xml", lcov_path=report)

        scope = enabled_sdk.new_scope.return_value.__enter__.return_value
        assert scope.set_tag.call_args_list == [
            call("coverage.format", "cobertura"),
            call("coverage.format", "lcov"),
        ]
        assert enabled_sdk.metrics.count.call_args_list == [
            call("coverage.parse_failed", 1.0, attributes={"format": "cobertura"}),
            call("coverage.parsed", 1.0, attributes={"format": "lcov"}),
        ]


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class TestSentryConfig:
    def test_enabled_without_dsn_invalid(self) -> None:
        errors = _validate_sentry_config(SentryConfig(enabled=True, dsn=""))
        assert any("dsn" in e for e in errors)

    def test_traces_rate_out_of_range(self) -> None:
        config = SentryConfig(enabled=True, dsn="https://key@sentry.io/1", traces_sample_rate=1.5)
        assert any("traces_sample_rate" in e for e in _validate_sentry_config(config))

    def test_disabled_has_no_errors(self) -> None:
        assert _validate_sentry_config(SentryConfig()) == []

    def test_from_yaml(self, tmp_path: Path) -> None:
        (tmp_path / ".covlens.yml").write_text(
            "sentry:\n"
            "  enabled: true\n"
            "  dsn: https://key@sentry.io/42\n"
            "  traces_sample_rate: 0.25\n"
            "  environment: staging\n",
            encoding="utf-8",
        )
        sentry = load_config(tmp_path).sentry

        assert sentry.enabled is True
        assert sentry.dsn == "https://key@sentry.io/42"
        assert sentry.traces_sample_rate == 0.25
        assert sentry.environment == "staging"

    def test_from_env_vars(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("COVLENS_SENTRY_ENABLED", "true")
        monkeypatch.setenv("COVLENS_SENTRY_DSN", "https://env@sentry.io/7")
        monkeypatch.setenv("COVLENS_SENTRY_TRACES_SAMPLE_RATE", "0.1")

        sentry = load_config(tmp_path).sentry

        assert sentry.enabled is True
        assert sentry.dsn == "https://env@sentry.io/7"
        assert sentry.traces_sample_rate == 0.1
