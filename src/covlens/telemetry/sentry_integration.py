"""Sentry SDK integration for covlens.

Error monitoring and tracing for coverage report parsing. Each parse runs in
a ``coverage.parse`` span whose scope is tagged with the report format, so a
failure in the LCOV parser can be told apart from one in the Cobertura
parser.

Report and source paths are user data. Before anything leaves the process,
paths under the project root are rewritten to ``<project>/...`` and home
directories to ``/~``. This covers span data and descriptions, breadcrumbs
(log records often carry a report path), tags, contexts and stack frames.

All Sentry functionality is strictly OPT-IN: nothing is sent unless
``sentry.enabled`` is true in ``.covlens.yml`` or
``COVLENS_SENTRY_ENABLED=true`` is set.
"""

from __future__ import annotations

import logging
import os
import re
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from covlens import __version__

try:
    import sentry_sdk
    import sentry_sdk.metrics
    from sentry_sdk.integrations.logging import LoggingIntegration as _LoggingIntegration

    _sentry_available = True
except ImportError:
    _sentry_available = False

if TYPE_CHECKING:
    from pathlib import Path
    from types import TracebackType

    from covlens.adapters.coverage.base import CoverageData
    from covlens.config import SentryConfig

logger = logging.getLogger(__name__)

_init_lock = threading.Lock()
_state: dict[str, Any] = {"initialized": False, "project_root": ""}

_PROJECT_PLACEHOLDER = "<project>"

_SENSITIVE_PATTERN = re.compile(
    r"(api[_-]?key|password|secret|token|dsn|authorization|cookie)\s*[:=]\s*\S+",
    re.IGNORECASE,
)

_PATH_HOME_RE = re.compile(r"/(?:home|Users)/[^/\s]+")

_SENSITIVE_KEYS = frozenset(
    {
        "api_key",
        "apikey",
        "password",
        "secret",
        "token",
        "dsn",
        "authorization",
        "cookie",
    }
)

# Event sections whose string values may hold report or source paths
_DICT_SECTIONS = ("tags", "extra", "contexts")


def init_sentry(config: SentryConfig) -> None:
    """Initialize Sentry SDK if enabled and configured.

    Idempotent and thread-safe: calls after the first successful
    initialization are no-ops.
    """
    with _init_lock:
        if _state["initialized"]:
            return
        if not config.enabled:
            logger.debug("Sentry disabled (sentry.enabled is false)")
            return
        if not config.dsn:
            logger.warning("Sentry enabled but no DSN configured")
            return
        if not _sentry_available:
            logger.warning("Sentry enabled but sentry_sdk is not installed")
            return

        environment = config.environment or ("ci" if os.environ.get("CI") else "local")

        sentry_sdk.init(
            dsn=config.dsn,
            release=f"covlens@{__version__}",
            environment=environment,
            traces_sample_rate=config.traces_sample_rate,
            send_default_pii=False,
            server_name="",
            before_send=_before_send,
            before_send_transaction=_before_send,
            in_app_include=["covlens"],
            integrations=[
                _LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
            ],
        )

        _state["initialized"] = True
        logger.info(
            "Sentry initialized (env=%s, tracing=%.2f)",
            environment,
            config.traces_sample_rate,
        )


def is_sentry_enabled() -> bool:
    """Return whether Sentry has been successfully initialized."""
    return bool(_state["initialized"])


def set_project_root(root: str | Path | None) -> None:
    """Set the directory whose paths are reported relative to ``<project>``."""
    _state["project_root"] = os.path.normpath(str(root)).rstrip("/\\") if root else ""


# ---------------------------------------------------------------------------
# Privacy scrubbing
# ---------------------------------------------------------------------------


def _scrub_path(text: str) -> str:
    """Rewrite project and home directory prefixes in *text*."""
    root = _state["project_root"]
    if root and len(root) > 1:
        text = text.replace(root, _PROJECT_PLACEHOLDER)
    return _PATH_HOME_RE.sub("/~", text)


def _scrub_string(value: str) -> str:
    """Remove credentials and user paths from a string."""
    return _scrub_path(_SENSITIVE_PATTERN.sub("[REDACTED]", value))


def _scrub_value(value: Any) -> Any:
    if isinstance(value, str):
        return _scrub_string(value)
    if isinstance(value, dict):
        return _scrub_dict(value)
    if isinstance(value, list):
        return [_scrub_value(item) for item in value]
    return value


def _scrub_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Scrub sensitive keys and path-bearing values from a dict."""
    return {
        key: "[REDACTED]" if key.lower() in _SENSITIVE_KEYS else _scrub_value(value)
        for key, value in data.items()
    }


def _scrub_frames(event: dict[str, Any]) -> None:
    exception = event.get("exception")
    if not isinstance(exception, dict):
        return
    for value in exception.get("values", []):
        if isinstance(value.get("value"), str):
            value["value"] = _scrub_string(value["value"])
        stacktrace = value.get("stacktrace")
        if not isinstance(stacktrace, dict):
            continue
        for frame in stacktrace.get("frames", []):
            # Locals hold report contents
            frame.pop("vars", None)
            for key in ("filename", "abs_path"):
                if isinstance(frame.get(key), str):
                    frame[key] = _scrub_path(frame[key])


def _scrub_event(event: dict[str, Any]) -> dict[str, Any]:
    """Scrub an error or transaction event in place and return it."""
    _scrub_frames(event)

    breadcrumbs = event.get("breadcrumbs")
    if isinstance(breadcrumbs, dict):
        for crumb in breadcrumbs.get("values", []):
            if isinstance(crumb.get("message"), str):
                crumb["message"] = _scrub_string(crumb["message"])
            if isinstance(crumb.get("data"), dict):
                crumb["data"] = _scrub_dict(crumb["data"])

    logentry = event.get("logentry")
    if isinstance(logentry, dict):
        if isinstance(logentry.get("message"), str):
            logentry["message"] = _scrub_string(logentry["message"])
        if isinstance(logentry.get("params"), list):
            logentry["params"] = _scrub_value(logentry["params"])

    for span in event.get("spans") or []:
        if isinstance(span.get("description"), str):
            span["description"] = _scrub_string(span["description"])
        if isinstance(span.get("data"), dict):
            span["data"] = _scrub_dict(span["data"])

    if isinstance(event.get("transaction"), str):
        event["transaction"] = _scrub_string(event["transaction"])

    for section in _DICT_SECTIONS:
        payload = event.get(section)
        if isinstance(payload, dict):
            event[section] = _scrub_dict(payload)

    # Never send hostname
    event.pop("server_name", None)

    return event


def _before_send(event: dict[str, Any], _hint: dict[str, Any]) -> dict[str, Any] | None:
    """Scrub report paths and credentials from events before sending."""
    return _scrub_event(event)


# ---------------------------------------------------------------------------
# Coverage report tracing and metrics (no-op when disabled)
# ---------------------------------------------------------------------------


def record_metric_count(name: str, value: int = 1, **attrs: str | int | float) -> None:
    """Emit a Sentry counter metric. No-op if Sentry is disabled."""
    if not _state["initialized"]:
        return
    sentry_sdk.metrics.count(name, float(value), attributes=dict(attrs) if attrs else None)


def record_metric_gauge(
    name: str, value: float, unit: str = "", **attrs: str | int | float
) -> None:
    """Emit a Sentry gauge metric. No-op if Sentry is disabled."""
    if not _state["initialized"]:
        return
    sentry_sdk.metrics.gauge(
        name, value, unit=unit or None, attributes=dict(attrs) if attrs else None
    )


def record_report_parsed(report_format: str, data: CoverageData | None) -> None:
    """Count a parse attempt and, on success, record its line rate."""
    if data is None:
        record_metric_count("coverage.parse_failed", format=report_format)
        return
    record_metric_count("coverage.parsed", format=report_format)
    record_metric_gauge(
        "coverage.line_rate", data.summary.line_rate, unit="ratio", format=report_format
    )


def report_span_data(report_format: str, report_path: str | Path) -> dict[str, str]:
    """Describe a report for span data and event context, paths scrubbed."""
    path = str(report_path)
    return {
        "coverage.format": report_format,
        "coverage.report": _scrub_path(path),
        "coverage.report_name": os.path.basename(path),
    }


class _NoOpSpan:
    """Context manager that does nothing when Sentry is disabled."""

    def __enter__(self) -> _NoOpSpan:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        pass

    def set_data(self, key: str, value: Any) -> None:
        """No-op data setter."""


@contextmanager
def report_span(report_format: str, report_path: str | Path) -> Iterator[Any]:
    """Trace the parse of one coverage report.

    Errors captured inside carry a ``coverage.format`` tag and a
    ``coverage_report`` context. Yields a no-op span when Sentry is
    disabled.
    """
    if not _state["initialized"]:
        with _NoOpSpan() as noop:
            yield noop
        return

    data = report_span_data(report_format, report_path)
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("coverage.format", report_format)
        scope.set_context("coverage_report", data)
        with sentry_sdk.start_span(
            op="coverage.parse",
            description=f"{report_format}: {data['coverage.report_name']}",
        ) as span:
            for key, value in data.items():
                span.set_data(key, value)
            yield span
