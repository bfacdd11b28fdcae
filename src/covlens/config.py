"""Configuration parsing from ``.covlens.yml``."""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".covlens.yml"

_ENV_VAR_RE = re.compile(r"\$\{(\w+)\}")

_MAX_PERCENTAGE = 100.0


def _resolve_env_vars(value: str) -> str:
    """Replace ``${VAR_NAME}`` placeholders with environment variable values."""

    def _replace(match: re.Match[str]) -> str:
        var = match.group(1)
        resolved = os.environ.get(var)
        if resolved is None:
            logger.warning("Environment variable %s is not set (referenced in config)", var)
            return ""
        return resolved

    return _ENV_VAR_RE.sub(_replace, value)


def _resolve_dict(data: dict[str, Any]) -> dict[str, Any]:
    """Recursively resolve environment variables in a dictionary."""
    result: dict[str, Any] = {}
    for key, value in data.items():
        if isinstance(value, str):
            result[key] = _resolve_env_vars(value)
        elif isinstance(value, dict):
            result[key] = _resolve_dict(value)
        elif isinstance(value, list):
            result[key] = [
                _resolve_env_vars(item) if isinstance(item, str) else item for item in value
            ]
        else:
            result[key] = value
    return result


def _env_flag(name: str) -> bool:
    return os.environ.get(name, "").strip().lower() in {"1", "true", "yes"}


@dataclass
class ProjectConfig:
    """Project-level configuration."""

    root: str
    """Workspace root directory."""


@dataclass
class ReportConfig:
    """Explicitly configured coverage reports."""

    cobertura: str = ""
    """Path to a Cobertura XML report (relative to the project root)."""

    lcov: str = ""
    """Path to an LCOV tracefile (relative to the project root)."""

    base_dir: str = ""
    """Directory for resolving relative source paths (empty = project root)."""

    @property
    def is_configured(self) -> bool:
        """Return True when at least one report path is set."""
        return bool(self.cobertura or self.lcov)


@dataclass
class DiscoveryConfig:
    """Karma config discovery settings."""

    enabled: bool = True
    """Search the workspace for Karma configs."""

    pattern: str = "*conf.js"
    """Filename pattern of Karma configs."""

    exclude: list[str] = field(default_factory=lambda: ["**/node_modules/**"])
    """Glob patterns (relative to the root) that are never searched."""

    max_configs: int = 20
    """Maximum number of configs to load."""


@dataclass
class DisplayConfig:
    """Terminal display settings."""

    improvement_threshold: float = 80.0
    """Files below this line coverage percentage are listed as needing work."""

    top_files: int = 5
    """Number of files listed in the best/worst file lists."""


@dataclass
class WatchConfig:
    """Coverage file watch settings."""

    poll_interval: float = 1.0
    """Seconds between filesystem polls."""

    debounce_delay: float = 0.5
    """Seconds to wait after the last change before reloading."""

    patterns: list[str] = field(default_factory=lambda: ["**/*.xml", "**/lcov.info"])
    """Glob patterns (relative to each coverage directory) that trigger a reload."""


@dataclass
class SentryConfig:
    """Sentry error monitoring configuration."""

    enabled: bool = False
    """Opt-in flag. No Sentry data sent unless True."""

    dsn: str = ""
    """Sentry DSN (Data Source Name)."""

    traces_sample_rate: float = 0.0
    """Fraction of transactions sent for tracing (0.0-1.0). 0 = disabled."""

    environment: str = ""
    """Override environment tag (auto-detected if empty)."""


@dataclass
class CovlensConfig:
    """Complete covlens configuration from ``.covlens.yml``."""

    project: ProjectConfig
    """Project configuration."""

    report: ReportConfig = field(default_factory=ReportConfig)
    """Explicit report configuration."""

    discovery: DiscoveryConfig = field(default_factory=DiscoveryConfig)
    """Karma config discovery."""

    display: DisplayConfig = field(default_factory=DisplayConfig)
    """Display configuration."""

    watch: WatchConfig = field(default_factory=WatchConfig)
    """Watch configuration."""

    sentry: SentryConfig = field(default_factory=SentryConfig)
    """Sentry configuration."""

    raw: dict[str, Any] = field(default_factory=dict)
    """Raw parsed YAML for debugging."""


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name, {})
    return value if isinstance(value, dict) else {}


def _str_list(value: Any, default: list[str]) -> list[str]:
    if not isinstance(value, list):
        return list(default)
    return [str(item) for item in value]


def _parse_report_config(raw: dict[str, Any]) -> ReportConfig:
    """Parse the report section, falling back to environment variables."""
    report_raw = _section(raw, "report")
    return ReportConfig(
        cobertura=str(report_raw.get("cobertura") or os.environ.get("COVLENS_COBERTURA", "")),
        lcov=str(report_raw.get("lcov") or os.environ.get("COVLENS_LCOV", "")),
        base_dir=str(report_raw.get("base_dir") or ""),
    )


def _parse_discovery_config(raw: dict[str, Any]) -> DiscoveryConfig:
    """Parse Karma discovery configuration from raw YAML."""
    discovery_raw = _section(raw, "discovery")
    default = DiscoveryConfig()
    return DiscoveryConfig(
        enabled=bool(discovery_raw.get("enabled", default.enabled)),
        pattern=str(discovery_raw.get("pattern", default.pattern)),
        exclude=_str_list(discovery_raw.get("exclude"), default.exclude),
        max_configs=int(discovery_raw.get("max_configs", default.max_configs)),
    )


def _parse_display_config(raw: dict[str, Any]) -> DisplayConfig:
    """Parse display configuration from raw YAML."""
    display_raw = _section(raw, "display")
    return DisplayConfig(
        improvement_threshold=float(display_raw.get("improvement_threshold", 80.0)),
        top_files=int(display_raw.get("top_files", 5)),
    )


def _parse_watch_config(raw: dict[str, Any]) -> WatchConfig:
    """Parse watch configuration from raw YAML."""
    watch_raw = _section(raw, "watch")
    default = WatchConfig()
    return WatchConfig(
        poll_interval=float(watch_raw.get("poll_interval", default.poll_interval)),
        debounce_delay=float(watch_raw.get("debounce_delay", default.debounce_delay)),
        patterns=_str_list(watch_raw.get("patterns"), default.patterns),
    )


def _parse_sentry_config(raw: dict[str, Any]) -> SentryConfig:
    """Parse Sentry configuration, with ``COVLENS_SENTRY_*`` fallbacks."""
    sentry_raw = _section(raw, "sentry")
    return SentryConfig(
        enabled=bool(sentry_raw.get("enabled", _env_flag("COVLENS_SENTRY_ENABLED"))),
        dsn=str(sentry_raw.get("dsn", os.environ.get("COVLENS_SENTRY_DSN", ""))),
        traces_sample_rate=float(
            sentry_raw.get(
                "traces_sample_rate",
                os.environ.get("COVLENS_SENTRY_TRACES_SAMPLE_RATE", "0.0"),
            )
        ),
        environment=str(sentry_raw.get("environment", "")),
    )


def load_config(root: str | Path) -> CovlensConfig:
    """Load and parse the complete ``.covlens.yml`` configuration.

    Falls back to defaults and environment variables when the YAML file is
    missing or incomplete.
    """
    root_path = Path(root).resolve()
    config_file = root_path / CONFIG_FILENAME

    raw: dict[str, Any] = {}
    if config_file.is_file():
        parsed = yaml.safe_load(config_file.read_text(encoding="utf-8"))
        if isinstance(parsed, dict):
            raw = _resolve_dict(parsed)
        elif parsed is not None:
            logger.warning("Ignoring %s: top level is not a mapping", config_file)

    project_raw = _section(raw, "project")
    project = ProjectConfig(root=str(project_raw.get("root", root_path)))

    return CovlensConfig(
        project=project,
        report=_parse_report_config(raw),
        discovery=_parse_discovery_config(raw),
        display=_parse_display_config(raw),
        watch=_parse_watch_config(raw),
        sentry=_parse_sentry_config(raw),
        raw=raw,
    )


def _validate_display_config(display: DisplayConfig) -> list[str]:
    errors: list[str] = []
    if not 0.0 <= display.improvement_threshold <= _MAX_PERCENTAGE:
        errors.append(
            f"display.improvement_threshold must be between 0 and 100 "
            f"(got: {display.improvement_threshold})"
        )
    if display.top_files < 1:
        errors.append(f"display.top_files must be at least 1 (got: {display.top_files})")
    return errors


def _validate_discovery_config(discovery: DiscoveryConfig) -> list[str]:
    errors: list[str] = []
    if not discovery.pattern:
        errors.append("discovery.pattern must not be empty")
    if discovery.max_configs < 1:
        errors.append(f"discovery.max_configs must be at least 1 (got: {discovery.max_configs})")
    return errors


def _validate_watch_config(watch: WatchConfig) -> list[str]:
    errors: list[str] = []
    if watch.poll_interval <= 0:
        errors.append(f"watch.poll_interval must be positive (got: {watch.poll_interval})")
    if watch.debounce_delay < 0:
        errors.append(f"watch.debounce_delay must not be negative (got: {watch.debounce_delay})")
    return errors


def _validate_sentry_config(sentry: SentryConfig) -> list[str]:
    errors: list[str] = []
    if sentry.enabled and not sentry.dsn:
        errors.append("sentry.dsn is required when sentry.enabled is true")
    if not 0.0 <= sentry.traces_sample_rate <= 1.0:
        errors.append(
            f"sentry.traces_sample_rate must be between 0.0 and 1.0 "
            f"(got: {sentry.traces_sample_rate})"
        )
    return errors


def validate_config(config: CovlensConfig) -> list[str]:
    """Validate the configuration and return a list of error messages.

    Returns an empty list if the configuration is valid.
    """
    errors: list[str] = []

    if not config.project.root:
        errors.append("project.root is required")

    errors.extend(_validate_display_config(config.display))
    errors.extend(_validate_discovery_config(config.discovery))
    errors.extend(_validate_watch_config(config.watch))
    errors.extend(_validate_sentry_config(config.sentry))

    return errors
