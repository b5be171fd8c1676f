"""Configuration parsing and validation for the engineering metrics collector.

Values are resolved with precedence: environment variables > JSON config file >
built-in defaults. A ``.env`` file in the working directory is loaded into the
environment first, without overriding variables that are already set.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple

from dotenv import load_dotenv

from .errors import AuthenticationError, ConfigurationError
from .models import MetricKind, Repository

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.json"

DEFAULT_TABLE_NAMES: Dict[MetricKind, str] = {
    MetricKind.TIME_TO_FIRST_REVIEW: "first_review",
    MetricKind.TIME_TO_MERGE: "pr_merge",
}

TABLE_ENV_VARS: Dict[MetricKind, str] = {
    MetricKind.TIME_TO_FIRST_REVIEW: "TIME_TO_FIRST_REVIEW_TABLE",
    MetricKind.TIME_TO_MERGE: "TIME_TO_MERGE_TABLE",
}

DEFAULTS: Dict[str, Any] = {
    "target_branch": "main",
    "bigquery_dataset_id": "github_metrics",
    "lookback_days": 5,
    "print_only": False,
}


@dataclass(frozen=True)
class MetricSettings:
    """Per-metric enable flag and destination table."""

    enabled: bool
    table_name: str


def _default_metrics() -> Dict[MetricKind, MetricSettings]:
    return {
        kind: MetricSettings(enabled=True, table_name=table_name)
        for kind, table_name in DEFAULT_TABLE_NAMES.items()
    }


@dataclass(frozen=True)
class Config:
    """Validated runtime settings used by the metrics collector."""

    repositories: Tuple[Repository, ...]
    github_token: str
    target_branch: str = "main"
    lookback_days: int = 5
    print_only: bool = False
    bigquery_project_id: Optional[str] = None
    bigquery_dataset_id: str = "github_metrics"
    service_account_key_path: Optional[str] = None
    metrics: Mapping[MetricKind, MetricSettings] = field(default_factory=_default_metrics)

    @property
    def enabled_metrics(self) -> Tuple[MetricKind, ...]:
        """Enabled metric kinds in declaration order."""
        return tuple(
            kind for kind in MetricKind if kind in self.metrics and self.metrics[kind].enabled
        )


def _parse_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        normalized = value.strip().lower()
        if normalized in ("true", "1", "yes"):
            return True
        if normalized in ("false", "0", "no", ""):
            return False
    raise ConfigurationError(f"Invalid value for '{name}': expected true or false.")


def _parse_positive_int(value: Any, name: str) -> int:
    if isinstance(value, bool):
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer greater than 0.")
    try:
        parsed = int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(
            f"Invalid value for '{name}': expected an integer greater than 0."
        ) from exc
    if parsed <= 0:
        raise ConfigurationError(f"Invalid value for '{name}': expected an integer greater than 0.")
    return parsed


def _split_csv(value: str) -> list:
    return [item.strip() for item in value.split(",") if item.strip()]


def _parse_metric_kind(value: str) -> MetricKind:
    try:
        return MetricKind(value.strip())
    except ValueError as exc:
        known = ", ".join(kind.value for kind in MetricKind)
        raise ConfigurationError(f"Unknown metric '{value}'. Expected one of: {known}.") from exc


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load raw settings from a JSON config file.

    A missing file is not an error: the collector can be configured entirely
    through environment variables.

    Raises:
        ConfigurationError: If the file exists but is unreadable or not a JSON object.
    """
    path = Path(config_path).expanduser().resolve()
    logger.info("Loading configuration file", extra={"path": str(path)})

    if not path.exists():
        logger.warning("Configuration file not found", extra={"path": str(path)})
        return {}

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        raise ConfigurationError(f"Unable to read configuration file '{path}': {exc}") from exc

    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a JSON object.")

    return payload


def load_config_env(environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Collect raw settings from environment variables that are set and non-empty."""
    env = os.environ if environ is None else environ
    settings: Dict[str, Any] = {}

    simple_vars = {
        "GITHUB_TOKEN": "github_token",
        "BIGQUERY_PROJECT_ID": "bigquery_project_id",
        "BIGQUERY_DATASET_ID": "bigquery_dataset_id",
        "SERVICE_ACCOUNT_KEY_PATH": "service_account_key_path",
        "TARGET_BRANCH": "target_branch",
        "LOOKBACK_DAYS": "lookback_days",
        "PRINT_ONLY": "print_only",
    }
    for env_name, key in simple_vars.items():
        value = env.get(env_name, "").strip()
        if value:
            settings[key] = value

    repositories = env.get("REPOSITORIES", "").strip()
    if repositories:
        settings["repositories"] = _split_csv(repositories)

    metrics: Dict[str, Dict[str, Any]] = {}
    enabled = env.get("ENABLED_METRICS", "").strip()
    if enabled:
        enabled_kinds = {_parse_metric_kind(name) for name in _split_csv(enabled)}
        for kind in MetricKind:
            metrics.setdefault(kind.value, {})["enabled"] = kind in enabled_kinds

    for kind, env_name in TABLE_ENV_VARS.items():
        table_name = env.get(env_name, "").strip()
        if table_name:
            metrics.setdefault(kind.value, {})["table_name"] = table_name

    if metrics:
        settings["metrics"] = metrics

    return settings


def _merge_metrics(*layers: Mapping[str, Any]) -> Dict[MetricKind, MetricSettings]:
    resolved = {
        kind: {"enabled": settings.enabled, "table_name": settings.table_name}
        for kind, settings in _default_metrics().items()
    }

    for layer in layers:
        raw_metrics = layer.get("metrics")
        if raw_metrics is None:
            continue
        if not isinstance(raw_metrics, dict):
            raise ConfigurationError("Invalid value for 'metrics': expected an object keyed by metric name.")
        for name, values in raw_metrics.items():
            kind = _parse_metric_kind(name)
            if not isinstance(values, dict):
                raise ConfigurationError(f"Invalid settings for metric '{name}': expected an object.")
            if "enabled" in values:
                resolved[kind]["enabled"] = _parse_bool(values["enabled"], f"metrics.{name}.enabled")
            if "table_name" in values:
                resolved[kind]["table_name"] = str(values["table_name"] or "").strip()

    return {
        kind: MetricSettings(enabled=values["enabled"], table_name=values["table_name"])
        for kind, values in resolved.items()
    }


def _parse_repositories(value: Any) -> Tuple[Repository, ...]:
    if isinstance(value, str):
        value = _split_csv(value)
    if not isinstance(value, (list, tuple)) or not value:
        raise ConfigurationError("Configuration must include at least one repository.")

    invalid = []
    repositories = []
    for item in value:
        try:
            repositories.append(Repository.parse(item))
        except ConfigurationError:
            invalid.append(str(item))

    if invalid:
        raise ConfigurationError(f"Invalid repository format: {', '.join(invalid)}")

    return tuple(repositories)


def validate_config(config: Config) -> None:
    """Validate cross-field rules of a resolved configuration.

    Raises:
        ConfigurationError: If required settings are missing or inconsistent.
        AuthenticationError: If no GitHub token is configured.
    """
    if not config.repositories:
        raise ConfigurationError("Configuration must include at least one repository.")

    if not config.github_token:
        raise AuthenticationError(
            "Missing required GitHub token. "
            "Set the 'GITHUB_TOKEN' environment variable or 'github_token' in the config file."
        )

    if config.lookback_days <= 0:
        raise ConfigurationError("Invalid value for 'lookback_days': expected an integer greater than 0.")

    if not config.target_branch:
        raise ConfigurationError("Missing required configuration field: target_branch")

    if not config.enabled_metrics:
        raise ConfigurationError("At least one metric must be enabled.")

    for kind in config.enabled_metrics:
        if not config.metrics[kind].table_name:
            raise ConfigurationError(f"Missing table name for enabled metric '{kind.value}'.")

    if not config.print_only:
        missing = [
            name
            for name, value in (
                ("bigquery_project_id", config.bigquery_project_id),
                ("bigquery_dataset_id", config.bigquery_dataset_id),
                ("service_account_key_path", config.service_account_key_path),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing required configuration fields: {', '.join(missing)}")


def load_config(
    config_path: str = DEFAULT_CONFIG_PATH,
    print_only: Optional[bool] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> Config:
    """Build and validate application configuration.

    Args:
        config_path: Path to an optional JSON config file.
        print_only: When true, forces print-only mode regardless of other sources.
        environ: Environment mapping; defaults to ``os.environ`` after loading ``.env``.

    Returns:
        A validated ``Config`` instance.

    Raises:
        ConfigurationError: If settings are missing or malformed.
        AuthenticationError: If ``GITHUB_TOKEN`` is not configured.
    """
    if environ is None:
        load_dotenv(override=False)

    file_settings = load_config_file(config_path)
    env_settings = load_config_env(environ)

    merged: Dict[str, Any] = dict(DEFAULTS)
    merged.update({key: value for key, value in file_settings.items() if key != "metrics" and value is not None})
    merged.update({key: value for key, value in env_settings.items() if key != "metrics"})

    resolved_print_only = _parse_bool(merged.get("print_only", False), "print_only")
    if print_only:
        resolved_print_only = True

    config = Config(
        repositories=_parse_repositories(merged.get("repositories")),
        github_token=str(merged.get("github_token") or "").strip(),
        target_branch=str(merged.get("target_branch") or "").strip(),
        lookback_days=_parse_positive_int(merged.get("lookback_days"), "lookback_days"),
        print_only=resolved_print_only,
        bigquery_project_id=(str(merged["bigquery_project_id"]).strip() if merged.get("bigquery_project_id") else None),
        bigquery_dataset_id=str(merged.get("bigquery_dataset_id") or "").strip(),
        service_account_key_path=(
            str(merged["service_account_key_path"]).strip() if merged.get("service_account_key_path") else None
        ),
        metrics=_merge_metrics(file_settings, env_settings),
    )

    validate_config(config)

    context: Dict[str, Any] = {
        "repositories": ",".join(repo.full_name for repo in config.repositories),
        "target_branch": config.target_branch,
        "lookback_days": config.lookback_days,
        "print_only": config.print_only,
        "enabled_metrics": ",".join(kind.value for kind in config.enabled_metrics),
    }
    if not config.print_only:
        context["bigquery_dataset_id"] = config.bigquery_dataset_id
    logger.info("Configuration loaded successfully", extra=context)

    return config
