"""Tests for application orchestration in the main module."""

import sys
from argparse import Namespace
from pathlib import Path
from unittest.mock import Mock, patch

import pytest

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from eng_metrics.config import Config
from eng_metrics.errors import (
    ApiError,
    AuthenticationError,
    ConfigurationError,
    WarehouseError,
)
from eng_metrics.main import main, orchestrate_metrics_collection
from eng_metrics.models import Repository


def _config(print_only: bool = False) -> Config:
    return Config(
        repositories=(Repository(owner="owner", name="repo"),),
        github_token="secret",
        print_only=print_only,
        bigquery_project_id="proj",
        service_account_key_path="/keys/sa.json",
    )


@pytest.fixture(autouse=True)
def _no_logging_setup():
    with patch("eng_metrics.main.configure_logging") as configure_mock:
        yield configure_mock


def test_orchestrate_upload_mode_wires_components():
    """Verify upload mode builds both clients and runs the collector."""
    args = Namespace(config_path="config.json", print_only=False, verbose=False)
    config = _config()
    collector = Mock()
    collector.run.return_value = [Mock(), Mock()]

    with patch("eng_metrics.main.parse_args", return_value=args), patch(
        "eng_metrics.main.load_config", return_value=config
    ) as load_config_mock, patch("eng_metrics.main.GitHubClient") as github_ctor, patch(
        "eng_metrics.main.BigQueryClient"
    ) as bigquery_ctor, patch(
        "eng_metrics.main.MetricsCollector", return_value=collector
    ) as collector_ctor:
        exit_code = orchestrate_metrics_collection()

    assert exit_code == 0
    load_config_mock.assert_called_once_with(config_path="config.json", print_only=False)
    github_ctor.assert_called_once_with(token="secret")
    bigquery_ctor.assert_called_once_with(project_id="proj", credentials_path="/keys/sa.json")
    collector_ctor.assert_called_once_with(
        config=config,
        github_client=github_ctor.return_value,
        warehouse_client=bigquery_ctor.return_value,
    )
    collector.run.assert_called_once_with()
    github_ctor.return_value.close.assert_called_once_with()


def test_orchestrate_print_only_skips_bigquery():
    """Verify print-only mode never constructs the BigQuery client."""
    args = Namespace(config_path="config.json", print_only=True, verbose=True)
    collector = Mock()
    collector.run.return_value = []

    with patch("eng_metrics.main.parse_args", return_value=args), patch(
        "eng_metrics.main.load_config", return_value=_config(print_only=True)
    ), patch("eng_metrics.main.GitHubClient"), patch(
        "eng_metrics.main.BigQueryClient"
    ) as bigquery_ctor, patch("eng_metrics.main.MetricsCollector", return_value=collector) as collector_ctor:
        exit_code = orchestrate_metrics_collection()

    assert exit_code == 0
    bigquery_ctor.assert_not_called()
    assert collector_ctor.call_args.kwargs["warehouse_client"] is None


@pytest.mark.parametrize(
    ("error", "expected_code"),
    [
        (ConfigurationError("bad config"), 2),
        (AuthenticationError("no token"), 3),
    ],
)
def test_orchestrate_configuration_failures_map_to_exit_codes(error, expected_code):
    """Verify configuration and authentication failures exit before collection."""
    args = Namespace(config_path="config.json", print_only=False, verbose=False)

    with patch("eng_metrics.main.parse_args", return_value=args), patch(
        "eng_metrics.main.load_config", side_effect=error
    ), patch("eng_metrics.main.MetricsCollector") as collector_ctor:
        exit_code = orchestrate_metrics_collection()

    assert exit_code == expected_code
    collector_ctor.assert_not_called()


@pytest.mark.parametrize(
    ("error", "expected_code"),
    [
        (ApiError("repository failed"), 4),
        (WarehouseError("insert failed", errors=[{"index": 0}]), 5),
        (RuntimeError("boom"), 1),
    ],
)
def test_orchestrate_run_failures_map_to_exit_codes(error, expected_code):
    """Verify run failures map to their exit codes and the API client is closed."""
    args = Namespace(config_path="config.json", print_only=False, verbose=False)
    collector = Mock()
    collector.run.side_effect = error

    with patch("eng_metrics.main.parse_args", return_value=args), patch(
        "eng_metrics.main.load_config", return_value=_config()
    ), patch("eng_metrics.main.GitHubClient") as github_ctor, patch(
        "eng_metrics.main.BigQueryClient"
    ), patch("eng_metrics.main.MetricsCollector", return_value=collector):
        exit_code = orchestrate_metrics_collection()

    assert exit_code == expected_code
    github_ctor.return_value.close.assert_called_once_with()


def test_orchestrate_closes_github_client_when_bigquery_setup_fails():
    """Verify the HTTP session is closed when the BigQuery client cannot be built."""
    args = Namespace(config_path="config.json", print_only=False, verbose=False)

    with patch("eng_metrics.main.parse_args", return_value=args), patch(
        "eng_metrics.main.load_config", return_value=_config()
    ), patch("eng_metrics.main.GitHubClient") as github_ctor, patch(
        "eng_metrics.main.BigQueryClient", side_effect=ConfigurationError("missing key file")
    ), patch("eng_metrics.main.MetricsCollector") as collector_ctor:
        exit_code = orchestrate_metrics_collection()

    assert exit_code == 2
    collector_ctor.assert_not_called()
    github_ctor.return_value.close.assert_called_once_with()


def test_main_exits_with_orchestration_code():
    """Verify main raises SystemExit carrying the orchestration exit code."""
    with patch("eng_metrics.main.orchestrate_metrics_collection", return_value=4):
        with pytest.raises(SystemExit) as exc_info:
            main()

    assert exc_info.value.code == 4
