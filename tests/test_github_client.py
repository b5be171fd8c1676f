"""Tests for GitHub API client behavior with mocked HTTP."""

import sys
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import Mock, patch

import pytest
import requests

# Add src directory to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from eng_metrics.errors import ApiError, RateLimitError
from eng_metrics.github_client import GitHubClient
from eng_metrics.models import Repository

REPO = Repository(owner="owner", name="repo")


def _build_client() -> GitHubClient:
    return GitHubClient(token="gh-token")


def _response(status_code: int, payload=None, text: str = "", headers: dict | None = None):
    response = Mock()
    response.status_code = status_code
    response.text = text
    response.headers = headers or {}
    response.json.return_value = payload if payload is not None else []
    return response


def _pr_item(number: int, base: str = "main", updated: str = "2026-01-10T00:00:00Z", draft: bool = False) -> dict:
    return {
        "number": number,
        "html_url": f"https://github.com/owner/repo/pull/{number}",
        "user": {"login": "octocat"},
        "created_at": "2026-01-01T00:00:00Z",
        "updated_at": updated,
        "draft": draft,
        "merged_at": None,
        "head": {"ref": f"feature-{number}"},
        "base": {"ref": base, "repo": {"name": "repo", "owner": {"login": "owner"}}},
    }


def test_client_sets_auth_and_api_headers():
    """Verify the session carries the bearer token and GitHub API headers."""
    client = _build_client()

    headers = client._session.headers
    assert headers["Authorization"] == "Bearer gh-token"
    assert headers["Accept"] == "application/vnd.github+json"
    assert headers["X-GitHub-Api-Version"] == GitHubClient._API_VERSION


def test_get_json_retries_on_5xx_and_succeeds():
    """Verify _get_json retries a server error and returns the JSON payload."""
    client = _build_client()
    first = _response(502, text="bad gateway", headers={"Retry-After": "2"})
    second = _response(200, payload=[{"id": 1}])
    client._session.get = Mock(side_effect=[first, second])

    with patch("eng_metrics.github_client.time.sleep") as sleep_mock:
        payload = client._get_json("repos/owner/repo/pulls")

    assert payload == [{"id": 1}]
    assert client._session.get.call_count == 2
    sleep_mock.assert_called_once_with(2)


def test_get_json_raises_api_error_after_max_retries():
    """Verify repeated server errors raise ApiError once retries are exhausted."""
    client = _build_client()
    client._session.get = Mock(side_effect=[_response(503, text="unavailable")] * client._MAX_RETRIES)

    with patch("eng_metrics.github_client.time.sleep") as sleep_mock:
        with pytest.raises(ApiError):
            client._get_json("repos/owner/repo/pulls")

    assert client._session.get.call_count == client._MAX_RETRIES
    assert sleep_mock.call_count == client._MAX_RETRIES - 1


def test_get_json_wraps_transport_errors():
    """Verify transport failures are retried and then surfaced as ApiError."""
    client = _build_client()
    client._session.get = Mock(side_effect=requests.ConnectionError("boom"))

    with patch("eng_metrics.github_client.time.sleep"):
        with pytest.raises(ApiError):
            client._get_json("repos/owner/repo/pulls")

    assert client._session.get.call_count == client._MAX_RETRIES


def test_get_json_does_not_retry_client_errors():
    """Verify a 404 fails immediately with ApiError."""
    client = _build_client()
    client._session.get = Mock(return_value=_response(404, text="Not Found"))

    with pytest.raises(ApiError) as exc_info:
        client._get_json("repos/owner/missing/pulls")

    assert "404" in str(exc_info.value)
    assert client._session.get.call_count == 1


def test_rate_limit_waits_until_reset_then_retries():
    """Verify an exhausted rate limit sleeps until the reset and repeats the request."""
    client = _build_client()
    limited = _response(
        403,
        text="API rate limit exceeded",
        headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "1120"},
    )
    ok = _response(200, payload=[])
    client._session.get = Mock(side_effect=[limited, ok])

    with patch("eng_metrics.github_client.time.time", return_value=1000.0), patch(
        "eng_metrics.github_client.time.sleep"
    ) as sleep_mock:
        payload = client._get_json("repos/owner/repo/pulls")

    assert payload == []
    sleep_mock.assert_called_once_with(121.0)
    assert client._session.get.call_count == 2


def test_rate_limit_beyond_one_hour_raises_rate_limit_error():
    """Verify a reset more than an hour away is not waited for."""
    client = _build_client()
    limited = _response(
        403,
        headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(1000 + 7200)},
    )
    client._session.get = Mock(return_value=limited)

    with patch("eng_metrics.github_client.time.time", return_value=1000.0), patch(
        "eng_metrics.github_client.time.sleep"
    ) as sleep_mock:
        with pytest.raises(RateLimitError) as exc_info:
            client._get_json("repos/owner/repo/pulls")

    sleep_mock.assert_not_called()
    assert exc_info.value.wait_seconds == 7200
    assert isinstance(exc_info.value, ApiError)


def test_rate_limit_with_past_reset_raises_rate_limit_error():
    """Verify a non-positive wait is surfaced instead of retried."""
    client = _build_client()
    limited = _response(403, headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": "900"})
    client._session.get = Mock(return_value=limited)

    with patch("eng_metrics.github_client.time.time", return_value=1000.0), patch(
        "eng_metrics.github_client.time.sleep"
    ):
        with pytest.raises(RateLimitError):
            client._get_json("repos/owner/repo/pulls")


def test_forbidden_without_exhausted_quota_is_plain_api_error():
    """Verify a 403 that is not a rate-limit rejection raises ApiError, not RateLimitError."""
    client = _build_client()
    client._session.get = Mock(
        return_value=_response(403, text="Resource not accessible", headers={"X-RateLimit-Remaining": "42"})
    )

    with pytest.raises(ApiError) as exc_info:
        client._get_json("repos/owner/repo/pulls")

    assert not isinstance(exc_info.value, RateLimitError)


def test_list_pull_requests_filters_by_branch_and_keeps_paging():
    """Verify pages without branch matches do not stop pagination."""
    client = _build_client()
    first_page = [_pr_item(i, base="develop") for i in range(1, 101)]
    second_page = [_pr_item(101, base="main"), _pr_item(102, base="develop")]
    client._get_json = Mock(side_effect=[first_page, second_page])

    prs = client.list_pull_requests(
        REPO,
        since=datetime(2026, 1, 5, tzinfo=timezone.utc),
        target_branch="main",
    )

    assert [pr.number for pr in prs] == [101]
    assert client._get_json.call_count == 2
    first_call, second_call = client._get_json.call_args_list
    assert first_call.kwargs["params"]["page"] == 1
    assert first_call.kwargs["params"]["sort"] == "updated"
    assert first_call.kwargs["params"]["direction"] == "desc"
    assert first_call.kwargs["params"]["per_page"] == client._PAGE_SIZE
    assert second_call.kwargs["params"]["page"] == 2


def test_list_pull_requests_stops_once_page_predates_window():
    """Verify paging ends at a full page whose PRs were all updated before the window."""
    client = _build_client()
    recent = [_pr_item(i, updated="2026-01-10T00:00:00Z") for i in range(1, 101)]
    stale = [_pr_item(i, updated="2025-12-01T00:00:00Z") for i in range(101, 201)]
    client._get_json = Mock(side_effect=[recent, stale])

    prs = client.list_pull_requests(
        REPO,
        since=datetime(2026, 1, 5, tzinfo=timezone.utc),
        target_branch="main",
    )

    assert len(prs) == 100
    assert client._get_json.call_count == 2


def test_list_pull_requests_parses_payload_fields():
    """Verify pull request payloads are parsed into typed models."""
    client = _build_client()
    item = _pr_item(7, draft=True)
    item["merged_at"] = "2026-01-02T03:04:05Z"
    client._get_json = Mock(return_value=[item])

    (pr,) = client.list_pull_requests(REPO)

    assert pr.number == 7
    assert pr.creator == "octocat"
    assert pr.source_branch == "feature-7"
    assert pr.target_branch == "main"
    assert pr.draft is True
    assert pr.created_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert pr.merged_at == datetime(2026, 1, 2, 3, 4, 5, tzinfo=timezone.utc)
    assert pr.repository == REPO


def test_list_pull_requests_skips_malformed_items():
    """Verify a pull request with missing or invalid fields is skipped, not the whole page."""
    client = _build_client()
    missing_user = _pr_item(2)
    missing_user["user"] = None
    bad_timestamp = _pr_item(3)
    bad_timestamp["created_at"] = "yesterday"
    client._get_json = Mock(return_value=[_pr_item(1), missing_user, bad_timestamp, _pr_item(4)])

    prs = client.list_pull_requests(REPO, target_branch="main")

    assert [pr.number for pr in prs] == [1, 4]


def test_parse_datetime_rejects_invalid_timestamps_with_api_error():
    """Verify unparseable timestamps surface as ApiError rather than ValueError."""
    client = _build_client()

    assert client._parse_datetime(None) is None
    with pytest.raises(ApiError):
        client._parse_datetime("not-a-date")


def test_list_reviews_invalid_timestamp_raises_api_error():
    """Verify a review with an invalid timestamp fails the fetch with ApiError."""
    client = _build_client()
    client._get_json = Mock(return_value=[{"submitted_at": "not-a-date", "state": "APPROVED"}])

    with pytest.raises(ApiError):
        client.list_reviews(REPO, 1)


def test_list_reviews_parses_submissions_across_pages():
    """Verify reviews are read from every page."""
    client = _build_client()
    first_page = [
        {"submitted_at": "2026-01-01T10:00:00Z", "state": "APPROVED", "user": {"login": "a"}}
    ] * client._PAGE_SIZE
    second_page = [{"state": "PENDING", "user": {"login": "b"}}]
    client._get_json = Mock(side_effect=[first_page, second_page])

    reviews = client.list_reviews(REPO, 5)

    assert len(reviews) == client._PAGE_SIZE + 1
    assert reviews[0].submitted_at == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)
    assert reviews[0].state == "APPROVED"
    assert reviews[-1].submitted_at is None
    assert client._get_json.call_args_list[0].args[0] == "repos/owner/repo/pulls/5/reviews"


def test_list_timeline_events_keeps_event_kinds():
    """Verify timeline entries are parsed, and entries without an event kind dropped."""
    client = _build_client()
    client._get_json = Mock(
        return_value=[
            {"event": "convert_to_draft", "created_at": "2026-01-01T09:00:00Z"},
            {"event": "ready_for_review", "created_at": "2026-01-01T10:00:00Z"},
            {"event": "committed"},
            {"sha": "abc"},
        ]
    )

    events = client.list_timeline_events(REPO, 9)

    assert [event.event for event in events] == ["convert_to_draft", "ready_for_review", "committed"]
    assert events[1].created_at == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)
    assert events[2].created_at is None
    assert client._get_json.call_args.args[0] == "repos/owner/repo/issues/9/timeline"


def test_unexpected_payload_shape_raises_api_error():
    """Verify list endpoints reject non-list payloads."""
    client = _build_client()
    client._get_json = Mock(return_value={"message": "odd"})

    with pytest.raises(ApiError):
        client.list_timeline_events(REPO, 1)
