"""GitHub REST API client for pull request metric data retrieval."""

from __future__ import annotations

import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import requests

from .errors import ApiError, RateLimitError
from .models import PullRequest, Repository, ReviewEvent, TimelineEvent

logger = logging.getLogger(__name__)


class GitHubClient:
    """Small, typed client for the GitHub pull request REST APIs."""

    _API_VERSION = "2022-11-28"
    _PAGE_SIZE = 100
    _MAX_RETRIES = 5
    _MAX_BACKOFF_SECONDS = 30
    _MAX_RATE_LIMIT_WAIT_SECONDS = 3600
    _MAX_RATE_LIMIT_WAITS = 3

    def __init__(
        self,
        token: str,
        base_url: str = "https://api.github.com",
        timeout_seconds: int = 30,
    ) -> None:
        """Initialize an authenticated GitHub API client.

        Args:
            token: GitHub personal access token or app installation token.
            base_url: API root, overridable for GitHub Enterprise Server.
            timeout_seconds: Per-request timeout in seconds.
        """
        self._base_url = base_url.rstrip("/")
        self._timeout_seconds = timeout_seconds

        self._session = requests.Session()
        self._session.headers.update(
            {
                "Accept": "application/vnd.github+json",
                "Authorization": f"Bearer {token}",
                "X-GitHub-Api-Version": self._API_VERSION,
            }
        )

    def close(self) -> None:
        self._session.close()

    def _build_url(self, path: str) -> str:
        """Build a fully qualified API URL from a path below the API root."""
        return f"{self._base_url}/{path.lstrip('/')}"

    def _parse_datetime(self, value: Optional[str]) -> Optional[datetime]:
        """Parse GitHub ISO8601 timestamps into timezone-aware datetimes.

        Raises:
            ApiError: If the payload carries a value that is not a timestamp.
        """
        if not value:
            return None

        try:
            normalized = value[:-1] + "+00:00" if value.endswith("Z") else value
            parsed = datetime.fromisoformat(normalized)
        except (AttributeError, TypeError, ValueError) as exc:
            raise ApiError(f"GitHub API returned an invalid timestamp: {value!r}") from exc
        if parsed.tzinfo is None:
            return parsed.replace(tzinfo=timezone.utc)
        return parsed

    def _extract_backoff_seconds(self, response: requests.Response, attempt: int) -> int:
        """Compute exponential backoff seconds, honoring Retry-After when available."""
        retry_after_header = response.headers.get("Retry-After")
        if retry_after_header:
            try:
                retry_after_seconds = int(retry_after_header)
                return min(self._MAX_BACKOFF_SECONDS, max(1, retry_after_seconds))
            except ValueError:
                pass

        return min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1))

    def _rate_limit_wait(self, response: requests.Response) -> Optional[float]:
        """Return seconds until the rate limit resets.

        Returns ``None`` when the response is not a primary rate-limit rejection.
        A rejection without a usable reset header yields ``0`` (no valid wait).
        """
        if response.status_code not in (403, 429):
            return None
        if response.headers.get("X-RateLimit-Remaining") != "0":
            return None

        try:
            reset_at = int(response.headers.get("X-RateLimit-Reset", ""))
        except ValueError:
            return 0.0

        return reset_at - time.time()

    def _send(self, url: str, params: Dict[str, Any]) -> requests.Response:
        """Issue a GET, sleeping through rate-limit windows shorter than an hour.

        Raises:
            RateLimitError: If the reset is in the past, more than an hour away,
                or the limit persists after repeated waits.
            requests.RequestException: On transport failures.
        """
        for _ in range(self._MAX_RATE_LIMIT_WAITS + 1):
            response = self._session.get(url, params=params, timeout=self._timeout_seconds)
            wait_seconds = self._rate_limit_wait(response)
            if wait_seconds is None:
                return response

            if not 0 < wait_seconds < self._MAX_RATE_LIMIT_WAIT_SECONDS:
                raise RateLimitError(
                    f"GitHub rate limit exceeded for GET {url}; "
                    f"reset in {wait_seconds:.0f}s is outside the retry window",
                    wait_seconds=wait_seconds,
                )

            logger.warning(
                "GitHub rate limit exceeded, waiting for reset",
                extra={"url": url, "wait_seconds": int(wait_seconds) + 1},
            )
            time.sleep(wait_seconds + 1)

        raise RateLimitError(f"GitHub rate limit still exceeded after waiting: GET {url}")

    def _get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """Execute a GET request with retry logic for transport errors and 5xx responses.

        Raises:
            RateLimitError: If the rate limit cannot be waited out.
            ApiError: If the request repeatedly fails, returns HTTP >= 400,
                or does not return valid JSON.
        """
        url = self._build_url(path)
        query = dict(params or {})

        last_error: Optional[Exception] = None

        for attempt in range(1, self._MAX_RETRIES + 1):
            try:
                response = self._send(url, query)
            except requests.RequestException as exc:
                last_error = exc
                if attempt == self._MAX_RETRIES:
                    raise ApiError(f"GitHub request failed after retries: GET {url}") from exc
                time.sleep(min(self._MAX_BACKOFF_SECONDS, 2 ** (attempt - 1)))
                continue

            status_code = response.status_code
            is_retryable = status_code == 429 or 500 <= status_code <= 599

            if is_retryable and attempt < self._MAX_RETRIES:
                time.sleep(self._extract_backoff_seconds(response, attempt))
                continue

            if status_code >= 400:
                raise ApiError(
                    "GitHub API request failed: "
                    f"GET {url} returned {status_code} - {response.text}"
                )

            try:
                return response.json()
            except ValueError as exc:
                raise ApiError(f"GitHub API returned invalid JSON: GET {url}") from exc

        raise ApiError(f"GitHub request failed after retries: GET {url}") from last_error

    def _get_page(self, path: str, params: Dict[str, Any], page: int) -> List[Dict[str, Any]]:
        query = dict(params)
        query["per_page"] = self._PAGE_SIZE
        query["page"] = page

        payload = self._get_json(path, params=query)
        if not isinstance(payload, list) or not all(isinstance(item, dict) for item in payload):
            raise ApiError(f"GitHub API returned unexpected payload shape: GET {self._build_url(path)}")
        return payload

    def _get_all_pages(self, path: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Fetch every page of a list endpoint until a short page is returned."""
        items: List[Dict[str, Any]] = []
        page = 1

        while True:
            page_items = self._get_page(path, params or {}, page)
            items.extend(page_items)

            if len(page_items) < self._PAGE_SIZE:
                break

            page += 1

        return items

    def _parse_pull_request(self, repository: Repository, item: Dict[str, Any]) -> PullRequest:
        number = item.get("number")
        created_at = self._parse_datetime(item.get("created_at"))
        updated_at = self._parse_datetime(item.get("updated_at")) or created_at
        creator = (item.get("user") or {}).get("login")
        base = item.get("base") or {}
        head = item.get("head") or {}
        url = item.get("html_url")

        if not isinstance(number, int) or created_at is None or not creator or not base.get("ref") or not url:
            raise ApiError(
                "GitHub pull request payload is missing required fields: "
                f"repository={repository.full_name}, number={number}"
            )

        base_repo = base.get("repo") or {}
        owner = (base_repo.get("owner") or {}).get("login")
        name = base_repo.get("name")
        pr_repository = Repository(owner=owner, name=name) if owner and name else repository

        return PullRequest(
            number=int(number),
            url=str(url),
            creator=str(creator),
            source_branch=str(head.get("ref") or ""),
            target_branch=str(base["ref"]),
            created_at=created_at,
            updated_at=updated_at,
            draft=bool(item.get("draft", False)),
            merged_at=self._parse_datetime(item.get("merged_at")),
            repository=pr_repository,
        )

    def list_pull_requests(
        self,
        repository: Repository,
        state: str = "all",
        since: Optional[datetime] = None,
        target_branch: Optional[str] = None,
    ) -> List[PullRequest]:
        """List pull requests updated on or after ``since`` that target ``target_branch``.

        Results are requested newest-update first. Pagination continues through
        pages that contain no branch matches and stops at the final (short)
        page, or at the first page whose pull requests all predate ``since``.
        """
        path = f"repos/{repository.owner}/{repository.name}/pulls"
        params = {"state": state, "sort": "updated", "direction": "desc"}
        pull_requests: List[PullRequest] = []
        page = 1

        logger.info(
            "Fetching pull requests",
            extra={
                "repository": repository.full_name,
                "state": state,
                "since": since.isoformat() if since else None,
                "target_branch": target_branch,
            },
        )

        while True:
            page_items = self._get_page(path, params, page)
            page_prs: List[PullRequest] = []
            for item in page_items:
                try:
                    page_prs.append(self._parse_pull_request(repository, item))
                except ApiError as exc:
                    logger.error(
                        "Skipping malformed pull request payload",
                        extra={
                            "repository": repository.full_name,
                            "pr_number": item.get("number"),
                            "error": str(exc),
                        },
                    )

            for pr in page_prs:
                if since is not None and pr.updated_at < since:
                    continue
                if target_branch is not None and pr.target_branch != target_branch:
                    continue
                pull_requests.append(pr)

            if len(page_items) < self._PAGE_SIZE:
                break

            if since is not None and page_prs and all(pr.updated_at < since for pr in page_prs):
                break

            page += 1

        logger.info(
            "Fetched pull requests",
            extra={"repository": repository.full_name, "count": len(pull_requests)},
        )
        return pull_requests

    def list_reviews(self, repository: Repository, pr_number: int) -> List[ReviewEvent]:
        """List submitted reviews for a pull request."""
        payload = self._get_all_pages(
            f"repos/{repository.owner}/{repository.name}/pulls/{pr_number}/reviews"
        )
        reviews: List[ReviewEvent] = []

        for item in payload:
            reviews.append(
                ReviewEvent(
                    submitted_at=self._parse_datetime(item.get("submitted_at")),
                    state=str(item.get("state") or ""),
                    reviewer=str((item.get("user") or {}).get("login") or ""),
                )
            )

        logger.debug(
            "Fetched review events",
            extra={"repository": repository.full_name, "pr_number": pr_number, "count": len(reviews)},
        )
        return reviews

    def list_timeline_events(self, repository: Repository, pr_number: int) -> List[TimelineEvent]:
        """List issue timeline events for a pull request."""
        payload = self._get_all_pages(
            f"repos/{repository.owner}/{repository.name}/issues/{pr_number}/timeline"
        )
        events: List[TimelineEvent] = []

        for item in payload:
            event = item.get("event")
            if not event:
                continue
            events.append(
                TimelineEvent(
                    event=str(event),
                    created_at=self._parse_datetime(item.get("created_at")),
                )
            )

        logger.debug(
            "Fetched timeline events",
            extra={"repository": repository.full_name, "pr_number": pr_number, "count": len(events)},
        )
        return events
