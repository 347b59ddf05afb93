"""GitHub REST implementation of :class:`TrackerClient` on httpx."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

import httpx

from tasksync import __version__, log
from tasksync.errors import TrackerError
from tasksync.tracker.base import Issue, TrackerClient

DEFAULT_TIMEOUT_SECONDS = 30.0
PAGE_SIZE = 100
API_VERSION = "2022-11-28"


class GitHubClient(TrackerClient):
    """Issue operations against one ``owner/repo``.

    Non-2xx answers raise :class:`TrackerError` carrying the status, the API
    message and the response headers (for rate-limit delays). Transport
    failures propagate as ``httpx.TransportError``.
    """

    def __init__(
        self,
        token: str,
        owner: str,
        repo: str,
        *,
        api_url: str = "https://api.github.com",
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.owner = owner
        self.repo = repo
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": API_VERSION,
            "User-Agent": f"tasksync/{__version__}",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=api_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout_seconds, connect=10.0),
            transport=transport,
        )

    # ── plumbing ─────────────────────────────────────────────────

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.owner}/{self.repo}"

    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = self._client.request(method, path, **kwargs)
        if response.is_success:
            return response
        try:
            payload = response.json()
            message = payload.get("message", "") if isinstance(payload, dict) else ""
        except ValueError:
            message = ""
        raise TrackerError(
            response.status_code,
            message or response.reason_phrase or "request failed",
            headers=dict(response.headers),
        )

    # ── TrackerClient ────────────────────────────────────────────

    def get_issue(self, number: int) -> Issue:
        return Issue.from_api(self._request("GET", f"{self._repo_path}/issues/{number}").json())

    def create_issue(self, title: str, body: str, labels: list[str]) -> Issue:
        response = self._request(
            "POST",
            f"{self._repo_path}/issues",
            json={"title": title, "body": body, "labels": labels},
        )
        issue = Issue.from_api(response.json())
        log.debug(f"Created issue #{issue.number}: {title}")
        return issue

    def update_issue(
        self,
        number: int,
        *,
        title: str | None = None,
        body: str | None = None,
        state: str | None = None,
    ) -> Issue:
        fields = {k: v for k, v in (("title", title), ("body", body), ("state", state)) if v is not None}
        response = self._request("PATCH", f"{self._repo_path}/issues/{number}", json=fields)
        return Issue.from_api(response.json())

    def add_labels(self, number: int, labels: list[str]) -> None:
        self._request("POST", f"{self._repo_path}/issues/{number}/labels", json={"labels": labels})

    def remove_label(self, number: int, label: str) -> None:
        self._request("DELETE", f"{self._repo_path}/issues/{number}/labels/{quote(label, safe='')}")

    def create_comment(self, number: int, body: str) -> None:
        self._request("POST", f"{self._repo_path}/issues/{number}/comments", json={"body": body})

    def list_issues(self, state: str = "all", labels: list[str] | None = None) -> list[Issue]:
        params: dict[str, Any] = {"state": state, "per_page": PAGE_SIZE, "page": 1}
        if labels:
            params["labels"] = ",".join(labels)

        issues: list[Issue] = []
        while True:
            response = self._request("GET", f"{self._repo_path}/issues", params=params)
            page = response.json()
            issues.extend(Issue.from_api(item) for item in page if "pull_request" not in item)
            if not page or "next" not in response.links:
                break
            params["page"] += 1
        return issues

    def add_sub_issue(self, parent_number: int, child: Issue) -> None:
        child_id = child.id or self.get_issue(child.number).id
        self._request(
            "POST",
            f"{self._repo_path}/issues/{parent_number}/sub_issues",
            json={"sub_issue_id": child_id},
        )

    def list_sub_issues(self, number: int) -> list[Issue]:
        response = self._request("GET", f"{self._repo_path}/issues/{number}/sub_issues")
        return [Issue.from_api(item) for item in response.json()]

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> GitHubClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
