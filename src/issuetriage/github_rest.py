from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Any

import requests

from .models import Issue
from .retry import RetryConfig, run_with_retries

DEFAULT_API_URL = "https://api.github.com"
USER_AGENT = "issuetriage-rest/0.2.0"
HTTP_ERROR_STATUS = 400


class GitHubAPIError(RuntimeError):
    """Raised when the GitHub REST API returns an error.

    ``status`` drives retry classification (429 / 5xx are transient).
    """

    def __init__(
        self,
        message: str,
        *,
        status: int | None = None,
        response_text: str | None = None,
    ):
        super().__init__(message)
        self.status = status
        self.response_text = response_text


@dataclass
class GitHubRestClient:
    """Read-only REST client used as the issue-tracker collaborator.

    A ``requests.Session`` is shared by every batch worker; sessions tolerate
    concurrent requests as long as nobody mutates their headers mid-run, so
    headers are fixed in ``__post_init__``.
    """

    token: str
    base_url: str = DEFAULT_API_URL
    session: requests.Session | None = None
    retry: RetryConfig | None = None
    cancel: threading.Event | None = None
    _session: requests.Session = field(init=False, repr=False)

    def __post_init__(self) -> None:  # pragma: no cover - simple wiring
        self._session = self.session or requests.Session()
        self._session.headers.setdefault("Authorization", f"Bearer {self.token}")
        self._session.headers.setdefault("Accept", "application/vnd.github+json")
        self._session.headers.setdefault("User-Agent", USER_AGENT)

    def close(self) -> None:
        self._session.close()

    # ---- REST helpers -------------------------------------------------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        cancel: threading.Event | None = None,
    ) -> Any:
        url = (
            path
            if path.startswith("http")
            else f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"
        )

        def _run() -> requests.Response:
            response = self._session.request(
                method,
                url,
                params=params,
                headers=self._session.headers,
                timeout=30,
            )
            if response.status_code >= HTTP_ERROR_STATUS:
                raise GitHubAPIError(
                    f"GitHub API {method} {url} failed with {response.status_code}",
                    status=response.status_code,
                    response_text=response.text,
                )
            return response

        response = run_with_retries(
            _run,
            cfg=self.retry,
            operation=f"github {method} {path}",
            cancel=cancel or self.cancel,
        )
        if response.text:
            try:
                return response.json()
            except ValueError:
                return response.text
        return None

    def _paginate(
        self,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        cancel: threading.Event | None = None,
    ) -> list[Any]:
        params = dict(params or {})
        per_page = params.setdefault("per_page", 100)
        params.setdefault("page", 1)
        results: list[Any] = []
        while True:
            data = self._request("GET", path, params=params, cancel=cancel)
            if not isinstance(data, list):
                break
            results.extend(data)
            if len(data) < per_page:
                break
            params["page"] = params.get("page", 1) + 1
        return results

    # ---- Issue operations --------------------------------------------
    def get_issue(self, org: str, repo: str, number: int) -> Issue:
        data = self._request("GET", f"/repos/{org}/{repo}/issues/{number}")
        if not isinstance(data, dict):
            raise GitHubAPIError(f"Unexpected payload for {org}/{repo}#{number}")
        return Issue.from_mapping({**data, "org": org, "repo": repo})

    def list_issues(self, org: str, repo: str, *, state: str = "open") -> list[Issue]:
        params = {"state": state, "per_page": 100, "page": 1}
        data = self._paginate(f"/repos/{org}/{repo}/issues", params=params)
        out: list[Issue] = []
        for entry in data:
            # the issues endpoint also returns pull requests
            if isinstance(entry, dict) and "pull_request" not in entry:
                out.append(Issue.from_mapping({**entry, "org": org, "repo": repo}))
        return out

    def list_issue_events(
        self,
        org: str,
        repo: str,
        number: int,
        *,
        cancel: threading.Event | None = None,
    ) -> list[dict[str, Any]]:
        data = self._paginate(f"/repos/{org}/{repo}/issues/{number}/events", cancel=cancel)
        return [e for e in data if isinstance(e, dict)]


__all__ = ["GitHubAPIError", "GitHubRestClient"]
