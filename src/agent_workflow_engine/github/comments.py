"""Create-and-update access to the comment thread of one pull request.

Error messages carry the method, path and status code only. Response bodies
are never included: GitHub may echo request data (including credentials)
back in them.
"""

from __future__ import annotations

import logging
from typing import Any

import requests

logger = logging.getLogger(__name__)


class GitHubAPIError(RuntimeError):
    """A comment API call failed with a non-success status."""

    def __init__(self, method: str, path: str, status_code: int | None) -> None:
        self.method = method
        self.path = path
        self.status_code = status_code
        super().__init__(f"GitHub API {method} {path} failed (HTTP {status_code})")


class GitHubAuthError(GitHubAPIError):
    """401/403: the credential is missing, invalid or lacks permission."""


class GitHubNotFoundError(GitHubAPIError):
    """404: the repository, pull request or comment does not exist (or is hidden)."""


class GitHubNetworkError(GitHubAPIError):
    """The request did not produce an HTTP response."""

    def __init__(self, method: str, path: str, error: BaseException) -> None:
        self.error_type = type(error).__name__
        RuntimeError.__init__(self, f"GitHub API {method} {path} failed ({self.error_type})")
        self.method = method
        self.path = path
        self.status_code = None


class IssueCommentClient:
    """REST client for issue comments on a single pull request."""

    def __init__(
        self,
        *,
        token: str,
        owner: str,
        repo: str,
        pr_number: int,
        base_url: str = "https://api.github.com",
        session: requests.Session | None = None,
        timeout: float = 30,
    ) -> None:
        if not token:
            raise ValueError("GitHub token is required")
        if pr_number <= 0:
            raise ValueError("pr_number must be a positive integer")

        self._owner = owner
        self._repo = repo
        self._pr_number = pr_number
        self._rest_base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._session = session or requests.Session()
        self._session.headers.update(
            {
                "Authorization": f"Bearer {token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
                "User-Agent": "agent-workflow-engine",
            }
        )

    def _request(self, method: str, path: str, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self._rest_base_url}{path}"
        try:
            resp = self._session.request(method, url, json=payload, timeout=self._timeout)
        except requests.RequestException as e:
            raise GitHubNetworkError(method, path, e) from None

        status = resp.status_code
        if status in {401, 403}:
            raise GitHubAuthError(method, path, status)
        if status == 404:
            raise GitHubNotFoundError(method, path, status)
        if not 200 <= status < 300:
            raise GitHubAPIError(method, path, status)

        try:
            data = resp.json()
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    def create_comment(self, body: str) -> int:
        """Create a comment and return its identifier."""

        path = f"/repos/{self._owner}/{self._repo}/issues/{self._pr_number}/comments"
        data = self._request("POST", path, {"body": body})
        comment_id = data.get("id")
        if not isinstance(comment_id, int):
            raise ValueError("Unexpected create comment response: missing id")
        logger.debug("Created PR comment", extra={"comment_id": comment_id})
        return comment_id

    def update_comment(self, comment_id: int, body: str) -> None:
        path = f"/repos/{self._owner}/{self._repo}/issues/comments/{comment_id}"
        self._request("PATCH", path, {"body": body})

    def close(self) -> None:
        self._session.close()
