"""Repository-level GitHub operations used by built-in handlers.

This wraps PyGithub to keep GitHub calls out of handler code and make tests easy.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from github import Auth, Github, GithubException
from github.Repository import Repository

from agent_workflow_engine.logging import redact

logger = logging.getLogger(__name__)


@dataclass(frozen=True, slots=True)
class CreatedIssue:
    """Minimal issue metadata returned from GitHub."""

    repository: str
    number: int
    title: str
    created_at: datetime
    status: str


@dataclass(frozen=True, slots=True)
class PullRequestInfo:
    number: int
    url: str


class GitHubRepositoryClient:
    """Small wrapper around PyGithub for the operations a workflow run needs."""

    def __init__(
        self,
        *,
        token: str,
        repository: str,
        base_url: str = "https://api.github.com",
        repo: Repository | None = None,
        github_api: Github | None = None,
    ) -> None:
        if not token:
            raise ValueError("GitHub token is required")
        if not repository:
            raise ValueError("GitHub repository is required")

        self._token = token
        self._repository_name = repository

        if repo is not None:
            self._repo = repo
            self._github = None
            logger.debug("Using injected Repository instance")
            return

        auth = Auth.Token(token)
        self._github = github_api or Github(auth=auth, base_url=base_url)

        self._repo = self._github.get_repo(repository)
        logger.info(
            "Authenticated with GitHub and connected to repository", extra={"repo": repository}
        )

    @property
    def repository(self) -> str:
        """Return the configured repository name ("owner/repo")."""

        return self._repository_name

    def create_issue(
        self,
        *,
        title: str,
        body: str | None,
        labels: list[str] | None,
    ) -> CreatedIssue:
        if not title.strip():
            raise ValueError("Issue title is required")

        normalized_labels = labels or []
        issue = self._repo.create_issue(title=title, body=body or "", labels=normalized_labels)

        return CreatedIssue(
            repository=self._repository_name,
            number=issue.number,
            title=issue.title,
            created_at=issue.created_at,
            status=getattr(issue, "state", "open"),
        )

    def open_draft_pull_request(
        self,
        *,
        title: str,
        head: str,
        base: str = "main",
        body: str | None = None,
    ) -> PullRequestInfo | None:
        """Open a draft pull request; returns None (and logs) when GitHub refuses."""

        if not head.strip():
            raise ValueError("head branch is required")

        try:
            pr = self._repo.create_pull(
                title=title, body=body or "", head=head, base=base, draft=True
            )
        except GithubException as e:
            logger.warning(
                "Failed to open draft pull request",
                extra={
                    "repo": self._repository_name,
                    "head": head,
                    "base": base,
                    "status_code": e.status,
                    "error": redact(str(e), [self._token]),
                },
            )
            return None

        logger.info(
            "Opened draft pull request",
            extra={"repo": self._repository_name, "pull_number": pr.number},
        )
        return PullRequestInfo(number=pr.number, url=pr.html_url)

    def close(self) -> None:
        if self._github is not None:
            self._github.close()
