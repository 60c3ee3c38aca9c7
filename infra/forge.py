"""GitHub responder interface — protocol and shared data models.

All code that needs to talk back to GitHub (comments, pull requests,
lookups) must go through a ``ForgeClient`` implementation.  Direct HTTP
calls to the GitHub API outside this package are not allowed.
"""

from __future__ import annotations

from typing import Protocol, runtime_checkable

from pydantic import BaseModel, Field


# ---------------------------------------------------------------------------
# Data models
# ---------------------------------------------------------------------------


class Issue(BaseModel):
    """An issue as returned by ``GET /repos/{repo}/issues/{n}``."""

    id: int
    number: int
    title: str
    description: str = ""
    state: str = ""
    url: str = ""
    labels: list[str] = Field(default_factory=list)
    author: str = ""


class PullRequest(BaseModel):
    """A pull request as returned by ``GET /repos/{repo}/pulls/{n}``."""

    id: int
    number: int
    title: str
    body: str = ""
    state: str = ""
    url: str = ""
    head_ref: str = ""
    head_sha: str = ""
    base_ref: str = ""
    base_sha: str = ""
    merged: bool = False


class Repository(BaseModel):
    """Repository metadata as returned by ``GET /repos/{repo}``."""

    id: int
    name: str
    full_name: str
    url: str = ""
    clone_url: str = ""
    default_branch: str = "main"


class PRRequest(BaseModel):
    """Payload for creating a pull request."""

    title: str
    body: str = ""
    head_branch: str
    base_branch: str


class PRResult(BaseModel):
    """Result returned after a PR is created."""

    id: int
    url: str
    number: int


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class ForgeClient(Protocol):
    """Remote operations the dispatcher needs from GitHub.

    Callers should type-hint against ``ForgeClient``, not against the
    concrete ``GitHubClient``, so tests can pass fakes.

    All methods are synchronous.  Async callers should run them in a thread
    pool (e.g. ``asyncio.to_thread``).  ``repo`` is always ``owner/name``.
    """

    def post_comment(self, repo: str, issue_id: int, body: str) -> None:
        """Post a Markdown comment on an issue or pull request."""
        ...

    def create_pr(self, repo: str, pr: PRRequest) -> PRResult:
        """Open a pull request and return its id, url and number."""
        ...

    def get_issue(self, repo: str, issue_id: int) -> Issue:
        """Fetch a single issue by number."""
        ...

    def get_pull_request(self, repo: str, number: int) -> PullRequest:
        """Fetch a single pull request by number."""
        ...

    def get_repository(self, repo: str) -> Repository:
        """Fetch repository metadata."""
        ...

    def authenticated_clone_url(self, clone_url: str) -> str:
        """Return *clone_url* with credentials embedded for git over HTTPS."""
        ...


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ForgeError(Exception):
    """Raised for any GitHub API error (HTTP errors, network failures, …)."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code

    @property
    def is_pr_already_exists(self) -> bool:
        """True when GitHub refused a PR because one is already open for the branch."""
        return "a pull request already exists" in str(self).lower()

    def __repr__(self) -> str:  # pragma: no cover
        return f"ForgeError({self.args[0]!r}, status_code={self.status_code})"
