"""GitHub responder client.

Implements :class:`~infra.forge.ForgeClient` against the GitHub REST API v3.
Authentication uses a token supplied via the ``GITHUB_TOKEN`` environment
variable / config key, sent as a bearer ``Authorization`` header.

Usage::

    from infra.factory import get_github_client
    client = get_github_client()
    client.post_comment("owner/repo", 42, "Done!")
"""

from __future__ import annotations

from typing import Any
from urllib.parse import quote, urlsplit, urlunsplit

import httpx

from infra.forge import ForgeError, Issue, PRRequest, PRResult, PullRequest, Repository

_GITHUB_API = "https://api.github.com"


class GitHubClient:
    """GitHub REST API v3 client.

    Args:
        token: GitHub token.  Pass an empty string to make unauthenticated
               requests (read-only and rate-limited to 60 req/h).
        base_url: API base URL.  Override in tests or for GitHub Enterprise.
        timeout: HTTP timeout in seconds (default 30).
    """

    def __init__(
        self,
        token: str = "",
        base_url: str = _GITHUB_API,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._token = token
        headers: dict[str, str] = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": "codeagent",
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(headers=headers, timeout=timeout)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _request(self, method: str, path: str, json: dict[str, Any] | None = None) -> Any:
        url = f"{self._base_url}{path}"
        try:
            response = self._client.request(method, url, json=json)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise ForgeError(
                f"GitHub {method} {path} failed: {exc.response.status_code} {exc.response.text[:200]}",
                status_code=exc.response.status_code,
            ) from exc
        except httpx.RequestError as exc:
            raise ForgeError(f"GitHub {method} {path} network error: {exc}") from exc
        if not response.content:
            return None
        return response.json()

    def _get(self, path: str) -> Any:
        return self._request("GET", path)

    def _post(self, path: str, json: dict[str, Any]) -> Any:
        return self._request("POST", path, json=json)

    def _repo_path(self, repo: str) -> str:
        """Return URL-encoded ``/repos/owner/name``."""
        return f"/repos/{quote(repo, safe='/')}"

    # ------------------------------------------------------------------
    # ForgeClient implementation
    # ------------------------------------------------------------------

    def post_comment(self, repo: str, issue_id: int, body: str) -> None:
        """Post a comment on a GitHub issue or PR.

        Args:
            repo:     ``owner/name``.
            issue_id: Issue / PR number.
            body:     Markdown comment text.
        """
        self._post(
            f"{self._repo_path(repo)}/issues/{issue_id}/comments",
            json={"body": body},
        )

    def create_pr(self, repo: str, pr: PRRequest) -> PRResult:
        """Open a GitHub pull request.

        Args:
            repo: ``owner/name``.
            pr:   :class:`~infra.forge.PRRequest` with title, body, branches.
        """
        data = self._post(
            f"{self._repo_path(repo)}/pulls",
            json={
                "title": pr.title,
                "body": pr.body,
                "head": pr.head_branch,
                "base": pr.base_branch,
            },
        )
        return PRResult(
            id=data["id"],
            url=data["html_url"],
            number=data["number"],
        )

    def get_issue(self, repo: str, issue_id: int) -> Issue:
        """Fetch a single GitHub issue.

        Args:
            repo:     ``owner/name``.
            issue_id: Issue number.
        """
        data = self._get(f"{self._repo_path(repo)}/issues/{issue_id}")
        return Issue(
            id=data["id"],
            number=data["number"],
            title=data.get("title", ""),
            description=data.get("body") or "",
            state=data.get("state", ""),
            url=data.get("html_url", ""),
            labels=[lbl["name"] for lbl in data.get("labels", [])],
            author=(data.get("user") or {}).get("login", ""),
        )

    def get_pull_request(self, repo: str, number: int) -> PullRequest:
        """Fetch a single pull request including its head/base refs."""
        data = self._get(f"{self._repo_path(repo)}/pulls/{number}")
        head = data.get("head") or {}
        base = data.get("base") or {}
        return PullRequest(
            id=data["id"],
            number=data["number"],
            title=data.get("title", ""),
            body=data.get("body") or "",
            state=data.get("state", ""),
            url=data.get("html_url", ""),
            head_ref=head.get("ref", ""),
            head_sha=head.get("sha", ""),
            base_ref=base.get("ref", ""),
            base_sha=base.get("sha", ""),
            merged=bool(data.get("merged", False)),
        )

    def get_repository(self, repo: str) -> Repository:
        """Fetch repository metadata (clone URL, default branch, …)."""
        data = self._get(self._repo_path(repo))
        return Repository(
            id=data["id"],
            name=data["name"],
            full_name=data["full_name"],
            url=data.get("html_url", ""),
            clone_url=data.get("clone_url", f"https://github.com/{repo}.git"),
            default_branch=data.get("default_branch") or "main",
        )

    def authenticated_clone_url(self, clone_url: str) -> str:
        """Return an HTTPS clone URL with the token embedded as a credential.

        URLs that are not HTTPS, or when no token is configured, are
        returned unchanged.
        """
        if not self._token or not clone_url.startswith("https://"):
            return clone_url
        parts = urlsplit(clone_url)
        host = parts.hostname or ""
        if parts.port:
            host = f"{host}:{parts.port}"
        netloc = f"x-access-token:{self._token}@{host}"
        return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))

    def close(self) -> None:
        self._client.close()

    def __repr__(self) -> str:  # pragma: no cover
        return f"GitHubClient(base_url={self._base_url!r})"
