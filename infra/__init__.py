"""CodeAgent infrastructure layer — GitHub client and git workspaces.

All GitHub REST traffic goes through :class:`~infra.github_client.GitHubClient`
and every local checkout through :class:`~infra.workspace.WorkspaceStore`.

Quick start::

    from infra.factory import get_github_client
    from infra.workspace import WorkspaceStore

    client = get_github_client()
    store = WorkspaceStore(Path("/tmp/codeagent"), clone_url_resolver=client.authenticated_clone_url)
    with store.workspace("https://github.com/owner/repo.git", "main") as ws:
        print(ws.file_tree())
"""

from infra.factory import get_github_client
from infra.forge import ForgeClient, ForgeError, Issue, PRRequest, PRResult, PullRequest, Repository
from infra.github_client import GitHubClient
from infra.workspace import (
    GitPort,
    RateLimitError,
    SubprocessGit,
    Workspace,
    WorkspaceError,
    WorkspaceStore,
    WorkspaceTimeoutError,
)

__all__ = [
    # Protocol & models
    "ForgeClient",
    "ForgeError",
    "Issue",
    "PullRequest",
    "Repository",
    "PRRequest",
    "PRResult",
    # Client
    "GitHubClient",
    "get_github_client",
    # Workspace
    "GitPort",
    "SubprocessGit",
    "Workspace",
    "WorkspaceStore",
    "WorkspaceError",
    "RateLimitError",
    "WorkspaceTimeoutError",
]
