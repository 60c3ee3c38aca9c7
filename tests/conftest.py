"""Shared fakes and payload factories.

Nothing here spawns processes or touches the network: git goes through
:class:`FakeGit`, GitHub through :class:`FakeForge`, the AI through
:class:`FakeBackend`.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

from infra.forge import ForgeError, Issue, PRRequest, PRResult, PullRequest, Repository
from infra.workspace import WorkspaceStore


# ═══════════════════════════════════════════════════════════════════════════
# Fakes
# ═══════════════════════════════════════════════════════════════════════════


class FakeGit:
    """GitPort fake.  ``clone`` creates the target directory with one file.

    ``outputs`` maps a git sub-command (first arg) to its stdout;
    ``failures`` maps a sub-command to the exception it raises.
    """

    def __init__(self, outputs: dict[str, str] | None = None, failures: dict[str, Exception] | None = None):
        self.calls: list[tuple[list[str], Path | None, int]] = []
        self.outputs = outputs or {}
        self.failures = failures or {}

    def run(self, args, cwd=None, timeout=60):
        self.calls.append((list(args), cwd, timeout))
        sub = args[0]
        if sub in self.failures:
            raise self.failures[sub]
        if sub == "clone":
            target = Path(args[-1])
            target.mkdir(parents=True)
            (target / "README.md").write_text("# demo\n")
        return self.outputs.get(sub, "")

    def commands(self, sub: str) -> list[list[str]]:
        return [args for args, _, _ in self.calls if args[0] == sub]


class FakeClock:
    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FakeForge:
    """ForgeClient fake that records every call."""

    def __init__(self):
        self.comments: list[tuple[str, int, str]] = []
        self.prs: list[tuple[str, PRRequest]] = []
        self.create_pr_error: ForgeError | None = None
        self.post_comment_error: ForgeError | None = None
        self.pull_request: PullRequest | None = None
        self.get_pull_request_error: ForgeError | None = None

    def post_comment(self, repo, issue_id, body):
        if self.post_comment_error:
            raise self.post_comment_error
        self.comments.append((repo, issue_id, body))

    def create_pr(self, repo, pr):
        if self.create_pr_error:
            raise self.create_pr_error
        self.prs.append((repo, pr))
        return PRResult(id=1, url=f"https://github.com/{repo}/pull/99", number=99)

    def get_issue(self, repo, issue_id):
        return Issue(id=issue_id, number=issue_id, title="issue")

    def get_pull_request(self, repo, number):
        if self.get_pull_request_error:
            raise self.get_pull_request_error
        return self.pull_request

    def get_repository(self, repo):
        return Repository(id=1, name=repo.split("/")[1], full_name=repo)

    def authenticated_clone_url(self, clone_url):
        return clone_url


class FakeBackend:
    """Backend fake.  Pops queued responses; an Exception entry is raised.

    ``on_generate(prompt, working_dir)`` runs before answering, e.g. to
    write files like the CLI backend would.
    """

    def __init__(self, responses=None, writes_files: bool = True, on_generate=None):
        self.responses = list(responses or ["generated"])
        self.writes_files = writes_files
        self.on_generate = on_generate
        self.calls: list[tuple[str, Path | None]] = []

    def generate(self, prompt, working_dir=None):
        self.calls.append((prompt, working_dir))
        if self.on_generate:
            self.on_generate(prompt, working_dir)
        item = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(item, Exception):
            raise item
        return item


# ═══════════════════════════════════════════════════════════════════════════
# Fixtures
# ═══════════════════════════════════════════════════════════════════════════


@pytest.fixture
def fake_git():
    return FakeGit()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path, fake_git, clock):
    return WorkspaceStore(tmp_path / "ws", fake_git, clock=clock)


@pytest.fixture
def forge():
    return FakeForge()


# ═══════════════════════════════════════════════════════════════════════════
# Payload factories
# ═══════════════════════════════════════════════════════════════════════════


def repository_payload(full_name: str = "owner/repo") -> dict:
    return {
        "id": 1,
        "name": full_name.split("/")[1],
        "full_name": full_name,
        "html_url": f"https://github.com/{full_name}",
        "clone_url": f"https://github.com/{full_name}.git",
        "default_branch": "main",
        "owner": {"login": full_name.split("/")[0], "id": 2},
    }


def issue_payload(number: int = 7, title: str = "Add login", body: str | None = "Please add login", pr: bool = False) -> dict:
    data = {
        "id": 100 + number,
        "number": number,
        "title": title,
        "body": body,
        "state": "open",
        "html_url": f"https://github.com/owner/repo/issues/{number}",
        "user": {"login": "alice", "id": 3},
    }
    if pr:
        data["pull_request"] = {"url": f"https://api.github.com/repos/owner/repo/pulls/{number}"}
    return data


def pull_request_payload(number: int = 5, body: str | None = "PR body") -> dict:
    return {
        "id": 500 + number,
        "number": number,
        "title": "Improve parser",
        "body": body,
        "state": "open",
        "html_url": f"https://github.com/owner/repo/pull/{number}",
        "user": {"login": "bob", "id": 4},
        "head": {"ref": "feature", "sha": "abc123"},
        "base": {"ref": "develop", "sha": "def456"},
    }


def comment_payload(body: str) -> dict:
    return {"id": 900, "body": body, "html_url": "https://github.com/c/900", "user": {"login": "carol", "id": 5}}


def to_bytes(payload: dict) -> bytes:
    return json.dumps(payload).encode()

