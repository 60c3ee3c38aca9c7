"""Conventional-commit message builder.

Pure functions of their inputs: the same issue and file list always produce
the same message.
"""

from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass
from enum import StrEnum
from pathlib import PurePosixPath


class CommitType(StrEnum):
    FEAT = "feat"
    FIX = "fix"
    REFACTOR = "refactor"
    DOCS = "docs"
    STYLE = "style"
    TEST = "test"
    CHORE = "chore"
    PERF = "perf"
    BUILD = "build"
    CI = "ci"
    REVERT = "revert"


# Checked in order; the first group with a keyword in title+body wins.
TYPE_KEYWORDS: tuple[tuple[CommitType, tuple[str, ...]], ...] = (
    (CommitType.FIX, ("修复", "解决", "fix", "solve", "bug", "错误", "问题", "异常", "故障")),
    (CommitType.REFACTOR, ("重构", "优化", "refactor", "optimize", "improve", "clean", "整理")),
    (CommitType.DOCS, ("文档", "doc", "readme", "注释", "说明")),
    (CommitType.TEST, ("测试", "test", "单元测试", "集成测试")),
    (CommitType.PERF, ("性能", "performance", "perf", "速度", "优化性能")),
    (CommitType.CI, ("ci", "cd", "pipeline", "workflow", "actions", "jenkins")),
    (CommitType.BUILD, ("构建", "build", "webpack", "docker", "makefile")),
)

_SCOPE_DIRS = ("handlers", "services", "models", "config", "cmd", "pkg")

_DEPENDENCY_MANIFESTS = {
    "go.mod", "go.sum", "pyproject.toml", "setup.py", "setup.cfg", "pipfile",
    "pipfile.lock", "poetry.lock", "uv.lock", "package.json", "package-lock.json",
    "yarn.lock", "pnpm-lock.yaml", "cargo.toml", "cargo.lock", "gemfile", "gemfile.lock",
}

_EMOJI_MARKERS = ("🤖", "✨", "🐛")

MAX_DESCRIPTION = 50

_HEADER_RE = re.compile(r"^(?P<type>\w+)(?:\((?P<scope>[^)]*)\))?(?P<breaking>!)?: (?P<description>.*)$")


@dataclass(frozen=True)
class CommitMessage:
    type: CommitType
    description: str
    scope: str = ""
    body: str = ""
    footer: str = ""
    breaking: bool = False

    def format(self) -> str:
        header = str(self.type)
        if self.scope:
            header += f"({self.scope})"
        if self.breaking:
            header += "!"
        parts = [f"{header}: {self.description}"]
        if self.body:
            parts.append(self.body)
        if self.footer:
            parts.append(self.footer)
        return "\n\n".join(parts)

    def __str__(self) -> str:
        return self.format()


# ---------------------------------------------------------------------------
# Detection helpers
# ---------------------------------------------------------------------------


def file_scope(path: str) -> str:
    """Return the scope label for one modified file ("" when none applies)."""
    p = PurePosixPath(path.replace("\\", "/"))
    for part in p.parent.parts:
        if part in _SCOPE_DIRS:
            return part

    name = p.name
    lower = name.lower()
    if "test" in lower:
        return "test"
    if lower.endswith(".md"):
        return "docs"
    if "docker" in lower:
        return "docker"
    if lower in _DEPENDENCY_MANIFESTS or (lower.startswith("requirements") and lower.endswith(".txt")):
        return "deps"
    return ""


def detect_scope(files: list[str]) -> str:
    """Return the most frequent non-empty scope among *files*.

    Ties resolve to whichever scope was seen first; callers should not rely
    on a particular tie-break.
    """
    counts = Counter(s for s in (file_scope(f) for f in files) if s)
    if not counts:
        return ""
    return counts.most_common(1)[0][0]


def detect_type(title: str, body: str = "") -> CommitType:
    content = f"{title} {body}".lower()
    for commit_type, keywords in TYPE_KEYWORDS:
        if any(k in content for k in keywords):
            return commit_type
    return CommitType.FEAT


def build_description(title: str) -> str:
    description = title.strip()
    if description.startswith("#"):
        parts = description.split(" ", 1)
        if len(parts) > 1:
            description = parts[1]
    for marker in _EMOJI_MARKERS:
        description = description.replace(marker, "").strip()
    if len(description) > MAX_DESCRIPTION:
        description = description[: MAX_DESCRIPTION - 3] + "..."
    return description


def parse_commit_header(message: str) -> CommitMessage | None:
    """Parse the first line of a conventional commit back into its parts."""
    first = message.splitlines()[0] if message else ""
    match = _HEADER_RE.match(first)
    if not match:
        return None
    try:
        commit_type = CommitType(match.group("type"))
    except ValueError:
        return None
    return CommitMessage(
        type=commit_type,
        scope=match.group("scope") or "",
        description=match.group("description"),
        breaking=bool(match.group("breaking")),
    )


# ---------------------------------------------------------------------------
# Builders
# ---------------------------------------------------------------------------


def build_auto_fix_commit(
    issue_number: int,
    issue_title: str,
    issue_body: str,
    issue_url: str,
    modified_files: list[str],
) -> str:
    """Commit message for changes generated from an issue."""
    message = CommitMessage(
        type=detect_type(issue_title, issue_body),
        scope=detect_scope(modified_files),
        description=build_description(issue_title),
        body="Automated change generated by CodeAgent\n\nModified files:\n" + "\n".join(modified_files),
        footer=f"Closes #{issue_number}\nIssue: {issue_url}" if issue_url else f"Closes #{issue_number}",
    )
    return message.format()


def build_pr_commit(pr_title: str, pr_description: str, pr_number: int) -> str:
    message = CommitMessage(
        type=detect_type(pr_title, pr_description),
        description=build_description(pr_title),
        footer=f"PR #{pr_number}",
    )
    return message.format()


def build_manual_commit(
    commit_type: CommitType | str,
    scope: str,
    description: str,
    body: str = "",
    footer: str = "",
    breaking: bool = False,
) -> str:
    message = CommitMessage(
        type=CommitType(commit_type),
        scope=scope,
        description=description,
        body=body,
        footer=footer,
        breaking=breaking,
    )
    return message.format()
