"""Slash-command extraction from issue / PR text."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import StrEnum

from codeagent.webhooks.models import Comment, Issue, PullRequest, Repository, User


class CommandName(StrEnum):
    CODE = "code"
    CONTINUE = "continue"
    FIX = "fix"
    HELP = "help"
    REVIEW = "review"
    SUMMARY = "summary"


COMMAND_PATTERN = re.compile(
    r"^/(" + "|".join(c.value for c in CommandName) + r")\s*(.*)$"
)


@dataclass(frozen=True)
class Command:
    name: CommandName
    args: str = ""


@dataclass
class CommandContext:
    """Everything a command needs to know about where it was issued.

    The reply target is the pull request when present, otherwise the issue.
    """

    repository: Repository
    issue: Issue | None = None
    pull_request: PullRequest | None = None
    comment: Comment | None = None
    user: User | None = None

    @property
    def reply_number(self) -> int | None:
        if self.pull_request is not None:
            return self.pull_request.number
        if self.issue is not None:
            return self.issue.number
        return None


@dataclass
class CommandResult:
    """Outcome of one dispatched command.

    ``message`` is the Markdown reply posted back to GitHub.  ``error`` holds
    the original exception when ``ok`` is False.
    """

    command: CommandName
    ok: bool
    message: str
    error: BaseException | None = None


def extract_command(text: str) -> Command | None:
    """Return the command on the first matching line of *text*, or None.

    Only the first command-like line is honoured; later ones are ignored.
    """
    for line in text.splitlines():
        match = COMMAND_PATTERN.match(line.strip())
        if match:
            return Command(name=CommandName(match.group(1)), args=match.group(2).strip())
    return None
