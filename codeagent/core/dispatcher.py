"""Command dispatcher — routes an extracted command to its handler.

Every handler returns a :class:`CommandResult`; the dispatcher posts its
``message`` on the pull request (when present) or the issue.  Handler
failures become a failure reply instead of propagating, so the user always
hears back.
"""

from __future__ import annotations

from collections.abc import Callable
from datetime import UTC, datetime

from codeagent.agents import prompts
from codeagent.agents.backend import CodeGenerationBackend
from codeagent.core.commands import Command, CommandContext, CommandName, CommandResult
from codeagent.core.logging import get_logger
from codeagent.core.pipeline import AutoModifyPipeline, CodeRequest
from infra.forge import ForgeClient
from infra.workspace import WorkspaceStore

logger = get_logger("core.dispatcher")

_EXCERPT_CHARS = 500
_TREE_MAX_CHARS = 8000

HELP_TEXT = """📖 **CodeAgent help**

**Commands**

- `/code <request>` — implement the request on a new branch and open a pull request
- `/continue [instruction]` — continue the current development task
- `/fix <problem>` — propose a fix for a described problem
- `/review [focus]` — review this pull request (or the whole project from an issue)
- `/summary [focus]` — summarise the repository
- `/help` — show this message

**Examples**

- `/code add a login endpoint with JWT auth`
- `/fix the null pointer in the user handler`
- `/review focus on error handling`

**Workflow**

1. 🎯 Write a command in an issue, PR, comment or review
2. 🌲 A fresh checkout of the repository is prepared
3. 🤖 The AI backend analyses the request and generates code
4. 📝 Changes are committed, pushed and proposed as a pull request
5. 💬 The result is posted back here
"""


class UnknownCommandError(Exception):
    """Raised for a command name with no registered handler."""


class DispatchError(Exception):
    """Raised when a command context has neither an issue nor a pull request."""


def _excerpt(text: str, limit: int = _EXCERPT_CHARS) -> str:
    text = (text or "").strip()
    return text if len(text) <= limit else text[:limit] + "…"


def _timestamp() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def build_project_context(ctx: CommandContext) -> str:
    """Markdown summary of repository, issue, PR, comment and user."""
    repo = ctx.repository
    lines = [
        "**Repository**",
        f"- Name: {repo.full_name}",
        f"- URL: {repo.html_url}",
        f"- Default branch: {repo.default_branch or 'main'}",
    ]
    if ctx.issue is not None:
        lines += [
            "",
            "**Issue**",
            f"- #{ctx.issue.number}: {ctx.issue.title}",
            f"- State: {ctx.issue.state}",
            f"- Description: {_excerpt(ctx.issue.body)}",
        ]
    if ctx.pull_request is not None:
        pr = ctx.pull_request
        lines += [
            "",
            "**Pull request**",
            f"- #{pr.number}: {pr.title}",
            f"- State: {pr.state}",
            f"- Branches: {pr.head.ref} → {pr.base.ref}",
            f"- Description: {_excerpt(pr.body)}",
        ]
    if ctx.comment is not None:
        lines += ["", "**Comment**", _excerpt(ctx.comment.body)]
    if ctx.user is not None:
        lines += ["", f"**Requested by**: @{ctx.user.login}"]
    return "\n".join(lines)


class CommandDispatcher:
    """Execute commands against GitHub, the workspace store and the AI backend.

    Args:
        forge:          GitHub responder.
        store:          Workspace store (shared with the pipeline).
        backend:        Code generation backend.
        pipeline:       ``/code`` pipeline; built from the other args if omitted.
        diff_max_chars: Cap on the PR diff sent for review.
    """

    def __init__(
        self,
        forge: ForgeClient,
        store: WorkspaceStore,
        backend: CodeGenerationBackend,
        pipeline: AutoModifyPipeline | None = None,
        *,
        diff_max_chars: int = 10_000,
    ) -> None:
        self._forge = forge
        self._store = store
        self._backend = backend
        self._pipeline = pipeline or AutoModifyPipeline(forge, store, backend)
        self._diff_max_chars = diff_max_chars
        self._handlers: dict[str, Callable[[Command, CommandContext], CommandResult]] = {
            CommandName.CODE: self._handle_code,
            CommandName.CONTINUE: self._handle_continue,
            CommandName.FIX: self._handle_fix,
            CommandName.HELP: self._handle_help,
            CommandName.REVIEW: self._handle_review,
            CommandName.SUMMARY: self._handle_summary,
        }

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def dispatch(self, command: Command, ctx: CommandContext) -> CommandResult:
        """Run *command* and post its reply.

        Raises:
            UnknownCommandError: no handler for ``command.name``.
            DispatchError: *ctx* has no reply target.
            ForgeError: the reply itself could not be posted.
        """
        handler = self._handlers.get(command.name)
        if handler is None:
            raise UnknownCommandError(f"unknown command: {command.name!r}")
        target = ctx.reply_number
        if target is None:
            raise DispatchError("command context has neither an issue nor a pull request")

        repo = ctx.repository.full_name
        logger.info("dispatch: /%s on %s#%d args=%r", command.name, repo, target, command.args[:80])
        try:
            result = handler(command, ctx)
        except Exception as exc:
            logger.exception("dispatch: /%s on %s#%d failed", command.name, repo, target)
            result = CommandResult(
                command=CommandName(command.name),
                ok=False,
                message=_failure_reply(command, exc),
                error=exc,
            )

        self._forge.post_comment(repo, target, result.message)
        logger.info("dispatch: /%s on %s#%d replied (ok=%s)", command.name, repo, target, result.ok)
        return result

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    def _handle_code(self, command: Command, ctx: CommandContext) -> CommandResult:
        if ctx.issue is not None:
            number, title, body, url = ctx.issue.number, ctx.issue.title, ctx.issue.body, ctx.issue.html_url
        else:
            pr = ctx.pull_request
            number, title, body, url = pr.number, pr.title, pr.body, pr.html_url

        if command.args:
            body = f"**Original description:**\n{body or '(none)'}\n\n**Requested change:**\n{command.args}"
            title = command.args
        request = CodeRequest(number=number, title=title, body=body, url=url)
        return self._pipeline.run(ctx, request)

    def _handle_continue(self, command: Command, ctx: CommandContext) -> CommandResult:
        text = self._backend.generate(prompts.continue_prompt(build_project_context(ctx), command.args))
        message = (
            "🔄 **Continue development**\n\n"
            f"{command.args or '(no instruction)'}\n\n"
            f"{text}\n\n"
            f"---\n*{_timestamp()}*"
        )
        return CommandResult(command=CommandName.CONTINUE, ok=True, message=message)

    def _handle_fix(self, command: Command, ctx: CommandContext) -> CommandResult:
        text = self._backend.generate(prompts.fix_prompt(build_project_context(ctx), command.args))
        message = (
            "🔧 **Proposed fix**\n\n"
            f"Problem: {command.args or '(see context)'}\n\n"
            f"{text}\n\n"
            f"---\n*{_timestamp()}*"
        )
        return CommandResult(command=CommandName.FIX, ok=True, message=message)

    def _handle_help(self, command: Command, ctx: CommandContext) -> CommandResult:
        return CommandResult(command=CommandName.HELP, ok=True, message=HELP_TEXT)

    def _handle_review(self, command: Command, ctx: CommandContext) -> CommandResult:
        url = ctx.repository.effective_clone_url
        pr = ctx.pull_request
        if pr is not None:
            branch = pr.base.ref or ctx.repository.default_branch or "main"
            with self._store.workspace(url, branch) as ws:
                diff = ws.diff(pr.head.sha, pr.base.sha, self._diff_max_chars)
                text = self._backend.generate(
                    prompts.pr_review_prompt(pr.title, pr.body, diff, command.args)
                )
            heading = f"🔍 **Review of PR #{pr.number}**"
        else:
            branch = ctx.repository.default_branch or "main"
            with self._store.workspace(url, branch) as ws:
                tree = _excerpt(ws.file_tree(), _TREE_MAX_CHARS)
                text = self._backend.generate(
                    prompts.project_review_prompt(build_project_context(ctx), tree, command.args)
                )
            heading = f"🔍 **Project review of {ctx.repository.full_name}**"
        message = f"{heading}\n\n{text}\n\n---\n*{_timestamp()}*"
        return CommandResult(command=CommandName.REVIEW, ok=True, message=message)

    def _handle_summary(self, command: Command, ctx: CommandContext) -> CommandResult:
        branch = ctx.repository.default_branch or "main"
        with self._store.workspace(ctx.repository.effective_clone_url, branch) as ws:
            tree = _excerpt(ws.file_tree(), _TREE_MAX_CHARS)
            text = self._backend.generate(
                prompts.summary_prompt(build_project_context(ctx), tree, command.args)
            )
        message = f"📋 **Summary of {ctx.repository.full_name}**\n\n{text}\n\n---\n*{_timestamp()}*"
        return CommandResult(command=CommandName.SUMMARY, ok=True, message=message)


def _failure_reply(command: Command, exc: BaseException) -> str:
    return (
        f"❌ **/{command.name} failed**\n\n"
        f"Error: {exc}\n\n"
        "Please check the AI backend configuration, network access and API quota.\n\n"
        f"---\n*{_timestamp()}*"
    )
