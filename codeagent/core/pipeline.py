"""Auto-analyze-and-modify pipeline behind the ``/code`` command.

Steps run strictly in order and the first failure aborts the rest:

    source branch → fresh workspace → identity → branch → generate
    → stage → commit → push → pull request → summary

The workspace is released on every exit path.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from datetime import UTC, datetime

from codeagent.agents import prompts
from codeagent.agents.backend import BackendError, CodeGenerationBackend
from codeagent.core import commit_builder
from codeagent.core.commands import CommandContext, CommandName, CommandResult
from codeagent.core.logging import get_logger
from codeagent.core.modifications import (
    PlanParseError,
    apply_modifications,
    parse_modification_plan,
)
from codeagent.core.retry import RetryPolicy
from infra.forge import ForgeClient, ForgeError, PRRequest
from infra.workspace import Workspace, WorkspaceError, WorkspaceStore

logger = get_logger("core.pipeline")

STRATEGY_DIRECT = "direct"
STRATEGY_PLAN = "plan"
STRATEGY_AUTO = "auto"


@dataclass(frozen=True)
class CodeRequest:
    """The issue the pipeline works from (possibly synthesized from a comment)."""

    number: int
    title: str
    body: str
    url: str = ""


def source_branch(ctx: CommandContext) -> str:
    """PR base ref, else the repository default branch, else ``main``."""
    if ctx.pull_request is not None and ctx.pull_request.base.ref:
        return ctx.pull_request.base.ref
    return ctx.repository.default_branch or "main"


class AutoModifyPipeline:
    """Clone, let the backend change the code, then commit, push and open a PR.

    Args:
        forge:        GitHub responder used to open the pull request.
        store:        Workspace store; the pipeline always takes a fresh clone.
        backend:      Code generation backend.
        strategy:     ``direct``, ``plan`` or ``auto``.
        retry:        Policy wrapping the generation call.
        author_name:  Committer name.
        author_email: Committer email.
        clock:        Current time, used for unique branch names.
    """

    def __init__(
        self,
        forge: ForgeClient,
        store: WorkspaceStore,
        backend: CodeGenerationBackend,
        *,
        strategy: str = STRATEGY_AUTO,
        retry: RetryPolicy | None = None,
        author_name: str = "CodeAgent",
        author_email: str = "codeagent@example.com",
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if strategy not in (STRATEGY_DIRECT, STRATEGY_PLAN, STRATEGY_AUTO):
            raise ValueError(f"Unknown modification strategy: {strategy!r}")
        self._forge = forge
        self._store = store
        self._backend = backend
        self._strategy = strategy
        self._retry = retry or RetryPolicy(retry_on=(BackendError, PlanParseError))
        self._author_name = author_name
        self._author_email = author_email
        self._clock = clock or (lambda: datetime.now(UTC))

    @property
    def strategy(self) -> str:
        if self._strategy == STRATEGY_AUTO:
            return STRATEGY_DIRECT if self._backend.writes_files else STRATEGY_PLAN
        return self._strategy

    def branch_name(self, issue_number: int) -> str:
        return f"auto-fix-issue-{issue_number}-{self._clock():%Y%m%d-%H%M%S}"

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def run(self, ctx: CommandContext, request: CodeRequest) -> CommandResult:
        """Execute every step for *request* and return the reply to post."""
        repo = ctx.repository.full_name
        step = "determine source branch"
        try:
            base = source_branch(ctx)
            step = "clone repository"
            with self._store.workspace(ctx.repository.effective_clone_url, base, fresh=True) as ws:
                step = "configure git identity"
                ws.configure_identity(self._author_name, self._author_email)

                step = "create branch"
                branch = self.branch_name(request.number)
                ws.create_branch(branch)

                step = "generate code"
                generation_summary = self._generate(ws, request)

                step = "stage changes"
                ws.stage_all()
                if not ws.has_staged_changes():
                    logger.info("pipeline: %s#%d produced no changes", repo, request.number)
                    return CommandResult(
                        command=CommandName.CODE,
                        ok=True,
                        message=_no_changes_reply(request, generation_summary),
                    )

                step = "commit changes"
                files = ws.modified_files()
                message = commit_builder.build_auto_fix_commit(
                    request.number, request.title, request.body, request.url, files
                )
                ws.commit(message)

                step = "push branch"
                ws.push(branch)

                step = "open pull request"
                pr_note = self._open_pr(repo, request, branch, base, message, generation_summary)

            logger.info("pipeline: %s#%d done on %s", repo, request.number, branch)
            return CommandResult(
                command=CommandName.CODE,
                ok=True,
                message=_success_reply(request, branch, base, files, message, pr_note, generation_summary),
            )
        except (WorkspaceError, BackendError, PlanParseError, ForgeError) as exc:
            logger.error("pipeline: %s#%d failed at '%s': %s", repo, request.number, step, exc)
            return CommandResult(
                command=CommandName.CODE,
                ok=False,
                message=_failure_reply(request, step, exc),
                error=exc,
            )

    # ------------------------------------------------------------------
    # Strategies
    # ------------------------------------------------------------------

    def _generate(self, ws: Workspace, request: CodeRequest) -> str:
        if self.strategy == STRATEGY_DIRECT:
            return self._generate_direct(ws, request)
        return self._generate_plan(ws, request)

    def _generate_direct(self, ws: Workspace, request: CodeRequest) -> str:
        prompt = prompts.workspace_modification_prompt(request.title, request.body)
        logger.info("pipeline: direct generation in %s", ws.path)
        return self._retry.call(self._backend.generate, prompt, ws.path)

    def _generate_plan(self, ws: Workspace, request: CodeRequest) -> str:
        tree = ws.file_tree()
        logger.info("pipeline: analysing #%d against %s", request.number, ws.path)
        analysis = self._retry.call(
            self._backend.generate, prompts.analysis_prompt(request.title, request.body, tree)
        )
        prompt = prompts.modification_plan_prompt(request.title, request.body, tree, analysis=analysis)
        logger.info("pipeline: plan generation for %s", ws.path)

        def attempt():
            return parse_modification_plan(self._backend.generate(prompt))

        plan = self._retry.call(attempt)
        applied = apply_modifications(ws, plan.modifications)
        lines = [plan.summary] if plan.summary else []
        lines += [f"- {item}" for item in applied]
        return "\n".join(lines)

    # ------------------------------------------------------------------
    # Pull request
    # ------------------------------------------------------------------

    def _open_pr(
        self,
        repo: str,
        request: CodeRequest,
        branch: str,
        base: str,
        commit_message: str,
        generation_summary: str,
    ) -> str:
        title = commit_message.splitlines()[0]
        body = (
            f"Closes #{request.number}\n\n"
            f"Automated change for **{request.title}**.\n\n"
            f"{_excerpt(generation_summary, 3000)}"
        )
        try:
            pr = self._forge.create_pr(
                repo, PRRequest(title=title, body=body, head_branch=branch, base_branch=base)
            )
        except ForgeError as exc:
            if exc.is_pr_already_exists:
                logger.info("pipeline: PR for %s already exists", branch)
                return f"A pull request for `{branch}` already exists."
            raise
        logger.info("pipeline: opened PR #%d %s", pr.number, pr.url)
        return f"Pull request: {pr.url}"


# ---------------------------------------------------------------------------
# Replies
# ---------------------------------------------------------------------------


def _excerpt(text: str, limit: int) -> str:
    text = text.strip()
    return text if len(text) <= limit else text[:limit] + "\n\n... (truncated)"


def _timestamp() -> str:
    return datetime.now(UTC).strftime("%Y-%m-%d %H:%M:%S UTC")


def _success_reply(
    request: CodeRequest,
    branch: str,
    base: str,
    files: list[str],
    commit_message: str,
    pr_note: str,
    generation_summary: str,
) -> str:
    file_list = "\n".join(f"- `{f}`" for f in files)
    return (
        "🤖 **Automated change completed**\n\n"
        f"## Issue\n- **Title**: {request.title}\n- **Number**: #{request.number}\n\n"
        "## Steps\n"
        f"1. ✅ Cloned `{base}`\n"
        f"2. ✅ Created branch `{branch}`\n"
        "3. ✅ Generated code changes\n"
        "4. ✅ Committed and pushed\n"
        "5. ✅ Opened pull request\n\n"
        f"## Modified files\n{file_list}\n\n"
        f"## Commit\n```\n{commit_message.splitlines()[0]}\n```\n\n"
        f"## Result\n{pr_note}\n\n"
        f"<details><summary>Generation output</summary>\n\n{_excerpt(generation_summary, 3000)}\n\n</details>\n\n"
        f"---\n*{_timestamp()}*"
    )


def _no_changes_reply(request: CodeRequest, generation_summary: str) -> str:
    return (
        "ℹ️ **No changes produced**\n\n"
        f"The backend finished working on #{request.number} without modifying any file.\n\n"
        f"{_excerpt(generation_summary, 3000)}\n\n"
        f"---\n*{_timestamp()}*"
    )


def _failure_reply(request: CodeRequest, step: str, exc: BaseException) -> str:
    return (
        "❌ **Automated change failed**\n\n"
        f"Issue: #{request.number}\n"
        f"Step: {step}\n"
        f"Error: {exc}\n\n"
        f"---\n*{_timestamp()}*"
    )
