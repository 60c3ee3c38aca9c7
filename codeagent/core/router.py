"""Event router — maps (event type, action) to command extraction and dispatch."""

from __future__ import annotations

from codeagent.core.commands import Command, CommandContext, CommandName, CommandResult, extract_command
from codeagent.core.dispatcher import CommandDispatcher
from codeagent.core.logging import get_logger
from codeagent.webhooks.models import (
    GitRef,
    InboundEvent,
    IssueCommentEvent,
    IssuesEvent,
    PingEvent,
    PullRequest,
    PullRequestEvent,
    PullRequestReviewCommentEvent,
    PullRequestReviewEvent,
    Repository,
    parse_event,
)
from infra.forge import ForgeClient, ForgeError

logger = get_logger("core.router")

CHANGES_REQUESTED_ARGS = "Address the changes requested in the latest review"


class EventRouter:
    """Decode webhook deliveries and hand any embedded command to the dispatcher.

    Args:
        dispatcher: Executes extracted commands.
        forge:      Used to load pull request details for comments on PRs.
    """

    def __init__(self, dispatcher: CommandDispatcher, forge: ForgeClient) -> None:
        self._dispatcher = dispatcher
        self._forge = forge

    def route(self, event: InboundEvent) -> CommandResult | None:
        """Process *event*; return the command result, or None if no command ran.

        Raises:
            EventParseError: the payload does not match its event type.
        """
        typed = parse_event(event)
        if typed is None:
            return None
        logger.info("router: %s delivery=%s action=%s", event.type, event.delivery_id, getattr(typed, "action", "-"))

        if isinstance(typed, PingEvent):
            return self._on_ping(typed)
        if isinstance(typed, IssuesEvent):
            return self._on_issues(typed)
        if isinstance(typed, IssueCommentEvent):
            return self._on_issue_comment(typed)
        if isinstance(typed, PullRequestEvent):
            return self._on_pull_request(typed)
        if isinstance(typed, PullRequestReviewCommentEvent):
            return self._on_review_comment(typed)
        if isinstance(typed, PullRequestReviewEvent):
            return self._on_review(typed)
        raise TypeError(f"no route for {type(typed).__name__}")  # pragma: no cover

    # ------------------------------------------------------------------
    # Per-type handlers
    # ------------------------------------------------------------------

    def _on_ping(self, event: PingEvent) -> None:
        name = event.repository.full_name if event.repository else "(no repository)"
        logger.info("router: ping received for %s — webhook is connected", name)
        return None

    def _on_issues(self, event: IssuesEvent) -> CommandResult | None:
        if event.action != "opened":
            logger.info("router: issue #%d %s — no action", event.issue.number, event.action)
            return None
        ctx = CommandContext(repository=event.repository, issue=event.issue, user=event.sender)
        return self._run(extract_command(event.issue.body), ctx)

    def _on_issue_comment(self, event: IssueCommentEvent) -> CommandResult | None:
        if event.action != "created":
            return None
        command = extract_command(event.comment.body)
        if command is None:
            return None
        ctx = CommandContext(
            repository=event.repository,
            issue=event.issue,
            comment=event.comment,
            user=event.comment.user or event.sender,
        )
        if event.issue.is_pull_request:
            ctx.pull_request = self._load_pull_request(event.repository, event.issue.number)
        return self._run(command, ctx)

    def _on_pull_request(self, event: PullRequestEvent) -> None:
        logger.info("router: PR #%d %s — no action", event.pull_request.number, event.action)
        return None

    def _on_review_comment(self, event: PullRequestReviewCommentEvent) -> CommandResult | None:
        if event.action != "created":
            return None
        ctx = CommandContext(
            repository=event.repository,
            pull_request=event.pull_request,
            comment=event.comment,
            user=event.comment.user or event.sender,
        )
        return self._run(extract_command(event.comment.body), ctx)

    def _on_review(self, event: PullRequestReviewEvent) -> CommandResult | None:
        if event.action != "submitted":
            return None
        review = event.review
        command = extract_command(review.body)
        if command is None and review.state.lower() == "changes_requested" and review.body.strip():
            logger.info("router: PR #%d changes requested — synthesizing /review", event.pull_request.number)
            command = Command(name=CommandName.REVIEW, args=CHANGES_REQUESTED_ARGS)
        ctx = CommandContext(
            repository=event.repository,
            pull_request=event.pull_request,
            user=review.user or event.sender,
        )
        return self._run(command, ctx)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run(self, command: Command | None, ctx: CommandContext) -> CommandResult | None:
        if command is None:
            return None
        return self._dispatcher.dispatch(command, ctx)

    def _load_pull_request(self, repository: Repository, number: int) -> PullRequest | None:
        """Fetch PR refs for a comment on a PR; None keeps the issue-only context."""
        try:
            pr = self._forge.get_pull_request(repository.full_name, number)
        except ForgeError as exc:
            logger.warning("router: could not load PR #%d: %s — using issue context", number, exc)
            return None
        return PullRequest(
            id=pr.id,
            number=pr.number,
            title=pr.title,
            body=pr.body,
            state=pr.state,
            html_url=pr.url,
            head=GitRef(ref=pr.head_ref, sha=pr.head_sha),
            base=GitRef(ref=pr.base_ref, sha=pr.base_sha),
        )
