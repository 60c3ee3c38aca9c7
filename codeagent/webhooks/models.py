"""Typed GitHub webhook payloads.

Each supported ``X-GitHub-Event`` type maps to one pydantic model in
:data:`EVENT_MODELS`.  Only the fields the router and dispatcher read are
declared; everything else in the payload is ignored.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator

from codeagent.core.logging import get_logger

logger = get_logger("webhooks.models")


class EventParseError(Exception):
    """Raised when a payload cannot be decoded into its event model."""


@dataclass(frozen=True)
class InboundEvent:
    """A webhook delivery exactly as received at the HTTP boundary."""

    type: str
    delivery_id: str
    raw_payload: bytes
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))


# ---------------------------------------------------------------------------
# Value objects
# ---------------------------------------------------------------------------


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class User(_Payload):
    login: str = ""
    id: int = 0


class Repository(_Payload):
    id: int = 0
    name: str = ""
    full_name: str
    html_url: str = ""
    clone_url: str = ""
    default_branch: str = ""
    owner: User | None = None

    @property
    def effective_clone_url(self) -> str:
        return self.clone_url or f"https://github.com/{self.full_name}.git"


class _HasBody(_Payload):
    body: str = ""

    @field_validator("body", mode="before")
    @classmethod
    def _none_body(cls, value: Any) -> Any:
        return "" if value is None else value


class Issue(_HasBody):
    id: int = 0
    number: int
    title: str = ""
    state: str = ""
    html_url: str = ""
    user: User | None = None
    # Present only when the "issue" is actually a pull request.
    pull_request: dict[str, Any] | None = None

    @property
    def is_pull_request(self) -> bool:
        return self.pull_request is not None


class GitRef(_Payload):
    ref: str = ""
    sha: str = ""


class PullRequest(_HasBody):
    id: int = 0
    number: int
    title: str = ""
    state: str = ""
    html_url: str = ""
    user: User | None = None
    head: GitRef = GitRef()
    base: GitRef = GitRef()


class Comment(_HasBody):
    id: int = 0
    html_url: str = ""
    user: User | None = None


class Review(_HasBody):
    id: int = 0
    state: str = ""
    html_url: str = ""
    user: User | None = None


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class IssuesEvent(_Payload):
    action: str
    issue: Issue
    repository: Repository
    sender: User | None = None


class IssueCommentEvent(_Payload):
    action: str
    issue: Issue
    comment: Comment
    repository: Repository
    sender: User | None = None


class PullRequestEvent(_Payload):
    action: str
    number: int = 0
    pull_request: PullRequest
    repository: Repository
    sender: User | None = None


class PullRequestReviewCommentEvent(_Payload):
    action: str
    comment: Comment
    pull_request: PullRequest
    repository: Repository
    sender: User | None = None


class PullRequestReviewEvent(_Payload):
    action: str
    review: Review
    pull_request: PullRequest
    repository: Repository
    sender: User | None = None


class PingEvent(_Payload):
    zen: str = ""
    hook_id: int = 0
    repository: Repository | None = None


WebhookEvent = (
    IssuesEvent
    | IssueCommentEvent
    | PullRequestEvent
    | PullRequestReviewCommentEvent
    | PullRequestReviewEvent
    | PingEvent
)

EVENT_MODELS: dict[str, type[BaseModel]] = {
    "issues": IssuesEvent,
    "issue_comment": IssueCommentEvent,
    "pull_request": PullRequestEvent,
    "pull_request_review_comment": PullRequestReviewCommentEvent,
    "pull_request_review": PullRequestReviewEvent,
    "ping": PingEvent,
}


def parse_event(event: InboundEvent) -> WebhookEvent | None:
    """Decode *event* into its typed model.

    Returns ``None`` for event types this service does not handle.

    Raises:
        EventParseError: the payload is not valid JSON or misses required fields.
    """
    model = EVENT_MODELS.get(event.type)
    if model is None:
        logger.info("webhook: ignoring unsupported event type %r (delivery %s)", event.type, event.delivery_id)
        return None
    try:
        return model.model_validate_json(event.raw_payload)
    except ValidationError as exc:
        raise EventParseError(
            f"invalid {event.type} payload (delivery {event.delivery_id}): "
            f"{exc.error_count()} validation error(s): {exc.errors()[0]['msg']}"
        ) from exc
