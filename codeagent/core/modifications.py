"""JSON modification plans: parsing the backend's answer and applying it."""

from __future__ import annotations

import json
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from codeagent.core.logging import get_logger
from infra.workspace import Workspace, WorkspaceError

logger = get_logger("core.modifications")


class PlanParseError(Exception):
    """Raised when a backend response does not contain a usable JSON plan."""


class FileAction(StrEnum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"


class FileModification(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    path: str = Field(alias="file")
    action: str
    content: str | None = None
    description: str = ""


class ModificationPlan(BaseModel):
    summary: str = ""
    modifications: list[FileModification] = Field(default_factory=list)


def parse_modification_plan(text: str) -> ModificationPlan:
    """Parse the JSON object spanning the first ``{`` to the last ``}`` of *text*.

    Raises:
        PlanParseError: no braces, malformed JSON, or a shape mismatch.
    """
    start = text.find("{")
    end = text.rfind("}")
    if start == -1 or end <= start:
        raise PlanParseError("no JSON object found in backend response")
    try:
        data = json.loads(text[start : end + 1])
        return ModificationPlan.model_validate(data)
    except json.JSONDecodeError as exc:
        raise PlanParseError(f"malformed JSON plan: {exc}") from exc
    except ValidationError as exc:
        raise PlanParseError(f"invalid plan shape: {exc.errors()[0]['msg']}") from exc


def apply_modifications(workspace: Workspace, modifications: list[FileModification]) -> list[str]:
    """Apply *modifications* to *workspace* and return what was done.

    Unknown actions and per-file failures are logged and skipped.

    Raises:
        WorkspaceError: nothing at all could be applied.
    """
    applied: list[str] = []
    for mod in modifications:
        try:
            action = FileAction(mod.action.lower())
        except ValueError:
            logger.warning("plan: unknown action %r for %s — skipped", mod.action, mod.path)
            continue
        try:
            if action is FileAction.DELETE:
                workspace.delete_file(mod.path)
            else:
                workspace.write_file(mod.path, mod.content or "")
        except WorkspaceError as exc:
            logger.warning("plan: %s %s failed: %s", action, mod.path, exc)
            continue
        applied.append(f"{action}: {mod.path}" + (f" — {mod.description}" if mod.description else ""))
        logger.info("plan: %s %s", action, mod.path)

    if modifications and not applied:
        raise WorkspaceError("none of the planned modifications could be applied")
    return applied
