"""Tests for RetryPolicy and JSON modification plans."""

from __future__ import annotations

import pytest

from codeagent.agents.backend import BackendError
from codeagent.core.modifications import (
    FileModification,
    PlanParseError,
    apply_modifications,
    parse_modification_plan,
)
from codeagent.core.retry import RetryPolicy
from conftest import FakeGit
from infra.workspace import Workspace, WorkspaceError


# ═══════════════════════════════════════════════════════════════════════════
# 1. RetryPolicy
# ═══════════════════════════════════════════════════════════════════════════

class Flaky:
    def __init__(self, failures: int, exc: Exception = BackendError("flaky")):
        self.failures = failures
        self.exc = exc
        self.calls = 0

    def __call__(self, value):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.exc
        return value * 2


class TestRetryPolicy:

    def test_succeeds_after_retries_with_linear_backoff(self):
        sleeps: list[float] = []
        fn = Flaky(failures=2)
        policy = RetryPolicy(max_retries=2, backoff_seconds=1.5, retry_on=(BackendError,), sleep=sleeps.append)
        assert policy.call(fn, 21) == 42
        assert fn.calls == 3
        assert sleeps == [1.5, 3.0]

    def test_exhausted_reraises_last_error(self):
        fn = Flaky(failures=5)
        policy = RetryPolicy(max_retries=2, retry_on=(BackendError,), sleep=lambda s: None)
        with pytest.raises(BackendError, match="flaky"):
            policy.call(fn, 1)
        assert fn.calls == 3

    def test_non_matching_error_not_retried(self):
        fn = Flaky(failures=1, exc=ValueError("bad"))
        policy = RetryPolicy(max_retries=3, retry_on=(BackendError,), sleep=lambda s: None)
        with pytest.raises(ValueError):
            policy.call(fn, 1)
        assert fn.calls == 1

    def test_zero_retries(self):
        fn = Flaky(failures=1)
        with pytest.raises(BackendError):
            RetryPolicy(max_retries=0, retry_on=(BackendError,), sleep=lambda s: None).call(fn, 1)
        assert fn.calls == 1

    def test_delay(self):
        assert [RetryPolicy(backoff_seconds=2).delay(n) for n in (1, 2, 3)] == [2, 4, 6]


# ═══════════════════════════════════════════════════════════════════════════
# 2. Plan parsing
# ═══════════════════════════════════════════════════════════════════════════

class TestParsePlan:

    def test_json_surrounded_by_prose(self):
        text = (
            'Here is the plan:\n{"summary": "add greeting", "modifications": ['
            '{"file": "hello.py", "action": "create", "content": "print(1)", "description": "new"}'
            ']}\nDone.'
        )
        plan = parse_modification_plan(text)
        assert plan.summary == "add greeting"
        assert plan.modifications[0].path == "hello.py"
        assert plan.modifications[0].action == "create"

    def test_no_json(self):
        with pytest.raises(PlanParseError, match="no JSON"):
            parse_modification_plan("I could not do it")

    def test_malformed_json(self):
        with pytest.raises(PlanParseError, match="malformed"):
            parse_modification_plan('{"modifications": [}')

    def test_wrong_shape(self):
        with pytest.raises(PlanParseError):
            parse_modification_plan('{"modifications": [{"action": "create"}]}')


# ═══════════════════════════════════════════════════════════════════════════
# 3. Applying plans
# ═══════════════════════════════════════════════════════════════════════════

@pytest.fixture
def ws(tmp_path):
    (tmp_path / "old.txt").write_text("old")
    return Workspace(path=tmp_path, url="u", branch="main", git=FakeGit())


class TestApplyModifications:

    def test_create_modify_delete(self, ws):
        mods = [
            FileModification(file="pkg/new.py", action="create", content="x = 1\n", description="add"),
            FileModification(file="old.txt", action="modify", content="new"),
            FileModification(file="gone.txt", action="delete"),
        ]
        applied = apply_modifications(ws, mods)
        assert len(applied) == 3
        assert (ws.path / "pkg" / "new.py").read_text() == "x = 1\n"
        assert (ws.path / "old.txt").read_text() == "new"

    def test_unknown_action_skipped(self, ws):
        mods = [
            FileModification(file="a.txt", action="rename"),
            FileModification(file="b.txt", action="CREATE", content="b"),
        ]
        assert apply_modifications(ws, mods) == ["create: b.txt"]

    def test_nothing_applicable_raises(self, ws):
        with pytest.raises(WorkspaceError):
            apply_modifications(ws, [FileModification(file="../escape.txt", action="create", content="x")])

    def test_empty_plan(self, ws):
        assert apply_modifications(ws, []) == []
