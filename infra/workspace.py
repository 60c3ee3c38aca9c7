"""Repository workspace layer — clone, cache and mutate local checkouts.

:class:`WorkspaceStore` is the single process-wide owner of every local
checkout.  It is constructed once at startup and passed to the dispatcher,
so the clone cache and the per-URL rate-limit map are never global state.

Workspace layout::

    /tmp/codeagent/                     ← WORKSPACE_DIR
      repo_20250101120000_1a2b3c4d/     ← one timestamped dir per clone
      repo_20250101121500_5e6f7a8b/

Two kinds of acquisition exist:

- **shared** (``fresh=False``): served from the clone cache when a valid
  entry exists.  Shared checkouts are read-only snapshots owned by the
  cache; releasing them does not delete anything.
- **fresh** (``fresh=True``): always a new clone, exclusively owned by the
  caller and deleted on release.  Anything that commits or pushes must
  use a fresh workspace.

All git operations go through a :class:`GitPort` so tests can substitute a
fake and never spawn processes.
"""

from __future__ import annotations

import fnmatch
import hashlib
import re
import shutil
import subprocess
import threading
import uuid
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Protocol, runtime_checkable

from codeagent.core.logging import get_logger

logger = get_logger("infra.workspace")

_URL_CREDENTIALS = re.compile(r"://[^@/\s]+@")

_SKIP_DIRS = {".git"}


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class WorkspaceError(Exception):
    """Raised when a workspace operation cannot be completed."""


class RateLimitError(WorkspaceError):
    """Raised when a repository was cloned too recently to clone again."""

    def __init__(self, url: str, retry_after: float) -> None:
        super().__init__(
            f"Clone of {url} rate limited, retry after {int(retry_after) + 1}s"
        )
        self.url = url
        self.retry_after = retry_after


class WorkspaceTimeoutError(WorkspaceError):
    """Raised when a git subprocess was killed after exceeding its timeout."""


# ---------------------------------------------------------------------------
# Git port
# ---------------------------------------------------------------------------


@runtime_checkable
class GitPort(Protocol):
    """Narrow interface over the git executable."""

    def run(self, args: list[str], cwd: Path | None = None, timeout: int = 60) -> str:
        """Run ``git <args>`` and return stripped stdout.

        Raises:
            WorkspaceTimeoutError: the process exceeded *timeout* and was killed.
            WorkspaceError: non-zero exit or git missing.
        """
        ...


class SubprocessGit:
    """:class:`GitPort` backed by ``subprocess.run``.

    ``subprocess.run`` kills the child when the timeout expires, so a hung
    clone or push never outlives the call.
    """

    def __init__(self, executable: str = "git") -> None:
        self._executable = executable

    def run(self, args: list[str], cwd: Path | None = None, timeout: int = 60) -> str:
        cmd = [self._executable] + args
        label = " ".join(args[:2])
        logger.debug("workspace git | cwd=%s | git %s", cwd, label)
        try:
            result = subprocess.run(
                cmd,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as exc:
            raise WorkspaceTimeoutError(f"git {label} timed out after {timeout}s") from exc
        except FileNotFoundError as exc:
            raise WorkspaceError("git executable not found on PATH") from exc

        if result.returncode != 0:
            stderr = _URL_CREDENTIALS.sub("://***@", result.stderr.strip())
            raise WorkspaceError(
                f"git {label} failed (exit {result.returncode}): {stderr[:400]}"
            )
        return result.stdout.strip()

    def __repr__(self) -> str:  # pragma: no cover
        return f"SubprocessGit({self._executable!r})"


# ---------------------------------------------------------------------------
# Reader/writer lock
# ---------------------------------------------------------------------------


class _RWLock:
    """Many concurrent readers or one writer.  Writers are not starved."""

    def __init__(self) -> None:
        self._cond = threading.Condition(threading.Lock())
        self._readers = 0
        self._writer = False
        self._waiting_writers = 0

    @contextmanager
    def read(self) -> Iterator[None]:
        with self._cond:
            while self._writer or self._waiting_writers:
                self._cond.wait()
            self._readers += 1
        try:
            yield
        finally:
            with self._cond:
                self._readers -= 1
                if not self._readers:
                    self._cond.notify_all()

    @contextmanager
    def write(self) -> Iterator[None]:
        with self._cond:
            self._waiting_writers += 1
            while self._writer or self._readers:
                self._cond.wait()
            self._waiting_writers -= 1
            self._writer = True
        try:
            yield
        finally:
            with self._cond:
                self._writer = False
                self._cond.notify_all()


# ---------------------------------------------------------------------------
# Workspace
# ---------------------------------------------------------------------------


@dataclass
class Workspace:
    """A local checkout of ``url`` at ``branch``, plus file and git primitives."""

    path: Path
    url: str
    branch: str
    git: GitPort
    created_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    valid: bool = True
    shared: bool = False
    git_timeout: int = 60
    push_timeout: int = 120
    max_file_size: int = 1024 * 1024
    # Serialises git commands that touch .git of a shared checkout.
    _git_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def _resolve(self, rel_path: str) -> Path:
        """Map *rel_path* into the checkout, refusing anything outside it."""
        root = self.path.resolve()
        target = (root / rel_path.lstrip("/")).resolve()
        if target != root and root not in target.parents:
            raise WorkspaceError(f"path {rel_path!r} escapes the workspace")
        return target

    def read_file(self, rel_path: str, max_size: int | None = None) -> str:
        """Return the text of *rel_path*, refusing files above the size cap."""
        limit = self.max_file_size if max_size is None else max_size
        target = self._resolve(rel_path)
        try:
            size = target.stat().st_size
        except OSError as exc:
            raise WorkspaceError(f"cannot read {rel_path}: {exc}") from exc
        if size > limit:
            raise WorkspaceError(f"{rel_path} is too large ({size} bytes > {limit})")
        return target.read_text(encoding="utf-8", errors="replace")

    def write_file(self, rel_path: str, content: str) -> None:
        """Write *content* to *rel_path*, creating parent directories."""
        target = self._resolve(rel_path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
        except OSError as exc:
            raise WorkspaceError(f"cannot write {rel_path}: {exc}") from exc
        logger.debug("workspace.write: %s (%d chars)", rel_path, len(content))

    def delete_file(self, rel_path: str) -> None:
        """Remove *rel_path*.  A missing file is not an error."""
        target = self._resolve(rel_path)
        try:
            target.unlink(missing_ok=True)
        except OSError as exc:
            raise WorkspaceError(f"cannot delete {rel_path}: {exc}") from exc
        logger.debug("workspace.delete: %s", rel_path)

    def _walk(self, start: Path) -> Iterator[Path]:
        for entry in sorted(start.iterdir()):
            if entry.name in _SKIP_DIRS:
                continue
            yield entry
            if entry.is_dir() and not entry.is_symlink():
                yield from self._walk(entry)

    def list_files(self, subdir: str = "") -> list[str]:
        """Return POSIX-style relative paths of every file under *subdir*."""
        root = self.path.resolve()
        start = self._resolve(subdir) if subdir else root
        if not start.is_dir():
            raise WorkspaceError(f"{subdir or '.'} is not a directory")
        return [
            p.relative_to(root).as_posix()
            for p in self._walk(start)
            if p.is_file()
        ]

    def file_tree(self) -> str:
        """Return an indented directory tree of the checkout (``.git`` skipped)."""
        lines = ["Project structure:"]
        for entry in self._walk(self.path):
            rel = entry.relative_to(self.path)
            indent = "  " * (len(rel.parts) - 1)
            suffix = "/" if entry.is_dir() else ""
            lines.append(f"{indent}{entry.name}{suffix}")
        return "\n".join(lines)

    def find_files(self, pattern: str) -> list[str]:
        """Return files whose base name matches the glob *pattern*."""
        return [p for p in self.list_files() if fnmatch.fnmatch(Path(p).name, pattern)]

    # ------------------------------------------------------------------
    # Git
    # ------------------------------------------------------------------

    def _git(self, args: list[str], timeout: int | None = None) -> str:
        return self.git.run(args, cwd=self.path, timeout=timeout or self.git_timeout)

    def configure_identity(self, name: str, email: str) -> None:
        self._git(["config", "user.name", name])
        self._git(["config", "user.email", email])

    def create_branch(self, name: str) -> None:
        logger.info("workspace.branch: %s", name)
        self._git(["checkout", "-b", name])

    def stage(self, paths: list[str]) -> None:
        if paths:
            self._git(["add", "--"] + paths)

    def stage_all(self) -> None:
        self._git(["add", "-A"])

    def modified_files(self) -> list[str]:
        """Return the staged file list."""
        out = self._git(["diff", "--cached", "--name-only"])
        return [line.strip() for line in out.splitlines() if line.strip()]

    def has_staged_changes(self) -> bool:
        return bool(self.modified_files())

    def status(self) -> str:
        return self._git(["status", "--porcelain"])

    def staged_diff(self) -> str:
        return self._git(["diff", "--cached"])

    def commit(self, message: str) -> None:
        self._git(["commit", "-m", message])
        logger.info("workspace.commit: %s", message.splitlines()[0] if message else "")

    def push(self, branch: str) -> None:
        """Push *branch* to origin with upstream tracking."""
        logger.info("workspace.push: %s", branch)
        self._git(["push", "-u", "origin", branch], timeout=self.push_timeout)

    def diff(self, head_sha: str, base_sha: str, max_chars: int = 10_000) -> str:
        """Return the ``base...head`` diff, truncated to *max_chars*.

        The fetch only adds objects under ``.git``; the working tree of a
        shared checkout is left untouched.  Concurrent callers on the same
        checkout are serialised so they never race on git's lock files.

        When the head commit cannot be fetched a short ``git log --stat``
        summary is returned instead so reviews can still proceed.
        """
        with self._git_lock:
            try:
                self._git(["fetch", "origin", head_sha])
            except WorkspaceError as exc:
                logger.warning("workspace.diff: fetch %s failed: %s — using log summary", head_sha, exc)
                return self._git(["log", "--oneline", "-5", "--stat"])

            try:
                text = self._git(["diff", f"{base_sha}...{head_sha}"])
            except WorkspaceError as exc:
                logger.warning("workspace.diff: diff %s...%s failed: %s", base_sha, head_sha, exc)
                return "Unable to compute the pull request diff."

        if not text:
            return "No code changes in this pull request."
        if len(text) > max_chars:
            text = text[:max_chars] + "\n\n... (diff truncated)"
        return text

    def __repr__(self) -> str:  # pragma: no cover
        return f"Workspace(path={self.path!r}, branch={self.branch!r}, shared={self.shared})"


# ---------------------------------------------------------------------------
# WorkspaceStore
# ---------------------------------------------------------------------------


@dataclass
class _CacheEntry:
    key: str
    workspace: Workspace
    updated_at: datetime


def cache_key(url: str, branch: str) -> str:
    """Return the cache key for ``(url, branch)``."""
    return hashlib.md5(f"{url}:{branch}".encode()).hexdigest()


class WorkspaceStore:
    """Own every checkout: clone cache, per-URL rate limit and cleanup.

    Args:
        root:               Directory that will contain all clones.
        git:                Git implementation (default :class:`SubprocessGit`).
        cache_ttl:          How long a cached clone stays valid.
        min_clone_interval: Minimum time between two clones of one URL.
        clone_url_resolver: Maps a plain clone URL to the URL handed to git
                            (e.g. with a token embedded).  The plain URL is
                            still used for cache and rate-limit keys and logs.
        clock:              Returns the current time; injectable for tests.
    """

    def __init__(
        self,
        root: Path,
        git: GitPort | None = None,
        *,
        cache_ttl: timedelta = timedelta(minutes=30),
        min_clone_interval: timedelta = timedelta(minutes=5),
        clone_timeout: int = 90,
        push_timeout: int = 120,
        git_timeout: int = 60,
        max_file_size: int = 1024 * 1024,
        clone_url_resolver: Callable[[str], str] | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._root = root.expanduser().resolve()
        self._git = git or SubprocessGit()
        self._cache_ttl = cache_ttl
        self._min_interval = min_clone_interval
        self._clone_timeout = clone_timeout
        self._push_timeout = push_timeout
        self._git_timeout = git_timeout
        self._max_file_size = max_file_size
        self._resolve_url = clone_url_resolver or (lambda url: url)
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = _RWLock()
        self._cache: dict[str, _CacheEntry] = {}
        self._last_clone: dict[str, datetime] = {}

    @classmethod
    def from_settings(cls, settings, clone_url_resolver: Callable[[str], str] | None = None) -> WorkspaceStore:
        return cls(
            Path(settings.workspace_dir),
            cache_ttl=timedelta(minutes=settings.workspace_cache_ttl_minutes),
            min_clone_interval=timedelta(minutes=settings.clone_min_interval_minutes),
            clone_timeout=settings.clone_timeout_seconds,
            push_timeout=settings.push_timeout_seconds,
            git_timeout=settings.git_timeout_seconds,
            max_file_size=settings.max_file_size,
            clone_url_resolver=clone_url_resolver,
        )

    @property
    def root(self) -> Path:
        return self._root

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @contextmanager
    def workspace(self, url: str, branch: str, *, fresh: bool = False) -> Iterator[Workspace]:
        """Acquire a workspace and release it on every exit path.

        Usage::

            with store.workspace(url, "main") as ws:
                tree = ws.file_tree()
        """
        ws = self.acquire(url, branch, fresh=fresh)
        try:
            yield ws
        finally:
            self.release(ws)

    def acquire(self, url: str, branch: str, *, fresh: bool = False) -> Workspace:
        """Return a checkout of *url* at *branch*.

        Prefer :meth:`workspace`; a caller of ``acquire`` must call
        :meth:`release` itself.

        Raises:
            RateLimitError: *url* was cloned less than ``min_clone_interval`` ago.
            WorkspaceError: the clone failed or timed out.
        """
        key = cache_key(url, branch)

        if not fresh:
            with self._lock.read():
                hit = self._lookup(key)
            if hit is not None:
                logger.info("workspace.cache: hit %s@%s → %s", url, branch, hit.path)
                return hit

        with self._lock.write():
            if not fresh:
                # Another request may have populated the entry meanwhile.
                hit = self._lookup(key)
                if hit is not None:
                    return hit
                self._evict(key)
            now = self._clock()
            last = self._last_clone.get(url)
            if last is not None and now - last < self._min_interval:
                retry_after = (self._min_interval - (now - last)).total_seconds()
                logger.warning("workspace.ratelimit: %s, retry after %.0fs", url, retry_after)
                raise RateLimitError(url, retry_after)
            self._last_clone[url] = now

        ws = self._clone(url, branch)

        if not fresh:
            ws.shared = True
            with self._lock.write():
                self._cache[key] = _CacheEntry(key=key, workspace=ws, updated_at=self._clock())
        return ws

    def release(self, ws: Workspace) -> None:
        """Release *ws*.  Fresh checkouts are deleted; cached ones are kept."""
        if ws.shared:
            return
        ws.valid = False
        self._remove_dir(ws.path)

    def cache_status(self) -> dict:
        """Return a snapshot of the clone cache."""
        with self._lock.read():
            repos = [
                {
                    "key": entry.key,
                    "url": entry.workspace.url,
                    "branch": entry.workspace.branch,
                    "path": str(entry.workspace.path),
                    "last_update": entry.updated_at.isoformat(),
                    "valid": entry.workspace.valid,
                }
                for entry in self._cache.values()
            ]
        return {"cached_repos": len(repos), "repos": repos}

    def clear_cache(self) -> None:
        """Delete every cached checkout."""
        with self._lock.write():
            entries = list(self._cache.values())
            self._cache.clear()
        for entry in entries:
            entry.workspace.valid = False
            self._remove_dir(entry.workspace.path)
        logger.info("workspace.cache: cleared %d entr%s", len(entries), "y" if len(entries) == 1 else "ies")

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _lookup(self, key: str) -> Workspace | None:
        """Return the cached workspace for *key* if still usable.  Lock held by caller."""
        entry = self._cache.get(key)
        if entry is None or not entry.workspace.valid:
            return None
        if self._clock() - entry.updated_at > self._cache_ttl:
            logger.info("workspace.cache: expired %s", entry.workspace.path)
            return None
        if not entry.workspace.path.exists():
            logger.info("workspace.cache: directory gone %s", entry.workspace.path)
            return None
        return entry.workspace

    def _evict(self, key: str) -> None:
        """Drop a stale entry for *key* and delete its directory.  Write lock held."""
        entry = self._cache.pop(key, None)
        if entry is not None:
            entry.workspace.valid = False
            self._remove_dir(entry.workspace.path)

    def _clone(self, url: str, branch: str) -> Workspace:
        stamp = self._clock().strftime("%Y%m%d%H%M%S")
        path = self._root / f"repo_{stamp}_{uuid.uuid4().hex[:8]}"
        self._root.mkdir(parents=True, exist_ok=True)
        logger.info("workspace.clone: %s@%s → %s", url, branch, path)
        try:
            self._git.run(
                [
                    "clone", "--depth", "1", "--single-branch", "-b", branch,
                    self._resolve_url(url), str(path),
                ],
                timeout=self._clone_timeout,
            )
        except WorkspaceError:
            self._remove_dir(path)
            raise
        logger.info("workspace.clone: done")
        return Workspace(
            path=path,
            url=url,
            branch=branch,
            git=self._git,
            created_at=self._clock(),
            git_timeout=self._git_timeout,
            push_timeout=self._push_timeout,
            max_file_size=self._max_file_size,
        )

    def _remove_dir(self, path: Path) -> None:
        if not path.exists():
            return
        try:
            shutil.rmtree(path)
            logger.info("workspace.clean: removed %s", path)
        except OSError as exc:
            logger.warning("workspace.clean: could not remove %s: %s", path, exc)

    def __repr__(self) -> str:  # pragma: no cover
        return f"WorkspaceStore(root={self._root!r}, cached={len(self._cache)})"
