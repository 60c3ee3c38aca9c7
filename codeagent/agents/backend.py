"""AI code-generation backends.

Two backends implement :class:`CodeGenerationBackend`:

  - :class:`ClaudeCodeCLIBackend` shells out to the ``claude`` CLI.  Given a
    working directory it edits files in place with a restricted tool set
    (file edit/write/search allowed, shell execution disallowed).
  - :class:`ChatModelBackend` wraps a langchain chat model.  Text only.

Chat model provider routing is done via model name prefix:
  - "ollama:<model>"  → local Ollama  (e.g. "ollama:llama3.1:70b")
  - "claude-*"        → Anthropic API
  - anything else     → OpenAI API   (e.g. "gpt-4o", "gpt-4o-mini")
"""

from __future__ import annotations

import os
import subprocess
from pathlib import Path
from typing import Protocol, runtime_checkable

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import HumanMessage, SystemMessage

from codeagent.core.logging import get_logger, mask_secret

logger = get_logger("agents.backend")

ALLOWED_TOOLS = ("Edit", "MultiEdit", "Write", "Read", "Glob", "Grep", "LS")
DISALLOWED_TOOLS = ("Bash",)

SYSTEM_PROMPT = (
    "You are a senior software engineer working on a GitHub repository. "
    "Answer precisely and in Markdown."
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class BackendError(Exception):
    """Raised when the AI backend fails or returns nothing usable."""


class BackendTimeoutError(BackendError):
    """Raised when a backend call exceeded its timeout."""


# ---------------------------------------------------------------------------
# Protocol
# ---------------------------------------------------------------------------


@runtime_checkable
class CodeGenerationBackend(Protocol):
    """Black-box text generation, optionally operating inside a checkout."""

    @property
    def writes_files(self) -> bool:
        """True when ``generate(prompt, working_dir)`` edits files itself."""
        ...

    def generate(self, prompt: str, working_dir: Path | None = None) -> str:
        """Return the backend's answer to *prompt*.

        Raises:
            BackendTimeoutError: the call exceeded the configured timeout.
            BackendError: any other failure, including an empty answer.
        """
        ...


# ---------------------------------------------------------------------------
# Claude Code CLI
# ---------------------------------------------------------------------------


class ClaudeCodeCLIBackend:
    """Runs ``claude --print`` as a subprocess.

    Args:
        executable: Path or name of the CLI.
        api_key:    Exported as ``ANTHROPIC_API_KEY`` when set.
        base_url:   Exported as ``ANTHROPIC_BASE_URL`` when set.
        model:      Passed as ``--model`` when set.
        timeout:    Seconds before the process is killed.
        max_tokens: Exported as ``CLAUDE_CODE_MAX_OUTPUT_TOKENS``.
    """

    writes_files = True

    def __init__(
        self,
        executable: str = "claude",
        api_key: str = "",
        base_url: str = "",
        model: str = "",
        timeout: int = 120,
        max_tokens: int = 4000,
    ) -> None:
        self._executable = executable
        self._api_key = api_key
        self._base_url = base_url
        self._model = model
        self._timeout = timeout
        self._max_tokens = max_tokens

    def _command(self, prompt: str, working_dir: Path | None) -> list[str]:
        cmd = [self._executable, "--print"]
        if self._model:
            cmd += ["--model", self._model]
        if working_dir is not None:
            cmd += [
                "--allowedTools", ",".join(ALLOWED_TOOLS),
                "--disallowedTools", ",".join(DISALLOWED_TOOLS),
            ]
        cmd.append(prompt)
        return cmd

    def _env(self) -> dict[str, str]:
        env = dict(os.environ)
        if self._api_key:
            env["ANTHROPIC_API_KEY"] = self._api_key
        if self._base_url:
            env["ANTHROPIC_BASE_URL"] = self._base_url
        if self._max_tokens:
            env["CLAUDE_CODE_MAX_OUTPUT_TOKENS"] = str(self._max_tokens)
        return env

    def generate(self, prompt: str, working_dir: Path | None = None) -> str:
        logger.info(
            "backend.cli: prompt=%d chars, cwd=%s, model=%s, key=%s",
            len(prompt), working_dir, self._model or "default",
            mask_secret(self._api_key) if self._api_key else "(env)",
        )
        try:
            result = subprocess.run(
                self._command(prompt, working_dir),
                cwd=str(working_dir) if working_dir else None,
                capture_output=True,
                text=True,
                timeout=self._timeout,
                env=self._env(),
            )
        except subprocess.TimeoutExpired as exc:
            raise BackendTimeoutError(f"claude CLI timed out after {self._timeout}s") from exc
        except FileNotFoundError as exc:
            raise BackendError(
                f"claude CLI not found ({self._executable!r}). "
                "Install it with: npm install -g @anthropic-ai/claude-code"
            ) from exc

        if result.returncode != 0:
            raise BackendError(
                f"claude CLI failed (exit {result.returncode}): {result.stderr.strip()[:400]}"
            )
        output = result.stdout.strip()
        if not output:
            raise BackendError("claude CLI returned an empty response")
        logger.info("backend.cli: response %d chars", len(output))
        return output

    def check_installation(self) -> bool:
        """Return True when ``claude --version`` runs successfully."""
        try:
            result = subprocess.run(
                [self._executable, "--version"], capture_output=True, text=True, timeout=10
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            logger.warning("backend.cli: not available: %s", exc)
            return False
        return result.returncode == 0

    def __repr__(self) -> str:  # pragma: no cover
        return f"ClaudeCodeCLIBackend(model={self._model!r})"


# ---------------------------------------------------------------------------
# langchain chat model
# ---------------------------------------------------------------------------


class ChatModelBackend:
    """Text-only backend over any langchain ``BaseChatModel``."""

    writes_files = False

    def __init__(self, llm: BaseChatModel, system_prompt: str = SYSTEM_PROMPT) -> None:
        self._llm = llm
        self._system_prompt = system_prompt

    def generate(self, prompt: str, working_dir: Path | None = None) -> str:
        if working_dir is not None:
            raise BackendError("chat model backend cannot edit files in a workspace")
        try:
            response = self._llm.invoke(
                [SystemMessage(content=self._system_prompt), HumanMessage(content=prompt)]
            )
        except Exception as exc:
            raise BackendError(f"chat model call failed: {exc}") from exc
        text = response.content if isinstance(response.content, str) else str(response.content)
        text = text.strip()
        if not text:
            raise BackendError("chat model returned an empty response")
        return text


# ---------------------------------------------------------------------------
# Provider detection
# ---------------------------------------------------------------------------

def _is_ollama_model(model_name: str) -> bool:
    return model_name.lower().startswith("ollama:")


def _is_anthropic_model(model_name: str) -> bool:
    return "claude" in model_name.lower()


def build_chat_model(
    model: str,
    *,
    openai_api_key: str = "",
    anthropic_api_key: str = "",
    anthropic_base_url: str = "",
    ollama_base_url: str = "http://localhost:11434",
    max_tokens: int = 4000,
    timeout: int = 120,
    temperature: float = 0.1,
) -> BaseChatModel:
    """Build a chat model for *any* supported provider based on the model string."""
    if not model:
        raise ValueError("AI_MODEL must be set when AI_BACKEND=chat")

    if _is_ollama_model(model):
        try:
            from langchain_ollama import ChatOllama  # type: ignore[import-untyped]
        except ImportError as exc:
            raise ImportError(
                "langchain-ollama is not installed. Run: pip install langchain-ollama"
            ) from exc
        bare = model[len("ollama:"):]
        logger.info("Using Ollama model '%s' at %s", bare, ollama_base_url)
        return ChatOllama(
            model=bare, base_url=ollama_base_url, temperature=temperature,
            num_predict=max_tokens, client_kwargs={"timeout": timeout},
        )

    if _is_anthropic_model(model):
        from langchain_anthropic import ChatAnthropic

        key = anthropic_api_key.strip()
        if not key:
            raise ValueError(f"Missing ANTHROPIC_API_KEY for model '{model}'.")
        logger.info("Using Anthropic model '%s'", model)
        kwargs = {"base_url": anthropic_base_url} if anthropic_base_url else {}
        return ChatAnthropic(
            model=model, api_key=key, temperature=temperature,
            max_tokens=max_tokens, timeout=timeout, **kwargs,
        )

    from langchain_openai import ChatOpenAI

    key = openai_api_key.strip()
    if not key:
        raise ValueError(f"Missing OPENAI_API_KEY for model '{model}'.")
    logger.info("Using OpenAI model '%s'", model)
    return ChatOpenAI(
        model=model, api_key=key, temperature=temperature,
        max_tokens=max_tokens, timeout=timeout,
    )


def get_backend(settings) -> CodeGenerationBackend:
    """Return the backend selected by ``AI_BACKEND``."""
    if settings.ai_backend == "claude_cli":
        return ClaudeCodeCLIBackend(
            executable=settings.claude_cli_path,
            api_key=settings.anthropic_api_key,
            base_url=settings.anthropic_base_url,
            model=settings.ai_model,
            timeout=settings.ai_timeout_seconds,
            max_tokens=settings.ai_max_tokens,
        )
    if settings.ai_backend == "chat":
        return ChatModelBackend(
            build_chat_model(
                settings.ai_model,
                openai_api_key=settings.openai_api_key,
                anthropic_api_key=settings.anthropic_api_key,
                anthropic_base_url=settings.anthropic_base_url,
                ollama_base_url=settings.ollama_base_url,
                max_tokens=settings.ai_max_tokens,
                timeout=settings.ai_timeout_seconds,
            )
        )
    raise ValueError(f"Unknown AI_BACKEND: {settings.ai_backend!r} (expected 'claude_cli' or 'chat')")
