"""Application configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path

from pydantic import field_validator
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Central configuration for codeagent. Reads from .env automatically."""

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    # ── GitHub ─────────────────────────────────────────────────────────
    # Token used for REST calls (comments, PRs) and for authenticated
    # clone/push over HTTPS.
    github_token: str = ""
    # HMAC secret configured on the webhook.  Leave empty only for local
    # testing: signature verification is skipped (with a warning).
    github_webhook_secret: str = ""
    github_api_url: str = "https://api.github.com"

    # ── AI backend ─────────────────────────────────────────────────────
    #   "claude_cli" → Claude Code CLI, can write files inside a workspace
    #   "chat"       → langchain chat model, text only
    ai_backend: str = "claude_cli"
    # Model identifier.  For the chat backend the prefix selects the provider:
    #   "ollama:<model>" → local Ollama, "claude-*" → Anthropic, else OpenAI
    ai_model: str = ""
    anthropic_api_key: str = ""
    anthropic_base_url: str = ""
    openai_api_key: str = ""
    ollama_base_url: str = "http://localhost:11434"
    ai_timeout_seconds: int = 120
    ai_max_tokens: int = 4000
    claude_cli_path: str = "claude"

    # "direct" → backend edits the checkout itself
    # "plan"   → backend returns a JSON plan that we apply
    # "auto"   → direct when the backend can write files, else plan
    modification_strategy: str = "auto"
    generation_max_retries: int = 2
    generation_retry_backoff_seconds: float = 2.0

    # ── Workspaces ─────────────────────────────────────────────────────
    workspace_dir: str = "/tmp/codeagent"

    @field_validator("workspace_dir")
    @classmethod
    def _resolve_workspace(cls, value: str) -> str:
        if value:
            return str(Path(value).expanduser().resolve())
        return value

    workspace_cache_ttl_minutes: int = 30
    clone_min_interval_minutes: int = 5
    clone_timeout_seconds: int = 90
    push_timeout_seconds: int = 120
    git_timeout_seconds: int = 60
    max_file_size: int = 1024 * 1024
    diff_max_chars: int = 10_000

    # Git identity for automated commits
    git_author_name: str = "CodeAgent"
    git_author_email: str = "codeagent@example.com"

    # ── Web server ─────────────────────────────────────────────────────
    web_host: str = "0.0.0.0"
    web_port: int = 8080

    # Logging
    log_level: str = "INFO"
    log_file: str = "logs/codeagent.log"


_settings: Settings | None = None


def get_settings() -> Settings:
    """Singleton accessor."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings
