"""CodeAgent main entry point.

Starts the FastAPI web server that receives GitHub webhooks.
"""

from __future__ import annotations

import shutil

import uvicorn

from codeagent.core.config import get_settings
from codeagent.core.logging import get_logger, setup_logging


def main():
    """Entry point: validate configuration and serve the webhook endpoint."""
    setup_logging()
    logger = get_logger("main")
    settings = get_settings()

    logger.info("=" * 60)
    logger.info("CodeAgent starting")
    logger.info("=" * 60)

    if not settings.github_token.strip():
        logger.error("GITHUB_TOKEN not set - comments, pull requests and private clones will fail")

    if not settings.github_webhook_secret:
        logger.warning("GITHUB_WEBHOOK_SECRET not set - webhook signatures will NOT be verified")

    if settings.ai_backend == "claude_cli" and shutil.which(settings.claude_cli_path) is None:
        logger.error("Claude CLI %r not found on PATH - code generation will fail", settings.claude_cli_path)

    if settings.ai_backend == "claude_cli" and not settings.anthropic_api_key.strip():
        logger.warning("ANTHROPIC_API_KEY not set - relying on the CLI's own login")

    logger.info("Webhook endpoint: http://%s:%d/webhook", settings.web_host, settings.web_port)
    logger.info("Workspace root: %s", settings.workspace_dir)

    uvicorn.run(
        "codeagent.web.server:app",
        host=settings.web_host,
        port=settings.web_port,
        log_level=settings.log_level.lower(),
        reload=False,
    )


if __name__ == "__main__":
    main()
