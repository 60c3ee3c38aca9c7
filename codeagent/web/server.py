"""FastAPI web server — GitHub webhook endpoint plus health and cache status.

Webhook processing is blocking (git, AI backend, GitHub REST) and runs in a
worker thread via ``asyncio.to_thread`` so the event loop stays responsive.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.requests import ClientDisconnect

from codeagent.agents.backend import BackendError, CodeGenerationBackend, get_backend
from codeagent.core.config import Settings, get_settings
from codeagent.core.dispatcher import CommandDispatcher
from codeagent.core.logging import get_logger
from codeagent.core.modifications import PlanParseError
from codeagent.core.pipeline import AutoModifyPipeline
from codeagent.core.retry import RetryPolicy
from codeagent.core.router import EventRouter
from codeagent.webhooks.models import InboundEvent
from codeagent.webhooks.signature import WebhookAuthError, require_valid_signature
from infra.factory import get_github_client
from infra.forge import ForgeClient
from infra.workspace import WorkspaceStore

logger = get_logger("web.server")


@dataclass
class Services:
    """Everything the HTTP layer needs, built once per process."""

    settings: Settings
    forge: ForgeClient
    store: WorkspaceStore
    backend: CodeGenerationBackend
    dispatcher: CommandDispatcher
    router: EventRouter


def build_services(settings: Settings) -> Services:
    forge = get_github_client(settings.github_token, settings.github_api_url)
    store = WorkspaceStore.from_settings(settings, clone_url_resolver=forge.authenticated_clone_url)
    backend = get_backend(settings)
    pipeline = AutoModifyPipeline(
        forge,
        store,
        backend,
        strategy=settings.modification_strategy,
        retry=RetryPolicy(
            max_retries=settings.generation_max_retries,
            backoff_seconds=settings.generation_retry_backoff_seconds,
            retry_on=(BackendError, PlanParseError),
        ),
        author_name=settings.git_author_name,
        author_email=settings.git_author_email,
    )
    dispatcher = CommandDispatcher(
        forge, store, backend, pipeline, diff_max_chars=settings.diff_max_chars
    )
    logger.info(
        "Services ready (backend=%s, strategy=%s, workspace=%s, cache ttl=%dmin)",
        settings.ai_backend, pipeline.strategy, store.root,
        settings.workspace_cache_ttl_minutes,
    )
    return Services(
        settings=settings,
        forge=forge,
        store=store,
        backend=backend,
        dispatcher=dispatcher,
        router=EventRouter(dispatcher, forge),
    )


def create_app(services: Services | None = None) -> FastAPI:
    """Build the FastAPI app.  Pass *services* to inject fakes in tests."""

    # ── Lifespan ──────────────────────────────────────────────────────────

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if app.state.services is None:
            app.state.services = build_services(get_settings())
        logger.info("Web server started — webhook endpoint ready")
        yield
        app.state.services.store.clear_cache()
        logger.info("Lifespan cleanup complete")

    app = FastAPI(title="CodeAgent", version="0.1.0", lifespan=lifespan)
    app.state.services = services

    # ── API Endpoints ─────────────────────────────────────────────────────

    @app.post("/webhook")
    @app.post("/api/webhooks/github")
    async def github_webhook(request: Request):
        svc: Services = request.app.state.services
        event_type = request.headers.get("X-GitHub-Event", "")
        delivery_id = request.headers.get("X-GitHub-Delivery", "")

        try:
            body = await request.body()
        except ClientDisconnect:
            logger.warning("webhook: body unreadable (delivery %s)", delivery_id)
            return JSONResponse({"error": "Unable to read request body"}, status_code=400)

        signature = request.headers.get("X-Hub-Signature-256")
        try:
            require_valid_signature(signature, body, svc.settings.github_webhook_secret)
        except WebhookAuthError:
            logger.warning("webhook: invalid signature (event=%s delivery=%s)", event_type or "-", delivery_id)
            return JSONResponse({"error": "Invalid signature"}, status_code=401)

        event = InboundEvent(type=event_type, delivery_id=delivery_id, raw_payload=body)
        logger.info("webhook: received %s (delivery %s, %d bytes)", event_type, delivery_id, len(body))
        try:
            await asyncio.to_thread(svc.router.route, event)
        except Exception as exc:
            logger.exception("webhook: processing %s (delivery %s) failed", event_type, delivery_id)
            return JSONResponse(
                {
                    "error": f"Event processing failed: {exc}",
                    "event_type": event_type,
                    "delivery_id": delivery_id,
                },
                status_code=500,
            )
        return {
            "message": "Event processed successfully",
            "event_type": event_type,
            "delivery_id": delivery_id,
        }

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/api/workspaces")
    async def workspaces(request: Request):
        return request.app.state.services.store.cache_status()

    return app


app = create_app()
