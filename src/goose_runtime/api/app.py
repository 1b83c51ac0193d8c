"""
FastAPI application factory.

Manages the lifecycle of:
- Session store (database connection)
- Extensions (registered at startup, cleaned up at shutdown)
- Active agent contexts, one per session with a turn in progress

Agent turns are streamed as newline-delimited JSON, one event per line.
"""

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, AsyncIterator

import structlog
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from .. import __version__
from ..agent import AgentContext, AgentEvent, ErrorEvent
from ..config import GooseMode, Settings, get_settings
from ..errors import ProviderError, SessionNotFoundError
from ..logging import configure_logging
from ..runtime import Runtime, create_runtime

logger = structlog.get_logger()

NDJSON_MEDIA_TYPE = "application/x-ndjson"


class CreateSessionRequest(BaseModel):
    model: str = ""
    system_prompt: str | None = None
    title: str | None = None


class SendMessageRequest(BaseModel):
    content: str = Field(min_length=1)
    goose_mode: GooseMode | None = None
    max_iterations: int | None = Field(default=None, ge=1)


class PlanRequest(BaseModel):
    goal: str = Field(min_length=1)


def _runtime(request: Request) -> Runtime:
    runtime = getattr(request.app.state, "runtime", None)
    if runtime is None:
        raise HTTPException(status_code=503, detail="Runtime not initialized")
    return runtime


async def _load_session(runtime: Runtime, session_id: str):
    try:
        return await runtime.store.get(session_id)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")


async def _activate(runtime: Runtime, session_id: str, overrides: dict[str, Any]) -> AgentContext:
    context = runtime.new_context(session_id, runtime.settings.get_agent_config(**overrides))
    if not await runtime.contexts.add(context):
        raise HTTPException(status_code=409, detail="A turn is already running for this session")
    return context


async def _ndjson(
    runtime: Runtime,
    context: AgentContext,
    events: AsyncIterator[AgentEvent],
) -> AsyncIterator[str]:
    """Serialize events until the stream ends or the context is cancelled."""
    try:
        async for event in events:
            if context.is_cancelled:
                logger.info("Turn cancelled, closing stream", session_id=context.session_id)
                break
            yield json.dumps(event.to_dict(), default=str) + "\n"
    finally:
        if await runtime.contexts.get(context.session_id) is context:
            await runtime.contexts.remove(context.session_id)


def create_app(settings: Settings | None = None, runtime: Runtime | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    A prebuilt ``runtime`` is used as-is; otherwise one is built from
    ``settings`` at startup.
    """
    settings = settings or (runtime.settings if runtime else get_settings())
    configure_logging(settings.log_level, settings.json_logs)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler."""
        app.state.runtime = runtime or await create_runtime(settings)
        logger.info("Application started", host=settings.host, port=settings.port)

        yield

        await app.state.runtime.close()
        logger.info("Application shutdown complete")

    app = FastAPI(
        title="Goose Runtime",
        description="Agent runtime with tools, planning and extensions",
        version=__version__,
        lifespan=lifespan,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #
    @app.get("/api/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        runtime = _runtime(request)
        return {
            "status": "healthy",
            "version": __version__,
            "provider": runtime.provider.provider_name,
            "active_sessions": await runtime.contexts.active_ids(),
            "extensions": await runtime.extensions.list_extensions(),
        }

    # ------------------------------------------------------------------ #
    # Sessions
    # ------------------------------------------------------------------ #
    @app.post("/api/sessions", status_code=201)
    async def create_session(body: CreateSessionRequest, request: Request):
        runtime = _runtime(request)
        session = await runtime.store.create(
            model=body.model or runtime.provider.model,
            system_prompt=body.system_prompt,
            title=body.title,
        )
        return session.to_dict()

    @app.get("/api/sessions")
    async def list_sessions(request: Request):
        sessions = await _runtime(request).store.list_sessions()
        return {
            "sessions": [s.to_dict(include_messages=False) for s in sessions],
            "count": len(sessions),
        }

    @app.get("/api/sessions/{session_id}")
    async def get_session(session_id: str, request: Request):
        session = await _load_session(_runtime(request), session_id)
        return session.to_dict()

    @app.delete("/api/sessions/{session_id}")
    async def delete_session(session_id: str, request: Request):
        runtime = _runtime(request)
        await runtime.contexts.cancel(session_id)
        await runtime.end_session(session_id)
        try:
            await runtime.store.delete(session_id)
        except SessionNotFoundError:
            raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
        return {"status": "deleted", "id": session_id}

    # ------------------------------------------------------------------ #
    # Agent turns
    # ------------------------------------------------------------------ #
    @app.post("/api/sessions/{session_id}/messages")
    async def send_message(session_id: str, body: SendMessageRequest, request: Request):
        """Run one agent turn and stream its events."""
        runtime = _runtime(request)
        session = await _load_session(runtime, session_id)

        overrides = body.model_dump(exclude_none=True, exclude={"content"})
        context = await _activate(runtime, session_id, overrides)
        events = runtime.loop.run(context, session, body.content)

        return StreamingResponse(_ndjson(runtime, context, events), media_type=NDJSON_MEDIA_TYPE)

    @app.post("/api/sessions/{session_id}/plan")
    async def run_plan(session_id: str, body: PlanRequest, request: Request):
        """Plan a goal with the model, then execute the plan's steps."""
        runtime = _runtime(request)
        await _load_session(runtime, session_id)
        context = await _activate(runtime, session_id, {})

        async def events() -> AsyncIterator[AgentEvent]:
            tools = await runtime.dispatcher.list_tools()
            try:
                await runtime.planner.create_plan(body.goal, tools, context)
            except ProviderError as e:
                logger.error("Planner provider error", session_id=session_id, error=str(e))
                yield ErrorEvent(f"Provider error: {e}")
                return
            async for event in runtime.plan_executor.execute_plan(context):
                yield event

        return StreamingResponse(_ndjson(runtime, context, events()), media_type=NDJSON_MEDIA_TYPE)

    @app.post("/api/sessions/{session_id}/cancel")
    async def cancel_turn(session_id: str, request: Request):
        cancelled = await _runtime(request).contexts.cancel(session_id)
        return {"cancelled": cancelled}

    # ------------------------------------------------------------------ #
    # Tool approvals
    # ------------------------------------------------------------------ #
    @app.get("/api/approvals")
    async def list_approvals(request: Request, session_id: str | None = None):
        pending = _runtime(request).dispatcher.approvals.list_pending(session_id)
        return {"approvals": [a.to_dict() for a in pending]}

    @app.post("/api/approvals/{approval_id}/approve")
    async def approve_tool_call(approval_id: str, request: Request):
        """Approve a parked tool call and run it."""
        dispatcher = _runtime(request).dispatcher
        if not dispatcher.approvals.approve(approval_id):
            raise HTTPException(status_code=404, detail="Approval not found or expired")

        result = await dispatcher.execute_approved(approval_id)
        return {
            "status": "approved",
            "id": approval_id,
            "success": result.success,
            "is_error": result.is_error,
            "output": result.output,
            "error": result.error,
        }

    @app.post("/api/approvals/{approval_id}/deny")
    async def deny_tool_call(approval_id: str, request: Request):
        if not _runtime(request).dispatcher.approvals.deny(approval_id):
            raise HTTPException(status_code=404, detail="Approval not found or expired")
        return {"status": "denied", "id": approval_id}

    return app
