"""
FastAPI application factory.

Manages the lifecycle of:
- Database connection and session store
- The agent and its tools
- Periodic expiry sweep of idle sessions
"""

import asyncio
import contextlib
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

import structlog
from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import async_sessionmaker

from .. import __version__
from ..agent import Agent, ContextManager, MemoryCompressor
from ..agent.context import Paper
from ..config import Settings, get_settings
from ..llm import create_llms
from ..models import init_database
from ..store import SessionStore
from ..tools import OpenAlexClient, create_default_registry

logger = structlog.get_logger()


def create_agent(settings: Settings, session_maker: async_sessionmaker) -> tuple[Agent, OpenAlexClient]:
    """Wire the agent, its tools and its memory against a database."""
    store = SessionStore(session_maker)
    context_manager = ContextManager(store, ttl=settings.session_ttl)

    llms = create_llms(settings)

    openalex = OpenAlexClient(base_url=settings.openalex_base_url, email=settings.openalex_email)
    registry = create_default_registry(
        settings,
        llms.reasoning,
        store,
        context_manager,
        fast_llm=llms.fast,
        openalex=openalex,
    )
    compressor = MemoryCompressor(
        llms.reasoning,
        store,
        threshold=settings.compression_threshold,
        recent_buffer_size=settings.recent_buffer_size,
        tool_preview_chars=settings.tool_result_preview_chars,
    )

    agent = Agent(llms.chat, registry, context_manager, compressor, settings)
    logger.info(
        "Agent initialized",
        provider=llms.chat.provider_name,
        model=llms.chat.model,
        reasoning_model=llms.reasoning.model,
        tools=registry.list_tools(),
    )
    return agent, openalex


async def sweep_sessions(context_manager: ContextManager, interval: float) -> None:
    """Expire idle sessions every ``interval`` seconds until cancelled."""
    while True:
        await asyncio.sleep(interval)
        try:
            await context_manager.cleanup()
        except Exception as e:
            logger.error("Session sweep failed", error=str(e))


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    settings: Settings = app.state.settings
    openalex = None
    sweeper = None

    if app.state.agent is None:
        session_maker = await init_database(settings.database_url)
        logger.info("Database initialized", url=settings.database_url)
        app.state.agent, openalex = create_agent(settings, session_maker)

        sweeper = asyncio.create_task(
            sweep_sessions(app.state.agent.context_manager, settings.session_sweep_interval_seconds)
        )

    yield

    # Shutdown
    if sweeper is not None:
        sweeper.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper

    if openalex is not None:
        await openalex.close()

    app.state.agent.context_manager.cache.clear()
    logger.info("Application shutdown complete")


class ChatRequest(BaseModel):
    """Chat request body."""
    message: str
    session_id: str | None = None


def _paper_summary(index: int, paper: Paper, abstract_chars: int | None = None) -> dict[str, Any]:
    data: dict[str, Any] = {
        "index": index,
        "title": paper.title,
        "authors": paper.author_names,
        "year": paper.year,
    }
    if abstract_chars is not None:
        data["abstract"] = paper.abstract[:abstract_chars]
        data["doi"] = paper.doi
    return data


def get_agent(request: Request) -> Agent:
    agent = request.app.state.agent
    if agent is None:
        raise HTTPException(status_code=503, detail="Agent not initialized")
    return agent


def get_user_id(x_user_id: str | None = Header(None)) -> str:
    """Caller identity from the X-User-Id header."""
    if x_user_id is None:
        raise HTTPException(
            status_code=401,
            detail="Authentication required. Include the X-User-Id header with your user ID",
        )
    user_id = x_user_id.strip()
    if not user_id:
        raise HTTPException(status_code=400, detail="Invalid user ID format")
    return user_id


def create_app(settings: Settings | None = None, agent: Agent | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Passing ``agent`` skips database setup and the expiry sweep.
    """
    settings = settings or get_settings()

    app = FastAPI(
        title=settings.app_name,
        description="Conversational research assistant with tiered session memory",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.agent = agent

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ------------------------------------------------------------------ #
    # Health
    # ------------------------------------------------------------------ #
    @app.get("/health")
    async def health_check(request: Request):
        """Health check endpoint."""
        agent = request.app.state.agent
        return {
            "status": "healthy",
            "version": __version__,
            "llm_provider": settings.llm_provider,
            "agent_ready": agent is not None,
            "active_sessions": len(agent.context_manager.cache) if agent is not None else 0,
        }

    # ------------------------------------------------------------------ #
    # Agent API
    # ------------------------------------------------------------------ #
    @app.post("/api/agent/chat")
    async def chat(
        body: ChatRequest,
        user_id: str = Depends(get_user_id),
        agent: Agent = Depends(get_agent),
    ):
        """Run one agent turn."""
        message = body.message.strip()
        if not message:
            raise HTTPException(status_code=400, detail="Message is required")

        try:
            response = await agent.chat(user_id, message, body.session_id)
        except Exception as e:
            logger.error("Agent chat failed", error=str(e))
            raise HTTPException(status_code=500, detail=f"Failed to process request: {e}")

        return {
            "session_id": response.session_id,
            "response": response.message,
            "papers": [_paper_summary(i, p, abstract_chars=300) for i, p in enumerate(response.papers)],
            "metadata": {
                "tools_used": response.tools_used,
                "iterations": response.iteration_count,
                "papers_in_context": len(response.papers),
                "completed": response.done,
            },
        }

    @app.get("/api/agent/sessions")
    async def list_sessions(
        user_id: str = Depends(get_user_id),
        agent: Agent = Depends(get_agent),
    ):
        """List the caller's active sessions."""
        try:
            sessions = await agent.list_sessions(user_id)
        except Exception as e:
            logger.error("List sessions failed", error=str(e))
            raise HTTPException(status_code=500, detail="Failed to retrieve sessions")
        return {"sessions": sessions}

    @app.get("/api/agent/sessions/{session_id}")
    async def get_session(
        session_id: str,
        user_id: str = Depends(get_user_id),
        agent: Agent = Depends(get_agent),
    ):
        """Get session details."""
        ctx = await agent.get_session(session_id, user_id)
        if ctx is None:
            raise HTTPException(status_code=404, detail="Session not found or expired")

        meta = ctx.metadata
        return {
            "session_id": ctx.session_id,
            "papers_count": len(ctx.papers),
            "papers": [_paper_summary(i, p) for i, p in enumerate(ctx.papers)],
            "metadata": {
                "created_at": meta.created_at.isoformat(),
                "last_activity_at": meta.last_activity_at.isoformat(),
                "total_iterations": meta.total_iterations,
                "search_count": meta.search_count,
                "analysis_count": meta.analysis_count,
            },
            "message_count": len(ctx.conversation_history),
            "summaries": len(ctx.memory_state.summaries),
            "key_facts": len(ctx.memory_state.key_facts),
        }

    @app.delete("/api/agent/sessions/{session_id}")
    async def end_session(
        session_id: str,
        user_id: str = Depends(get_user_id),
        agent: Agent = Depends(get_agent),
    ):
        """End a session."""
        if not await agent.end_session(session_id, user_id):
            raise HTTPException(status_code=404, detail="Session not found")
        return {"message": "Session ended successfully"}

    return app
