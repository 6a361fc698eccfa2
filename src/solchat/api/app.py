"""
Core API backend for SolChat.

This module hosts the conversation orchestrator and the session store behind a small REST API.
It exposes the following endpoints:
- **GET /health**                     - liveness check.
- **POST /chat**                      - start a turn; streams orchestrator events (SSE framing).
- **POST /runs/{run_id}/tool-output** - inject a deferred tool result; streams the continuation.
- **GET /runs/{run_id}**              - snapshot of a run.
- **POST /sessions**                  - create a new session id.
- **GET /sessions**                   - list saved sessions, most recent first.
- **GET/PUT/DELETE /sessions/{id}**   - read, replace or delete one session.
"""

import json
import logging
from contextlib import aclosing
from typing import (
    Any,
    AsyncIterator,
    List,
)

from fastapi import (
    Depends,
    FastAPI,
    HTTPException,
    Response,
)
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import StreamingResponse

from solchat.agent.orchestrator import (
    Orchestrator,
    Run,
    RunNotFoundError,
)
from solchat.agent.planner_interface import load_planner
from solchat.api.models import (
    ChatRequest,
    RunSnapshot,
    SaveSessionRequest,
    SessionResponse,
)
from solchat.common import (
    AnsiColors,
    colored_print,
)
from solchat.config import settings
from solchat.core.schema import (
    RunStartedEvent,
    Session,
    ToolOutputInjection,
    WireModel,
)
from solchat.memory.session_store import SessionStore

logger = logging.getLogger(__name__)

app = FastAPI(title="SolChat API", version="0.1.0", description="Solana wallet chat assistant API")

# Add CORS middleware to allow requests from local front-ends
app.add_middleware(
    CORSMiddleware,
    allow_origins=[f"http://localhost:{settings.API_PORT}"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_orchestrator: Orchestrator | None = None
_session_store: SessionStore | None = None


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------
def get_orchestrator() -> Orchestrator:
    """Process-wide orchestrator, created on first use with the configured planner."""
    global _orchestrator  # pylint: disable=global-statement
    if _orchestrator is None:
        _orchestrator = Orchestrator(planner=load_planner())
    return _orchestrator


def get_session_store() -> SessionStore:
    """Process-wide session store backed by ``settings.SESSIONS_FILE``."""
    global _session_store  # pylint: disable=global-statement
    if _session_store is None:
        _session_store = SessionStore(settings.SESSIONS_FILE)
    return _session_store


# ---------------------------------------------------------------------------
# Helper functions
# ---------------------------------------------------------------------------
def _sse_event(event: WireModel) -> str:
    return f"data: {json.dumps(event.to_wire(), ensure_ascii=False)}\n\n"


def _save_transcript(store: SessionStore, run: Run) -> None:
    if run.session_id:
        store.save(run.session_id, run.messages)


def _stream(events: AsyncIterator[Any], store: SessionStore, run: Run) -> StreamingResponse:
    """Wrap orchestrator *events* as an SSE response; the transcript is saved however it ends."""

    async def event_stream() -> AsyncIterator[str]:
        try:
            async with aclosing(events):
                async for event in events:
                    yield _sse_event(event)
        finally:
            _save_transcript(store, run)

    return StreamingResponse(
        event_stream(), media_type="text/event-stream", headers={"Cache-Control": "no-cache"}
    )


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------
@app.get("/health", summary="Health check")
async def health() -> dict[str, str]:
    """Return a simple liveness payload."""
    return {"status": "ok"}


@app.post("/chat", summary="Run one conversation turn")
async def chat_endpoint(
    req: ChatRequest,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    store: SessionStore = Depends(get_session_store),
) -> StreamingResponse:
    """Start a run for the posted history and stream its events."""
    orchestrator.sweep()
    run = orchestrator.start(
        req.messages,
        network=req.network,
        wallet_address=req.wallet_address,
        session_id=req.session_id,
    )

    async def events() -> AsyncIterator[Any]:
        yield RunStartedEvent(run_id=run.run_id)
        async with aclosing(orchestrator.advance(run)) as steps:
            async for event in steps:
                yield event

    return _stream(events(), store, run)


@app.post("/runs/{run_id}/tool-output", summary="Inject a deferred tool result")
async def tool_output_endpoint(
    run_id: str,
    injection: ToolOutputInjection,
    orchestrator: Orchestrator = Depends(get_orchestrator),
    store: SessionStore = Depends(get_session_store),
) -> StreamingResponse:
    """Resolve a pending deferred call and stream whatever the run does next."""
    orchestrator.sweep()
    try:
        run = orchestrator.store.get(run_id)
    except RunNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found") from exc
    return _stream(orchestrator.resume(run_id, injection), store, run)


@app.get("/runs/{run_id}", response_model=RunSnapshot, summary="Inspect a run")
async def get_run(run_id: str, orchestrator: Orchestrator = Depends(get_orchestrator)) -> RunSnapshot:
    """Return the current state and transcript of a run."""
    orchestrator.sweep()
    try:
        run = orchestrator.store.get(run_id)
    except RunNotFoundError as exc:
        raise HTTPException(status_code=404, detail=f"Run '{run_id}' not found") from exc
    return RunSnapshot(
        run_id=run.run_id,
        network=run.profile.name,
        state=run.state,
        steps=run.steps,
        pending_tool_call_ids=run.pending_tool_call_ids,
        error=run.error,
        messages=run.messages,
    )


@app.post("/sessions", response_model=SessionResponse, summary="Create a new session")
async def create_session(store: SessionStore = Depends(get_session_store)) -> SessionResponse:
    """Create a new conversation session id."""
    return SessionResponse(session_id=store.create_new())


@app.get("/sessions", response_model=List[Session], summary="List saved sessions")
async def list_sessions(store: SessionStore = Depends(get_session_store)) -> List[Session]:
    """List saved sessions, most recently updated first."""
    return store.list()


@app.get("/sessions/{session_id}", response_model=Session, summary="Get a session")
async def get_session(session_id: str, store: SessionStore = Depends(get_session_store)) -> Session:
    session = store.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail=f"Session '{session_id}' not found")
    return session


@app.put("/sessions/{session_id}", response_model=Session, summary="Save a session")
async def save_session(
    session_id: str, req: SaveSessionRequest, store: SessionStore = Depends(get_session_store)
) -> Session:
    """Replace the messages of a session (creating it if needed)."""
    session = store.save(session_id, req.messages)
    if session is None:
        raise HTTPException(status_code=400, detail="Cannot save a session without messages")
    return session


@app.delete("/sessions/{session_id}", status_code=204, summary="Delete a session")
async def delete_session(session_id: str, store: SessionStore = Depends(get_session_store)) -> Response:
    store.delete(session_id)
    return Response(status_code=204)


@app.get("/", summary="API root")
async def root() -> dict[str, str]:
    """Return a simple welcome message."""
    return {"message": "Welcome to the SolChat API! Use /docs for API documentation."}


# ---------------------------------------------------------------------------
# Public helper to launch the API (imported by main.py)
# ---------------------------------------------------------------------------
def run_api(
    host: str = "0.0.0.0", port: int = 8000, reload: bool = False, log_level: str | None = None
) -> None:
    """Start a uvicorn server hosting *app*.

    Parameters
    ----------
    host, port:
        Bind address for the HTTP server.
    reload:
        If *True*, enable auto-reload (useful in development).
    log_level:
        Logging level to use (default from settings if not provided).
    """

    # Lazy import - keeps uvicorn an optional dependency at pkg‑import time
    import uvicorn  # pylint: disable=import-outside-toplevel

    if log_level is None:  # Use the default from settings if not provided
        log_level = settings.LOG_LEVEL

    logger.info(
        "Starting SolChat API at %s:%d (reload=%s, log_level=%s, planner=%s)",
        host,
        port,
        reload,
        log_level,
        settings.PLANNER,
    )
    logger.debug("API settings: %s", settings.model_dump(exclude={"ANTHROPIC_API_KEY", "OPENAI_API_KEY"}))

    colored_print(f"🔮 SolChat API is running at http://localhost:{port}.", AnsiColors.GREEN)
    colored_print(
        f"Visit http://localhost:{port}/docs for API documentation.",
        AnsiColors.BLUE,
    )
    uvicorn.run(
        "solchat.api.app:app",
        host=host,
        port=port,
        reload=reload,
        log_level=log_level,
    )


# ---------------------------------------------------------------------------
# `python -m solchat.api.app` helper
# ---------------------------------------------------------------------------
if __name__ == "__main__":
    run_api(reload=True)
