"""All REST + SSE endpoints for the FastAPI backend."""

import asyncio
import hmac
import json
import time
from typing import Optional

import config
from fastapi import APIRouter, Depends, Header, HTTPException
from fastapi.responses import FileResponse
from sse_starlette.sse import EventSourceResponse

from attache.agent_runtime import AgentError
from attache.core import Assistant
from attache.downloads import resolve_download
from attache.event_bus import AGENT_COMPLETED, AGENT_MESSAGE, AGENT_STARTED, QUEUE_CHANGED
from attache.tool_handlers.settings import redact_config

from .models import (
    AgentMessageRequest,
    ChatRequest,
    ChatResponse,
    ConfigUpdate,
    ContextResponse,
    ServerStatus,
)
from .streaming import EventBroadcaster


def require_token(authorization: Optional[str] = Header(default=None)) -> None:
    """Bearer-token check, active only when ``server.auth_token`` is set."""
    token = config.get("server.auth_token")
    if not token:
        return
    scheme, _, supplied = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not hmac.compare_digest(supplied.strip(), str(token)):
        raise HTTPException(status_code=401, detail="Invalid or missing bearer token")


router = APIRouter(prefix="/api", dependencies=[Depends(require_token)])

# These are injected by app.py lifespan
assistant: Assistant = None  # type: ignore[assignment]
broadcaster: EventBroadcaster = None  # type: ignore[assignment]
_start_time: float = 0.0


def _snapshot_event(type: str, agent: str, data: dict) -> dict:
    return {"id": "", "type": type, "ts": "", "agent": agent, "level": "debug", "summary": "", "data": data}


def _initial_events() -> list[dict]:
    """State replay for a new SSE client: queue preview, then every agent
    with its display log and, for finished ones, a completion marker."""
    events = [_snapshot_event(
        QUEUE_CHANGED, "main", {"queued_messages": assistant.coordinator.queued_user_messages()},
    )]
    for record in assistant.directory.records():
        events.append(_snapshot_event(AGENT_STARTED, record.id, {"task": record.task}))
        for entry in record.display_messages:
            events.append(_snapshot_event(AGENT_MESSAGE, record.id, {"message": entry.to_dict()}))
        if not record.running:
            events.append(_snapshot_event(AGENT_COMPLETED, record.id, {"output": ""}))
    return events


# ---- Status ----


@router.get("/status", response_model=ServerStatus)
async def get_status():
    return ServerStatus(
        status="ok",
        uptime_seconds=round(time.time() - _start_time, 1),
        **assistant.status(),
    )


# ---- Chat ----


@router.post("/chat", status_code=202, response_model=ChatResponse)
async def chat(req: ChatRequest):
    """Queue a user message for the main assistant.

    Answers arrive on GET /events. Always succeeds: messages sent while an
    interaction is in progress wait in the queue.
    """
    item = assistant.submit_message(req.message)
    return ChatResponse(
        status="queued",
        timestamp=item.timestamp,
        queued_messages=assistant.coordinator.queued_user_messages(),
    )


# ---- Event stream ----


@router.get("/events")
async def events():
    """Process-lifetime SSE stream. Client should reconnect on disconnect."""
    queue = broadcaster.subscribe(initial=_initial_events())

    async def event_generator():
        try:
            while True:
                event = await queue.get()
                if event is None:
                    break
                yield {"event": event.get("type", "message"), "data": json.dumps(event, default=str)}
        finally:
            broadcaster.unsubscribe(queue)

    return EventSourceResponse(event_generator())


# ---- Main conversation ----


@router.get("/context", response_model=ContextResponse)
async def get_context():
    return assistant.conversation.to_dict()


@router.post("/context/clear")
async def clear_context():
    await assistant.coordinator.clear_context()
    return {"status": "cleared"}


@router.post("/context/compact")
async def compact_context():
    try:
        compacted = await assistant.coordinator.compact_now()
    except RuntimeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"status": "compacted" if compacted else "skipped"}


@router.get("/queue")
async def get_queue():
    return {"queued_messages": assistant.coordinator.queued_user_messages()}


@router.delete("/queue/{timestamp}", status_code=204)
async def delete_queued(timestamp: int):
    if not assistant.coordinator.remove_queued(timestamp):
        raise HTTPException(status_code=404, detail="Queued message not found")


# ---- Agents ----


@router.get("/agents")
async def list_agents():
    return {"agents": assistant.directory.list_info()}


@router.get("/agents/{agent_id}")
async def get_agent(agent_id: str):
    detail = assistant.directory.detail(agent_id)
    if detail is None:
        raise HTTPException(status_code=404, detail=f"Agent '{agent_id}' not found")
    return detail


@router.post("/agents/{agent_id}/messages", status_code=202)
async def message_agent(agent_id: str, req: AgentMessageRequest):
    """Deliver a message to a running agent, or resume a completed one."""
    record = assistant.directory.get(agent_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Agent '{agent_id}' not found")
    if record.running and assistant.runtime.send_to_agent(agent_id, req.message):
        return {"status": "sent"}
    try:
        assistant.runtime.resume_agent(agent_id, req.message)
    except AgentError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"status": "resumed"}


@router.delete("/agents")
async def clear_agents():
    removed = await assistant.clear_agents()
    return {"status": "cleared", "removed": removed}


# ---- MCP ----


@router.get("/mcp")
async def mcp_status():
    return {"servers": assistant.mcp.status()}


@router.post("/mcp/reload")
async def mcp_reload():
    return {"servers": await assistant.reload_mcp()}


# ---- Config ----


@router.get("/config")
async def get_config():
    """Effective config with secrets masked."""
    return redact_config(config.snapshot())


@router.put("/config")
async def update_config(req: ConfigUpdate):
    """Deep-merge a partial config into the home config file."""
    await asyncio.to_thread(config.save_config, req.config)
    return redact_config(config.snapshot())


# ---- Downloads ----


@router.get("/downloads/{download_id}/{filename}")
async def download(download_id: str, filename: str):
    path = resolve_download(download_id, filename)
    if path is None:
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(path, filename=path.name)
