"""Pydantic request/response schemas for the FastAPI backend."""

from typing import Any, Optional

from pydantic import BaseModel, Field


# ---- Requests ----

class ChatRequest(BaseModel):
    message: str = Field(..., min_length=1, description="User message for the main assistant")


class AgentMessageRequest(BaseModel):
    message: str = Field(..., min_length=1, description="Message delivered to a running agent")


class ConfigUpdate(BaseModel):
    config: dict[str, Any] = Field(..., description="Partial config, deep-merged; null deletes a key")


# ---- Responses ----

class QueuedMessage(BaseModel):
    content: str
    timestamp: int


class ChatResponse(BaseModel):
    status: str = "queued"
    timestamp: int
    queued_messages: list[QueuedMessage] = Field(default_factory=list)


class ToolCallInfo(BaseModel):
    tool_name: str
    tool_input: dict[str, Any] = Field(default_factory=dict)
    timestamp: int
    message_index: int
    content_position: int


class MessageInfo(BaseModel):
    role: str
    content: str
    timestamp: int
    agent_id: Optional[str] = None


class ContextResponse(BaseModel):
    messages: list[MessageInfo] = Field(default_factory=list)
    tool_calls: list[ToolCallInfo] = Field(default_factory=list)


class AgentInfo(BaseModel):
    id: str
    task: str
    status: str


class AgentDetail(AgentInfo):
    displayMessages: list[dict[str, Any]] = Field(default_factory=list)


class McpServerStatus(BaseModel):
    name: str
    status: str
    toolCount: int = 0
    description: Optional[str] = None
    error: Optional[str] = None


class ServerStatus(BaseModel):
    status: str = "ok"
    assistant: str = ""
    first_run: bool = False
    uptime_seconds: float = 0.0
    agents: int = 0
    agents_in_flight: int = 0
    queued: int = 0
    processing: bool = False
    messages: int = 0
    mcp: list[McpServerStatus] = Field(default_factory=list)
