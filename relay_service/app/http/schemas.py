from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


class ThinkingRequest(BaseModel):
    type: Literal["enabled", "adaptive"] = "enabled"
    budget_tokens: int = Field(1024, ge=1)
    effort: str = "medium"


class ChatRequest(BaseModel):
    session_id: str = Field(..., description="The unique identifier for the session.")
    prompt: str = Field(..., description="The user's prompt.")
    model: Optional[str] = Field(None, description="Model id; falls back to defaults.model.")
    system: Optional[str] = None
    max_tokens: Optional[int] = None
    temperature: float = 1.0
    top_p: float = 1.0
    top_k: int = 0
    thinking: Optional[ThinkingRequest] = None
    images: List[Dict[str, Any]] = Field(default_factory=list, description="Image content blocks sent after the text.")
    tools: Optional[List[str]] = Field(None, description="Client tools to offer; omit for all registered tools.")
    server_tools: List[Dict[str, Any]] = Field(default_factory=list)
    output_format: Optional[Dict[str, Any]] = None
    container: Optional[Dict[str, Any]] = None
    betas: List[str] = Field(default_factory=list)

    def options(self) -> Dict[str, Any]:
        """Keyword arguments for GenerationService.chat()."""
        return self.model_dump(exclude={"session_id", "prompt"})


class ToolExecution(BaseModel):
    id: str
    tool_name: str
    tool_args: Any = None
    tool_result: str
    ok: bool


class ChatResponse(BaseModel):
    session_id: str
    message: Dict[str, Any]
    text: str
    partial: bool
    rounds: int
    tool_executions: List[ToolExecution]
    malformed_events: int = 0


class SessionInfo(BaseModel):
    session_id: str = Field(..., description="The unique identifier for the session.")
    created_at: str = Field(..., description="The timestamp when the session was created.")
    turns: int = 0


class TurnOut(BaseModel):
    id: str
    role: str
    content: Any
    text: str
    timestamp: float
