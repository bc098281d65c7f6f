"""
Common data models used across the agent orchestrator.
"""

import json
from enum import Enum
from typing import Dict, Any, Optional, List, Literal
from pydantic import BaseModel, ConfigDict, Field, field_validator


AgentType = Literal["query", "action", "planning", "report"]
AGENT_TYPES = ("query", "action", "planning", "report")


class Outcome(str, Enum):
    """How a piece of work ended, carried from the loop up to the failover controller."""
    SUCCESS = "success"
    TOOL_ERROR = "tool_error"
    UNAVAILABLE = "unavailable"


class ToolCall(BaseModel):
    """A tool invocation requested by a backend."""
    name: str
    arguments: Dict[str, Any] = {}
    id: Optional[str] = None


class ToolExecutionResult(BaseModel):
    """Result of a tool execution."""
    success: bool
    data: Any = None
    content: Optional[str] = None
    error: Optional[str] = None
    tool_name: Optional[str] = None
    tool_call_id: Optional[str] = None
    # Set when the tool failed because a backend it depends on is unreachable
    unavailable: bool = False

    @classmethod
    def failure(cls, error: str, tool_name: Optional[str] = None,
                tool_call_id: Optional[str] = None, unavailable: bool = False) -> "ToolExecutionResult":
        """Build a failed result with a JSON error payload."""
        return cls(
            success=False,
            error=error,
            content=json.dumps({"error": error}),
            tool_name=tool_name,
            tool_call_id=tool_call_id,
            unavailable=unavailable
        )

    def to_observation(self) -> str:
        """Render the result as the text fed back to the model."""
        if self.content:
            return self.content
        if not self.success:
            return json.dumps({"error": self.error or "Tool execution failed"})
        if isinstance(self.data, str):
            return self.data
        return json.dumps(self.data, default=str)


class ChatMessage(BaseModel):
    """A single message in a backend conversation."""
    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    name: Optional[str] = None
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCall] = []


class BackendResponse(BaseModel):
    """Response of one backend chat call."""
    message: str = ""
    tool_calls: List[ToolCall] = []
    finish_reason: Literal["stop", "tool_calls", "length"] = "stop"


class ChatResult(BaseModel):
    """Terminal result of a reasoning loop run."""
    message: str
    tool_results: List[ToolExecutionResult] = []
    finish_reason: Literal["stop", "tool_calls", "length"] = "stop"
    iterations: int = 0
    outcome: Outcome = Outcome.SUCCESS

    @property
    def tools_used(self) -> List[str]:
        """Distinct tool names called during the run, in first-call order."""
        names: List[str] = []
        for result in self.tool_results:
            if result.tool_name and result.tool_name not in names:
                names.append(result.tool_name)
        return names


class RoutingDecision(BaseModel):
    """Which agent handles a request, and why."""
    model_config = ConfigDict(frozen=True)

    agent: AgentType
    confidence: float
    reasoning: str

    @field_validator("confidence")
    @classmethod
    def _clamp_confidence(cls, value: float) -> float:
        return min(max(value, 0.0), 1.0)


class RequestContext(BaseModel):
    """Identity and payload of the caller, passed unchanged through every layer."""
    model_config = ConfigDict(frozen=True)

    user_id: Optional[str] = None
    organization_id: Optional[str] = None
    project_id: Optional[str] = None
    session_id: Optional[str] = None
    domain_payload: Optional[Dict[str, Any]] = None


class AgentResult(BaseModel):
    """Result returned by a specialized agent."""
    agent: AgentType
    answer: str
    tools_used: List[str] = []
    requires_confirmation: bool = False
    steps: List[str] = []
    report_type: Optional[str] = None
    tool_results: List[ToolExecutionResult] = []
    finish_reason: str = "stop"
    outcome: Outcome = Outcome.SUCCESS


class RouteResult(BaseModel):
    """Supervisor output: the chosen agent, its result and the routing decision."""
    agent: AgentType
    result: AgentResult
    routing: RoutingDecision


class AuthContext(BaseModel):
    """Authenticated caller identity supplied by the host."""
    uid: str
    token: Optional[str] = None


class RequestOptions(BaseModel):
    """Optional per-request context sent by the client."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    active_mode: Optional[str] = Field(default=None, alias="activeMode")
    domain_payload: Optional[Dict[str, Any]] = Field(default=None, alias="domainPayload")


class OrchestratorRequest(BaseModel):
    """Incoming entry-point request."""
    model_config = ConfigDict(populate_by_name=True)

    message: str = ""
    organization_id: str = Field(default="", alias="organizationId")
    user_id: str = Field(default="", alias="userId")
    project_id: Optional[str] = Field(default=None, alias="projectId")
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    context: Optional[RequestOptions] = None

    @property
    def active_mode(self) -> str:
        return (self.context.active_mode if self.context else None) or "none"


class OrchestratorResponse(BaseModel):
    """Entry-point response; always well formed, even on total failure."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    response: str
    agent: AgentType
    routing: RoutingDecision
    tools_used: List[str] = Field(default=[], alias="toolsUsed")
    requires_confirmation: bool = Field(default=False, alias="requiresConfirmation")
    conversation_id: Optional[str] = Field(default=None, alias="conversationId")
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with the wire (camelCase) field names."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)
