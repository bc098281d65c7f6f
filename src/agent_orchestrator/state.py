"""
State model for the failover workflow.
"""

from typing import Optional, List
from pydantic import BaseModel, ConfigDict

from .models import AgentType, OrchestratorRequest, RequestContext, RouteResult, RoutingDecision


class RequestState(BaseModel):
    """State of one request as it moves through the failover graph."""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    request: OrchestratorRequest
    context: RequestContext
    session_id: str
    message_recorded: bool = False
    route_result: Optional[RouteResult] = None
    needs_fallback: bool = False
    fallback_reason: Optional[str] = None
    final_response: str = ""
    agent: AgentType = "query"
    routing: Optional[RoutingDecision] = None
    tools_used: List[str] = []
    requires_confirmation: bool = False
    conversation_id: Optional[str] = None
    success: bool = False
    error: Optional[str] = None
