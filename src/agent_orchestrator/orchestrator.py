"""
Failover controller for the agent orchestrator.

Runs each request through a LangGraph workflow:

    START -> creative_mode        (creative mode, primary not preferred)
    START -> supervisor_route     (otherwise)

    creative_mode      -> persist_conversation | supervisor_route (on failure)
    supervisor_route   -> persist_conversation | secondary_fallback (backend
                          unavailable) | handle_error (anything else)
    secondary_fallback -> persist_conversation | END (total failure)
    persist_conversation, handle_error -> END

Validation and authorization happen before the graph runs and raise to the
caller. Inside the graph nothing raises: every path ends in a well-formed
response.
"""

import inspect
import logging
import time
from typing import Dict, Any, Optional, List, Callable, Union, Iterable

from langgraph.graph import StateGraph, START, END
from pydantic import ValidationError as SchemaValidationError

from .backends import BedrockBackend
from .exceptions import AuthorizationError, BackendUnavailableError, ValidationError
from .memory import SessionMemory
from .models import (
    AuthContext, ChatMessage, OrchestratorRequest, OrchestratorResponse, Outcome,
    RequestContext, RoutingDecision
)
from .state import RequestState
from .supervisor import SupervisorAgent
from .validation import InputValidator

AUTOMATIC_FALLBACK_MARKER = "automatic fallback"

UNAVAILABLE_RESPONSE = "AI services are temporarily unavailable. Please try again in a moment."

CREATIVE_SYSTEM_PROMPT = """You are a creative writing and planning assistant for production teams.
Write clear, well-structured material. For plans, use numbered steps.
For scripts, use standard screenplay formatting.

Active mode: {mode}"""

FALLBACK_SYSTEM_PROMPT = """You are a helpful assistant for production teams.
Answer the user's request directly and concisely. You have no tool access in this mode,
so say so when the request needs live data you do not have."""

UserVerifier = Callable[[str], Any]


class FailoverController:
    """Handles the request workflow and primary-to-secondary failover."""

    def __init__(self, supervisor: SupervisorAgent, secondary: BedrockBackend, session_memory: SessionMemory,
                 validator: InputValidator, logger: logging.Logger, primary_preferred: bool = False,
                 creative_modes: Optional[Iterable[str]] = None, user_verifier: Optional[UserVerifier] = None):
        """Initialize the failover controller."""
        self.supervisor = supervisor
        self.secondary = secondary
        self.session_memory = session_memory
        self.validator = validator
        self.logger = logger
        self.primary_preferred = primary_preferred
        self.creative_modes = set(creative_modes if creative_modes is not None else ("plan_mode", "script", "scripting"))
        self.user_verifier = user_verifier

        # Build workflow
        self.workflow = self._build_workflow()

    def _build_workflow(self):
        """Build the LangGraph workflow."""
        workflow = StateGraph(RequestState)

        # Add nodes
        workflow.add_node("creative_mode", self._creative_mode)
        workflow.add_node("supervisor_route", self._supervisor_route)
        workflow.add_node("secondary_fallback", self._secondary_fallback)
        workflow.add_node("persist_conversation", self._persist_conversation)
        workflow.add_node("handle_error", self._handle_error)

        workflow.add_conditional_edges(
            START,
            self._mode_router,
            {
                "creative": "creative_mode",
                "standard": "supervisor_route"
            }
        )

        workflow.add_conditional_edges(
            "creative_mode",
            self._creative_router,
            {
                "done": "persist_conversation",
                "standard": "supervisor_route"
            }
        )

        workflow.add_conditional_edges(
            "supervisor_route",
            self._supervisor_router,
            {
                "done": "persist_conversation",
                "fallback": "secondary_fallback",
                "error": "handle_error"
            }
        )

        workflow.add_conditional_edges(
            "secondary_fallback",
            self._fallback_router,
            {
                "done": "persist_conversation",
                "failed": END
            }
        )

        workflow.add_edge("persist_conversation", END)
        workflow.add_edge("handle_error", END)

        return workflow.compile()

    async def handle_request(self, request: Union[OrchestratorRequest, Dict[str, Any]],
                             auth: Optional[AuthContext]) -> OrchestratorResponse:
        """Process one entry-point request.

        Raises ``ValidationError`` for malformed requests and ``AuthorizationError``
        for unauthenticated or denied callers. Every other failure is reported in
        the returned response.
        """
        request = self._coerce_request(request)

        validation_result = self.validator.validate_request(request)
        if not validation_result.is_valid:
            self.logger.warning(f"Request validation failed: {validation_result.error_message}")
            raise ValidationError(validation_result.error_message, "INVALID_ARGUMENT")
        request = request.model_copy(update={"message": validation_result.sanitized_input})

        await self._authorize(request, auth)

        self.logger.info(f"Processing request from user {request.user_id} in org {request.organization_id}, "
                         f"mode: {request.active_mode}")

        session_id = request.session_id or f"session_{request.user_id}_{int(time.time() * 1000)}"
        context = RequestContext(
            user_id=request.user_id,
            organization_id=request.organization_id,
            project_id=request.project_id,
            session_id=session_id,
            domain_payload=request.context.domain_payload if request.context else None
        )

        initial_state = RequestState(request=request, context=context, session_id=session_id,
                                     conversation_id=request.conversation_id)
        result = await self.workflow.ainvoke(initial_state)
        return self._to_response(result)

    def _coerce_request(self, request: Union[OrchestratorRequest, Dict[str, Any]]) -> OrchestratorRequest:
        if isinstance(request, OrchestratorRequest):
            return request
        try:
            return OrchestratorRequest.model_validate(request or {})
        except SchemaValidationError as e:
            raise ValidationError(f"Malformed request: {str(e)}", "INVALID_ARGUMENT")

    async def _authorize(self, request: OrchestratorRequest, auth: Optional[AuthContext]) -> None:
        if auth is None:
            raise AuthorizationError("User must be authenticated", "UNAUTHENTICATED")

        if self.user_verifier is None:
            return

        try:
            verified = self.user_verifier(request.user_id)
            if inspect.isawaitable(verified):
                verified = await verified
        except Exception as e:
            raise AuthorizationError(f"Authentication error: {str(e)}", "PERMISSION_DENIED")

        if not verified:
            raise AuthorizationError("User not found", "PERMISSION_DENIED")

    async def _creative_mode(self, state: RequestState) -> RequestState:
        """Send creative modes straight to the secondary backend."""
        mode = state.request.active_mode
        self.logger.info(f"Using {self.secondary.name} for creative writing mode: {mode}")

        try:
            answer = await self.secondary.generate(
                state.request.message,
                system_prompt=CREATIVE_SYSTEM_PROMPT.format(mode=mode),
                history=await self._prior_history(state)
            )
        except Exception as e:
            self.logger.error(f"Creative mode routing failed, falling through to supervisor: {str(e)}")
            return state

        await self._record_user_message(state)
        state.success = True
        state.final_response = answer or "Response generated"
        state.agent = "planning"
        state.routing = RoutingDecision(
            agent="planning",
            confidence=0.9,
            reasoning=f"Using {self.secondary.name} for creative writing mode: {mode}"
        )
        return state

    async def _supervisor_route(self, state: RequestState) -> RequestState:
        """Route through the supervisor against the primary backend."""
        await self._record_user_message(state)

        try:
            route_result = await self.supervisor.route(state.request.message, state.context)
        except BackendUnavailableError as e:
            self.logger.error(f"Primary backend unavailable: {e.message}")
            state.needs_fallback = True
            state.fallback_reason = e.message
            return state
        except Exception as e:
            self.logger.error(f"Error in supervisor routing: {str(e)}")
            state.error = str(e) or "Failed to route request"
            return state

        if route_result.result.outcome == Outcome.UNAVAILABLE:
            self.logger.error(f"{route_result.agent} agent reported the primary backend unavailable")
            state.needs_fallback = True
            state.fallback_reason = route_result.result.answer
            return state

        state.route_result = route_result
        state.success = True
        state.final_response = route_result.result.answer or "Response generated"
        state.agent = route_result.agent
        state.routing = route_result.routing
        state.tools_used = route_result.result.tools_used
        state.requires_confirmation = route_result.result.requires_confirmation
        return state

    async def _secondary_fallback(self, state: RequestState) -> RequestState:
        """Retry the whole request once on the secondary, without tools."""
        self.logger.warning(f"Falling back to {self.secondary.name}: {state.fallback_reason}")

        try:
            answer = await self.secondary.generate(
                state.request.message,
                system_prompt=FALLBACK_SYSTEM_PROMPT,
                history=await self._prior_history(state)
            )
        except Exception as e:
            self.logger.error(f"{self.secondary.name} fallback also failed: {str(e)}")
            state.success = False
            state.final_response = UNAVAILABLE_RESPONSE
            state.agent = "query"
            state.routing = RoutingDecision(
                agent="query",
                confidence=0.5,
                reasoning=f"Both primary backend and {self.secondary.name} unavailable"
            )
            state.error = "AI services unavailable"
            return state

        state.success = True
        state.final_response = answer or "Response generated (No content)"
        state.agent = "query"
        state.routing = RoutingDecision(
            agent="query",
            confidence=0.8,
            reasoning=f"Primary backend unavailable, {AUTOMATIC_FALLBACK_MARKER} to {self.secondary.name}"
        )
        state.tools_used = []
        return state

    async def _persist_conversation(self, state: RequestState) -> RequestState:
        """Record the answer and save or extend the conversation."""
        try:
            await self.session_memory.record_assistant_message(
                state.session_id, state.final_response, state.agent, state.tools_used
            )
            state.conversation_id = await self.session_memory.persist(
                session_id=state.session_id,
                conversation_id=state.conversation_id,
                user_id=state.context.user_id,
                organization_id=state.context.organization_id,
                project_id=state.context.project_id,
                first_message=state.request.message,
                agent=state.agent
            )
        except Exception as e:
            self.logger.error(f"Failed to persist conversation for session {state.session_id}: {str(e)}")
        return state

    async def _handle_error(self, state: RequestState) -> RequestState:
        """Turn a non-failover error into a failed response."""
        error_message = state.error or "An unexpected error occurred"
        state.success = False
        state.final_response = f"I apologize, but I encountered an error: {error_message}"
        state.routing = RoutingDecision(agent=state.agent, confidence=0.0, reasoning=f"Request failed: {error_message}")
        self.logger.error(f"Workflow error handled: {error_message}")
        return state

    def _mode_router(self, state: RequestState) -> str:
        """Route creative modes to the secondary unless the primary is preferred."""
        if state.request.active_mode in self.creative_modes and not self.primary_preferred:
            return "creative"
        return "standard"

    def _creative_router(self, state: RequestState) -> str:
        return "done" if state.success else "standard"

    def _supervisor_router(self, state: RequestState) -> str:
        if state.needs_fallback:
            return "fallback"
        if state.error or not state.success:
            return "error"
        return "done"

    def _fallback_router(self, state: RequestState) -> str:
        return "done" if state.success else "failed"

    async def _record_user_message(self, state: RequestState) -> None:
        """Append the request to the session once; a store failure never fails the request."""
        if state.message_recorded:
            return
        try:
            await self.session_memory.record_user_message(state.session_id, state.request.message, {
                "organization_id": state.context.organization_id,
                "project_id": state.context.project_id
            })
            state.message_recorded = True
        except Exception as e:
            self.logger.error(f"Failed to record user message for session {state.session_id}: {str(e)}")

    async def _prior_history(self, state: RequestState) -> List[ChatMessage]:
        """Session messages before the current request."""
        try:
            messages = await self.session_memory.history(state.session_id)
        except Exception as e:
            self.logger.error(f"Failed to load history for session {state.session_id}: {str(e)}")
            return []

        if state.message_recorded:
            messages = messages[:-1]
        return [ChatMessage(role=message.role, content=message.content) for message in messages]

    def _to_response(self, result: Union[Dict[str, Any], RequestState]) -> OrchestratorResponse:
        if not isinstance(result, dict):
            result = result.model_dump()

        routing = result.get("routing")
        if routing is None:
            routing = RoutingDecision(agent="query", confidence=0.0, reasoning="No routing decision")
        elif isinstance(routing, dict):
            routing = RoutingDecision(**routing)

        return OrchestratorResponse(
            success=bool(result.get("success")),
            response=result.get("final_response", ""),
            agent=result.get("agent", "query"),
            routing=routing,
            tools_used=result.get("tools_used", []),
            requires_confirmation=bool(result.get("requires_confirmation")),
            conversation_id=result.get("conversation_id"),
            error=result.get("error")
        )
