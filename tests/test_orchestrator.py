"""
Test the failover controller for the agent orchestrator.
"""

import pytest
import logging
from unittest.mock import Mock, AsyncMock

from agent_orchestrator.backends import BedrockBackend
from agent_orchestrator.exceptions import (
    AgentError, AuthorizationError, BackendUnavailableError, ValidationError
)
from agent_orchestrator.memory import InMemorySessionStore, SessionMemory
from agent_orchestrator.models import (
    AgentResult, AuthContext, Outcome, OrchestratorRequest, RouteResult, RoutingDecision
)
from agent_orchestrator.orchestrator import AUTOMATIC_FALLBACK_MARKER, UNAVAILABLE_RESPONSE, FailoverController
from agent_orchestrator.supervisor import SupervisorAgent
from agent_orchestrator.validation import InputValidator

AUTH = AuthContext(uid="u1")


def route_result(agent="query", answer="Two sessions found.", **result_fields):
    return RouteResult(
        agent=agent,
        result=AgentResult(agent=agent, answer=answer, **result_fields),
        routing=RoutingDecision(agent=agent, confidence=0.85, reasoning="Contains query/search keywords")
    )


def make_request(message="list all sessions for project P", **fields):
    return OrchestratorRequest(message=message, organizationId="org1", userId="u1", projectId="P", **fields)


@pytest.fixture
def mock_logger():
    """Create mock logger for testing."""
    return Mock(spec=logging.Logger)


@pytest.fixture
def mock_supervisor():
    """Create mock supervisor for testing."""
    supervisor = Mock(spec=SupervisorAgent)
    supervisor.route = AsyncMock(return_value=route_result(tools_used=["list_sessions"]))
    return supervisor


@pytest.fixture
def mock_secondary():
    """Create mock secondary backend for testing."""
    secondary = Mock(spec=BedrockBackend)
    secondary.name = "bedrock"
    secondary.generate = AsyncMock(return_value="Answer from the secondary backend.")
    return secondary


@pytest.fixture
def store():
    return InMemorySessionStore()


@pytest.fixture
def validator(mock_logger):
    config = Mock()
    config.validation = Mock()
    config.validation.max_message_length = 500
    return InputValidator(config, mock_logger)


@pytest.fixture
def make_controller(mock_supervisor, mock_secondary, store, validator, mock_logger):
    """Build a controller with optional overrides."""
    def _make(**kwargs):
        return FailoverController(
            supervisor=mock_supervisor,
            secondary=mock_secondary,
            session_memory=SessionMemory(store, mock_logger),
            validator=validator,
            logger=mock_logger,
            **kwargs
        )
    return _make


@pytest.fixture
def controller(make_controller):
    return make_controller()


class TestStandardRouting:
    """Test requests answered by the primary backend."""

    @pytest.mark.asyncio
    async def test_successful_route(self, controller, mock_supervisor, mock_secondary):
        response = await controller.handle_request(make_request(), AUTH)

        assert response.success is True
        assert response.response == "Two sessions found."
        assert response.agent == "query"
        assert response.routing.confidence == 0.85
        assert response.tools_used == ["list_sessions"]
        assert response.conversation_id is not None
        mock_secondary.generate.assert_not_awaited()

        message, context = mock_supervisor.route.call_args[0]
        assert message == "list all sessions for project P"
        assert context.organization_id == "org1"
        assert context.project_id == "P"
        assert context.session_id.startswith("session_u1_")

    @pytest.mark.asyncio
    async def test_confirmation_flag_passed_through(self, controller, mock_supervisor):
        mock_supervisor.route.return_value = route_result("action", "Deleted.", requires_confirmation=True)

        response = await controller.handle_request(make_request("delete the blocked deliverable"), AUTH)

        assert response.agent == "action"
        assert response.requires_confirmation is True

    @pytest.mark.asyncio
    async def test_sanitized_message_routed(self, controller, mock_supervisor):
        await controller.handle_request(make_request("  list\x00 sessions  "), AUTH)

        assert mock_supervisor.route.call_args[0][0] == "list sessions"

    @pytest.mark.asyncio
    async def test_domain_payload_reaches_context(self, controller, mock_supervisor):
        request = make_request("budget report", context={"domainPayload": {"budget": 1000}})

        await controller.handle_request(request, AUTH)

        assert mock_supervisor.route.call_args[0][1].domain_payload == {"budget": 1000}

    @pytest.mark.asyncio
    async def test_dict_request_with_wire_names(self, controller):
        response = await controller.handle_request(
            {"message": "list sessions", "organizationId": "org1", "userId": "u1"}, AUTH
        )

        assert response.success is True

    @pytest.mark.asyncio
    async def test_non_availability_error_does_not_fail_over(self, controller, mock_supervisor, mock_secondary):
        """Errors other than backend unavailability produce a failed response."""
        mock_supervisor.route.side_effect = AgentError("No agent registered", "billing", "AGENT_NOT_FOUND")

        response = await controller.handle_request(make_request(), AUTH)

        assert response.success is False
        assert response.response == "I apologize, but I encountered an error: No agent registered"
        assert response.routing.confidence == 0.0
        assert response.error == "No agent registered"
        mock_secondary.generate.assert_not_awaited()


class TestFailover:
    """Test the secondary backend fallback."""

    @pytest.mark.asyncio
    async def test_primary_unavailable_falls_back_once(self, controller, mock_supervisor, mock_secondary):
        mock_supervisor.route.side_effect = BackendUnavailableError("ollama service is not available", "ollama")

        response = await controller.handle_request(make_request(), AUTH)

        assert response.success is True
        assert response.response == "Answer from the secondary backend."
        assert response.agent == "query"
        assert response.routing.confidence == 0.8
        assert AUTOMATIC_FALLBACK_MARKER in response.routing.reasoning
        assert response.tools_used == []
        assert response.conversation_id is not None
        mock_supervisor.route.assert_awaited_once()
        mock_secondary.generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_unavailable_outcome_falls_back(self, controller, mock_supervisor, mock_secondary):
        mock_supervisor.route.return_value = route_result(answer="", outcome=Outcome.UNAVAILABLE)

        response = await controller.handle_request(make_request(), AUTH)

        assert AUTOMATIC_FALLBACK_MARKER in response.routing.reasoning
        mock_secondary.generate.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_both_backends_unavailable(self, controller, mock_supervisor, mock_secondary):
        """Total failure still returns a well-formed response."""
        mock_supervisor.route.side_effect = BackendUnavailableError("down", "ollama")
        mock_secondary.generate.side_effect = BackendUnavailableError("throttled", "bedrock")

        response = await controller.handle_request(make_request(), AUTH)

        assert response.success is False
        assert response.response == UNAVAILABLE_RESPONSE
        assert response.error == "AI services unavailable"
        assert response.routing.confidence == 0.5
        assert response.routing.reasoning == "Both primary backend and bedrock unavailable"
        assert response.conversation_id is None

    @pytest.mark.asyncio
    async def test_fallback_history_excludes_current_message(self, controller, mock_supervisor, mock_secondary,
                                                              store, mock_logger):
        memory = SessionMemory(store, mock_logger)
        await memory.record_user_message("s1", "earlier question")
        await memory.record_assistant_message("s1", "earlier answer", "query")
        mock_supervisor.route.side_effect = BackendUnavailableError("down", "ollama")

        await controller.handle_request(make_request(sessionId="s1"), AUTH)

        history = mock_secondary.generate.call_args[1]["history"]
        assert [(m.role, m.content) for m in history] == [
            ("user", "earlier question"), ("assistant", "earlier answer")
        ]
        assert mock_secondary.generate.call_args[0][0] == "list all sessions for project P"


class TestCreativeMode:
    """Test creative modes routed to the secondary backend."""

    @pytest.mark.asyncio
    async def test_creative_mode_uses_secondary(self, controller, mock_supervisor, mock_secondary):
        response = await controller.handle_request(make_request("draft a scene", context={"activeMode": "script"}),
                                                   AUTH)

        assert response.success is True
        assert response.agent == "planning"
        assert response.routing.confidence == 0.9
        assert response.routing.reasoning == "Using bedrock for creative writing mode: script"
        assert response.conversation_id is not None
        assert "Active mode: script" in mock_secondary.generate.call_args[1]["system_prompt"]
        mock_supervisor.route.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_creative_mode_records_after_generation(self, controller, mock_secondary, store, mock_logger):
        """The secondary sees only earlier turns; the exchange is recorded once it succeeds."""
        memory = SessionMemory(store, mock_logger)
        await memory.record_user_message("s1", "earlier question")
        await memory.record_assistant_message("s1", "earlier answer", "query")

        await controller.handle_request(
            make_request("draft a scene", sessionId="s1", context={"activeMode": "script"}), AUTH
        )

        history = mock_secondary.generate.call_args[1]["history"]
        assert [m.content for m in history] == ["earlier question", "earlier answer"]
        messages = await store.get_messages("s1")
        assert [(m.role, m.content) for m in messages[2:]] == [
            ("user", "draft a scene"), ("assistant", "Answer from the secondary backend.")
        ]

    @pytest.mark.asyncio
    async def test_creative_failure_records_message_once(self, controller, mock_secondary, store):
        mock_secondary.generate.side_effect = BackendUnavailableError("throttled", "bedrock")

        await controller.handle_request(
            make_request("draft a scene", sessionId="s1", context={"activeMode": "script"}), AUTH
        )

        messages = await store.get_messages("s1")
        assert [m.role for m in messages] == ["user", "assistant"]

    @pytest.mark.asyncio
    async def test_primary_preferred_skips_creative_path(self, make_controller, mock_supervisor, mock_secondary):
        controller = make_controller(primary_preferred=True)

        response = await controller.handle_request(make_request("draft a plan", context={"activeMode": "plan_mode"}),
                                                   AUTH)

        assert response.agent == "query"
        mock_supervisor.route.assert_awaited_once()
        mock_secondary.generate.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_creative_failure_falls_through(self, controller, mock_supervisor, mock_secondary):
        mock_secondary.generate.side_effect = BackendUnavailableError("throttled", "bedrock")

        response = await controller.handle_request(make_request("draft a scene", context={"activeMode": "script"}),
                                                   AUTH)

        assert response.success is True
        assert response.response == "Two sessions found."
        mock_supervisor.route.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_non_creative_mode(self, controller, mock_secondary):
        await controller.handle_request(make_request(context={"activeMode": "browse"}), AUTH)

        mock_secondary.generate.assert_not_awaited()


class TestRequestChecks:
    """Test validation and authorization before routing."""

    @pytest.mark.asyncio
    async def test_missing_fields_raise(self, controller, mock_supervisor):
        with pytest.raises(ValidationError) as exc_info:
            await controller.handle_request({"message": "hi", "userId": "u1"}, AUTH)

        assert exc_info.value.error_code == "INVALID_ARGUMENT"
        assert exc_info.value.message == "Missing required fields: organizationId"
        mock_supervisor.route.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_malformed_request_raises(self, controller):
        with pytest.raises(ValidationError):
            await controller.handle_request({"message": ["not", "text"], "organizationId": "org1", "userId": "u1"},
                                            AUTH)

    @pytest.mark.asyncio
    async def test_unauthenticated(self, controller, mock_supervisor):
        with pytest.raises(AuthorizationError) as exc_info:
            await controller.handle_request(make_request(), None)

        assert exc_info.value.error_code == "UNAUTHENTICATED"
        mock_supervisor.route.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_unknown_user(self, make_controller):
        controller = make_controller(user_verifier=Mock(return_value=None))

        with pytest.raises(AuthorizationError, match="User not found"):
            await controller.handle_request(make_request(), AUTH)

    @pytest.mark.asyncio
    async def test_verifier_error(self, make_controller):
        controller = make_controller(user_verifier=Mock(side_effect=RuntimeError("directory offline")))

        with pytest.raises(AuthorizationError) as exc_info:
            await controller.handle_request(make_request(), AUTH)

        assert exc_info.value.message == "Authentication error: directory offline"
        assert exc_info.value.error_code == "PERMISSION_DENIED"

    @pytest.mark.asyncio
    async def test_async_verifier(self, make_controller):
        verifier = AsyncMock(return_value={"uid": "u1"})
        controller = make_controller(user_verifier=verifier)

        response = await controller.handle_request(make_request(), AUTH)

        assert response.success is True
        verifier.assert_awaited_once_with("u1")


class TestConversationPersistence:
    """Test conversation records written after each request."""

    @pytest.mark.asyncio
    async def test_follow_up_extends_conversation(self, controller, store):
        first = await controller.handle_request(make_request(sessionId="s1"), AUTH)

        second = await controller.handle_request(
            make_request("show the second session", sessionId="s1", conversationId=first.conversation_id), AUTH
        )

        assert second.conversation_id == first.conversation_id
        record = await store.load_conversation(first.conversation_id)
        assert [m.role for m in record.messages] == ["user", "assistant", "user", "assistant"]
        assert record.title == "list all sessions for project P"
        assert record.tags == ["query"]

    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_fail_request(self, controller, mock_logger):
        response = await controller.handle_request(make_request(conversationId="missing"), AUTH)

        assert response.success is True
        assert response.response == "Two sessions found."
        mock_logger.error.assert_called()

    @pytest.mark.asyncio
    async def test_store_failure_still_returns_response(self, mock_supervisor, mock_secondary, validator,
                                                       mock_logger):
        """A session store that cannot append never breaks the request."""
        class UnreachableStore(InMemorySessionStore):
            async def append_message(self, session_id, message):
                raise ConnectionError("store down")

        controller = FailoverController(
            supervisor=mock_supervisor,
            secondary=mock_secondary,
            session_memory=SessionMemory(UnreachableStore(), mock_logger),
            validator=validator,
            logger=mock_logger
        )

        response = await controller.handle_request(make_request(), AUTH)

        assert response.success is True
        assert response.response == "Two sessions found."
        assert response.conversation_id is None
        mock_supervisor.route.assert_awaited_once()
        mock_logger.error.assert_called()

    @pytest.mark.asyncio
    async def test_response_wire_format(self, controller):
        response = await controller.handle_request(make_request(), AUTH)

        payload = response.to_dict()

        assert payload["toolsUsed"] == ["list_sessions"]
        assert payload["requiresConfirmation"] is False
        assert payload["routing"]["agent"] == "query"
        assert "conversationId" in payload
        assert "error" not in payload
