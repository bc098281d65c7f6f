"""
Test the specialized agents.
"""

import json
import logging
from unittest.mock import Mock, AsyncMock

import pytest

from agent_orchestrator.agents import ActionAgent, PlanningAgent, QueryAgent, ReportAgent
from agent_orchestrator.models import ChatResult, Outcome, RequestContext, ToolExecutionResult
from agent_orchestrator.reasoning import ReasoningLoop
from agent_orchestrator.step_parsers import build_step_parser
from agent_orchestrator.tools import CapabilityTag, ToolRegistry

TOOLS_BY_TAG = {
    CapabilityTag.QUERY: ["list_sessions", "get_project"],
    CapabilityTag.ACTION: ["create_task", "archive_deliverable", "delete_deliverable"],
    CapabilityTag.DESTRUCTIVE: ["delete_deliverable"],
    CapabilityTag.PLANNING: ["create_workflow"],
    CapabilityTag.REPORT: [],
}


@pytest.fixture
def mock_logger():
    """Create mock logger for testing."""
    return Mock(spec=logging.Logger)


@pytest.fixture
def mock_registry():
    """Create mock tool registry for testing."""
    registry = Mock(spec=ToolRegistry)
    registry.names_with_capability = AsyncMock(side_effect=lambda tag: list(TOOLS_BY_TAG[tag]))
    return registry


@pytest.fixture
def mock_loop():
    """Create mock reasoning loop for testing."""
    loop = Mock(spec=ReasoningLoop)
    loop.run = AsyncMock(return_value=ChatResult(message="Agent answer"))
    return loop


@pytest.fixture
def context():
    return RequestContext(user_id="u1", organization_id="org1", project_id="proj1", session_id="s1")


def used(*names, success=True):
    return [ToolExecutionResult(success=success, tool_name=name) for name in names]


class TestQueryAgent:
    """Test the read-only query agent."""

    @pytest.mark.asyncio
    async def test_uses_query_tools_only(self, mock_loop, mock_registry, mock_logger, context):
        """The tool subset is restricted to query-tagged tools."""
        agent = QueryAgent(mock_loop, mock_registry, mock_logger)

        result = await agent.process_query("list all sessions for project P", context)

        messages, tool_names, passed_context = mock_loop.run.call_args[0]
        assert tool_names == ["list_sessions", "get_project"]
        assert passed_context is context
        assert "list all sessions for project P" in messages[0].content
        assert "organizationId=org1" in messages[0].content
        assert result.agent == "query"
        assert result.answer == "Agent answer"

    @pytest.mark.asyncio
    async def test_tools_used_are_distinct_names(self, mock_loop, mock_registry, mock_logger, context):
        mock_loop.run.return_value = ChatResult(
            message="ok", tool_results=used("list_sessions", "get_project", "list_sessions")
        )
        agent = QueryAgent(mock_loop, mock_registry, mock_logger)

        result = await agent.process_query("show sessions", context)

        assert result.tools_used == ["list_sessions", "get_project"]

    @pytest.mark.asyncio
    async def test_outcome_carried_through(self, mock_loop, mock_registry, mock_logger, context):
        mock_loop.run.return_value = ChatResult(message="partial", tool_results=used("get_project", success=False),
                                                outcome=Outcome.TOOL_ERROR)
        agent = QueryAgent(mock_loop, mock_registry, mock_logger)

        result = await agent.process_query("get project", context)

        assert result.outcome == Outcome.TOOL_ERROR

    def test_is_query_intent(self):
        assert QueryAgent.is_query_intent("Which crew members are booked?")
        assert QueryAgent.is_query_intent("LOOK UP the budget")
        assert not QueryAgent.is_query_intent("synthesize findings")


class TestActionAgent:
    """Test the action agent."""

    @pytest.mark.asyncio
    async def test_destructive_request_requires_confirmation(self, mock_loop, mock_registry, mock_logger, context):
        """Destructive keywords are detected regardless of case."""
        agent = ActionAgent(mock_loop, mock_registry, mock_logger)

        result = await agent.process_query("Please REMOVE this deliverable", context)

        assert result.requires_confirmation is True
        prompt = mock_loop.run.call_args[0][0][0].content
        assert "WARNING: This action may be destructive" in prompt

    @pytest.mark.asyncio
    async def test_non_destructive_request(self, mock_loop, mock_registry, mock_logger, context):
        agent = ActionAgent(mock_loop, mock_registry, mock_logger)

        result = await agent.process_query("create a task for the gaffer", context)

        assert result.requires_confirmation is False
        prompt = mock_loop.run.call_args[0][0][0].content
        assert "WARNING" not in prompt
        assert "Always verify organizationId and projectId match the user's context" in prompt
        assert mock_loop.run.call_args[0][1] == ["create_task", "archive_deliverable", "delete_deliverable"]

    @pytest.mark.asyncio
    async def test_destructive_tool_use_requires_confirmation(self, mock_loop, mock_registry, mock_logger, context):
        """Calling a destructive-tagged tool flags the result even for mild wording."""
        mock_loop.run.return_value = ChatResult(message="Done", tool_results=used("delete_deliverable"))
        agent = ActionAgent(mock_loop, mock_registry, mock_logger)

        result = await agent.process_query("tidy up the old deliverable", context)

        assert result.requires_confirmation is True
        assert result.tools_used == ["delete_deliverable"]

    def test_check_requires_confirmation(self):
        assert ActionAgent.check_requires_confirmation("Revoke access for the intern")
        assert ActionAgent.check_requires_confirmation("destroy the draft")
        assert not ActionAgent.check_requires_confirmation("approve the timecard")

    def test_is_action_intent(self):
        assert ActionAgent.is_action_intent("Approve the invoice")
        assert not ActionAgent.is_action_intent("synthesize findings")


class TestPlanningAgent:
    """Test the planning agent."""

    @pytest.mark.asyncio
    async def test_extracts_numbered_steps(self, mock_loop, mock_registry, mock_logger, context):
        mock_loop.run.return_value = ChatResult(message="Plan:\n1. Scout location\n2. Book crew\n3. Shoot")
        agent = PlanningAgent(mock_loop, mock_registry, mock_logger)

        result = await agent.process_query("plan the shoot", context)

        assert result.agent == "planning"
        assert result.steps == ["Scout location", "Book crew", "Shoot"]
        assert mock_loop.run.call_args[0][1] == ["create_workflow"]
        assert "numbered steps" in mock_loop.run.call_args[0][0][0].content

    @pytest.mark.asyncio
    async def test_line_fallback(self, mock_loop, mock_registry, mock_logger, context):
        mock_loop.run.return_value = ChatResult(message="Scout location\n\nBook crew")
        agent = PlanningAgent(mock_loop, mock_registry, mock_logger)

        result = await agent.process_query("plan the shoot", context)

        assert result.steps == ["Scout location", "Book crew"]

    @pytest.mark.asyncio
    async def test_configured_parser(self, mock_loop, mock_registry, mock_logger, context):
        """Only the configured parsers run."""
        mock_loop.run.return_value = ChatResult(message="Scout location\nBook crew")
        agent = PlanningAgent(mock_loop, mock_registry, mock_logger, step_parser=build_step_parser(["numbered"]))

        result = await agent.process_query("plan the shoot", context)

        assert result.steps == []

    def test_is_planning_intent(self):
        assert PlanningAgent.is_planning_intent("Organize the post-production sequence")
        assert not PlanningAgent.is_planning_intent("synthesize findings")


class TestReportAgent:
    """Test the report agent."""

    @pytest.mark.asyncio
    async def test_embeds_domain_payload(self, mock_loop, mock_registry, mock_logger):
        payload = {"budget": {"total": 120000, "spent": 80000}}
        context = RequestContext(organization_id="org1", domain_payload=payload)
        agent = ReportAgent(mock_loop, mock_registry, mock_logger)

        result = await agent.process_query("budget report for the quarter", context)

        prompt = mock_loop.run.call_args[0][0][0].content
        assert json.dumps(payload, indent=2) in prompt
        assert result.report_type == "financial"

    @pytest.mark.asyncio
    async def test_runs_without_payload(self, mock_loop, mock_registry, mock_logger, context):
        """Reports still run with whatever report tools exist."""
        agent = ReportAgent(mock_loop, mock_registry, mock_logger)

        result = await agent.process_query("give me a summary", context)

        assert result.answer == "Agent answer"
        assert result.report_type == "executive"
        assert mock_loop.run.call_args[0][1] == []

    @pytest.mark.parametrize("request_text,expected", [
        ("Cost breakdown please", "financial"),
        ("A comprehensive review", "detailed"),
        ("Shoot day recap", "production"),
        ("How are we doing?", "executive"),
    ])
    def test_determine_report_type(self, request_text, expected):
        assert ReportAgent.determine_report_type(request_text) == expected

    def test_is_report_intent(self):
        assert ReportAgent.is_report_intent("Show me the DASHBOARD")
        assert not ReportAgent.is_report_intent("synthesize findings")
