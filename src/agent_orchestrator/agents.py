"""
Specialized agents for the agent orchestrator.

Each agent wraps the reasoning loop with a capability-scoped tool subset and a
domain prompt, and exposes a keyword predicate used by the supervisor's
rule-based routing stage.
"""

import json
import logging
from abc import ABC, abstractmethod
from typing import Optional, List, Sequence

from .models import AgentResult, AgentType, ChatMessage, ChatResult, RequestContext
from .reasoning import ReasoningLoop
from .step_parsers import StepParser, build_step_parser
from .tools import CapabilityTag, ToolRegistry


def contains_keyword(text: str, keywords: Sequence[str]) -> bool:
    """Case-insensitive substring match against any keyword."""
    lowered = (text or "").lower()
    return any(keyword in lowered for keyword in keywords)


class BaseAgent(ABC):
    """Base class for all agents."""

    agent_type: AgentType
    capability: CapabilityTag

    def __init__(self, name: str, loop: ReasoningLoop, tool_registry: ToolRegistry, logger: logging.Logger):
        """Initialize base agent."""
        self.name = name
        self.loop = loop
        self.tool_registry = tool_registry
        self.logger = logger

    @abstractmethod
    async def process_query(self, request: str, context: RequestContext) -> AgentResult:
        """Process a user request."""
        pass

    async def _select_tools(self) -> List[str]:
        """Names of the registered tools this agent may call."""
        tools = await self.tool_registry.names_with_capability(self.capability)
        self.logger.info(f"{self.name} scoped to {len(tools)} {self.capability.value} tools")
        return tools

    async def _run(self, prompt: str, tool_names: List[str], context: RequestContext) -> ChatResult:
        messages = [ChatMessage(role="user", content=prompt)]
        return await self.loop.run(messages, tool_names, context)

    def _create_result(self, chat_result: ChatResult, **kwargs) -> AgentResult:
        """Create a standardized agent result."""
        return AgentResult(
            agent=self.agent_type,
            answer=chat_result.message,
            tools_used=chat_result.tools_used,
            tool_results=chat_result.tool_results,
            finish_reason=chat_result.finish_reason,
            outcome=chat_result.outcome,
            **kwargs
        )

    @staticmethod
    def _scope_line(context: RequestContext) -> str:
        parts = []
        if context.organization_id:
            parts.append(f"organizationId={context.organization_id}")
        if context.project_id:
            parts.append(f"projectId={context.project_id}")
        return f"Scope: {', '.join(parts)}\n\n" if parts else ""


class QueryAgent(BaseAgent):
    """Read-only agent for finding, searching and listing information."""

    agent_type = "query"
    capability = CapabilityTag.QUERY

    QUERY_KEYWORDS = (
        "search", "get", "list", "show", "fetch", "retrieve",
        "lookup", "look up", "how many", "which", "where", "who"
    )

    def __init__(self, loop: ReasoningLoop, tool_registry: ToolRegistry, logger: logging.Logger,
                 name: str = "Query Agent"):
        super().__init__(name, loop, tool_registry, logger)

    async def process_query(self, request: str, context: RequestContext) -> AgentResult:
        """Answer a read-only request using query tools."""
        self.logger.info(f"{self.name} processing query: {request[:100]}")
        tools = await self._select_tools()
        chat_result = await self._run(self._build_query_prompt(request, context), tools, context)
        return self._create_result(chat_result)

    def _build_query_prompt(self, request: str, context: RequestContext) -> str:
        return (
            f"User request: {request}\n\n"
            f"{self._scope_line(context)}"
            "Find the requested information using the available read-only tools. "
            "Never create, change or delete anything. "
            "Answer concisely and say so plainly when nothing matches."
        )

    @staticmethod
    def is_query_intent(request: str) -> bool:
        """Check if a request is appropriate for this agent."""
        return contains_keyword(request, QueryAgent.QUERY_KEYWORDS)


class ActionAgent(BaseAgent):
    """Write agent for create/update/delete style requests."""

    agent_type = "action"
    capability = CapabilityTag.ACTION

    ACTION_KEYWORDS = (
        "create", "add", "new", "make", "build",
        "update", "edit", "modify", "change", "set",
        "delete", "remove", "cancel", "revoke",
        "approve", "reject", "submit", "assign"
    )
    DESTRUCTIVE_KEYWORDS = ("delete", "remove", "revoke", "cancel", "destroy")

    def __init__(self, loop: ReasoningLoop, tool_registry: ToolRegistry, logger: logging.Logger,
                 name: str = "Action Agent"):
        super().__init__(name, loop, tool_registry, logger)

    async def process_query(self, request: str, context: RequestContext) -> AgentResult:
        """Execute an action, flagging destructive ones for confirmation."""
        self.logger.info(f"{self.name} executing action: {request[:100]}")
        requires_confirmation = self.check_requires_confirmation(request)
        tools = await self._select_tools()

        chat_result = await self._run(self._build_action_prompt(request, context, requires_confirmation),
                                      tools, context)

        if not requires_confirmation:
            requires_confirmation = await self._used_destructive_tool(chat_result)
        if requires_confirmation:
            self.logger.warning(f"{self.name} flagged request as destructive, confirmation required")

        return self._create_result(chat_result, requires_confirmation=requires_confirmation)

    async def _used_destructive_tool(self, chat_result: ChatResult) -> bool:
        destructive = set(await self.tool_registry.names_with_capability(CapabilityTag.DESTRUCTIVE))
        return any(name in destructive for name in chat_result.tools_used)

    def _build_action_prompt(self, request: str, context: RequestContext, requires_confirmation: bool) -> str:
        prompt = f"User request: {request}\n\n{self._scope_line(context)}"

        if requires_confirmation:
            prompt += "WARNING: This action may be destructive. Please confirm the exact action before proceeding.\n\n"

        prompt += "Execute the requested action using the available tools. "
        prompt += "Always verify organizationId and projectId match the user's context. "
        prompt += "Return a clear confirmation of what was done."
        return prompt

    @classmethod
    def check_requires_confirmation(cls, request: str) -> bool:
        """Destructive requests need explicit confirmation."""
        return contains_keyword(request, cls.DESTRUCTIVE_KEYWORDS)

    @staticmethod
    def is_action_intent(request: str) -> bool:
        """Check if a request is appropriate for this agent."""
        return contains_keyword(request, ActionAgent.ACTION_KEYWORDS)


class PlanningAgent(BaseAgent):
    """Agent for workflows and multi-step plans."""

    agent_type = "planning"
    capability = CapabilityTag.PLANNING

    PLANNING_KEYWORDS = (
        "plan", "workflow", "schedule", "orchestrate",
        "steps", "process", "procedure", "sequence", "organize"
    )

    def __init__(self, loop: ReasoningLoop, tool_registry: ToolRegistry, logger: logging.Logger,
                 step_parser: Optional[StepParser] = None, name: str = "Planning Agent"):
        super().__init__(name, loop, tool_registry, logger)
        self.step_parser = step_parser or build_step_parser(["numbered", "lines"])

    async def process_query(self, request: str, context: RequestContext) -> AgentResult:
        """Create a plan and extract its steps."""
        self.logger.info(f"{self.name} creating plan: {request[:100]}")
        tools = await self._select_tools()
        chat_result = await self._run(self._build_planning_prompt(request, context), tools, context)

        steps = self.step_parser.parse(chat_result.message)
        self.logger.info(f"{self.name} extracted {len(steps)} plan steps")
        return self._create_result(chat_result, steps=steps)

    def _build_planning_prompt(self, request: str, context: RequestContext) -> str:
        return f"""User request: {request}

{self._scope_line(context)}Create a detailed plan to accomplish this request. Break it down into clear steps.
Consider dependencies, prerequisites, and the order of operations.

For workflow-related requests, use workflow tools to create or modify workflows.
For multi-step processes, outline each step clearly.

Return a structured plan with numbered steps."""

    @staticmethod
    def is_planning_intent(request: str) -> bool:
        """Check if a request is appropriate for this agent."""
        return contains_keyword(request, PlanningAgent.PLANNING_KEYWORDS)


class ReportAgent(BaseAgent):
    """Agent for reports, analytics and summaries."""

    agent_type = "report"
    capability = CapabilityTag.REPORT

    REPORT_KEYWORDS = (
        "report", "analytics", "analysis", "summary",
        "insights", "metrics", "statistics", "dashboard"
    )

    def __init__(self, loop: ReasoningLoop, tool_registry: ToolRegistry, logger: logging.Logger,
                 name: str = "Report Agent"):
        super().__init__(name, loop, tool_registry, logger)

    async def process_query(self, request: str, context: RequestContext) -> AgentResult:
        """Generate a report, using the caller's domain payload when supplied."""
        report_type = self.determine_report_type(request)
        self.logger.info(f"{self.name} generating {report_type} report: {request[:100]}")
        tools = await self._select_tools()
        chat_result = await self._run(self._build_report_prompt(request, context, report_type), tools, context)
        return self._create_result(chat_result, report_type=report_type)

    def _build_report_prompt(self, request: str, context: RequestContext, report_type: str) -> str:
        prompt = f"User request: {request}\n\n{self._scope_line(context)}"
        prompt += f"Produce a {report_type} report. "
        prompt += "Lead with a short summary, then key findings, risks and recommendations.\n"

        if context.domain_payload:
            payload = json.dumps(context.domain_payload, default=str, indent=2)
            prompt += f"\nProject data:\n{payload}\n"
        else:
            prompt += "\nUse the available tools to gather the data the report needs.\n"
        return prompt

    @staticmethod
    def determine_report_type(request: str) -> str:
        """Pick the report flavour from the wording of the request."""
        if contains_keyword(request, ("financial", "budget", "cost")):
            return "financial"
        if contains_keyword(request, ("detailed", "comprehensive", "full")):
            return "detailed"
        if contains_keyword(request, ("production", "session", "shoot")):
            return "production"
        return "executive"

    @staticmethod
    def is_report_intent(request: str) -> bool:
        """Check if a request is appropriate for this agent."""
        return contains_keyword(request, ReportAgent.REPORT_KEYWORDS)
