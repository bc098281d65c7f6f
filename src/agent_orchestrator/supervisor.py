"""
Supervisor agent: classifies intent and dispatches to a specialized agent.
"""

import json
import logging
import re
from typing import Dict, Any, List

from pydantic import ValidationError as SchemaValidationError

from .agents import BaseAgent, ActionAgent, PlanningAgent, QueryAgent, ReportAgent
from .exceptions import AgentError, BackendUnavailableError, ClassificationError
from .models import AGENT_TYPES, ChatMessage, RequestContext, RouteResult, RoutingDecision
from .reasoning import ReasoningLoop


class SupervisorAgent:
    """Routes requests to the query, action, planning or report agent."""

    JSON_PATTERN = re.compile(r"\{.*\}", re.DOTALL)

    def __init__(self, loop: ReasoningLoop, agents: Dict[str, BaseAgent], logger: logging.Logger,
                 escalation_threshold: float = 0.8):
        """Initialize supervisor agent."""
        self.loop = loop
        self.agents = agents
        self.logger = logger
        self.escalation_threshold = escalation_threshold

    async def route(self, request: str, context: RequestContext) -> RouteResult:
        """Classify the request and hand it to the chosen agent."""
        self.logger.info(f"Supervisor routing request: {request[:100]}")
        routing = await self.classify_intent(request)
        self.logger.info(f"Routed to {routing.agent} agent (confidence: {routing.confidence}): {routing.reasoning}")

        agent = self.agents.get(routing.agent)
        if agent is None:
            raise AgentError(f"No agent registered for '{routing.agent}'", routing.agent, "AGENT_NOT_FOUND")

        result = await agent.process_query(request, context)
        return RouteResult(agent=routing.agent, result=result, routing=routing)

    async def classify_intent(self, request: str) -> RoutingDecision:
        """Rule-based first; the model is consulted only for low-confidence matches."""
        rule_based = self.rule_based_classification(request)
        if rule_based.confidence > self.escalation_threshold:
            return rule_based

        self.logger.info(f"Rule confidence {rule_based.confidence} below threshold, asking the model")
        try:
            return await self._model_based_classification(request)
        except BackendUnavailableError:
            raise
        except ClassificationError as e:
            self.logger.warning(f"Model classification unusable, using rule-based: {e.message}")
        except Exception as e:
            self.logger.warning(f"Model classification failed, using rule-based: {str(e)}")

        return rule_based

    def rule_based_classification(self, request: str) -> RoutingDecision:
        """Deterministic keyword routing."""
        if ReportAgent.is_report_intent(request):
            return RoutingDecision(agent="report", confidence=0.9,
                                   reasoning="Contains report/analytics keywords")

        if QueryAgent.is_query_intent(request):
            return RoutingDecision(agent="query", confidence=0.85,
                                   reasoning="Contains query/search keywords")

        if ActionAgent.is_action_intent(request):
            return RoutingDecision(agent="action", confidence=0.85,
                                   reasoning="Contains action keywords (create/update/delete)")

        if PlanningAgent.is_planning_intent(request):
            return RoutingDecision(agent="planning", confidence=0.85,
                                   reasoning="Contains workflow/planning keywords")

        return RoutingDecision(agent="query", confidence=0.5, reasoning="Default fallback to query agent")

    async def _model_based_classification(self, request: str) -> RoutingDecision:
        messages = [ChatMessage(role="user", content=self._create_classification_prompt(request))]
        chat_result = await self.loop.simple_chat(messages)
        return self._parse_classification(chat_result.message)

    def _parse_classification(self, text: str) -> RoutingDecision:
        match = self.JSON_PATTERN.search(text or "")
        if not match:
            raise ClassificationError("No JSON object in classification response", "CLASSIFICATION_PARSE_ERROR",
                                      {"response": text})

        try:
            parsed = json.loads(match.group(0))
        except json.JSONDecodeError as e:
            raise ClassificationError("Malformed JSON in classification response", "CLASSIFICATION_PARSE_ERROR",
                                      {"response": text, "original_error": str(e)})

        if not isinstance(parsed, dict) or parsed.get("agent") not in AGENT_TYPES:
            raise ClassificationError("Unknown agent in classification response", "CLASSIFICATION_UNKNOWN_AGENT",
                                      {"response": text})

        try:
            return RoutingDecision(
                agent=parsed["agent"],
                confidence=parsed.get("confidence") or 0.7,
                reasoning=parsed.get("reasoning") or "LLM classification"
            )
        except SchemaValidationError as e:
            raise ClassificationError("Invalid classification fields", "CLASSIFICATION_PARSE_ERROR",
                                      {"response": text, "original_error": str(e)})

    @staticmethod
    def _create_classification_prompt(request: str) -> str:
        return f"""Classify this user request into one of these categories:
- query: User wants to find, search, get, or list information (read-only)
- action: User wants to create, update, delete, or modify something (write operation)
- planning: User wants to create a plan, workflow, or multi-step process
- report: User wants a report, analysis, summary, or analytics

User request: "{request}"

Respond with ONLY a JSON object in this format:
{{
  "agent": "query|action|planning|report",
  "confidence": 0.0-1.0,
  "reasoning": "brief explanation"
}}"""

    def get_available_agents(self) -> List[Dict[str, Any]]:
        """Describe the agents the supervisor can dispatch to."""
        return [
            {"type": agent_type, "name": agent.name}
            for agent_type, agent in self.agents.items()
        ]
