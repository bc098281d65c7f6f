"""
Main agent orchestrator system.
Wires configuration, logging, tools, backends and agents together.
"""

from typing import Dict, Any, Optional, Union

from .agents import ActionAgent, PlanningAgent, QueryAgent, ReportAgent
from .backends import BedrockBackend, ChatBackend, OllamaBackend
from .config import ConfigManager
from .logging_manager import LoggingManager
from .memory import InMemorySessionStore, SessionMemory, SessionStore
from .models import AuthContext, OrchestratorRequest, OrchestratorResponse
from .orchestrator import FailoverController, UserVerifier
from .reasoning import ReasoningLoop
from .step_parsers import build_step_parser
from .supervisor import SupervisorAgent
from .tools import ModuleToolSource, ToolRegistry, ToolSource
from .validation import InputValidator


class AgentOrchestratorSystem:
    """Composition root for the agent orchestrator."""

    def __init__(self, config_path: Optional[str] = None, tool_source: Optional[ToolSource] = None,
                 session_store: Optional[SessionStore] = None, primary: Optional[ChatBackend] = None,
                 secondary: Optional[BedrockBackend] = None, user_verifier: Optional[UserVerifier] = None,
                 console_logging: bool = True):
        """Initialize the agent orchestrator system."""
        # Load configuration
        self.config_manager = ConfigManager(config_path)
        self.config = self.config_manager.load_config()
        self.config_manager.validate_config(self.config)

        # Setup logging
        self.logging_manager = LoggingManager(self.config, console=console_logging)
        self.logger = self.logging_manager.get_logger("system")
        log = self.logging_manager.get_logger

        # Tools and backends
        if tool_source is None:
            tool_source = ModuleToolSource(self.config.tools.modules, log("tools"))
        self.tool_registry = ToolRegistry(tool_source, log("tools"))
        self.primary = primary or OllamaBackend(self.config.backends.primary, log("backends"))
        self.secondary = secondary or BedrockBackend(self.config.backends.secondary, log("backends"))
        self.loop = ReasoningLoop(self.primary, self.tool_registry, log("reasoning"),
                                  max_iterations=self.config.reasoning.max_iterations)

        # Initialize agents
        agents_config = self.config.agents
        agent_logger = log("agents")
        step_parser = build_step_parser(self.config.planning.step_parsers, self.config.planning.max_steps)
        self.agents = {
            "query": QueryAgent(self.loop, self.tool_registry, agent_logger, name=agents_config.query_agent.name),
            "action": ActionAgent(self.loop, self.tool_registry, agent_logger, name=agents_config.action_agent.name),
            "planning": PlanningAgent(self.loop, self.tool_registry, agent_logger, step_parser=step_parser,
                                      name=agents_config.planning_agent.name),
            "report": ReportAgent(self.loop, self.tool_registry, agent_logger, name=agents_config.report_agent.name),
        }
        self.supervisor = SupervisorAgent(self.loop, self.agents, log("supervisor"),
                                          escalation_threshold=self.config.routing.escalation_threshold)

        # Memory, validation and the failover workflow
        self.session_memory = SessionMemory(session_store or InMemorySessionStore(), log("memory"))
        self.validator = InputValidator(self.config, log("validation"))
        self.controller = FailoverController(
            supervisor=self.supervisor,
            secondary=self.secondary,
            session_memory=self.session_memory,
            validator=self.validator,
            logger=log("orchestrator"),
            primary_preferred=self.config.backends.primary.preferred,
            creative_modes=self.config.routing.creative_modes,
            user_verifier=user_verifier
        )

        self.logger.info("Agent orchestrator system initialized successfully")

    async def process_request(self, request: Union[OrchestratorRequest, Dict[str, Any]],
                              auth: Optional[AuthContext]) -> OrchestratorResponse:
        """Process a request through the failover workflow."""
        return await self.controller.handle_request(request, auth)

    def get_system_info(self) -> Dict[str, Any]:
        """Get system information."""
        primary = self.config.backends.primary
        secondary = self.config.backends.secondary
        return {
            "agents": {
                "supervisor": self.config.agents.supervisor.name,
                **{agent["type"]: agent["name"] for agent in self.supervisor.get_available_agents()}
            },
            "tools": sorted(self.tool_registry.tools),
            "backends": {
                "primary": {
                    "name": self.primary.name,
                    "model": primary.model,
                    "base_url": primary.base_url,
                    "preferred": primary.preferred
                },
                "secondary": {
                    "name": self.secondary.name,
                    "model": secondary.model,
                    "region": secondary.region
                }
            },
            "config": {
                "max_iterations": self.config.reasoning.max_iterations,
                "escalation_threshold": self.config.routing.escalation_threshold,
                "creative_modes": list(self.config.routing.creative_modes),
                "step_parsers": list(self.config.planning.step_parsers)
            },
            "logging": self.logging_manager.get_system_info()
        }
