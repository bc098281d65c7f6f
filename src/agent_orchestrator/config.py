"""
Configuration management for the agent orchestrator.
"""

import os
import yaml
from typing import Any, Optional, List
from pathlib import Path
from pydantic import BaseModel
from dotenv import load_dotenv

from .exceptions import ConfigurationError


class PrimaryBackendConfig(BaseModel):
    """Local Ollama backend configuration."""
    base_url: str = "http://localhost:11434"
    model: str = "phi4-mini"
    timeout: float = 60.0
    availability_timeout: float = 5.0
    temperature: float = 0.7
    top_p: float = 0.9
    num_predict: int = 2000
    preferred: bool = False


class SecondaryBackendConfig(BaseModel):
    """AWS Bedrock backend configuration."""
    region: str = "us-east-1"
    model: str = "anthropic.claude-3-5-sonnet-20240620-v1:0"
    temperature: float = 0.3
    max_tokens: int = 2000
    timeout: float = 60.0


class BackendsConfig(BaseModel):
    """Configuration for both chat backends."""
    primary: PrimaryBackendConfig = PrimaryBackendConfig()
    secondary: SecondaryBackendConfig = SecondaryBackendConfig()


class AgentConfig(BaseModel):
    """Individual agent configuration."""
    name: str
    description: str = ""


class AgentsConfig(BaseModel):
    """Configuration for all agents."""
    supervisor: AgentConfig = AgentConfig(name="Supervisor")
    query_agent: AgentConfig = AgentConfig(name="Query Agent")
    action_agent: AgentConfig = AgentConfig(name="Action Agent")
    planning_agent: AgentConfig = AgentConfig(name="Planning Agent")
    report_agent: AgentConfig = AgentConfig(name="Report Agent")


class ReasoningConfig(BaseModel):
    """Reasoning loop configuration."""
    max_iterations: int = 10


class RoutingConfig(BaseModel):
    """Intent routing and failover policy configuration."""
    escalation_threshold: float = 0.8
    creative_modes: List[str] = ["plan_mode", "script", "scripting"]


class PlanningConfig(BaseModel):
    """Plan step extraction configuration."""
    step_parsers: List[str] = ["numbered", "lines"]
    max_steps: int = 10


class ToolsConfig(BaseModel):
    """Tool source configuration."""
    modules: List[str] = []


class LoggingConfig(BaseModel):
    """Logging configuration."""
    level: str = "INFO"
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    file: str = "logs/agent_orchestrator.log"


class ValidationConfig(BaseModel):
    """Request validation configuration."""
    max_message_length: int = 8000


class Config(BaseModel):
    """Main configuration class."""
    backends: BackendsConfig = BackendsConfig()
    agents: AgentsConfig = AgentsConfig()
    reasoning: ReasoningConfig = ReasoningConfig()
    routing: RoutingConfig = RoutingConfig()
    planning: PlanningConfig = PlanningConfig()
    tools: ToolsConfig = ToolsConfig()
    logging: LoggingConfig = LoggingConfig()
    validation: ValidationConfig = ValidationConfig()


KNOWN_STEP_PARSERS = ("numbered", "lines")


class ConfigManager:
    """Configuration manager for the agent orchestrator."""

    def __init__(self, config_path: Optional[str] = None):
        """Initialize configuration manager."""
        self.config_path = config_path or "config.yaml"
        load_dotenv()  # Load environment variables

    def load_config(self) -> Config:
        """Load configuration from YAML file."""
        try:
            config_file = Path(self.config_path)
            if not config_file.exists():
                raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

            with open(config_file, 'r', encoding='utf-8') as file:
                config_data = yaml.safe_load(file) or {}

            # Substitute environment variables
            config_data = self._substitute_env_vars(config_data)

            return Config(**config_data)

        except Exception as e:
            raise ConfigurationError(f"Failed to load configuration: {str(e)}", "CONFIG_LOAD_ERROR")

    def _substitute_env_vars(self, data: Any) -> Any:
        """Recursively substitute environment variables in configuration."""
        if isinstance(data, dict):
            return {key: self._substitute_env_vars(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [self._substitute_env_vars(item) for item in data]
        elif isinstance(data, str) and data.startswith("${") and data.endswith("}"):
            env_var = data[2:-1]
            # Handle default values like ${OLLAMA_BASE_URL:-http://localhost:11434}
            if ":-" in env_var:
                var_name, default_value = env_var.split(":-", 1)
                return os.getenv(var_name, default_value)
            else:
                return os.getenv(env_var, "")
        else:
            return data

    def validate_config(self, config: Config) -> None:
        """Validate configuration values."""
        primary = config.backends.primary
        secondary = config.backends.secondary

        if not primary.base_url or primary.base_url.strip() == "":
            raise ConfigurationError("Primary backend URL is required. Please set OLLAMA_BASE_URL environment variable.")

        if not primary.model or primary.model.strip() == "":
            raise ConfigurationError("Primary backend model is required. Please set OLLAMA_MODEL environment variable.")

        if not secondary.region or secondary.region.strip() == "":
            raise ConfigurationError("AWS region is required. Please set AWS_REGION environment variable or use default 'us-east-1'.")

        # Validate temperature and token limits
        if secondary.temperature < 0 or secondary.temperature > 1:
            raise ConfigurationError("Temperature must be between 0 and 1")

        if secondary.max_tokens < 1 or primary.num_predict < 1:
            raise ConfigurationError("Max tokens must be positive")

        if primary.timeout <= 0 or secondary.timeout <= 0:
            raise ConfigurationError("Backend timeouts must be positive")

        if config.reasoning.max_iterations < 1:
            raise ConfigurationError("Max iterations must be at least 1")

        if not 0 <= config.routing.escalation_threshold <= 1:
            raise ConfigurationError("Escalation threshold must be between 0 and 1")

        unknown = [name for name in config.planning.step_parsers if name not in KNOWN_STEP_PARSERS]
        if unknown:
            raise ConfigurationError(f"Unknown step parsers: {', '.join(unknown)}")

        # Create necessary directories
        logs_dir = Path(config.logging.file).parent
        logs_dir.mkdir(parents=True, exist_ok=True)
