"""
Custom exceptions for the agent orchestrator.
Provides specific error types so each failure class can be routed correctly.
"""

from typing import Optional, Dict, Any


class OrchestratorError(Exception):
    """Base exception for all orchestrator errors."""

    def __init__(self, message: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize the exception."""
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.details = details or {}


class ConfigurationError(OrchestratorError):
    """Raised when there's a configuration error."""
    pass


class ValidationError(OrchestratorError):
    """Raised when an incoming request is malformed or incomplete."""
    pass


class AuthorizationError(OrchestratorError):
    """Raised when the caller is unauthenticated or lacks access."""
    pass


class BackendUnavailableError(OrchestratorError):
    """Raised when a chat backend cannot be reached or fails mid-conversation.

    This is the only error class that triggers failover to the secondary backend.
    """

    def __init__(self, message: str, backend_name: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize the backend error."""
        super().__init__(message, error_code or "BACKEND_UNAVAILABLE", details)
        self.backend_name = backend_name


class ToolExecutionError(OrchestratorError):
    """Raised when a tool executor fails."""

    def __init__(self, message: str, tool_name: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize the tool error."""
        super().__init__(message, error_code, details)
        self.tool_name = tool_name


class ClassificationError(OrchestratorError):
    """Raised when model-based intent classification produces an unusable answer."""
    pass


class AgentError(OrchestratorError):
    """Raised when an agent encounters an error."""

    def __init__(self, message: str, agent_name: str, error_code: Optional[str] = None, details: Optional[Dict[str, Any]] = None):
        """Initialize the agent error."""
        super().__init__(message, error_code, details)
        self.agent_name = agent_name


class ConversationNotFoundError(OrchestratorError, KeyError):
    """Raised when updating a conversation the session store does not know."""

    def __init__(self, conversation_id: str):
        """Initialize the lookup error."""
        super().__init__(f"Conversation {conversation_id} not found", "CONVERSATION_NOT_FOUND",
                         {"conversation_id": conversation_id})
        self.conversation_id = conversation_id

    def __str__(self) -> str:
        return self.message
