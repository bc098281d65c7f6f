"""
Input validation for the agent orchestrator.
"""

import re
import logging
from typing import Optional
from pydantic import BaseModel

from .config import Config
from .models import OrchestratorRequest


class ValidationResult(BaseModel):
    """Result of input validation."""
    is_valid: bool
    error_message: Optional[str] = None
    sanitized_input: Optional[str] = None


class InputValidator:
    """Validates incoming requests and sanitizes the message text."""

    REQUIRED_FIELDS = (
        ("message", "message"),
        ("organization_id", "organizationId"),
        ("user_id", "userId"),
    )

    def __init__(self, config: Config, logger: logging.Logger):
        """Initialize input validator."""
        self.config = config
        self.logger = logger
        self.max_length = config.validation.max_message_length

    def validate_request(self, request: OrchestratorRequest) -> ValidationResult:
        """Check required fields and message length."""
        missing = [wire_name for field_name, wire_name in self.REQUIRED_FIELDS
                   if not (getattr(request, field_name) or "").strip()]
        if missing:
            return ValidationResult(
                is_valid=False,
                error_message=f"Missing required fields: {', '.join(missing)}"
            )

        return self.validate_message(request.message)

    def validate_message(self, message: str) -> ValidationResult:
        """Validate and sanitize the message text."""
        if len(message) > self.max_length:
            return ValidationResult(
                is_valid=False,
                error_message=f"Message cannot exceed {self.max_length} characters"
            )

        sanitized = self._sanitize_input(message)
        if not sanitized:
            return ValidationResult(
                is_valid=False,
                error_message="Message contains only invalid characters"
            )

        self.logger.info(f"Request validation successful: {len(sanitized)} characters")
        return ValidationResult(is_valid=True, sanitized_input=sanitized)

    def _sanitize_input(self, message: str) -> str:
        """Remove null bytes and control characters, keep newlines and tabs."""
        return re.sub(r'[\x00-\x08\x0b-\x0c\x0e-\x1f\x7f]', '', message).strip()
