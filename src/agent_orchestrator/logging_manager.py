"""
Logging manager for the agent orchestrator.

Handlers are attached once to the package logger (``agent_orchestrator``);
each component logs through a child such as ``agent_orchestrator.supervisor``
so the origin of every line is visible and levels can be tuned per component.
"""

import logging
from pathlib import Path
from typing import Dict, Any, Optional

from .config import Config

ROOT_LOGGER_NAME = "agent_orchestrator"


class LoggingManager:
    """Configures the package logger and hands out per-component loggers."""

    def __init__(self, config: Config, console: bool = True):
        """Initialize the logging manager."""
        self.config = config
        self.console = console
        self.root = self._configure_root()
        self._loggers: Dict[str, logging.Logger] = {}

    def get_logger(self, component: Optional[str] = None) -> logging.Logger:
        """Logger for a component; ``None`` gives the package logger."""
        if not component:
            return self.root
        if component not in self._loggers:
            # Children inherit the level and propagate to the package handlers
            self._loggers[component] = self.root.getChild(component)
        return self._loggers[component]

    def _configure_root(self) -> logging.Logger:
        logger = logging.getLogger(ROOT_LOGGER_NAME)
        level = self._level(self.config.logging.level)
        logger.setLevel(level)

        # Rebuilding the system (tests, CLI reloads) must not stack handlers
        for handler in list(logger.handlers):
            logger.removeHandler(handler)
            handler.close()

        log_file = Path(self.config.logging.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_handler.setFormatter(logging.Formatter(self.config.logging.format))
        logger.addHandler(file_handler)

        # Console shows warnings and errors only, keeping CLI output readable
        if self.console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.WARNING)
            console_handler.setFormatter(logging.Formatter('%(name)s - %(levelname)s - %(message)s'))
            logger.addHandler(console_handler)

        return logger

    def update_log_level(self, level: str, component: Optional[str] = None) -> None:
        """Change the level of one component, or of the whole package."""
        log_level = self._level(level)
        if component:
            self.get_logger(component).setLevel(log_level)
            return

        self.root.setLevel(log_level)
        for handler in self.root.handlers:
            if isinstance(handler, logging.FileHandler):
                handler.setLevel(log_level)

    @staticmethod
    def _level(name: str) -> int:
        level = logging.getLevelName(name.upper())
        return level if isinstance(level, int) else logging.INFO

    def get_system_info(self) -> Dict[str, Any]:
        """Get logging system information."""
        return {
            "log_level": self.config.logging.level,
            "log_file": self.config.logging.file,
            "root_logger": ROOT_LOGGER_NAME,
            "components": sorted(self._loggers)
        }
