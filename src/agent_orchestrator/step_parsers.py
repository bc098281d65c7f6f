"""
Plan step extraction strategies used by the planning agent.
"""

import re
from abc import ABC, abstractmethod
from typing import List, Sequence

from .exceptions import ConfigurationError


class StepParser(ABC):
    """Extracts an ordered list of steps from plan text."""

    @abstractmethod
    def parse(self, text: str) -> List[str]:
        """Return the steps found, or an empty list."""
        pass


class NumberedListParser(StepParser):
    """Lines such as ``1. Do this`` or ``2) Do that``."""

    STEP_PATTERN = re.compile(r"^\s*\d+[.)]\s*(.+)$", re.MULTILINE)

    def parse(self, text: str) -> List[str]:
        return [match.group(1).strip() for match in self.STEP_PATTERN.finditer(text or "")]


class LineSplitParser(StepParser):
    """First non-blank lines of the text."""

    def __init__(self, max_steps: int = 10):
        self.max_steps = max_steps

    def parse(self, text: str) -> List[str]:
        lines = [line.strip() for line in (text or "").splitlines() if line.strip()]
        return lines[:self.max_steps]


class ChainedStepParser(StepParser):
    """Tries each parser in order; the first non-empty result wins."""

    def __init__(self, parsers: Sequence[StepParser]):
        self.parsers = list(parsers)

    def parse(self, text: str) -> List[str]:
        for parser in self.parsers:
            steps = parser.parse(text)
            if steps:
                return steps
        return []


def build_step_parser(names: Sequence[str], max_steps: int = 10) -> StepParser:
    """Build a parser chain from configured names (``numbered``, ``lines``)."""
    factories = {
        "numbered": NumberedListParser,
        "lines": lambda: LineSplitParser(max_steps),
    }

    parsers = []
    for name in names:
        if name not in factories:
            raise ConfigurationError(f"Unknown step parser: {name}")
        parsers.append(factories[name]())
    return ChainedStepParser(parsers)
