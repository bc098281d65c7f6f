"""
Capability registry for the agent orchestrator.
"""

import asyncio
import importlib
import inspect
import logging
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Any, Optional, List, Callable, FrozenSet, Iterable, Type

from pydantic import BaseModel, ConfigDict, ValidationError as SchemaValidationError

from .exceptions import BackendUnavailableError, ToolExecutionError
from .models import RequestContext, ToolExecutionResult


class CapabilityTag(str, Enum):
    """Capability categories used to scope tools to agents."""
    QUERY = "query"
    ACTION = "action"
    DESTRUCTIVE = "destructive"
    PLANNING = "planning"
    REPORT = "report"


# Default naming conventions used when a tool is registered without explicit tags.
CAPABILITY_KEYWORDS: Dict[CapabilityTag, tuple] = {
    CapabilityTag.QUERY: ("query", "search", "get", "list", "fetch", "retrieve"),
    CapabilityTag.ACTION: ("create", "update", "delete", "approve", "reject", "submit", "assign", "modify"),
    CapabilityTag.DESTRUCTIVE: ("delete", "remove", "revoke", "cancel"),
    CapabilityTag.PLANNING: ("workflow", "plan", "schedule", "orchestrate", "step", "transition",
                             "script", "breakdown", "story"),
    CapabilityTag.REPORT: ("report", "analytics", "generate", "analyze", "summary", "export"),
}

# Context fields injected into tool arguments when the tool's schema declares them.
CONTEXT_FIELDS = ("user_id", "organization_id", "project_id")


def infer_capabilities(tool_name: str) -> FrozenSet[CapabilityTag]:
    """Derive capability tags from a tool name (case-insensitive substring match)."""
    name = tool_name.lower()
    return frozenset(
        tag for tag, keywords in CAPABILITY_KEYWORDS.items()
        if any(keyword in name for keyword in keywords)
    )


class ToolDescriptor(BaseModel):
    """A named, schema-described callable the model may invoke."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    name: str
    description: str = ""
    parameters: Optional[Type[BaseModel]] = None
    executor: Callable[[Dict[str, Any]], Any]
    capabilities: FrozenSet[CapabilityTag] = frozenset()
    source: str = "local"

    @classmethod
    def create(cls, name: str, executor: Callable[[Dict[str, Any]], Any], description: str = "",
               parameters: Optional[Type[BaseModel]] = None,
               capabilities: Optional[Iterable[CapabilityTag]] = None,
               source: str = "local") -> "ToolDescriptor":
        """Build a descriptor, inferring capability tags from the name when none are given."""
        tags = frozenset(capabilities) if capabilities is not None else infer_capabilities(name)
        return cls(name=name, description=description, parameters=parameters,
                   executor=executor, capabilities=tags, source=source)


class BaseTool(ABC):
    """Base class for class-style tools."""

    name: str = ""
    description: str = ""
    parameters: Optional[Type[BaseModel]] = None
    capabilities: Optional[Iterable[CapabilityTag]] = None

    def __init__(self, logger: logging.Logger):
        """Initialize tool with a logger."""
        self.logger = logger

    @abstractmethod
    async def execute(self, **kwargs) -> ToolExecutionResult:
        """Execute the tool."""
        pass

    def _handle_error(self, error: Exception, operation: str) -> ToolExecutionResult:
        """Handle tool errors consistently."""
        error_msg = f"Error in {operation}: {str(error)}"
        self.logger.error(error_msg)
        return ToolExecutionResult.failure(error_msg, tool_name=self.name)

    def to_descriptor(self, source: str = "local") -> ToolDescriptor:
        """Expose the tool through the registry's descriptor contract."""
        async def _executor(args: Dict[str, Any]) -> ToolExecutionResult:
            return await self.execute(**args)

        return ToolDescriptor.create(self.name, _executor, self.description, self.parameters,
                                     self.capabilities, source)


class ToolSource(ABC):
    """Where the registry loads its tools from."""

    @abstractmethod
    async def load(self) -> List[ToolDescriptor]:
        """Return every tool the source provides."""
        pass


class StaticToolSource(ToolSource):
    """Tool source backed by an in-memory list."""

    def __init__(self, tools: Optional[Iterable[ToolDescriptor]] = None):
        self.tools = list(tools or [])

    async def load(self) -> List[ToolDescriptor]:
        return list(self.tools)


class ModuleToolSource(ToolSource):
    """Tool source that imports modules exposing a ``TOOLS`` list."""

    def __init__(self, module_paths: Iterable[str], logger: logging.Logger):
        self.module_paths = list(module_paths)
        self.logger = logger

    async def load(self) -> List[ToolDescriptor]:
        tools: List[ToolDescriptor] = []
        for module_path in self.module_paths:
            try:
                module = importlib.import_module(module_path)
            except Exception as e:
                self.logger.warning(f"Failed to import tool module '{module_path}': {str(e)}")
                continue

            module_tools = getattr(module, "TOOLS", [])
            self.logger.info(f"Loaded {len(module_tools)} tools from {module_path}")
            tools.extend(module_tools)
        return tools


class ToolRegistry:
    """Registry for looking up and executing tools."""

    def __init__(self, tool_source: Optional[ToolSource], logger: logging.Logger):
        """Initialize tool registry; tools are loaded on first use."""
        self.tool_source = tool_source
        self.logger = logger
        self.tools: Dict[str, ToolDescriptor] = {}
        self._initialized = False
        self._init_lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Load tools from the source exactly once."""
        if self._initialized:
            return

        async with self._init_lock:
            if self._initialized:
                return

            try:
                if self.tool_source is not None:
                    for tool in await self.tool_source.load():
                        self.register(tool)
                self.logger.info(f"Registered {len(self.tools)} tools total")
            except Exception as e:
                # Unrelated requests keep working; agents fall back to tool-less chat
                self.logger.error(f"Error initializing tool registry: {str(e)}")
            finally:
                self._initialized = True

    def register(self, tool: ToolDescriptor) -> None:
        """Register a tool; the first registration of a name wins."""
        if tool.name in self.tools:
            self.logger.warning(f"Tool '{tool.name}' already registered, ignoring duplicate from {tool.source}")
            return
        self.tools[tool.name] = tool

    async def list_tools(self) -> List[ToolDescriptor]:
        """List available tools."""
        await self.initialize()
        return list(self.tools.values())

    async def get_tool(self, tool_name: str) -> Optional[ToolDescriptor]:
        """Get a tool by name."""
        await self.initialize()
        return self.tools.get(tool_name)

    async def names_with_capability(self, tag: CapabilityTag) -> List[str]:
        """Names of all tools carrying the given capability tag."""
        await self.initialize()
        return [tool.name for tool in self.tools.values() if tag in tool.capabilities]

    async def execute_tool(self, tool_name: str, args: Optional[Dict[str, Any]] = None,
                           context: Optional[RequestContext] = None) -> ToolExecutionResult:
        """Execute a tool by name. Never raises."""
        tool = await self.get_tool(tool_name)
        if tool is None:
            return ToolExecutionResult.failure(f"Tool '{tool_name}' not found in registry", tool_name=tool_name)

        try:
            arguments = self._prepare_arguments(tool, dict(args or {}), context)
            self.logger.info(f"Executing tool: {tool_name} (source: {tool.source})")
            result = await self._invoke(tool, arguments)
            return self._normalize_result(tool_name, result)
        except BackendUnavailableError as e:
            self.logger.error(f"Tool '{tool_name}' lost its backend ({e.backend_name}): {e.message}")
            return ToolExecutionResult.failure(e.message, tool_name=tool_name, unavailable=True)
        except ToolExecutionError as e:
            self.logger.error(f"Error executing tool '{tool_name}': {str(e)}")
            return ToolExecutionResult.failure(e.message, tool_name=tool_name)

    def _prepare_arguments(self, tool: ToolDescriptor, args: Dict[str, Any],
                           context: Optional[RequestContext]) -> Dict[str, Any]:
        """Enrich arguments with context fields the schema declares, then validate."""
        if tool.parameters is None:
            return args

        declared = tool.parameters.model_fields
        if context is not None:
            for field_name in CONTEXT_FIELDS:
                value = getattr(context, field_name)
                if value and field_name in declared:
                    args[field_name] = value

        try:
            return tool.parameters.model_validate(args).model_dump()
        except SchemaValidationError as e:
            # Tools defend their own invariants; proceed with the enriched arguments
            self.logger.warning(f"Schema validation failed for {tool.name}: {str(e)}")
            return args

    async def _invoke(self, tool: ToolDescriptor, arguments: Dict[str, Any]) -> Any:
        try:
            result = tool.executor(arguments)
            if inspect.isawaitable(result):
                result = await result
            return result
        except BackendUnavailableError:
            raise
        except Exception as e:
            raise ToolExecutionError(f"Tool execution failed: {str(e)}", tool.name,
                                     "TOOL_EXECUTION_ERROR", {"original_error": str(e)})

    def _normalize_result(self, tool_name: str, result: Any) -> ToolExecutionResult:
        if isinstance(result, ToolExecutionResult):
            return result.model_copy(update={"tool_name": tool_name})

        if isinstance(result, dict) and (result.get("success") is False or result.get("is_error")):
            error = result.get("error") or "Tool execution failed"
            return ToolExecutionResult(success=False, data=result, error=str(error), tool_name=tool_name)

        return ToolExecutionResult(success=True, data=result, tool_name=tool_name)

    def get_tool_info(self, tool_name: str) -> Dict[str, Any]:
        """Get information about a registered tool."""
        if tool_name not in self.tools:
            return {"error": f"Tool '{tool_name}' not found"}

        tool = self.tools[tool_name]
        return {
            "name": tool_name,
            "description": tool.description,
            "source": tool.source,
            "capabilities": sorted(tag.value for tag in tool.capabilities),
            "parameters": tool.parameters.__name__ if tool.parameters else None
        }
