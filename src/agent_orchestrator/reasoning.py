"""
Reasoning loop for the agent orchestrator.

Drives the multi-turn tool-calling exchange with one backend:

    Start ──> AwaitingModel ──(tool calls)──> ExecutingTools ──┐
                  │   ^                                        │
                  │   └────────────────────────────────────────┘
                  ├──(no tool calls)──> Done
                  └──(iteration cap)──> Capped

Any failure that originates in the backend, whether it was never reachable or
broke mid-conversation, is raised as ``BackendUnavailableError`` so callers can
fail over. Tool failures never leave the loop; they become observations.
"""

import logging
from typing import Dict, Any, Optional, List

from .backends import ChatBackend
from .exceptions import BackendUnavailableError
from .models import BackendResponse, ChatMessage, ChatResult, Outcome, RequestContext, ToolCall, ToolExecutionResult
from .schema_adapter import to_function_tool
from .tools import ToolDescriptor, ToolRegistry

DEFAULT_MAX_ITERATIONS = 10

CAPPED_MESSAGE = "Maximum iterations reached. Please try a simpler query."


class ReasoningLoop:
    """Bounded tool-calling conversation with a single backend."""

    def __init__(self, backend: ChatBackend, tool_registry: ToolRegistry, logger: logging.Logger,
                 max_iterations: int = DEFAULT_MAX_ITERATIONS):
        self.backend = backend
        self.tool_registry = tool_registry
        self.logger = logger
        self.max_iterations = max_iterations

    async def run(self, messages: List[ChatMessage], tool_names: Optional[List[str]] = None,
                  context: Optional[RequestContext] = None) -> ChatResult:
        """Run the loop over a tool subset; ``None`` means every registered tool."""
        self.logger.info(f"Starting chat with tool calling: {len(messages)} messages, "
                         f"tools: {len(tool_names) if tool_names is not None else 'all'}")
        await self._ensure_available()

        tools = await self._resolve_tools(tool_names)
        if not tools:
            self.logger.warning("No tools available, falling back to simple chat")
            return await self._chat_without_tools(messages)

        tool_schemas = [to_function_tool(tool) for tool in tools]
        conversation = [ChatMessage(role="system", content=self._build_system_prompt(tools)), *messages]
        tool_results: List[ToolExecutionResult] = []
        iteration = 0

        while iteration < self.max_iterations:
            self.logger.debug(f"Reasoning iteration {iteration + 1}/{self.max_iterations}")
            response = await self._call_backend(conversation, tool_schemas)

            if not response.tool_calls:
                self.logger.info(f"Final answer received after {iteration} tool rounds")
                return ChatResult(
                    message=response.message,
                    tool_results=tool_results,
                    finish_reason=response.finish_reason if response.finish_reason != "tool_calls" else "stop",
                    iterations=iteration,
                    outcome=self._outcome(tool_results)
                )

            calls = [
                call if call.id else call.model_copy(update={"id": f"call_{iteration}_{index}"})
                for index, call in enumerate(response.tool_calls)
            ]
            self.logger.info(f"Model requested {len(calls)} tool calls: {', '.join(c.name for c in calls)}")
            conversation.append(ChatMessage(role="assistant", content=response.message, tool_calls=calls))

            for call in calls:
                result = await self._execute_tool_call(call, context)
                tool_results.append(result)
                conversation.append(ChatMessage(
                    role="tool",
                    content=result.to_observation(),
                    name=call.name,
                    tool_call_id=call.id
                ))

            iteration += 1

        self.logger.warning(f"Max iterations ({self.max_iterations}) reached, returning degraded response")
        return ChatResult(
            message=CAPPED_MESSAGE,
            tool_results=tool_results,
            finish_reason="length",
            iterations=iteration,
            outcome=self._outcome(tool_results)
        )

    async def simple_chat(self, messages: List[ChatMessage]) -> ChatResult:
        """Single plain chat call without tools."""
        await self._ensure_available()
        return await self._chat_without_tools(messages)

    async def _chat_without_tools(self, messages: List[ChatMessage]) -> ChatResult:
        response = await self._call_backend(messages, None)
        return ChatResult(message=response.message, finish_reason="stop")

    async def _ensure_available(self) -> None:
        try:
            available = await self.backend.check_availability()
        except Exception as e:
            self.logger.error(f"Availability check for {self.backend.name} failed: {str(e)}")
            raise BackendUnavailableError(f"{self.backend.name} service is not available", self.backend.name,
                                          details={"original_error": str(e)})

        if not available:
            self.logger.error(f"{self.backend.name} availability check returned false")
            raise BackendUnavailableError(f"{self.backend.name} service is not available", self.backend.name)

    async def _call_backend(self, messages: List[ChatMessage],
                            tool_schemas: Optional[List[Dict[str, Any]]]) -> BackendResponse:
        try:
            return await self.backend.chat(messages, tool_schemas)
        except BackendUnavailableError:
            raise
        except Exception as e:
            self.logger.error(f"{self.backend.name} chat failed: {str(e)}")
            raise BackendUnavailableError(f"{self.backend.name} service is not available", self.backend.name,
                                          details={"original_error": str(e)})

    async def _resolve_tools(self, tool_names: Optional[List[str]]) -> List[ToolDescriptor]:
        if tool_names is None:
            return await self.tool_registry.list_tools()

        tools = []
        for name in tool_names:
            tool = await self.tool_registry.get_tool(name)
            if tool is not None:
                tools.append(tool)
        return tools

    async def _execute_tool_call(self, call: ToolCall, context: Optional[RequestContext]) -> ToolExecutionResult:
        """Execute one call; always produces exactly one result."""
        try:
            result = await self.tool_registry.execute_tool(call.name, call.arguments, context)
        except Exception as e:
            self.logger.error(f"Error executing tool {call.name}: {str(e)}")
            result = ToolExecutionResult.failure(str(e) or "Tool execution failed")
        return result.model_copy(update={"tool_name": call.name, "tool_call_id": call.id})

    @staticmethod
    def _outcome(tool_results: List[ToolExecutionResult]) -> Outcome:
        if any(result.unavailable for result in tool_results):
            return Outcome.UNAVAILABLE
        if any(not result.success for result in tool_results):
            return Outcome.TOOL_ERROR
        return Outcome.SUCCESS

    @staticmethod
    def _build_system_prompt(tools: List[ToolDescriptor]) -> str:
        tool_descriptions = "\n".join(f"- {tool.name}: {tool.description or 'No description'}" for tool in tools)
        return f"""You are a helpful AI assistant with access to {len(tools)} tools.

Available tools:
{tool_descriptions}

When you need to use a tool, call it with the appropriate parameters. After receiving tool results, analyze them and provide a helpful response to the user.

Always explain what you're doing and why."""
