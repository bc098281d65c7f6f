"""
Chat backends for the agent orchestrator.

Two interchangeable implementations of the same chat contract:

- ``OllamaBackend``: the primary, a local Ollama server reached over its REST API.
- ``BedrockBackend``: the secondary, AWS Bedrock through LangChain. It also exposes
  a single-shot ``generate`` path used when the controller fails a request over.

Every transport or protocol failure surfaces as ``BackendUnavailableError``.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List

import requests
from langchain_aws import ChatBedrock
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage, ToolMessage

from .config import PrimaryBackendConfig, SecondaryBackendConfig
from .exceptions import BackendUnavailableError
from .models import BackendResponse, ChatMessage, ToolCall


class ChatBackend(ABC):
    """Base class for chat-completion backends."""

    name: str = "backend"

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    @abstractmethod
    async def check_availability(self) -> bool:
        """Return True when the backend can take requests."""
        pass

    @abstractmethod
    async def chat(self, messages: List[ChatMessage],
                   tools: Optional[List[Dict[str, Any]]] = None) -> BackendResponse:
        """Send a conversation, optionally with function-calling tool schemas."""
        pass

    def _unavailable(self, message: str, error: Optional[Exception] = None) -> BackendUnavailableError:
        details = {"original_error": str(error)} if error is not None else {}
        return BackendUnavailableError(f"{self.name} service is not available: {message}", self.name,
                                       details=details)


class OllamaBackend(ChatBackend):
    """Primary backend: local Ollama server."""

    name = "ollama"

    def __init__(self, config: PrimaryBackendConfig, logger: logging.Logger):
        super().__init__(logger)
        self.config = config
        self.base_url = config.base_url.rstrip("/")
        self.model = config.model

    async def check_availability(self) -> bool:
        """Check that the server answers and has the configured model installed."""
        try:
            response = await asyncio.to_thread(
                requests.get, f"{self.base_url}/api/tags", timeout=self.config.availability_timeout
            )
            if not response.ok:
                return False

            data = response.json()
            names = [m.get("name") or m.get("model") or "" for m in data.get("models", [])]
            family = self.model.split(":")[0]
            available = any(name == self.model or family in name for name in names)
            self.logger.info(f"Ollama models: {', '.join(names)}; {self.model} available: {available}")
            return available

        except (requests.RequestException, ValueError) as e:
            self.logger.warning(f"Ollama not available: {str(e)}")
            return False

    async def chat(self, messages: List[ChatMessage],
                   tools: Optional[List[Dict[str, Any]]] = None) -> BackendResponse:
        """Call the Ollama chat API."""
        body: Dict[str, Any] = {
            "model": self.model,
            "messages": [self._to_wire(message) for message in messages],
            "stream": False,
            "options": {
                "temperature": self.config.temperature,
                "top_p": self.config.top_p,
                "num_predict": self.config.num_predict
            }
        }
        if tools:
            body["tools"] = tools

        try:
            response = await asyncio.to_thread(
                requests.post, f"{self.base_url}/api/chat", json=body, timeout=self.config.timeout
            )
            response.raise_for_status()
            data = response.json()
        except requests.RequestException as e:
            self.logger.error(f"Ollama chat error: {str(e)}")
            raise self._unavailable("chat request failed", e)
        except ValueError as e:
            raise self._unavailable("invalid JSON from chat API", e)

        return self._parse_response(data)

    def _parse_response(self, data: Dict[str, Any]) -> BackendResponse:
        assistant_message = data.get("message") or {}

        tool_calls: List[ToolCall] = []
        for raw_call in assistant_message.get("tool_calls") or []:
            function = raw_call.get("function") or {}
            arguments = function.get("arguments") or {}
            if isinstance(arguments, str):
                try:
                    arguments = json.loads(arguments or "{}")
                except json.JSONDecodeError as e:
                    self.logger.warning(f"Failed to parse tool call arguments for {function.get('name')}: {str(e)}")
                    continue
            tool_calls.append(ToolCall(name=function.get("name", ""), arguments=arguments, id=raw_call.get("id")))

        if tool_calls:
            finish_reason = "tool_calls"
        elif data.get("done_reason") == "length":
            finish_reason = "length"
        else:
            finish_reason = "stop"

        return BackendResponse(
            message=assistant_message.get("content") or "",
            tool_calls=tool_calls,
            finish_reason=finish_reason
        )

    def _to_wire(self, message: ChatMessage) -> Dict[str, Any]:
        wire: Dict[str, Any] = {"role": message.role, "content": message.content}
        if message.role == "tool" and message.name:
            wire["tool_name"] = message.name
        if message.tool_calls:
            wire["tool_calls"] = [
                {"function": {"name": call.name, "arguments": call.arguments}}
                for call in message.tool_calls
            ]
        return wire


class BedrockBackend(ChatBackend):
    """Secondary backend: AWS Bedrock through LangChain."""

    name = "bedrock"

    def __init__(self, config: SecondaryBackendConfig, logger: logging.Logger):
        super().__init__(logger)
        self.config = config
        self._llm: Optional[ChatBedrock] = None

    def _get_llm(self) -> ChatBedrock:
        """Create the Bedrock client on first use."""
        if self._llm is None:
            try:
                self._llm = ChatBedrock(
                    model_id=self.config.model,
                    region_name=self.config.region,
                    model_kwargs={
                        "temperature": self.config.temperature,
                        "max_tokens": self.config.max_tokens,
                    }
                )
            except Exception as e:
                raise self._unavailable("failed to initialize Bedrock client", e)
        return self._llm

    async def check_availability(self) -> bool:
        try:
            self._get_llm()
            return True
        except BackendUnavailableError as e:
            self.logger.warning(str(e))
            return False

    async def chat(self, messages: List[ChatMessage],
                   tools: Optional[List[Dict[str, Any]]] = None) -> BackendResponse:
        """Call Bedrock with optional tool binding."""
        llm = self._get_llm()
        runnable = llm.bind_tools(tools) if tools else llm
        response = await self._invoke(runnable, [self._to_langchain(message) for message in messages])

        tool_calls = [
            ToolCall(name=call["name"], arguments=call.get("args") or {}, id=call.get("id"))
            for call in getattr(response, "tool_calls", None) or []
        ]
        return BackendResponse(
            message=self._text(response),
            tool_calls=tool_calls,
            finish_reason="tool_calls" if tool_calls else "stop"
        )

    async def generate(self, prompt: str, system_prompt: Optional[str] = None,
                       history: Optional[List[ChatMessage]] = None) -> str:
        """Single-shot generation without tools."""
        messages: List[BaseMessage] = []
        if system_prompt:
            messages.append(SystemMessage(content=system_prompt))
        for message in history or []:
            if message.role in ("user", "assistant"):
                messages.append(self._to_langchain(message))
        messages.append(HumanMessage(content=prompt))

        response = await self._invoke(self._get_llm(), messages)
        return self._text(response)

    async def _invoke(self, runnable: Any, messages: List[BaseMessage]) -> Any:
        try:
            return await asyncio.wait_for(runnable.ainvoke(messages), timeout=self.config.timeout)
        except asyncio.TimeoutError as e:
            raise self._unavailable(f"no response within {self.config.timeout}s", e)
        except Exception as e:
            self.logger.error(f"Bedrock call failed: {str(e)}")
            raise self._unavailable("LLM call failed", e)

    @staticmethod
    def _text(response: Any) -> str:
        content = getattr(response, "content", "")
        if isinstance(content, list):
            return "".join(
                block.get("text", "") if isinstance(block, dict) else str(block)
                for block in content
            )
        return content or ""

    @staticmethod
    def _to_langchain(message: ChatMessage) -> BaseMessage:
        if message.role == "system":
            return SystemMessage(content=message.content)
        if message.role == "assistant":
            return AIMessage(
                content=message.content,
                tool_calls=[
                    {"name": call.name, "args": call.arguments, "id": call.id}
                    for call in message.tool_calls
                ]
            )
        if message.role == "tool":
            return ToolMessage(content=message.content, tool_call_id=message.tool_call_id or "",
                               name=message.name)
        return HumanMessage(content=message.content)
