"""
PromptX Chat Collaborators

Chat turns an entity's system identity, history and tool descriptors into a
normalized ChatResponse. AnthropicChat is the default implementation.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from anthropic import AsyncAnthropic

from .types import ChatResponse, Message, MessageRole, ToolCall
from ..config import RuntimeConfig
from ...utils.logger import get_logger

logger = get_logger(__name__)


class Chat(ABC):
    """Abstract chat completion collaborator"""

    @abstractmethod
    async def chat(
        self,
        system: str,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> ChatResponse:
        """
        Request one completion.

        Args:
            system: System prompt
            messages: Full conversation history
            tools: Capability descriptors ``{name, description, schema}``
        """

    async def close(self) -> None:
        """Release client resources."""


class AnthropicChat(Chat):
    """
    Chat backed by the Anthropic Messages API.

    Features:
    - Tool calling via ``tool_use`` / ``tool_result`` content blocks
    - Usage normalization (input/output/cache tokens)
    """

    def __init__(self, config: RuntimeConfig, client: Optional[AsyncAnthropic] = None):
        """
        Initialize Anthropic chat.

        Args:
            config: Runtime configuration (model, max_tokens, temperature, api key)
            client: Optional preconfigured client
        """
        self.config = config
        self.client = client or AsyncAnthropic(api_key=config.anthropic_api_key)
        logger.info("AnthropicChat initialized", model=config.model)

    async def chat(
        self,
        system: str,
        messages: List[Message],
        tools: Optional[List[Dict[str, Any]]] = None,
    ) -> ChatResponse:
        params: Dict[str, Any] = {
            "model": self.config.model,
            "max_tokens": self.config.max_tokens,
            "temperature": self.config.temperature,
            "system": system,
            "messages": self._convert_messages(messages),
        }
        if tools:
            params["tools"] = self._convert_tools(tools)

        try:
            raw = await self.client.messages.create(**params)
        except Exception as e:
            logger.error("Anthropic request failed", model=self.config.model, error=str(e))
            raise

        return self._parse_response(raw)

    def _convert_messages(self, messages: List[Message]) -> List[Dict[str, Any]]:
        """
        Convert history to Anthropic API format.

        Tool results travel as user messages with ``tool_result`` blocks.
        """
        anthropic_messages = []

        for msg in messages:
            if msg.role == MessageRole.USER:
                anthropic_messages.append({"role": "user", "content": msg.content or ""})

            elif msg.role == MessageRole.ASSISTANT:
                content = []
                if msg.content:
                    content.append({"type": "text", "text": msg.content})
                for tc in msg.tool_calls or []:
                    tc = ToolCall.from_dict(tc)
                    content.append({
                        "type": "tool_use",
                        "id": tc.id,
                        "name": tc.name,
                        "input": tc.arguments,
                    })
                if content:
                    anthropic_messages.append({"role": "assistant", "content": content})

            else:
                content = [
                    {
                        "type": "tool_result",
                        "tool_use_id": result.tool_call_id,
                        "content": str(result.content),
                    }
                    for result in msg.results or []
                ]
                anthropic_messages.append({"role": "user", "content": content})

        return anthropic_messages

    def _convert_tools(self, tools: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
        return [
            {
                "name": tool["name"],
                "description": tool.get("description") or "",
                "input_schema": tool.get("schema") or {"type": "object", "properties": {}},
            }
            for tool in tools
        ]

    def _parse_response(self, raw: Any) -> ChatResponse:
        text = ""
        tool_calls = []

        for block in raw.content:
            if block.type == "text":
                text += block.text
            elif block.type == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.id,
                        name=block.name,
                        arguments=dict(block.input or {}),
                    )
                )

        return ChatResponse(
            content=text or None,
            tool_calls=tool_calls,
            usage=self._extract_usage(raw),
            raw=raw,
        )

    def _extract_usage(self, raw: Any) -> Optional[Dict[str, Any]]:
        usage = getattr(raw, "usage", None)
        if usage is None:
            return None
        return {
            "input_tokens": getattr(usage, "input_tokens", 0) or 0,
            "output_tokens": getattr(usage, "output_tokens", 0) or 0,
            "cache_creation_tokens": getattr(usage, "cache_creation_input_tokens", 0) or 0,
            "cache_read_tokens": getattr(usage, "cache_read_input_tokens", 0) or 0,
            "model": self.config.model,
            "provider": "anthropic",
        }

    async def close(self) -> None:
        """Close the Anthropic client."""
        await self.client.close()
        logger.info("AnthropicChat closed")
