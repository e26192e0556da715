import json
import logging
from dataclasses import dataclass, field

import anthropic

from crm_assistant.schemas.assistant import Message, ToolCall
from crm_assistant.services.ask_confirm import render_for_model

logger = logging.getLogger(__name__)


@dataclass
class ModelReply:
    content: str = ""
    tool_calls: list[ToolCall] = field(default_factory=list)
    tokens_input: int = 0
    tokens_output: int = 0


def _tool_input(arguments: dict | str) -> dict:
    if isinstance(arguments, dict):
        return arguments
    try:
        decoded = json.loads(arguments)
    except json.JSONDecodeError:
        return {}
    return decoded if isinstance(decoded, dict) else {}


def to_provider_messages(history: list[Message]) -> list[dict]:
    """Convert chat history into Anthropic Messages API turns.

    System messages are not turns in that API and must be passed separately;
    they are skipped here. Tool results are sent back as user turns holding
    ``tool_result`` blocks.
    """
    messages: list[dict] = []
    for message in history:
        if message.role == "system":
            continue
        if message.role == "tool":
            messages.append(
                {
                    "role": "user",
                    "content": [
                        {
                            "type": "tool_result",
                            "tool_use_id": message.tool_call_id,
                            "content": message.content,
                        }
                    ],
                }
            )
        elif message.role == "assistant" and message.tool_calls:
            content: list[dict] = []
            if message.content:
                content.append({"type": "text", "text": message.content})
            for call in message.tool_calls:
                content.append(
                    {
                        "type": "tool_use",
                        "id": call.id,
                        "name": call.name,
                        "input": _tool_input(call.arguments),
                    }
                )
            messages.append({"role": "assistant", "content": content})
        else:
            messages.append({"role": message.role, "content": render_for_model(message)})
    return messages


class ClaudeChatClient:
    """Chat completion with optional tool use, wrapping the Anthropic SDK."""

    def __init__(
        self,
        api_key: str,
        model: str = "claude-sonnet-4-20250514",
        *,
        max_tokens: int = 2048,
        timeout: float = 60.0,
    ):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self.model = model
        self.max_tokens = max_tokens
        self.timeout = timeout

    async def complete(
        self,
        system: str,
        history: list[Message],
        tools: list[dict] | None = None,
    ) -> ModelReply:
        """One model turn. Tool calls are returned in the order the model emitted them."""
        kwargs: dict = {}
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = {"type": "auto"}

        response = await self._client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            system=system,
            messages=to_provider_messages(history),
            timeout=self.timeout,
            **kwargs,
        )

        text_parts = [b.text for b in response.content if b.type == "text"]
        tool_calls = [
            ToolCall(id=b.id, name=b.name, arguments=b.input)
            for b in response.content
            if b.type == "tool_use"
        ]
        logger.info(
            "Model reply: tokens_in=%d tokens_out=%d tool_calls=%d stop_reason=%s",
            response.usage.input_tokens,
            response.usage.output_tokens,
            len(tool_calls),
            response.stop_reason,
        )
        return ModelReply(
            content="\n".join(text_parts),
            tool_calls=tool_calls,
            tokens_input=response.usage.input_tokens,
            tokens_output=response.usage.output_tokens,
        )

    async def complete_text(self, system: str, prompt: str, *, max_tokens: int = 1024) -> str:
        """Single-purpose completion without tools; returns the text only."""
        response = await self._client.messages.create(
            model=self.model,
            max_tokens=max_tokens,
            system=system,
            messages=[{"role": "user", "content": prompt}],
            timeout=self.timeout,
        )
        return "\n".join(b.text for b in response.content if b.type == "text").strip()
