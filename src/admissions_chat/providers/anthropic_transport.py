from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import AsyncExitStack
from typing import Any
from uuid import uuid4

import anthropic
from loguru import logger
from tenacity import retry

from admissions_chat.models import Message, text_part
from admissions_chat.providers.common import default_retry_kwargs, parse_tool_input, to_chat_history
from admissions_chat.streaming import MessageComplete, MessageStart, PartDelta, StreamEvent

# Provider tool names mapped to the names the display registry knows.
_TOOL_NAME_ALIASES = {
    "web_search": "webSearch",
}

_TOOL_USE_BLOCKS = {"tool_use", "server_tool_use"}


def _display_tool_name(name: str) -> str:
    return _TOOL_NAME_ALIASES.get(name, name)


def _search_results(content: Any) -> Any:
    if isinstance(content, list):
        return [
            {"title": getattr(r, "title", ""), "url": getattr(r, "url", "")}
            for r in content
        ]
    return {"error": getattr(content, "error_code", "unknown")}


class AnthropicTransport:
    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
        web_search: bool = False,
        max_web_searches: int = 5,
    ):
        self._client = anthropic.AsyncAnthropic(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._system_prompt = system_prompt
        self._tools: list[dict] = []
        if web_search:
            self._tools.append(
                {"type": "web_search_20250305", "name": "web_search", "max_uses": max_web_searches}
            )

    @retry(**default_retry_kwargs((
        anthropic.RateLimitError,
        anthropic.APIConnectionError,
        anthropic.APITimeoutError,
    )))
    async def _open_stream(self, stack: AsyncExitStack, **kwargs: Any):
        return await stack.enter_async_context(self._client.messages.stream(**kwargs))

    async def stream(self, messages: list[Message]) -> AsyncIterator[StreamEvent]:
        history = to_chat_history(messages)
        kwargs: dict[str, Any] = dict(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            system=self._system_prompt,
            messages=history,
        )
        if self._tools:
            kwargs["tools"] = self._tools

        message_id = str(uuid4())
        tool_blocks: dict[int, dict] = {}
        logger.debug(
            f"API request: model={self._model}, max_tokens={self._max_tokens}, "
            f"messages={len(history)}, tools={len(self._tools)}"
        )

        async with AsyncExitStack() as stack:
            stream = await self._open_stream(stack, **kwargs)
            yield MessageStart(message_id)

            async for event in stream:
                if event.type == "content_block_start":
                    block = event.content_block
                    if block.type in _TOOL_USE_BLOCKS:
                        tool_blocks[event.index] = {"id": block.id, "name": block.name, "json_parts": []}
                    elif block.type == "web_search_tool_result":
                        yield PartDelta(
                            message_id,
                            {
                                "type": "tool-webSearch",
                                "toolCallId": block.tool_use_id,
                                "state": "output-available",
                                "output": _search_results(block.content),
                            },
                        )
                elif event.type == "content_block_delta":
                    if event.delta.type == "text_delta":
                        yield PartDelta(message_id, text_part(event.delta.text))
                    elif event.delta.type == "input_json_delta" and event.index in tool_blocks:
                        tool_blocks[event.index]["json_parts"].append(event.delta.partial_json)
                elif event.type == "content_block_stop":
                    acc = tool_blocks.pop(event.index, None)
                    if acc is not None:
                        yield PartDelta(
                            message_id,
                            {
                                "type": f"tool-{_display_tool_name(acc['name'])}",
                                "toolCallId": acc["id"],
                                "state": "input-available",
                                "input": parse_tool_input("".join(acc["json_parts"])),
                            },
                        )

            response = await stream.get_final_message()

        usage = response.usage
        logger.debug(
            f"API response: stop_reason={response.stop_reason}, "
            f"input_tokens={usage.input_tokens}, output_tokens={usage.output_tokens}"
        )
        yield MessageComplete(message_id)
