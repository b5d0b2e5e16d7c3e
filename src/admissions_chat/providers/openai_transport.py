from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any
from uuid import uuid4

import openai
from loguru import logger
from tenacity import retry

from admissions_chat.models import Message, text_part
from admissions_chat.providers.common import default_retry_kwargs, to_chat_history
from admissions_chat.streaming import MessageComplete, MessageStart, PartDelta, StreamEvent


class OpenAITransport:
    def __init__(
        self,
        api_key: str,
        *,
        model: str,
        max_tokens: int,
        temperature: float,
        system_prompt: str,
    ):
        self._client = openai.AsyncOpenAI(api_key=api_key)
        self._model = model
        self._max_tokens = max_tokens
        self._temperature = temperature
        self._system_prompt = system_prompt

    @retry(**default_retry_kwargs((
        openai.RateLimitError,
        openai.APIConnectionError,
        openai.APITimeoutError,
    )))
    async def _open_stream(self, **kwargs: Any):
        return await self._client.chat.completions.create(**kwargs)

    async def stream(self, messages: list[Message]) -> AsyncIterator[StreamEvent]:
        oai_messages: list[dict] = []
        if self._system_prompt:
            oai_messages.append({"role": "system", "content": self._system_prompt})
        oai_messages.extend(to_chat_history(messages))

        logger.debug(
            f"API request: model={self._model}, max_tokens={self._max_tokens}, "
            f"messages={len(oai_messages)}"
        )
        stream = await self._open_stream(
            model=self._model,
            max_tokens=self._max_tokens,
            temperature=self._temperature,
            messages=oai_messages,
            stream=True,
        )

        message_id = str(uuid4())
        finish_reason: str | None = None
        text_len = 0
        try:
            yield MessageStart(message_id)
            async for chunk in stream:
                choice = chunk.choices[0] if chunk.choices else None
                if choice is None:
                    continue
                if choice.finish_reason:
                    finish_reason = choice.finish_reason
                delta = choice.delta
                if delta is not None and delta.content:
                    text_len += len(delta.content)
                    yield PartDelta(message_id, text_part(delta.content))
        finally:
            await stream.close()

        logger.debug(f"API response: finish_reason={finish_reason}, text_len={text_len}")
        yield MessageComplete(message_id)
