from __future__ import annotations
import logging
from typing import AsyncIterator, Optional

import anthropic
import openai
from openai import AsyncOpenAI

from .config import AgentConfig, API_KEY_ENV
from .errors import ConfigError, LLMError

logger = logging.getLogger(__name__)

_CONTEXT_MARKERS = ("context length", "context_length", "maximum context", "too many tokens", "prompt is too long")


def map_provider_error(e: Exception) -> LLMError:
    """Translate an SDK exception into one of the stream error types."""
    message = str(e)
    lowered = message.lower()
    status = getattr(e, "status_code", None)
    if isinstance(e, (openai.APIConnectionError, anthropic.APIConnectionError)):
        error_type = "NETWORK_ERROR"
    elif any(m in lowered for m in _CONTEXT_MARKERS):
        error_type = "CONTEXT_LENGTH_EXCEEDED"
    elif status == 402 or "quota" in lowered or "insufficient credits" in lowered:
        error_type = "INSUFFICIENT_QUOTA"
    elif isinstance(e, (openai.RateLimitError, anthropic.RateLimitError)) or status == 429:
        error_type = "RATE_LIMIT_EXCEEDED"
    else:
        error_type = "MODEL_ERROR"
    return LLMError(error_type, message, details={"status": status})


def to_anthropic_messages(messages: list[dict]) -> tuple[str, list[dict]]:
    """Anthropic wants one system prompt and strictly alternating user/assistant turns."""
    system_parts: list[str] = []
    out: list[dict] = []
    for i, m in enumerate(messages):
        role, content = m["role"], m["content"]
        if role == "system":
            if i == 0:
                system_parts.append(content)
                continue
            role, content = "user", f"[system]\n{content}"
        if out and out[-1]["role"] == role:
            out[-1]["content"] += "\n\n" + content
        else:
            out.append({"role": role, "content": content})
    if not out or out[0]["role"] != "user":
        out.insert(0, {"role": "user", "content": "Continue."})
    return "\n\n".join(system_parts), out


class ChatTransport:
    """Streaming and non-streaming chat calls against the configured provider.

    OpenRouter and OpenAI go through the OpenAI SDK; Anthropic through its own SDK.
    """

    def __init__(self, config: AgentConfig, api_key: Optional[str] = None):
        self.config = config
        self.provider = config.provider
        key = api_key or config.resolved_api_key()
        if not key:
            raise ConfigError(f"no API key for provider '{self.provider}', set {API_KEY_ENV[self.provider]}")
        if self.provider == "anthropic":
            self.anthropic_client = anthropic.AsyncAnthropic(api_key=key, base_url=config.resolved_base_url())
            self.openai_client = None
        else:
            self.openai_client = AsyncOpenAI(api_key=key, base_url=config.resolved_base_url())
            self.anthropic_client = None

    async def stream(self, model: str, messages: list[dict]) -> AsyncIterator[str]:
        logger.info(f"Streaming request to {model} with {len(messages)} messages")
        if self.anthropic_client is not None:
            async for piece in self._stream_anthropic(model, messages):
                yield piece
            return
        async for piece in self._stream_openai(model, messages):
            yield piece

    async def _stream_openai(self, model: str, messages: list[dict]) -> AsyncIterator[str]:
        try:
            stream = await self.openai_client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
                stream=True,
            )
        except openai.APIError as e:
            raise map_provider_error(e) from e
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                piece = getattr(chunk.choices[0].delta, "content", None)
                if piece:
                    yield piece
        except openai.APIError as e:
            raise map_provider_error(e) from e
        finally:
            await stream.close()

    async def _stream_anthropic(self, model: str, messages: list[dict]) -> AsyncIterator[str]:
        system, msgs = to_anthropic_messages(messages)
        try:
            async with self.anthropic_client.messages.stream(
                model=model,
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
                **({"system": system} if system else {}),
                messages=msgs,
            ) as stream:
                async for text in stream.text_stream:
                    if text:
                        yield text
        except anthropic.APIError as e:
            raise map_provider_error(e) from e

    async def send(self, model: str, messages: list[dict]) -> str:
        logger.info(f"Request to {model} with {len(messages)} messages")
        if self.anthropic_client is not None:
            system, msgs = to_anthropic_messages(messages)
            try:
                resp = await self.anthropic_client.messages.create(
                    model=model,
                    max_tokens=self.config.max_tokens,
                    temperature=self.config.temperature,
                    **({"system": system} if system else {}),
                    messages=msgs,
                )
            except anthropic.APIError as e:
                raise map_provider_error(e) from e
            return "".join(block.text for block in resp.content if getattr(block, "type", "") == "text")

        try:
            resp = await self.openai_client.chat.completions.create(
                model=model,
                messages=messages,
                temperature=self.config.temperature,
                max_tokens=self.config.max_tokens,
            )
        except openai.APIError as e:
            raise map_provider_error(e) from e
        if not resp.choices:
            raise LLMError("MODEL_ERROR", "empty response from model")
        return resp.choices[0].message.content or ""
