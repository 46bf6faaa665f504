"""Async model client built around OpenAI-compatible endpoints."""

from __future__ import annotations

import asyncio
import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Mapping, Sequence

import httpx
from openai import AsyncOpenAI, APIConnectionError, APIError, APIStatusError, RateLimitError
from openai.types.chat import ChatCompletionChunk
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from .orchestration.errors import UpstreamUnavailable
from .orchestration.types import (
    ContentFragment,
    FinishSignal,
    StreamEvent,
    ToolCallFragment,
    ToolDescriptor,
)

LOGGER = logging.getLogger(__name__)

# Local servers usually ignore the key, but the SDK insists on one.
_PLACEHOLDER_API_KEY = "not-needed"
_CONNECTION_ERRORS = (APIConnectionError, httpx.ConnectError, httpx.ConnectTimeout)
_RETRYABLE_ERRORS = (APIError, APIStatusError, APIConnectionError, RateLimitError, httpx.TimeoutException)
_SAMPLING_FIELDS = ("temperature", "max_tokens", "top_p", "presence_penalty", "frequency_penalty")


@dataclass(slots=True)
class ClientSettings:
    """Endpoint, sampling and retry options for :class:`AIClient`."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 3
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    temperature: float | None = 0.7
    max_tokens: int | None = None
    top_p: float | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    debug_logging: bool = False


def _openai_client(settings: ClientSettings) -> AsyncOpenAI:
    # Retries are handled here with tenacity, never inside the SDK.
    return AsyncOpenAI(
        api_key=settings.api_key or _PLACEHOLDER_API_KEY,
        base_url=settings.base_url,
        organization=settings.organization,
        timeout=settings.request_timeout,
        max_retries=0,
        default_headers=dict(settings.default_headers or {}) or None,
    )


class AIClient:
    """Async client streaming one chat turn at a time.

    Streaming is never retried: a connection failure surfaces as
    ``UpstreamUnavailable`` and the caller decides what to do. Model listing
    and health checks retry with exponential backoff.
    """

    def __init__(
        self,
        settings: ClientSettings,
        *,
        client: AsyncOpenAI | None = None,
    ) -> None:
        self._settings = settings
        self._client = client or _openai_client(settings)
        self._known_models: tuple[str, ...] | None = None
        self._listing_lock = asyncio.Lock()

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    async def stream_turn(
        self,
        messages: Sequence[Mapping[str, Any]],
        *,
        tools: Sequence[ToolDescriptor] | None = None,
    ) -> AsyncIterator[StreamEvent]:
        """Stream typed events for one model turn.

        Raises:
            ValueError: If ``messages`` is empty.
            UpstreamUnavailable: If the endpoint cannot be reached.
        """

        request = self._chat_request(messages, tools)
        LOGGER.debug(
            "Streaming %s with %d message(s) and %d tool(s)",
            request["model"],
            len(request["messages"]),
            len(request.get("tools", ())),
        )
        if self._settings.debug_logging:
            LOGGER.debug("Chat request:\n%s", json.dumps(request, ensure_ascii=False, indent=2, default=str))

        try:
            stream = await self._client.chat.completions.create(**request)
        except _CONNECTION_ERRORS as exc:
            raise UpstreamUnavailable.for_endpoint(self._settings.base_url) from exc

        try:
            async for chunk in stream:
                for event in _chunk_events(chunk):
                    yield event
        except _CONNECTION_ERRORS as exc:
            raise UpstreamUnavailable.for_endpoint(self._settings.base_url) from exc
        finally:
            await _aclose_resource(stream)

    async def list_models(self, *, force_refresh: bool = False) -> List[str]:
        """Return the model identifiers the endpoint serves; cached after the first call."""

        async with self._listing_lock:
            if self._known_models is None or force_refresh:
                self._known_models = await self._fetch_models()
            return list(self._known_models)

    async def health_check(self) -> bool:
        """Return True when the endpoint answers a model listing."""

        try:
            await self.list_models(force_refresh=True)
        except (APIError, httpx.HTTPError) as exc:
            LOGGER.warning("Health check against %s failed: %s", self._settings.base_url, exc)
            return False
        return True

    async def aclose(self) -> None:
        """Release the underlying HTTP connection pool."""

        await _aclose_resource(self._client)

    async def _fetch_models(self) -> tuple[str, ...]:
        settings = self._settings
        retrying = AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, settings.max_retries)),
            wait=wait_exponential(multiplier=settings.retry_min_seconds, max=settings.retry_max_seconds),
            retry=retry_if_exception_type(_RETRYABLE_ERRORS),
        )
        async for attempt in retrying:
            with attempt:
                page = await self._client.models.list()
        return tuple(model.id for model in page.data if getattr(model, "id", None))

    def _chat_request(
        self,
        messages: Sequence[Mapping[str, Any]],
        tools: Sequence[ToolDescriptor] | None,
    ) -> Dict[str, Any]:
        if not messages:
            raise ValueError("At least one message is required to start a chat")
        settings = self._settings
        request: Dict[str, Any] = {
            "model": settings.model,
            "messages": [dict(message) for message in messages],
            "stream": True,
        }
        if tools:
            request["tools"] = [tool.to_openai_tool() for tool in tools]
        for name in _SAMPLING_FIELDS:
            value = getattr(settings, name)
            if value is not None:
                request[name] = value
        return request


def _chunk_events(chunk: ChatCompletionChunk) -> List[StreamEvent]:
    """Translate one SDK chunk into content, tool-call and finish events."""

    if not chunk.choices:
        return []
    choice = chunk.choices[0]
    delta = choice.delta
    events: List[StreamEvent] = []
    if delta is not None:
        if delta.content:
            events.append(ContentFragment(str(delta.content)))
        for call in delta.tool_calls or ():
            function = call.function
            events.append(
                ToolCallFragment(
                    index=call.index or 0,
                    id=call.id,
                    type=call.type,
                    name=function.name if function is not None else None,
                    arguments=function.arguments if function is not None else None,
                )
            )
    if choice.finish_reason:
        events.append(FinishSignal(str(choice.finish_reason)))
    return events


async def _aclose_resource(resource: Any) -> None:
    close = getattr(resource, "close", None)
    if close is None:
        return
    result = close()
    if inspect.isawaitable(result):
        await result


__all__ = ["AIClient", "ClientSettings"]
