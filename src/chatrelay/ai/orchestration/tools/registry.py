"""Tool provider registry.

This module aggregates tool providers behind a single ``list_tools`` /
``call_tool`` surface and isolates failures per provider: one provider that
cannot list its tools is marked as errored and simply contributes nothing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Mapping, Sequence

from ..types import ToolDescriptor
from .types import (
    AsyncToolHandler,
    ProviderStatus,
    SimpleTool,
    ToolHandler,
    ToolProvider,
    ToolSpec,
    to_descriptor,
)

__all__ = [
    "ToolProviderRegistry",
    "LocalToolProvider",
    "DuplicateToolError",
    "DuplicateProviderError",
    "ToolNotFoundError",
    "ProviderNotFoundError",
    "ProviderUnavailableError",
]

LOGGER = logging.getLogger(__name__)


# -----------------------------------------------------------------------------
# Exceptions
# -----------------------------------------------------------------------------


class DuplicateToolError(Exception):
    """Raised when attempting to register a tool with a name that already exists."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' is already registered")


class ToolNotFoundError(Exception):
    """Raised when a provider is asked for a tool it does not host."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


class DuplicateProviderError(Exception):
    """Raised when a provider id is registered twice."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"Tool provider '{provider_id}' is already registered")


class ProviderNotFoundError(Exception):
    """Raised when a call targets an unknown provider id."""

    def __init__(self, provider_id: str) -> None:
        self.provider_id = provider_id
        super().__init__(f"Tool provider {provider_id} not found")


class ProviderUnavailableError(Exception):
    """Raised when a call targets a provider whose last refresh failed."""

    def __init__(self, provider_id: str, reason: str | None = None) -> None:
        self.provider_id = provider_id
        self.reason = reason
        detail = f" ({reason})" if reason else ""
        super().__init__(f"Tool provider '{provider_id}' is not connected{detail}")


# -----------------------------------------------------------------------------
# Local Provider
# -----------------------------------------------------------------------------


class LocalToolProvider:
    """In-process provider backed by Python callables.

    Example:
        provider = LocalToolProvider("local")

        @provider.tool("get_steps", "Daily step counts")
        def get_steps(args):
            return [{"date": "2024-01-01", "steps": 100}]
    """

    def __init__(self, provider_id: str = "local") -> None:
        self._provider_id = provider_id
        self._tools: dict[str, SimpleTool] = {}

    @property
    def provider_id(self) -> str:
        return self._provider_id

    def register(
        self,
        spec: ToolSpec,
        handler: ToolHandler | AsyncToolHandler,
        *,
        allow_override: bool = False,
    ) -> SimpleTool:
        """Register ``handler`` under ``spec.name``.

        Raises:
            DuplicateToolError: If the name is taken and ``allow_override`` is False.
        """
        if spec.name in self._tools and not allow_override:
            raise DuplicateToolError(spec.name)
        tool = SimpleTool(spec=spec, handler=handler)
        self._tools[spec.name] = tool
        LOGGER.debug("Registered tool %s on provider %s", spec.name, self._provider_id)
        return tool

    def tool(
        self,
        name: str,
        description: str = "",
        parameters: Mapping[str, Any] | None = None,
    ) -> Callable[[ToolHandler | AsyncToolHandler], ToolHandler | AsyncToolHandler]:
        """Decorator form of :meth:`register`."""

        def decorator(handler: ToolHandler | AsyncToolHandler) -> ToolHandler | AsyncToolHandler:
            self.register(ToolSpec(name=name, description=description, parameters=parameters or {}), handler)
            return handler

        return decorator

    def unregister(self, name: str) -> bool:
        return self._tools.pop(name, None) is not None

    async def list_tools(self) -> list[ToolDescriptor]:
        return [tool.spec.to_descriptor(self._provider_id) for tool in self._tools.values()]

    async def call_tool(self, name: str, arguments: Mapping[str, Any]) -> Any:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFoundError(name)
        return await tool.execute(arguments)


# -----------------------------------------------------------------------------
# Provider Registry
# -----------------------------------------------------------------------------


@dataclass(slots=True)
class _ProviderEntry:
    provider: ToolProvider
    tools: list[ToolDescriptor] = field(default_factory=list)
    connected: bool = False
    error: str | None = None


class ToolProviderRegistry:
    """Aggregates tool providers.

    ``refresh`` lists every provider concurrently and caches the result;
    ``list_tools`` and ``statuses`` read that cache. Calls are routed by
    provider id, so providers may expose tools with overlapping names.
    """

    def __init__(self, providers: Sequence[ToolProvider] = ()) -> None:
        self._entries: dict[str, _ProviderEntry] = {}
        for provider in providers:
            self.register(provider)

    def register(self, provider: ToolProvider, *, allow_override: bool = False) -> None:
        """Add ``provider``; its tools become visible after the next refresh.

        Raises:
            DuplicateProviderError: If the id is taken and ``allow_override`` is False.
        """
        provider_id = provider.provider_id
        if provider_id in self._entries and not allow_override:
            raise DuplicateProviderError(provider_id)
        self._entries[provider_id] = _ProviderEntry(provider=provider)
        LOGGER.debug("Registered tool provider: %s", provider_id)

    def unregister(self, provider_id: str) -> bool:
        if self._entries.pop(provider_id, None) is None:
            return False
        LOGGER.debug("Unregistered tool provider: %s", provider_id)
        return True

    def get(self, provider_id: str) -> ToolProvider | None:
        entry = self._entries.get(provider_id)
        return entry.provider if entry is not None else None

    @property
    def provider_ids(self) -> list[str]:
        return list(self._entries)

    async def refresh(self) -> list[ToolDescriptor]:
        """Re-list tools from every provider and return the combined list."""
        entries = list(self._entries.items())
        outcomes = await asyncio.gather(
            *(self._list_provider(provider_id, entry) for provider_id, entry in entries),
            return_exceptions=True,
        )
        for (provider_id, entry), outcome in zip(entries, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                LOGGER.warning("Tool provider %s failed to list tools: %s", provider_id, outcome)
                entry.tools = []
                entry.connected = False
                entry.error = str(outcome) or type(outcome).__name__
                continue
            entry.tools = outcome
            entry.connected = True
            entry.error = None
        return self.list_tools()

    @staticmethod
    async def _list_provider(provider_id: str, entry: _ProviderEntry) -> list[ToolDescriptor]:
        listed = await entry.provider.list_tools()
        return [to_descriptor(item, provider_id) for item in listed]

    def list_tools(self) -> list[ToolDescriptor]:
        """Return cached descriptors from connected providers, one per tool name.

        When providers share a tool name the first registered provider keeps it.
        """
        tools: list[ToolDescriptor] = []
        seen: dict[str, str] = {}
        for provider_id, entry in self._entries.items():
            if not entry.connected:
                continue
            for descriptor in entry.tools:
                owner = seen.get(descriptor.name)
                if owner is None:
                    seen[descriptor.name] = provider_id
                    tools.append(descriptor)
                    continue
                if owner != provider_id:
                    LOGGER.warning(
                        "Tool %s offered by both %s and %s; keeping %s",
                        descriptor.name,
                        owner,
                        provider_id,
                        owner,
                    )
        return tools

    async def call_tool(self, provider_id: str, name: str, arguments: Mapping[str, Any]) -> Any:
        """Route a call to the owning provider.

        Raises:
            ProviderNotFoundError: If ``provider_id`` is not registered.
            ProviderUnavailableError: If the provider's last refresh failed.
        """
        entry = self._entries.get(provider_id)
        if entry is None:
            raise ProviderNotFoundError(provider_id)
        if entry.error is not None:
            raise ProviderUnavailableError(provider_id, entry.error)
        LOGGER.debug("Calling tool %s on provider %s", name, provider_id)
        return await entry.provider.call_tool(name, arguments)

    def statuses(self) -> list[ProviderStatus]:
        return [
            ProviderStatus(
                id=provider_id,
                connected=entry.connected,
                tool_count=len(entry.tools),
                error=entry.error,
            )
            for provider_id, entry in self._entries.items()
        ]
