"""Tool providers for the orchestration loop.

This package provides the provider protocol, an in-process provider and the
registry that aggregates providers for the loop.

Example:
    from chatrelay.ai.orchestration.tools import (
        LocalToolProvider,
        ToolProviderRegistry,
    )

    provider = LocalToolProvider("local")

    @provider.tool("greet", "Greet someone")
    def greet(args):
        return f"Hello, {args.get('name', 'World')}!"

    registry = ToolProviderRegistry([provider])
    tools = await registry.refresh()
"""

from .types import (
    AsyncToolHandler,
    ProviderStatus,
    SimpleTool,
    ToolHandler,
    ToolProvider,
    ToolSpec,
    to_descriptor,
    wrap_handler_result,
)

from .registry import (
    DuplicateProviderError,
    DuplicateToolError,
    LocalToolProvider,
    ProviderNotFoundError,
    ProviderUnavailableError,
    ToolNotFoundError,
    ToolProviderRegistry,
)

__all__ = [
    # types.py
    "AsyncToolHandler",
    "ProviderStatus",
    "SimpleTool",
    "ToolHandler",
    "ToolProvider",
    "ToolSpec",
    "to_descriptor",
    "wrap_handler_result",
    # registry.py
    "DuplicateProviderError",
    "DuplicateToolError",
    "LocalToolProvider",
    "ProviderNotFoundError",
    "ProviderUnavailableError",
    "ToolNotFoundError",
    "ToolProviderRegistry",
]
