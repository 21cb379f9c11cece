"""
Capability registry for the Time MCP Server.

This module provides:
- ToolDefinition / ResourceDefinition / PromptDefinition: immutable
  descriptions of everything the server exposes
- CapabilityRegistry: name -> definition maps, filled once at startup and then
  frozen so concurrent handlers can read them without locks
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import TYPE_CHECKING, Any

from pydantic import BaseModel

if TYPE_CHECKING:
    from mcp_time.context import ToolContext

# Handlers receive the call context and the already-validated argument model
ToolHandler = Callable[["ToolContext", Any], Awaitable[dict[str, Any]]]
ResourceReader = Callable[[], Awaitable[dict[str, Any]]]
PromptRenderer = Callable[[dict[str, str]], Awaitable[dict[str, Any]]]


# =============================================================================
# Definitions
# =============================================================================


@dataclass(frozen=True)
class ToolDefinition:
    """
    Static description of one tool.

    Attributes:
        name: Unique tool name (exact, case-sensitive).
        description: Human-readable summary shown by tools/list.
        arguments: Pydantic model validating the call arguments.
        handler: Async function invoked with (ctx, validated arguments).
        result_schema: Optional JSON schema of the domain result.
    """

    name: str
    description: str
    arguments: type[BaseModel]
    handler: ToolHandler
    result_schema: dict[str, Any] | None = None

    @property
    def input_schema(self) -> dict[str, Any]:
        """JSON schema of the arguments, as advertised to clients."""
        return self.arguments.model_json_schema()

    def to_mcp(self) -> dict[str, Any]:
        """Return the tools/list entry for this tool."""
        entry: dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "inputSchema": self.input_schema,
        }
        if self.result_schema is not None:
            entry["outputSchema"] = self.result_schema
        return entry


@dataclass(frozen=True)
class ResourceDefinition:
    """Static description of one readable resource."""

    uri: str
    name: str
    description: str
    reader: ResourceReader
    mime_type: str = "application/json"

    def to_mcp(self) -> dict[str, Any]:
        """Return the resources/list entry for this resource."""
        return {
            "uri": self.uri,
            "name": self.name,
            "description": self.description,
            "mimeType": self.mime_type,
        }


@dataclass(frozen=True)
class PromptArgument:
    """One named argument accepted by a prompt."""

    name: str
    description: str
    required: bool = False

    def to_mcp(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "description": self.description,
            "required": self.required,
        }


@dataclass(frozen=True)
class PromptDefinition:
    """Static description of one prompt template."""

    name: str
    description: str
    renderer: PromptRenderer
    arguments: tuple[PromptArgument, ...] = field(default_factory=tuple)

    def to_mcp(self) -> dict[str, Any]:
        """Return the prompts/list entry for this prompt."""
        return {
            "name": self.name,
            "description": self.description,
            "arguments": [arg.to_mcp() for arg in self.arguments],
        }


# =============================================================================
# Registry
# =============================================================================


class CapabilityRegistry:
    """
    Registry of tools, resources and prompts.

    Definitions are registered at startup, then ``freeze()`` is called. After
    that the registry rejects further registration and its maps are exposed
    as read-only views.

    Example:
        >>> registry = CapabilityRegistry()
        >>> registry.register_tool(definition)
        >>> registry.freeze()
        >>> registry.lookup("get_current_time")
    """

    def __init__(self) -> None:
        """Initialize an empty, unfrozen registry."""
        self._tools: dict[str, ToolDefinition] = {}
        self._resources: dict[str, ResourceDefinition] = {}
        self._prompts: dict[str, PromptDefinition] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        """Whether ``freeze()`` has been called."""
        return self._frozen

    def _check_mutable(self) -> None:
        if self._frozen:
            raise RuntimeError("Registry is frozen; register capabilities at startup")

    def register_tool(self, definition: ToolDefinition) -> None:
        """
        Register a tool definition.

        Raises:
            RuntimeError: If the registry is frozen.
            ValueError: If a tool with the same name is already registered.
        """
        self._check_mutable()
        if definition.name in self._tools:
            raise ValueError(f"Tool '{definition.name}' is already registered")
        self._tools[definition.name] = definition

    def register_resource(self, definition: ResourceDefinition) -> None:
        """Register a resource definition, keyed by URI."""
        self._check_mutable()
        if definition.uri in self._resources:
            raise ValueError(f"Resource '{definition.uri}' is already registered")
        self._resources[definition.uri] = definition

    def register_prompt(self, definition: PromptDefinition) -> None:
        """Register a prompt definition."""
        self._check_mutable()
        if definition.name in self._prompts:
            raise ValueError(f"Prompt '{definition.name}' is already registered")
        self._prompts[definition.name] = definition

    def freeze(self) -> None:
        """Make the registry read-only. Calling it twice is harmless."""
        if self._frozen:
            return
        self._tools = MappingProxyType(self._tools)  # type: ignore[assignment]
        self._resources = MappingProxyType(self._resources)  # type: ignore[assignment]
        self._prompts = MappingProxyType(self._prompts)  # type: ignore[assignment]
        self._frozen = True

    @property
    def tools(self) -> Mapping[str, ToolDefinition]:
        return MappingProxyType(self._tools)

    @property
    def resources(self) -> Mapping[str, ResourceDefinition]:
        return MappingProxyType(self._resources)

    @property
    def prompts(self) -> Mapping[str, PromptDefinition]:
        return MappingProxyType(self._prompts)

    def lookup(self, name: str) -> ToolDefinition | None:
        """Exact, case-sensitive tool lookup. Unknown names return None."""
        return self._tools.get(name)

    def lookup_resource(self, uri: str) -> ResourceDefinition | None:
        return self._resources.get(uri)

    def lookup_prompt(self, name: str) -> PromptDefinition | None:
        return self._prompts.get(name)

    def list_tools(self) -> list[dict[str, Any]]:
        """Return tools/list entries in registration order."""
        return [tool.to_mcp() for tool in self._tools.values()]

    def list_resources(self) -> list[dict[str, Any]]:
        return [resource.to_mcp() for resource in self._resources.values()]

    def list_prompts(self) -> list[dict[str, Any]]:
        return [prompt.to_mcp() for prompt in self._prompts.values()]

    def snapshot_capabilities(self) -> dict[str, Any]:
        """
        Derive the advertised capabilities from the registry contents.

        A category is advertised only when at least one entry is registered.
        """
        capabilities: dict[str, Any] = {}
        if self._tools:
            capabilities["tools"] = {"listChanged": False}
        if self._resources:
            capabilities["resources"] = {"subscribe": False, "listChanged": False}
        if self._prompts:
            capabilities["prompts"] = {"listChanged": False}
        return capabilities

    def __contains__(self, name: str) -> bool:
        """Check if a tool is registered (for 'in' operator)."""
        return name in self._tools

    def __len__(self) -> int:
        """Return the number of registered tools."""
        return len(self._tools)
