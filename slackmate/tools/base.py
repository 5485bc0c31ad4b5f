"""
Base classes for tool adapters.

Every backend a tool call can be routed to (local actions, REST
collaborators, the MCP bridge) implements ToolAdapter so the dispatcher can
treat them uniformly.
"""

from abc import ABC, abstractmethod
from typing import Any


class ToolAdapter(ABC):
    """
    Abstract base class for tool adapters.

    Adapters are async context managers: ``initialize()`` acquires whatever
    the adapter needs (typically an ``httpx.AsyncClient``) and ``shutdown()``
    releases it.

    ``call()`` returns a JSON-serialisable mapping. Adapters report expected
    failures as ``{"success": False, "message": ...}`` and may raise for
    unexpected ones; the dispatcher turns raised errors into the same shape.
    """

    async def initialize(self) -> None:
        """Acquire connections or other resources. No-op by default."""

    async def shutdown(self) -> None:
        """Release resources acquired in initialize(). No-op by default."""

    @abstractmethod
    async def call(self, tool_name: str, arguments: dict[str, Any]) -> dict[str, Any]:
        """
        Call a tool with the given arguments.

        Args:
            tool_name: Adapter-level tool name (or composite key for the bridge)
            arguments: Tool-specific arguments

        Returns:
            Tool execution result as a dictionary

        Raises:
            ValueError: If tool_name is unknown to this adapter
            RuntimeError: If the adapter has not been initialized
        """

    @abstractmethod
    async def list_tools(self) -> list[dict[str, Any]]:
        """
        List the tools this adapter serves.

        Returns:
            List of ``{"name", "description", "input_schema"}`` mappings.
        """

    async def __aenter__(self):
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.shutdown()
        return False
