"""Aggregated tool catalog across every connected tool server."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional

from models.tool_models import ToolDescriptor, ToolResult
from services.errors import PartialDiscoveryError, UnknownTool
from services.mcp.bridge import ToolServerBridge

LOGGER = logging.getLogger(__name__)


class ToolRegistry:
    """Build the namespaced catalog at discovery time and route calls back."""

    def __init__(self) -> None:
        self._tools: Dict[str, ToolDescriptor] = {}
        self._bridges: Dict[str, ToolServerBridge] = {}
        self._connected: List[ToolServerBridge] = []

    @property
    def bridges(self) -> List[ToolServerBridge]:
        """Every bridge handed to discovery, including ones that failed to list."""
        return list(self._connected)

    async def discover(self, bridges: Iterable[ToolServerBridge]) -> List[ToolDescriptor]:
        """Query every bridge for its tools and install the merged catalog.

        Each bridge contributes all of its tools or none. Bridges that fail are
        left out of the catalog, which is still installed before the failure
        is reported.

        Raises:
            PartialDiscoveryError: If at least one bridge failed to list tools.
        """
        bridges = list(bridges)
        self._connected = bridges
        results = await asyncio.gather(*(bridge.list_tools() for bridge in bridges), return_exceptions=True)

        catalog: Dict[str, ToolDescriptor] = {}
        routed: Dict[str, ToolServerBridge] = {}
        failures: Dict[str, BaseException] = {}
        for bridge, result in zip(bridges, results):
            if isinstance(result, BaseException):
                LOGGER.error("Tool discovery failed for '%s': %s", bridge.name, result)
                failures[bridge.name] = result
                continue
            routed[bridge.name] = bridge
            for descriptor in result:
                if descriptor.name in catalog:
                    LOGGER.warning("Duplicate tool name '%s' from '%s' ignored", descriptor.name, bridge.name)
                    continue
                catalog[descriptor.name] = descriptor

        self._tools = catalog
        self._bridges = routed
        LOGGER.info("Available tools:")
        for descriptor in catalog.values():
            LOGGER.info("  - %s: %s", descriptor.name, descriptor.description)

        if failures:
            raise PartialDiscoveryError(failures)
        return self.list_tools()

    def list_tools(self) -> List[ToolDescriptor]:
        return list(self._tools.values())

    def get(self, name: str) -> Optional[ToolDescriptor]:
        return self._tools.get(name)

    async def call(self, name: str, arguments: Optional[Dict[str, Any]] = None) -> ToolResult:
        """Invoke a catalog tool on the bridge that owns it.

        Raises:
            UnknownTool: If no catalog entry (or owning bridge) matches ``name``.
        """
        descriptor = self.get(name)
        if descriptor is None:
            raise UnknownTool(name)
        bridge = self._bridges.get(descriptor.server)
        if bridge is None:
            raise UnknownTool(name)
        return await bridge.call_tool(descriptor.original_name, arguments or {})

    async def shutdown(self) -> Dict[str, BaseException]:
        """Shut down every bridge concurrently and empty the catalog.

        Returns the bridges that failed to shut down cleanly, keyed by name.
        """
        bridges = self.bridges
        results = await asyncio.gather(*(bridge.shutdown() for bridge in bridges), return_exceptions=True)
        failures: Dict[str, BaseException] = {}
        for bridge, result in zip(bridges, results):
            if isinstance(result, BaseException):
                LOGGER.error("Shutting down tool server '%s' failed: %s", bridge.name, result)
                failures[bridge.name] = result
        self._tools = {}
        self._bridges = {}
        self._connected = []
        return failures
