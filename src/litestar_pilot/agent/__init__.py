"""LLM agent support: the tool catalog, the agent loop and meta-tools."""

from __future__ import annotations

from litestar_pilot.agent.catalog import LocalTool, ToolCache, ToolCatalog, ToolLocation
from litestar_pilot.agent.loop import AgentLoop, parse_structured_output
from litestar_pilot.agent.meta import META_TOOL_NAMES, MetaTools

__all__ = [
    "META_TOOL_NAMES",
    "AgentLoop",
    "LocalTool",
    "MetaTools",
    "ToolCache",
    "ToolCatalog",
    "ToolLocation",
    "parse_structured_output",
]
