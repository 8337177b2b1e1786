"""Tool catalog filter - which discovered MCP tools the model may see."""

import re
from typing import Any, Iterable

from mcp.types import Tool

READ_ONLY_PATTERN = re.compile(r"^(search|list|get|check|read|skill_)")

# Read-only tools whose names do not follow the prefix convention, plus
# compound tools that must be classified explicitly
ALWAYS_INCLUDE = frozenset(
    {
        "getFleetOverview",
        "getSecurityPosture",
        "getPolicyAnalysis",
        "getDeviceFullProfile",
        "getDevicesBatch",
        "getInventorySummary",
        "checkDeviceCompliance",
        "getDeviceComplianceSummary",
    }
)


def empty_input_schema() -> dict[str, Any]:
    return {"type": "object", "properties": {}}


def is_read_only_tool(name: str) -> bool:
    """Whether a tool is safe to expose to unattended (read-only) runs."""
    return bool(READ_ONLY_PATTERN.match(name)) or name in ALWAYS_INCLUDE


def map_tools(tools: Iterable[Tool], include_write_tools: bool = False) -> list[dict[str, Any]]:
    """Convert MCP tools to Anthropic tool definitions.

    By default only read-only tools are kept (safe for scheduled reports).
    """
    selected = [t for t in tools if include_write_tools or is_read_only_tool(t.name)]
    return [
        {
            "name": tool.name,
            "description": tool.description or "",
            "input_schema": tool.inputSchema or empty_input_schema(),
        }
        for tool in selected
    ]
