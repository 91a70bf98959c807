"""MCP content blocks returned from tool calls."""

from typing import Literal

from relay_mcp.types.base import MCPModel


class TextContent(MCPModel):
    """Text provided to or from an LLM."""

    type: Literal["text"] = "text"
    text: str
