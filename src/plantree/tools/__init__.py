"""MCP tool registration - modular tool definitions."""

import logging

from mcp.server.fastmcp import FastMCP

from ..config import Config
from .dependencies import register_dependencies_tools
from .nodes import register_nodes_tools
from .replan import register_replan_tools

logger = logging.getLogger(__name__)


def register_all_tools(mcp: FastMCP, config: Config) -> None:
	"""Register all MCP tools."""
	register_nodes_tools(mcp, config)
	register_dependencies_tools(mcp, config)
	register_replan_tools(mcp, config)
	logger.debug("Registered node, dependency and replan tools")
