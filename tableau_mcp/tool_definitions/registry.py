"""
tableau_mcp/tool_definitions/registry.py
========================================

Single ``FastMCP`` server instance shared across all tool definition modules.

Each domain module imports ``mcp`` from here and decorates its functions with
``@mcp.tool()``; FastMCP builds each tool's JSON Schema from the type hints,
``pydantic.Field`` descriptions and docstring.  The imports at the bottom make
sure every decorator has run by the time anyone reads ``mcp``.

``INCLUDE_TOOLS`` / ``EXCLUDE_TOOLS`` are applied once at startup by
``apply_tool_selection``, which removes the unselected tools from the
server.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Iterable, List, Sequence

from fastmcp import FastMCP

from ..errors import ConfigurationError
from ..tools.toolkit import close_toolkit

logger = logging.getLogger(__name__)

TOOL_NAMES = (
    "list_datasources",
    "list_workbooks",
    "get_workbook",
    "list_views",
    "get_view_data",
    "get_view_image",
    "list_projects",
    "search_content",
    "list_users",
    "list_groups",
    "get_datasource_metadata",
    "query_datasource",
    "list_all_pulse_metric_definitions",
    "list_pulse_metric_definitions_from_definition_ids",
    "list_pulse_metrics_from_metric_definition_id",
    "list_pulse_metrics_from_metric_ids",
    "list_pulse_metric_subscriptions",
    "generate_pulse_metric_value_insight_bundle",
)


@asynccontextmanager
async def lifespan(server: FastMCP) -> AsyncIterator[None]:
    """Sign out and close the HTTP client when the server stops."""
    try:
        yield
    finally:
        logger.info("Shutting down; closing the Tableau session")
        await close_toolkit()


# The central MCP server.  All @mcp.tool() decorators register on this object.
mcp = FastMCP("Tableau MCP", lifespan=lifespan)


def select_tools(
    available: Sequence[str],
    include: Iterable[str] = (),
    exclude: Iterable[str] = (),
) -> List[str]:
    """Return the tools to remove so only the selected ones stay registered.

    Unknown names are logged and ignored.

    Raises
    ------
    ConfigurationError
        If both lists are given, or the selection leaves no tools.
    """
    include, exclude = list(include), list(exclude)
    if include and exclude:
        raise ConfigurationError("Cannot include and exclude tools simultaneously")

    for name in include + exclude:
        if name not in available:
            logger.warning("Ignoring unknown tool name %r", name)

    if include:
        removed = [name for name in available if name not in include]
    else:
        removed = [name for name in available if name in exclude]

    if len(removed) == len(available):
        raise ConfigurationError("The tool selection leaves no tools to register")
    return removed


def apply_tool_selection(server: FastMCP, include: Iterable[str] = (), exclude: Iterable[str] = ()) -> None:
    for name in select_tools(TOOL_NAMES, include, exclude):
        server.remove_tool(name)
        logger.info("Tool %s disabled by configuration", name)


# ── Import all tool modules to trigger @mcp.tool() registration ──────────────
from . import content_tools  # noqa: E402, F401
from . import user_tools     # noqa: E402, F401
from . import query_tools    # noqa: E402, F401
from . import pulse_tools    # noqa: E402, F401
