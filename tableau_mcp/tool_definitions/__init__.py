"""
tableau_mcp/tool_definitions
============================

Every **MCP tool** the server exposes.

How tools work
--------------
1. ``registry.py`` creates a single ``FastMCP`` server instance (``mcp``).
2. Each domain module imports ``mcp`` from ``registry`` and decorates
   functions with ``@mcp.tool()``.  FastMCP infers the parameter schema from
   the type hints and ``pydantic.Field`` descriptions.
3. Tools get their clients from ``get_toolkit()`` and turn package errors
   into Markdown through ``ErrorHandler``.

Tool categories
---------------
- ``content_tools.py`` : data sources, workbooks, views, projects
- ``user_tools.py``    : users and groups
- ``query_tools.py``   : data source metadata and VizQL queries
- ``pulse_tools.py``   : Pulse definitions, metrics, subscriptions, insights
"""

from .registry import TOOL_NAMES, apply_tool_selection, mcp  # noqa: F401
