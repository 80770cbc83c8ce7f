"""
tableau_mcp/__init__.py
=======================

A Model Context Protocol server for Tableau Server and Tableau Cloud.

The FastMCP instance is re-exported so it can be mounted or run directly::

    from tableau_mcp import mcp

The process entry point lives in ``tableau_mcp.server``.
"""

from .tool_definitions import mcp  # noqa: F401

__all__ = ["mcp"]
