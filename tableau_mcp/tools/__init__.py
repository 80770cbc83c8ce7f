"""
tableau_mcp/tools
=================

Infrastructure and shared utilities.  Nothing here is visible to the MCP
client directly: these are the building blocks the tool functions in
``tool_definitions/`` use.

Modules
-------
- ``credentials.py``     : the three credential variants.
- ``token_signer.py``    : connected-app JWT signing.
- ``session.py``         : sign-in, single-flight, retry-once on 401, sign-out.
- ``filters.py``         : filter grammar and per-tool field lexicons.
- ``pagination.py``      : page-numbered fetching with a result cap.
- ``tableau_client.py``  : REST, VizQL, Metadata, Pulse and search endpoints.
- ``search.py``          : content search filter, ordering and hit shaping.
- ``bounded_context.py`` : project / data source / workbook allow-lists.
- ``error_handler.py``   : user-friendly error formatting.
- ``formatters.py``      : JSON and Markdown table output.
- ``toolkit.py``         : dependency container shared by all tools.
"""

from .formatters import format_as_json, format_as_table  # noqa: F401
