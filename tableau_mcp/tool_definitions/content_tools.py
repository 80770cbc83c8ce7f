"""
tableau_mcp/tool_definitions/content_tools.py
=============================================

Content exploration tools: data sources, workbooks, views, projects and
search.

Tool Responsibilities
---------------------
- ``list_datasources`` : published data sources, filterable.
- ``list_workbooks``   : workbooks, filterable.
- ``get_workbook``     : one workbook with its views.
- ``list_views``       : views with usage statistics, filterable.
- ``get_view_data``    : the data behind a view, as CSV.
- ``get_view_image``   : a PNG rendering of a view.
- ``list_projects``    : projects, filterable.
- ``search_content``   : keyword search across all content types.

List tools return JSON; every tool honours the bounded context.
"""

import logging
from typing import Dict, List, Optional

from fastmcp.utilities.types import Image
from pydantic import Field

from .listing import list_resources, with_filter_help
from .registry import mcp
from ..errors import TableauMcpError
from ..tools.filters import DATASOURCE_FIELDS, PROJECT_FIELDS, VIEW_FIELDS, WORKBOOK_FIELDS
from ..tools.formatters import format_as_json
from ..tools.search import (
    CONTENT_TYPES,
    MAX_SEARCH_LIMIT,
    ORDER_BY_METHODS,
    SORT_DIRECTIONS,
    build_order_by,
    build_search_filter,
    reduce_search_response,
)
from ..tools.toolkit import get_toolkit

logger = logging.getLogger(__name__)

FILTER_DESCRIPTION = "Filter expression (field:operator:value[,...]); empty for no filter"
PAGE_SIZE_DESCRIPTION = "Items per page request; the server default when omitted"


@mcp.tool()
@with_filter_help(DATASOURCE_FIELDS)
async def list_datasources(
    filter: str = Field("", description=FILTER_DESCRIPTION),
    page_size: Optional[int] = Field(None, description=PAGE_SIZE_DESCRIPTION),
    limit: Optional[int] = Field(None, description="Maximum number of data sources to return"),
) -> str:
    """List the published data sources on the site.

    Use this to find the LUID of a data source before reading its metadata
    or querying it with ``query_datasource``.
    """
    toolkit = get_toolkit()
    return await list_resources(
        toolkit,
        toolkit.tableau.list_datasources,
        plural="data sources",
        lexicon=DATASOURCE_FIELDS,
        filter=filter,
        page_size=page_size,
        limit=limit,
        allow=toolkit.bounded_context.allows_datasource,
    )


@mcp.tool()
@with_filter_help(WORKBOOK_FIELDS)
async def list_workbooks(
    filter: str = Field("", description=FILTER_DESCRIPTION),
    page_size: Optional[int] = Field(None, description=PAGE_SIZE_DESCRIPTION),
    limit: Optional[int] = Field(None, description="Maximum number of workbooks to return"),
) -> str:
    """List the workbooks on the site."""
    toolkit = get_toolkit()
    return await list_resources(
        toolkit,
        toolkit.tableau.list_workbooks,
        plural="workbooks",
        lexicon=WORKBOOK_FIELDS,
        filter=filter,
        page_size=page_size,
        limit=limit,
        allow=toolkit.bounded_context.allows_workbook,
    )


@mcp.tool()
async def get_workbook(
    workbook_id: str = Field(..., description="The workbook id (LUID)"),
) -> str:
    """Get one workbook, including its project, owner and views."""
    toolkit = get_toolkit()
    try:
        workbook = await toolkit.bounded_context.check_workbook(toolkit.tableau, workbook_id)
        if workbook is None:
            workbook = await toolkit.tableau.get_workbook(workbook_id)
        return format_as_json(workbook)
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)


@mcp.tool()
@with_filter_help(VIEW_FIELDS)
async def list_views(
    filter: str = Field("", description=FILTER_DESCRIPTION),
    page_size: Optional[int] = Field(None, description=PAGE_SIZE_DESCRIPTION),
    limit: Optional[int] = Field(None, description="Maximum number of views to return"),
) -> str:
    """List the views on the site, with usage statistics."""
    toolkit = get_toolkit()
    return await list_resources(
        toolkit,
        toolkit.tableau.list_views,
        plural="views",
        lexicon=VIEW_FIELDS,
        filter=filter,
        page_size=page_size,
        limit=limit,
        allow=toolkit.bounded_context.allows_view,
    )


@mcp.tool()
async def get_view_data(
    view_id: str = Field(..., description="The view id (LUID)"),
) -> str:
    """Get the data behind a view, in CSV format."""
    toolkit = get_toolkit()
    try:
        await toolkit.bounded_context.check_view(toolkit.tableau, view_id)
        return await toolkit.tableau.get_view_data(view_id)
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)


@mcp.tool()
async def get_view_image(
    view_id: str = Field(..., description="The view id (LUID)"),
    width: Optional[int] = Field(None, description="Image width in pixels"),
    height: Optional[int] = Field(None, description="Image height in pixels"),
):
    """Get a PNG image of a view."""
    toolkit = get_toolkit()
    try:
        await toolkit.bounded_context.check_view(toolkit.tableau, view_id)
        png = await toolkit.tableau.get_view_image(view_id, width, height)
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)
    logger.debug("Rendered view %s (%d bytes)", view_id, len(png))
    return Image(data=png, format="png")


@mcp.tool()
@with_filter_help(PROJECT_FIELDS)
async def list_projects(
    filter: str = Field("", description=FILTER_DESCRIPTION),
    page_size: Optional[int] = Field(None, description=PAGE_SIZE_DESCRIPTION),
    limit: Optional[int] = Field(None, description="Maximum number of projects to return"),
) -> str:
    """List the projects on the site."""
    toolkit = get_toolkit()
    return await list_resources(
        toolkit,
        toolkit.tableau.list_projects,
        plural="projects",
        lexicon=PROJECT_FIELDS,
        filter=filter,
        page_size=page_size,
        limit=limit,
        allow=toolkit.bounded_context.allows_project,
    )


@mcp.tool()
async def search_content(
    terms: str = Field("", description="Words to search for; empty to match all content"),
    limit: int = Field(100, ge=1, le=MAX_SEARCH_LIMIT, description="Maximum number of results"),
    order_by: Optional[List[Dict[str, str]]] = Field(
        None,
        description=(
            "Sort order, e.g. [{\"method\": \"hitsTotal\", \"sortDirection\": \"desc\"}]. "
            f"Methods: {', '.join(ORDER_BY_METHODS)}; directions: {', '.join(SORT_DIRECTIONS)}"
        ),
    ),
    content_types: Optional[List[str]] = Field(
        None, description=f"Only these content types: {', '.join(CONTENT_TYPES)}"
    ),
    owner_ids: Optional[List[int]] = Field(None, description="Only content owned by these user ids"),
    modified_after: Optional[str] = Field(None, description="Only content modified at or after this ISO 8601 time"),
    modified_before: Optional[str] = Field(None, description="Only content modified at or before this ISO 8601 time"),
) -> str:
    """Search the site's content (workbooks, views, data sources, projects, ...) by keyword.

    Results are ranked by relevance unless ``order_by`` is given.  Each result
    carries its type, LUID, title, owner, project and usage counts.
    """
    toolkit = get_toolkit()
    unknown_types = [t for t in content_types or [] if t not in CONTENT_TYPES]
    if unknown_types:
        return f"Unknown content type(s) {', '.join(unknown_types)}. Use any of: {', '.join(CONTENT_TYPES)}"
    for ordering in order_by or []:
        if ordering.get("method") not in ORDER_BY_METHODS:
            return f"Unknown order_by method '{ordering.get('method')}'. Use one of: {', '.join(ORDER_BY_METHODS)}"
        if ordering.get("sortDirection", "asc") not in SORT_DIRECTIONS:
            return f"Unknown sortDirection '{ordering['sortDirection']}'. Use asc or desc"

    try:
        body = await toolkit.tableau.search_content(
            terms=terms,
            limit=toolkit.result_cap(limit),
            order_by=build_order_by(order_by or []),
            filter=build_search_filter(content_types, owner_ids, modified_after, modified_before),
        )
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)

    results = reduce_search_response(body)
    if not results:
        return "No content matched the search."
    allowed = [hit for hit in results if toolkit.bounded_context.allows_search_hit(hit)]
    if not allowed:
        return (
            "The set of allowed content is limited by the server configuration. "
            "While search results were found, they were all filtered out by the server configuration."
        )
    return format_as_json(allowed)
