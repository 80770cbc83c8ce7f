"""
tableau_mcp/tool_definitions/user_tools.py
==========================================

Site user and group listings.  Users and groups sit outside the bounded
context, which only restricts content.
"""

from typing import Optional

from pydantic import Field

from .listing import list_resources, with_filter_help
from .registry import mcp
from ..tools.filters import GROUP_FIELDS, USER_FIELDS
from ..tools.toolkit import get_toolkit


@mcp.tool()
@with_filter_help(USER_FIELDS)
async def list_users(
    filter: str = Field("", description="Filter expression (field:operator:value[,...])"),
    page_size: Optional[int] = Field(None, description="Items per page request"),
    limit: Optional[int] = Field(None, description="Maximum number of users to return"),
) -> str:
    """List the users on the site."""
    toolkit = get_toolkit()
    return await list_resources(
        toolkit,
        toolkit.tableau.list_users,
        plural="users",
        lexicon=USER_FIELDS,
        filter=filter,
        page_size=page_size,
        limit=limit,
    )


@mcp.tool()
@with_filter_help(GROUP_FIELDS)
async def list_groups(
    filter: str = Field("", description="Filter expression (field:operator:value[,...])"),
    page_size: Optional[int] = Field(None, description="Items per page request"),
    limit: Optional[int] = Field(None, description="Maximum number of groups to return"),
) -> str:
    """List the groups on the site."""
    toolkit = get_toolkit()
    return await list_resources(
        toolkit,
        toolkit.tableau.list_groups,
        plural="groups",
        lexicon=GROUP_FIELDS,
        filter=filter,
        page_size=page_size,
        limit=limit,
    )
