"""
tableau_mcp/tool_definitions/query_tools.py
===========================================

Querying published data sources through the VizQL Data Service.

The usual flow is two calls:

1. ``get_datasource_metadata``: learn the field captions, types and roles.
   Unless ``DISABLE_METADATA_API_REQUESTS`` is set, the VizQL field list is
   enriched with descriptions from the Metadata API (GraphQL).
2. ``query_datasource``: send a VizQL query built from those captions.

A 404 from the VizQL Data Service means the feature is off for the site and
is reported as such rather than as "not found".
"""

import logging
from typing import Any, Dict, List

from pydantic import Field

from .registry import mcp
from ..errors import InvalidQueryError, TableauMcpError
from ..tools.formatters import format_as_json, format_as_table
from ..tools.toolkit import get_toolkit

logger = logging.getLogger(__name__)

DATASOURCE_FIELDS_QUERY = """
query datasourceFields($luid: String!) {
  publishedDatasources(filter: {luid: $luid}) {
    name
    description
    fields {
      name
      description
      ... on ColumnField { dataCategory role }
      ... on CalculatedField { formula }
    }
  }
}
"""


def _merge_descriptions(fields: List[Dict[str, Any]], graphql: Dict[str, Any]) -> Dict[str, Any]:
    datasources = ((graphql.get("data") or {}).get("publishedDatasources")) or []
    if not datasources:
        return {"fields": fields}

    datasource = datasources[0]
    by_name = {field["name"]: field for field in datasource.get("fields") or [] if field.get("name")}
    merged = []
    for field in fields:
        extra = by_name.get(field.get("fieldCaption") or field.get("fieldName"), {})
        merged.append({**field, **{k: v for k, v in extra.items() if k != "name" and v is not None}})
    return {"name": datasource.get("name"), "description": datasource.get("description"), "fields": merged}


@mcp.tool()
async def get_datasource_metadata(
    datasource_luid: str = Field(..., description="The data source LUID, from list_datasources"),
) -> str:
    """Get the fields of a published data source: captions, data types, roles and descriptions.

    Call this before ``query_datasource`` so the query uses exact field
    captions.
    """
    toolkit = get_toolkit()
    try:
        await toolkit.bounded_context.check_datasource(toolkit.tableau, datasource_luid)
        metadata = await toolkit.tableau.read_metadata(datasource_luid)
        fields = metadata.get("data") or []

        if toolkit.config.disable_metadata_api_requests:
            return format_as_json({"fields": fields})

        graphql = await toolkit.tableau.graphql(DATASOURCE_FIELDS_QUERY, {"luid": datasource_luid})
        return format_as_json(_merge_descriptions(fields, graphql))
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)


@mcp.tool()
async def query_datasource(
    datasource_luid: str = Field(..., description="The data source LUID, from list_datasources"),
    query: Dict[str, Any] = Field(
        ...,
        description=(
            "VizQL Data Service query: {\"fields\": [{\"fieldCaption\": ..., \"function\": ...}], "
            "\"filters\": [...]}"
        ),
    ),
) -> str:
    """Query a published data source and return the rows as a Markdown table.

    The query follows the VizQL Data Service format.  ``fields`` is required;
    each entry names a field by its caption and may aggregate it with a
    ``function`` such as ``SUM`` or ``COUNTD``.
    """
    toolkit = get_toolkit()
    try:
        if not query.get("fields"):
            raise InvalidQueryError("The query must list at least one field")
        await toolkit.bounded_context.check_datasource(toolkit.tableau, datasource_luid)
        result = await toolkit.tableau.query_datasource(datasource_luid, query)
        return format_as_table(result.get("data") or [])
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e, query)
