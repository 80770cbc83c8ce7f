"""
tableau_mcp/tool_definitions/pulse_tools.py
===========================================

Tableau Pulse: metric definitions, metrics, subscriptions and insight
bundles.

Pulse lives on Tableau Cloud only; on Tableau Server these endpoints answer
404, which ``ErrorHandler`` reports as ``NotFound``.
"""

from typing import Any, Dict, List

from pydantic import Field

from .registry import mcp
from ..errors import TableauMcpError
from ..tools.formatters import format_as_json
from ..tools.toolkit import get_toolkit

DEFINITION_VIEWS = ("DEFINITION_VIEW_BASIC", "DEFINITION_VIEW_FULL", "DEFINITION_VIEW_DEFAULT")
BUNDLE_TYPES = ("ban", "springboard", "basic", "detail")


@mcp.tool()
async def list_all_pulse_metric_definitions(
    view: str = Field(
        "DEFINITION_VIEW_DEFAULT",
        description=f"How much of each definition to return: {', '.join(DEFINITION_VIEWS)}",
    ),
) -> str:
    """List all published Pulse metric definitions on the site."""
    toolkit = get_toolkit()
    if view not in DEFINITION_VIEWS:
        return f"Unknown view '{view}'. Use one of: {', '.join(DEFINITION_VIEWS)}"
    try:
        definitions = await toolkit.tableau.list_pulse_metric_definitions(view)
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)
    if not definitions:
        return "No Pulse metric definitions were found."
    return format_as_json(definitions)


@mcp.tool()
async def list_pulse_metric_definitions_from_definition_ids(
    metric_definition_ids: List[str] = Field(..., description="The metric definition ids to fetch"),
    view: str = Field(
        "DEFINITION_VIEW_DEFAULT",
        description=f"How much of each definition to return: {', '.join(DEFINITION_VIEWS)}",
    ),
) -> str:
    """Get Pulse metric definitions by id."""
    toolkit = get_toolkit()
    if view not in DEFINITION_VIEWS:
        return f"Unknown view '{view}'. Use one of: {', '.join(DEFINITION_VIEWS)}"
    if not metric_definition_ids:
        return "Give at least one metric definition id."
    try:
        definitions = await toolkit.tableau.list_pulse_metric_definitions_by_ids(metric_definition_ids, view)
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)
    if not definitions:
        return "No Pulse metric definitions were found for the given ids."
    return format_as_json(definitions)


@mcp.tool()
async def list_pulse_metrics_from_metric_definition_id(
    pulse_metric_definition_id: str = Field(..., description="The metric definition id"),
) -> str:
    """List the Pulse metrics built from one metric definition."""
    toolkit = get_toolkit()
    try:
        metrics = await toolkit.tableau.list_pulse_metrics(pulse_metric_definition_id)
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)
    if not metrics:
        return f"No Pulse metrics were found for definition {pulse_metric_definition_id}."
    return format_as_json(metrics)


@mcp.tool()
async def list_pulse_metrics_from_metric_ids(
    metric_ids: List[str] = Field(..., description="The metric ids to fetch"),
) -> str:
    """Get Pulse metrics by id."""
    toolkit = get_toolkit()
    if not metric_ids:
        return "Give at least one metric id."
    try:
        metrics = await toolkit.tableau.list_pulse_metrics_by_ids(metric_ids)
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)
    if not metrics:
        return "No Pulse metrics were found for the given ids."
    return format_as_json(metrics)


@mcp.tool()
async def list_pulse_metric_subscriptions() -> str:
    """List the Pulse metrics the signed-in user is subscribed to."""
    toolkit = get_toolkit()
    try:
        subscriptions = await toolkit.tableau.list_pulse_subscriptions()
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)
    if not subscriptions:
        return "The current user has no Pulse metric subscriptions."
    return format_as_json(subscriptions)


@mcp.tool()
async def generate_pulse_metric_value_insight_bundle(
    bundle_request: Dict[str, Any] = Field(
        ...,
        description="The insight bundle request: metric definition, metric specification and output format",
    ),
    bundle_type: str = Field("ban", description=f"Bundle type: {', '.join(BUNDLE_TYPES)}"),
) -> str:
    """Generate insights for the current value of a Pulse metric."""
    toolkit = get_toolkit()
    if bundle_type not in BUNDLE_TYPES:
        return f"Unknown bundle type '{bundle_type}'. Use one of: {', '.join(BUNDLE_TYPES)}"
    try:
        bundle = await toolkit.tableau.generate_pulse_insight_bundle(bundle_request, bundle_type)
    except TableauMcpError as e:
        return toolkit.error_handler.respond(e)
    return format_as_json(bundle)
