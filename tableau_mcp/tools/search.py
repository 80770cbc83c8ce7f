"""
tableau_mcp/tools/search.py
===========================

Request and response shaping for the content search endpoint
(``GET /api/-/search``).

The search service has its own filter syntax, separate from the REST list
filters in ``filters.py``: list values are written ``field:in:[a,b]`` and
timestamps may carry a time of day.  The strings are built here from typed
arguments, so callers never write them by hand.
"""

from typing import Any, Dict, List, Mapping, Optional, Sequence

CONTENT_TYPES = (
    "lens",
    "datasource",
    "virtualconnection",
    "collection",
    "project",
    "flow",
    "datarole",
    "table",
    "database",
    "view",
    "workbook",
)

ORDER_BY_METHODS = (
    "hitsTotal",
    "hitsSmallSpanTotal",
    "hitsMediumSpanTotal",
    "hitsLargeSpanTotal",
    "downstreamWorkbookCount",
)

SORT_DIRECTIONS = ("asc", "desc")

MAX_SEARCH_LIMIT = 2000

# Fields kept from each hit's ``content``, renamed where the raw name is unclear.
_RENAMED = {
    "hitsTotal": "totalViewCount",
    "hitsSmallSpanTotal": "viewCountLastMonth",
}

_KEPT_FIELDS = (
    "modifiedTime",
    "sheetType",
    "caption",
    "workbookDescription",
    "type",
    "ownerId",
    "title",
    "ownerName",
    "containerName",
    "luid",
    "locationName",
    "comments",
    "hitsTotal",
    "favoritesTotal",
    "tags",
    "projectName",
    "hitsSmallSpanTotal",
    "downstreamWorkbookCount",
    "isConnectable",
    "datasourceIsPublished",
    "connectionType",
    "isCertified",
    "hasExtracts",
    "extractRefreshedAt",
    "extractUpdatedAt",
    "connectedWorkbooksCount",
    "extractCreationPending",
    "hasSevereDataQualityWarning",
    "datasourceLuid",
    "hasActiveDataQualityWarning",
)


def _unique(values: Sequence[Any]) -> List[Any]:
    return list(dict.fromkeys(values))


def build_order_by(order_by: Sequence[Mapping[str, str]]) -> str:
    """``[{"method": "hitsTotal", "sortDirection": "desc"}]`` -> ``"hitsTotal:desc"``.

    A method given twice is kept at its first position only.
    """
    used = set()
    parts = []
    for ordering in order_by:
        method = ordering["method"]
        if method in used:
            continue
        used.add(method)
        direction = ordering.get("sortDirection")
        parts.append(f"{method}:{direction}" if direction else method)
    return ",".join(parts)


def _eq_or_in(field: str, values: Sequence[Any]) -> str:
    values = _unique(values)
    if len(values) == 1:
        return f"{field}:eq:{values[0]}"
    return f"{field}:in:[{','.join(str(v) for v in values)}]"


def build_search_filter(
    content_types: Optional[Sequence[str]] = None,
    owner_ids: Optional[Sequence[int]] = None,
    modified_after: Optional[str] = None,
    modified_before: Optional[str] = None,
) -> str:
    """Build the search service's ``filter`` parameter; empty when nothing is set.

    ``modified_after`` and ``modified_before`` are swapped when given in the
    wrong order.
    """
    expressions = []
    if content_types:
        expressions.append(_eq_or_in("type", content_types))
    if owner_ids:
        expressions.append(_eq_or_in("ownerId", owner_ids))
    if modified_after and modified_before and modified_after > modified_before:
        modified_after, modified_before = modified_before, modified_after
    if modified_after:
        expressions.append(f"modifiedTime:gte:{modified_after}")
    if modified_before:
        expressions.append(f"modifiedTime:lte:{modified_before}")
    return ",".join(expressions)


def reduce_hit(content: Mapping[str, Any]) -> Dict[str, Any]:
    """Keep the informative fields of one search hit.

    Empty strings, empty lists and missing values are dropped; ``0`` and
    ``False`` are kept.  A view's ``containerName`` is its workbook.
    """
    reduced: Dict[str, Any] = {}
    for key in _KEPT_FIELDS:
        value = content.get(key)
        if value is None or value == "" or value == []:
            continue
        if key == "containerName" and content.get("type") == "view":
            reduced["parentWorkbookName"] = value
        else:
            reduced[_RENAMED.get(key, key)] = value
    return reduced


def reduce_search_response(body: Mapping[str, Any]) -> List[Dict[str, Any]]:
    hits = body.get("hits") or {}
    return [reduce_hit(item.get("content") or {}) for item in hits.get("items") or []]
