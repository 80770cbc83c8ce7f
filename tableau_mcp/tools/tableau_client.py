"""
tableau_mcp/tools/tableau_client.py
===================================

The endpoints the tools use, across the APIs the server talks to:

- **REST**            ``/api/{version}/sites/{site_id}/...``
- **VizQL Data Service** ``/api/v1/vizql-data-service/...``
- **Metadata (GraphQL)** ``/api/metadata/graphql``
- **Pulse**           ``/api/-/pulse/...``
- **Content search**  ``/api/-/search``

Every call goes through ``SessionManager.execute`` so sign-in, the 401 retry
and auth headers are handled in one place.  List endpoints return a ``Page``
so the tools can drive them with ``fetch_all``.
"""

import logging
from typing import Any, Dict, List, Optional

from ..errors import ApiError, FeatureDisabledError
from .pagination import Page, Pagination
from .session import SessionManager

logger = logging.getLogger(__name__)

VIZQL_ROOT = "/api/v1/vizql-data-service"
METADATA_GRAPHQL = "/api/metadata/graphql"
PULSE_ROOT = "/api/-/pulse"
SEARCH = "/api/-/search"


def _json(response, key: Optional[str] = None, required: bool = True) -> Any:
    """Decode a response body, or one top-level member of it.

    Raises
    ------
    ApiError
        If the body is not JSON or lacks a required member.
    """
    try:
        body = response.json()
        if key is None:
            return body
        return body[key] if required else body.get(key)
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ApiError(
            response.status_code,
            summary="Unexpected response body",
            detail=f"{response.request.url.path}: {e!r}",
        ) from e


class TableauClient:
    """Thin wrapper over the Tableau endpoints the tools call.

    Parameters
    ----------
    session:
        The process-wide ``SessionManager``.
    """

    def __init__(self, session: SessionManager):
        self.session = session

    def _site_path(self, suffix: str):
        return lambda s: self.session.rest_path(f"sites/{s.site_id}/{suffix}")

    async def _list(self, suffix: str, collection: str, item: str, *,
                    filter: Optional[str], page_size: Optional[int], page_number: int,
                    extra: Optional[Dict[str, Any]] = None) -> Page[Dict[str, Any]]:
        params: Dict[str, Any] = {"filter": filter, "pageSize": page_size, "pageNumber": page_number}
        params.update(extra or {})
        response = await self.session.execute("GET", self._site_path(suffix), params=params)
        body = _json(response)
        try:
            items = (body.get(collection) or {}).get(item) or []
            pagination = body.get("pagination")
        except AttributeError as e:
            raise ApiError(response.status_code, summary="Unexpected response body", detail=repr(e)) from e
        return Page(items=items, pagination=Pagination.from_response(pagination))

    # ── Content ───────────────────────────────────────────────────────────────

    async def list_datasources(self, filter: Optional[str] = None, page_size: Optional[int] = None,
                               page_number: int = 1) -> Page[Dict[str, Any]]:
        """Query Data Sources.  Scope: ``tableau:content:read``."""
        return await self._list("datasources", "datasources", "datasource",
                                filter=filter, page_size=page_size, page_number=page_number)

    async def get_datasource(self, datasource_id: str) -> Dict[str, Any]:
        """Query Data Source, including its ``project``."""
        response = await self.session.execute("GET", self._site_path(f"datasources/{datasource_id}"))
        return _json(response, "datasource")

    async def list_workbooks(self, filter: Optional[str] = None, page_size: Optional[int] = None,
                             page_number: int = 1) -> Page[Dict[str, Any]]:
        """Query Workbooks for Site.  Scope: ``tableau:content:read``."""
        return await self._list("workbooks", "workbooks", "workbook",
                                filter=filter, page_size=page_size, page_number=page_number)

    async def get_workbook(self, workbook_id: str) -> Dict[str, Any]:
        """Query Workbook, including its views."""
        response = await self.session.execute("GET", self._site_path(f"workbooks/{workbook_id}"))
        return _json(response, "workbook")

    async def list_views(self, filter: Optional[str] = None, page_size: Optional[int] = None,
                         page_number: int = 1) -> Page[Dict[str, Any]]:
        """Query Views for Site, with usage statistics."""
        return await self._list("views", "views", "view",
                                filter=filter, page_size=page_size, page_number=page_number,
                                extra={"includeUsageStatistics": "true"})

    async def get_view(self, view_id: str) -> Dict[str, Any]:
        response = await self.session.execute("GET", self._site_path(f"views/{view_id}"))
        return _json(response, "view")

    async def get_view_data(self, view_id: str) -> str:
        """Query View Data: the view's underlying data as CSV.  Scope: ``tableau:views:download``."""
        response = await self.session.execute("GET", self._site_path(f"views/{view_id}/data"),
                                              headers={"Accept": "text/csv"})
        return response.text

    async def get_view_image(self, view_id: str, width: Optional[int] = None,
                             height: Optional[int] = None) -> bytes:
        """Query View Image as PNG at high resolution."""
        response = await self.session.execute(
            "GET",
            self._site_path(f"views/{view_id}/image"),
            params={"vizWidth": width, "vizHeight": height, "resolution": "high"},
            headers={"Accept": "image/png"},
        )
        return response.content

    async def list_projects(self, filter: Optional[str] = None, page_size: Optional[int] = None,
                            page_number: int = 1) -> Page[Dict[str, Any]]:
        return await self._list("projects", "projects", "project",
                                filter=filter, page_size=page_size, page_number=page_number)

    # ── Users & groups ────────────────────────────────────────────────────────

    async def list_users(self, filter: Optional[str] = None, page_size: Optional[int] = None,
                         page_number: int = 1) -> Page[Dict[str, Any]]:
        return await self._list("users", "users", "user",
                                filter=filter, page_size=page_size, page_number=page_number)

    async def list_groups(self, filter: Optional[str] = None, page_size: Optional[int] = None,
                          page_number: int = 1) -> Page[Dict[str, Any]]:
        return await self._list("groups", "groups", "group",
                                filter=filter, page_size=page_size, page_number=page_number)

    # ── VizQL Data Service ────────────────────────────────────────────────────

    async def query_datasource(self, datasource_luid: str, query: Dict[str, Any]) -> Dict[str, Any]:
        """Run a VizQL Data Service query.  Scope: ``tableau:viz_data_service:read``.

        Raises
        ------
        FeatureDisabledError
            If the service is not enabled (HTTP 404).
        """
        return await self._vizql("query-datasource", {
            "datasource": {"datasourceLuid": datasource_luid},
            "query": query,
        })

    async def read_metadata(self, datasource_luid: str) -> Dict[str, Any]:
        """Read field metadata for a published data source."""
        return await self._vizql("read-metadata", {"datasource": {"datasourceLuid": datasource_luid}})

    async def _vizql(self, operation: str, body: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = await self.session.execute("POST", f"{VIZQL_ROOT}/{operation}", json=body)
        except ApiError as e:
            if e.status_code == 404:
                logger.warning("VizQL Data Service returned 404 for %s", operation)
                raise FeatureDisabledError("VizQL Data Service is disabled on this site") from e
            raise
        return _json(response)

    # ── Metadata API ──────────────────────────────────────────────────────────

    async def graphql(self, query: str, variables: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Execute a Metadata API GraphQL query."""
        body: Dict[str, Any] = {"query": query}
        if variables:
            body["variables"] = variables
        response = await self.session.execute("POST", METADATA_GRAPHQL, json=body)
        return _json(response)

    # ── Pulse ─────────────────────────────────────────────────────────────────

    async def list_pulse_metric_definitions(self, view: Optional[str] = None) -> List[Dict[str, Any]]:
        """List all published Pulse metric definitions."""
        response = await self.session.execute("GET", f"{PULSE_ROOT}/definitions", params={"view": view})
        return _json(response, "definitions", required=False) or []

    async def list_pulse_metric_definitions_by_ids(self, definition_ids: List[str],
                                                   view: Optional[str] = None) -> List[Dict[str, Any]]:
        """Batch-get metric definitions by id."""
        response = await self.session.execute(
            "POST",
            f"{PULSE_ROOT}/definitions:batchGet",
            params={"view": view},
            json={"definition_ids": definition_ids},
        )
        return _json(response, "definitions", required=False) or []

    async def list_pulse_metrics(self, definition_id: str) -> List[Dict[str, Any]]:
        """List the metrics of one metric definition."""
        response = await self.session.execute(
            "GET", f"{PULSE_ROOT}/definitions/{definition_id}/metrics"
        )
        return _json(response, "metrics", required=False) or []

    async def list_pulse_metrics_by_ids(self, metric_ids: List[str]) -> List[Dict[str, Any]]:
        """Batch-get metrics by id.  Scope: ``tableau:insight_metrics:read``."""
        response = await self.session.execute(
            "POST", f"{PULSE_ROOT}/metrics:batchGet", json={"metric_ids": metric_ids}
        )
        return _json(response, "metrics", required=False) or []

    async def list_pulse_subscriptions(self) -> List[Dict[str, Any]]:
        """List the Pulse subscriptions of the signed-in user."""
        session = await self.session.ensure_session()
        response = await self.session.execute(
            "GET", f"{PULSE_ROOT}/subscriptions", params={"user_id": session.user_id}
        )
        return _json(response, "subscriptions", required=False) or []

    async def generate_pulse_insight_bundle(self, bundle_request: Dict[str, Any],
                                            bundle_type: str = "ban") -> Dict[str, Any]:
        """Generate an insight bundle for a metric's current value."""
        response = await self.session.execute(
            "POST",
            f"{PULSE_ROOT}/insights/{bundle_type}",
            json={"bundle_request": bundle_request},
        )
        return _json(response)

    # ── Content search ────────────────────────────────────────────────────────

    async def search_content(self, terms: Optional[str] = None, limit: Optional[int] = None,
                             order_by: Optional[str] = None, filter: Optional[str] = None) -> Dict[str, Any]:
        """Search the site's content.  One page of ``limit`` hits, ``hits.items`` in the body."""
        response = await self.session.execute(
            "GET",
            SEARCH,
            params={"terms": terms or None, "limit": limit, "order_by": order_by or None,
                    "filter": filter or None},
        )
        body = _json(response)
        if not isinstance(body, dict):
            raise ApiError(response.status_code, summary="Unexpected response body",
                           detail=f"{SEARCH}: expected an object")
        return body
