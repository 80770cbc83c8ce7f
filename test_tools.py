import asyncio
import json
import unittest
from dataclasses import replace
from unittest.mock import MagicMock, patch

import httpx
from fastmcp import Client

from tableau_mcp.config import Config
from tableau_mcp.errors import ConfigurationError
from tableau_mcp.tool_definitions import content_tools, pulse_tools, query_tools, user_tools
from tableau_mcp.tool_definitions.registry import TOOL_NAMES, apply_tool_selection, mcp, select_tools
from tableau_mcp.tools.toolkit import Toolkit

SERVER = "https://tableau.example.com"
SITE = "/api/3.24/sites/site-1"
VIZQL = "/api/v1/vizql-data-service"

DATASOURCES = [
    {"id": f"ds-{i}", "name": f"Source {i}", "project": {"id": "p-sales" if i % 2 else "p-hr"}}
    for i in range(1, 8)
]


SEARCH_HITS = [
    {"type": "workbook", "luid": "wb-1", "title": "Superstore", "ownerId": 7, "hitsTotal": 0, "tags": [],
     "containerName": "Default", "projectName": "Default"},
    {"type": "view", "luid": "v-1", "title": "Overview", "containerName": "Superstore", "hitsSmallSpanTotal": 3},
    {"type": "datasource", "luid": "ds-1", "title": "Orders", "isCertified": False, "caption": ""},
]

class FakeSite:
    """Minimal Tableau site behind ``httpx.MockTransport``."""

    def __init__(self, datasources=DATASOURCES):
        self.datasources = datasources
        self.requests = []
        self.vizql_enabled = True
        self.signin_status = 200
        self.search_hits = SEARCH_HITS

    def paths(self):
        return [request.url.path for request in self.requests]

    def page(self, request, collection, item, rows):
        size = int(request.url.params.get("pageSize", 100))
        number = int(request.url.params.get("pageNumber", 1))
        chunk = rows[(number - 1) * size:number * size]
        return httpx.Response(200, json={
            "pagination": {"pageNumber": str(number), "pageSize": str(size), "totalAvailable": str(len(rows))},
            collection: {item: chunk},
        })

    def __call__(self, request):
        self.requests.append(request)
        path = request.url.path

        if path == "/api/3.24/auth/signin":
            if self.signin_status != 200:
                return httpx.Response(self.signin_status, json={"error": {"summary": "Signin Error"}})
            return httpx.Response(200, json={"credentials": {
                "token": "tok", "site": {"id": "site-1", "contentUrl": ""}, "user": {"id": "user-1"},
            }})
        if path == "/api/3.24/serverinfo":
            return httpx.Response(200, json={"serverInfo": {"productVersion": {"value": "2025.1.0"}}})
        if path == "/api/3.24/auth/signout":
            return httpx.Response(204)
        if path == f"{SITE}/datasources":
            return self.page(request, "datasources", "datasource", self.datasources)
        if path.startswith(f"{SITE}/datasources/"):
            luid = path.rsplit("/", 1)[1]
            match = [d for d in self.datasources if d["id"] == luid]
            if not match:
                return httpx.Response(404, json={"error": {"code": "404004", "summary": "Not Found"}})
            return httpx.Response(200, json={"datasource": match[0]})
        if path == f"{SITE}/users":
            return self.page(request, "users", "user", [{"id": "u-1", "name": "alice"}])
        if path == f"{SITE}/views/view-1/image":
            return httpx.Response(200, content=b"\x89PNG\r\n\x1a\nfake", headers={"Content-Type": "image/png"})
        if path == f"{SITE}/views/view-1/data":
            return httpx.Response(200, text="Region,Sales\nWest,100\n", headers={"Content-Type": "text/csv"})
        if path.startswith(VIZQL):
            if not self.vizql_enabled:
                return httpx.Response(404)
            if path.endswith("read-metadata"):
                return httpx.Response(200, json={"data": [
                    {"fieldName": "Region", "fieldCaption": "Region", "dataType": "STRING"},
                    {"fieldName": "Sales", "fieldCaption": "Sales", "dataType": "REAL"},
                ]})
            return httpx.Response(200, json={"data": [
                {"Region": "West", "SUM(Sales)": 100},
                {"Region": "East", "SUM(Sales)": 80},
            ]})
        if path == "/api/metadata/graphql":
            return httpx.Response(200, json={"data": {"publishedDatasources": [{
                "name": "Superstore",
                "description": "Orders",
                "fields": [{"name": "Sales", "description": "Net sales", "role": "MEASURE"}],
            }]}})
        if path == f"{SITE}/workbooks/wb-broken":
            return httpx.Response(200, json={"tsResponse": {}})
        if path == "/api/-/pulse/metrics:batchGet":
            ids = json.loads(request.content)["metric_ids"]
            return httpx.Response(200, json={"metrics": [{"id": i, "definition_id": "def-1"} for i in ids]})
        if path == "/api/-/pulse/definitions:batchGet":
            ids = json.loads(request.content)["definition_ids"]
            return httpx.Response(200, json={"definitions": [{"metadata": {"id": i}} for i in ids]})
        if path == "/api/-/search":
            return httpx.Response(200, json={"hits": {"total": len(self.search_hits), "items": [
                {"uri": f"uri-{i}", "content": content} for i, content in enumerate(self.search_hits)
            ]}})
        if path == "/api/-/pulse/subscriptions":
            return httpx.Response(200, json={"subscriptions": [
                {"id": "sub-1", "metric_id": "m-1", "follower": {"user_id": request.url.params["user_id"]}},
            ]})
        return httpx.Response(404, json={"error": {"code": "404000", "summary": "Not Found"}})


class ToolTestCase(unittest.TestCase):

    def setUp(self):
        self.site = FakeSite()
        self.config = Config(server=SERVER, pat_name="mcp", pat_value="secret")
        self.toolkit = None
        self.patchers = [
            patch.object(module, "get_toolkit", side_effect=lambda: self.toolkit)
            for module in (content_tools, user_tools, query_tools, pulse_tools)
        ]
        for patcher in self.patchers:
            patcher.start()

    def tearDown(self):
        for patcher in self.patchers:
            patcher.stop()

    def call(self, name, arguments=None, **config_overrides):
        """Call a tool through an in-memory MCP client and return the first content block."""
        config = replace(self.config, **config_overrides)

        async def scenario():
            self.toolkit = Toolkit(config, transport=httpx.MockTransport(self.site))
            try:
                async with Client(mcp) as client:
                    result = await client.call_tool(name, arguments or {})
            finally:
                await self.toolkit.close()
            return result.content[0]

        return asyncio.run(scenario())

    def call_text(self, name, arguments=None, **config_overrides):
        return self.call(name, arguments, **config_overrides).text


class TestListTools(ToolTestCase):

    def test_list_datasources_pages_up_to_limit(self):
        text = self.call_text("list_datasources", {"page_size": 3, "limit": 5})
        names = [d["name"] for d in json.loads(text)]
        self.assertEqual(names, ["Source 1", "Source 2", "Source 3", "Source 4", "Source 5"])
        self.assertEqual(self.site.paths().count(f"{SITE}/datasources"), 2)

    def test_max_result_limit_caps_the_limit(self):
        text = self.call_text("list_datasources", {"page_size": 3, "limit": 5}, max_result_limit=2)
        self.assertEqual(len(json.loads(text)), 2)

    def test_filter_is_sent_as_validated_string(self):
        self.call_text("list_datasources", {"filter": " name:eq:Source 1 , isCertified:eq:true "})
        listing = [r for r in self.site.requests if r.url.path == f"{SITE}/datasources"][0]
        self.assertEqual(listing.url.params["filter"], "name:eq:Source 1,isCertified:eq:true")

    def test_empty_filter_sends_no_filter_parameter(self):
        self.call_text("list_datasources", {"filter": ""})
        listing = [r for r in self.site.requests if r.url.path == f"{SITE}/datasources"][0]
        self.assertNotIn("filter", listing.url.params)

    def test_invalid_filter_makes_no_request(self):
        text = self.call_text("list_datasources", {"filter": "colour:eq:red"})
        self.assertIn("InvalidFilter", text)
        self.assertIn("colour", text)
        self.assertEqual(self.site.requests, [])

    def test_disallowed_operator_is_reported(self):
        text = self.call_text("list_users", {"filter": "siteRole:gt:Viewer"})
        self.assertIn("InvalidFilter", text)
        self.assertIn("siteRole", text)

    def test_no_results(self):
        self.site.datasources = []
        text = self.call_text("list_datasources")
        self.assertIn("No data sources were found", text)

    def test_bounded_context_filters_by_project(self):
        text = self.call_text("list_datasources", include_project_ids=frozenset({"p-sales"}))
        ids = [d["id"] for d in json.loads(text)]
        self.assertEqual(ids, ["ds-1", "ds-3", "ds-5", "ds-7"])

    def test_bounded_context_filters_everything_out(self):
        text = self.call_text("list_datasources", include_datasource_ids=frozenset({"ds-99"}))
        self.assertIn("filtered out by the server configuration", text)

    def test_authentication_failure(self):
        self.site.signin_status = 401
        text = self.call_text("list_users")
        self.assertIn("AuthenticationError", text)

    def test_list_users(self):
        text = self.call_text("list_users", {"filter": "name:eq:alice"})
        self.assertEqual(json.loads(text), [{"id": "u-1", "name": "alice"}])


class TestQueryTools(ToolTestCase):

    QUERY = {"fields": [{"fieldCaption": "Region"}, {"fieldCaption": "Sales", "function": "SUM"}]}

    def test_query_datasource_returns_table(self):
        text = self.call_text("query_datasource", {"datasource_luid": "ds-1", "query": self.QUERY})
        self.assertIn("| Region | SUM(Sales) |", text)
        self.assertIn("| West | 100 |", text)

    def test_vizql_disabled(self):
        self.site.vizql_enabled = False
        text = self.call_text("query_datasource", {"datasource_luid": "ds-1", "query": self.QUERY})
        self.assertIn("FeatureDisabled", text)
        self.assertIn("VizQL Data Service is disabled", text)

    def test_query_without_fields(self):
        text = self.call_text("query_datasource", {"datasource_luid": "ds-1", "query": {"fields": []}})
        self.assertIn("InvalidQuery", text)
        self.assertEqual(self.site.requests, [])

    def test_datasource_outside_bounded_context(self):
        text = self.call_text(
            "query_datasource",
            {"datasource_luid": "ds-2", "query": self.QUERY},
            include_project_ids=frozenset({"p-sales"}),
        )
        self.assertIn("NotAllowed", text)
        self.assertFalse(any(p.startswith(VIZQL) for p in self.site.paths()))

    def test_metadata_is_enriched_from_graphql(self):
        text = self.call_text("get_datasource_metadata", {"datasource_luid": "ds-1"})
        metadata = json.loads(text)
        self.assertEqual(metadata["description"], "Orders")
        sales = [f for f in metadata["fields"] if f["fieldCaption"] == "Sales"][0]
        self.assertEqual(sales["description"], "Net sales")
        self.assertEqual(sales["role"], "MEASURE")

    def test_metadata_api_can_be_disabled(self):
        text = self.call_text(
            "get_datasource_metadata", {"datasource_luid": "ds-1"}, disable_metadata_api_requests=True
        )
        self.assertEqual(len(json.loads(text)["fields"]), 2)
        self.assertNotIn("/api/metadata/graphql", self.site.paths())


class TestViewAndPulseTools(ToolTestCase):

    def test_get_view_image(self):
        content = self.call("get_view_image", {"view_id": "view-1", "width": 800})
        self.assertEqual(content.type, "image")
        self.assertEqual(content.mimeType, "image/png")
        image = [r for r in self.site.requests if r.url.path.endswith("/image")][0]
        self.assertEqual(image.url.params["vizWidth"], "800")
        self.assertNotIn("vizHeight", image.url.params)

    def test_get_view_data(self):
        text = self.call_text("get_view_data", {"view_id": "view-1"})
        self.assertTrue(text.startswith("Region,Sales"))

    def test_pulse_subscriptions_use_the_signed_in_user(self):
        text = self.call_text("list_pulse_metric_subscriptions")
        self.assertEqual(json.loads(text)[0]["follower"]["user_id"], "user-1")

    def test_pulse_metrics_by_ids(self):
        text = self.call_text("list_pulse_metrics_from_metric_ids", {"metric_ids": ["m-1", "m-2"]})
        self.assertEqual([m["id"] for m in json.loads(text)], ["m-1", "m-2"])
        batch = [r for r in self.site.requests if r.url.path.endswith("metrics:batchGet")][0]
        self.assertEqual(batch.method, "POST")

    def test_pulse_definitions_by_ids(self):
        text = self.call_text(
            "list_pulse_metric_definitions_from_definition_ids",
            {"metric_definition_ids": ["def-1"], "view": "DEFINITION_VIEW_BASIC"},
        )
        self.assertEqual(json.loads(text), [{"metadata": {"id": "def-1"}}])
        batch = [r for r in self.site.requests if r.url.path.endswith("definitions:batchGet")][0]
        self.assertEqual(batch.url.params["view"], "DEFINITION_VIEW_BASIC")

    def test_pulse_by_ids_needs_ids(self):
        text = self.call_text("list_pulse_metrics_from_metric_ids", {"metric_ids": []})
        self.assertIn("at least one metric id", text)
        self.assertEqual(self.site.requests, [])


class TestSearchContent(ToolTestCase):

    def search_request(self):
        return [r for r in self.site.requests if r.url.path == "/api/-/search"][0]

    def test_results_are_reduced(self):
        text = self.call_text("search_content", {"terms": "superstore"})
        workbook, view, datasource = json.loads(text)
        self.assertEqual(workbook, {"type": "workbook", "luid": "wb-1", "title": "Superstore", "ownerId": 7,
                                    "totalViewCount": 0, "containerName": "Default", "projectName": "Default"})
        self.assertEqual(view["parentWorkbookName"], "Superstore")
        self.assertEqual(view["viewCountLastMonth"], 3)
        self.assertIs(datasource["isCertified"], False)
        self.assertNotIn("caption", datasource)

    def test_arguments_become_search_parameters(self):
        self.call_text("search_content", {
            "terms": "sales",
            "limit": 50,
            "order_by": [{"method": "hitsTotal", "sortDirection": "desc"}, {"method": "hitsTotal"}],
            "content_types": ["workbook", "datasource"],
            "modified_after": "2025-02-01T00:00:00Z",
            "modified_before": "2025-01-01T00:00:00Z",
        }, max_result_limit=20)
        params = self.search_request().url.params
        self.assertEqual(params["terms"], "sales")
        self.assertEqual(params["limit"], "20")
        self.assertEqual(params["order_by"], "hitsTotal:desc")
        self.assertEqual(
            params["filter"],
            "type:in:[workbook,datasource],modifiedTime:gte:2025-01-01T00:00:00Z,"
            "modifiedTime:lte:2025-02-01T00:00:00Z",
        )

    def test_unknown_content_type_makes_no_request(self):
        text = self.call_text("search_content", {"content_types": ["dashboard"]})
        self.assertIn("Unknown content type", text)
        self.assertEqual(self.site.requests, [])

    def test_no_results(self):
        self.site.search_hits = []
        self.assertIn("No content matched", self.call_text("search_content", {"terms": "nothing"}))

    def test_bounded_context_applies_to_hits(self):
        text = self.call_text("search_content", include_workbook_ids=frozenset({"wb-1"}))
        self.assertEqual([hit["luid"] for hit in json.loads(text)], ["wb-1", "ds-1"])

    def test_project_restriction_filters_out_all_hits(self):
        text = self.call_text("search_content", include_project_ids=frozenset({"p-sales"}))
        self.assertIn("filtered out by the server configuration", text)


class TestUnexpectedResponses(ToolTestCase):

    def test_malformed_workbook_body_is_reported(self):
        text = self.call_text("get_workbook", {"workbook_id": "wb-broken"})
        self.assertIn("TableauError", text)
        self.assertIn("Unexpected response body", text)


class TestRegistry(unittest.TestCase):

    def test_every_tool_is_registered(self):
        async def names():
            async with Client(mcp) as client:
                return {tool.name for tool in await client.list_tools()}

        self.assertEqual(asyncio.run(names()), set(TOOL_NAMES))

    def test_list_tool_descriptions_document_the_filter_fields(self):
        async def tools():
            async with Client(mcp) as client:
                return {tool.name: tool for tool in await client.list_tools()}

        description = asyncio.run(tools())["list_users"].description
        self.assertIn("| friendlyName | eq, has, in |", description)
        self.assertIn("cannot contain", description)

    def test_select_tools_include(self):
        removed = select_tools(TOOL_NAMES, include=["list_users", "list_groups"])
        self.assertEqual(len(removed), len(TOOL_NAMES) - 2)
        self.assertNotIn("list_users", removed)

    def test_select_tools_exclude(self):
        self.assertEqual(select_tools(TOOL_NAMES, exclude=["get_view_image", "nope"]), ["get_view_image"])

    def test_select_tools_rejects_empty_selection(self):
        with self.assertRaises(ConfigurationError):
            select_tools(TOOL_NAMES, include=["nope"])
        with self.assertRaises(ConfigurationError):
            select_tools(TOOL_NAMES, include=["list_users"], exclude=["list_groups"])

    def test_apply_tool_selection(self):
        server = MagicMock()
        apply_tool_selection(server, exclude=["get_view_image"])
        server.remove_tool.assert_called_once_with("get_view_image")


if __name__ == "__main__":
    unittest.main()
