import json

import httpx
import pytest
import respx

from keysmith.errors import (
    RateLimitedError,
    UpstreamForbiddenError,
    UpstreamTransientError,
    UpstreamUnauthorizedError,
)
from keysmith.provider.anthropic import ANTHROPIC_BASE_URL, AnthropicAdminClient

COST_REPORT_URL = f"{ANTHROPIC_BASE_URL}/cost_report"


def _report(**overrides: "object") -> "dict":
    body: "dict" = {
        "data": [
            {
                "starting_at": "2025-08-01T00:00:00Z",
                "ending_at": "2025-08-02T00:00:00Z",
                "results": [
                    {
                        "currency": "USD",
                        "amount": "250",
                        "workspace_id": "wrkspc_1",
                        "description": "Claude Sonnet usage",
                        "cost_type": "tokens",
                    }
                ],
            }
        ],
        "has_more": False,
        "next_page": None,
    }
    body.update(overrides)
    return body


class TestFetchCostReportPage:
    @pytest.mark.asyncio
    @respx.mock
    async def test_fetches_and_parses_page(self) -> "None":
        route = respx.get(COST_REPORT_URL).mock(
            return_value=httpx.Response(200, json=_report())
        )

        client = AnthropicAdminClient()
        page = await client.fetch_cost_report_page("sk-ant-admin", "2025-08-01T00:00:00Z")

        assert page.has_more is False
        assert page.next_page is None
        assert len(page.buckets) == 1
        bucket = page.buckets[0]
        assert bucket.starting_at == "2025-08-01T00:00:00Z"
        assert bucket.ending_at == "2025-08-02T00:00:00Z"
        assert bucket.results[0]["amount"] == "250"

        request = route.calls.last.request
        assert request.headers["x-api-key"] == "sk-ant-admin"
        assert request.headers["anthropic-version"] == "2023-06-01"
        params = request.url.params
        assert params["starting_at"] == "2025-08-01T00:00:00Z"
        assert params.get_list("group_by[]") == ["workspace_id", "description"]
        assert params["limit"] == "31"
        assert "page" not in params

    @pytest.mark.asyncio
    @respx.mock
    async def test_sends_page_token(self) -> "None":
        route = respx.get(COST_REPORT_URL).mock(
            return_value=httpx.Response(
                200, json=_report(has_more=True, next_page="page_3")
            )
        )

        client = AnthropicAdminClient()
        page = await client.fetch_cost_report_page(
            "sk-ant-admin", "2025-08-01T00:00:00Z", page="page_2"
        )

        assert route.calls.last.request.url.params["page"] == "page_2"
        assert page.has_more is True
        assert page.next_page == "page_3"

    @pytest.mark.asyncio
    @respx.mock
    @pytest.mark.parametrize(
        ("status", "error"),
        [
            (401, UpstreamUnauthorizedError),
            (403, UpstreamForbiddenError),
            (429, RateLimitedError),
            (500, UpstreamTransientError),
            (404, UpstreamTransientError),
        ],
    )
    async def test_maps_error_statuses(self, status: "int", error: "type") -> "None":
        respx.get(COST_REPORT_URL).mock(
            return_value=httpx.Response(status, json={"error": "x"})
        )

        client = AnthropicAdminClient()
        with pytest.raises(error) as exc_info:
            await client.fetch_cost_report_page("sk-ant-admin", "2025-08-01T00:00:00Z")
        assert exc_info.value.status_code == status

    @pytest.mark.asyncio
    @respx.mock
    async def test_transport_error_is_transient(self) -> "None":
        respx.get(COST_REPORT_URL).mock(side_effect=httpx.ConnectError("refused"))

        client = AnthropicAdminClient()
        with pytest.raises(UpstreamTransientError) as exc_info:
            await client.fetch_cost_report_page("sk-ant-admin", "2025-08-01T00:00:00Z")
        assert exc_info.value.status_code is None

    @pytest.mark.asyncio
    @respx.mock
    async def test_unparseable_body_is_transient(self) -> "None":
        respx.get(COST_REPORT_URL).mock(
            return_value=httpx.Response(200, content=b"<html>oops</html>")
        )

        client = AnthropicAdminClient()
        with pytest.raises(UpstreamTransientError):
            await client.fetch_cost_report_page("sk-ant-admin", "2025-08-01T00:00:00Z")

    @pytest.mark.asyncio
    @respx.mock
    async def test_malformed_envelope_is_transient(self) -> "None":
        respx.get(COST_REPORT_URL).mock(
            return_value=httpx.Response(200, json={"data": "nope"})
        )

        client = AnthropicAdminClient()
        with pytest.raises(UpstreamTransientError):
            await client.fetch_cost_report_page("sk-ant-admin", "2025-08-01T00:00:00Z")

    @pytest.mark.asyncio
    @respx.mock
    async def test_bucket_without_bounds_is_transient(self) -> "None":
        respx.get(COST_REPORT_URL).mock(
            return_value=httpx.Response(
                200, json=_report(data=[{"starting_at": "2025-08-01T00:00:00Z"}])
            )
        )

        client = AnthropicAdminClient()
        with pytest.raises(UpstreamTransientError):
            await client.fetch_cost_report_page("sk-ant-admin", "2025-08-01T00:00:00Z")


class TestAdminEndpoints:
    @pytest.mark.asyncio
    @respx.mock
    async def test_lists_api_keys(self) -> "None":
        route = respx.get(f"{ANTHROPIC_BASE_URL}/api_keys").mock(
            return_value=httpx.Response(
                200,
                json={
                    "data": [
                        {
                            "id": "apikey_1",
                            "name": "node pool",
                            "status": "active",
                            "created_at": "2025-07-01T00:00:00Z",
                            "workspace_id": "wrkspc_1",
                        }
                    ],
                    "has_more": False,
                },
            )
        )

        client = AnthropicAdminClient()
        keys = await client.list_api_keys("sk-ant-admin", workspace_id="wrkspc_1")

        assert [k.id for k in keys] == ["apikey_1"]
        assert keys[0].workspace_id == "wrkspc_1"
        params = route.calls.last.request.url.params
        assert params["status"] == "active"
        assert params["workspace_id"] == "wrkspc_1"

    @pytest.mark.asyncio
    @respx.mock
    async def test_creates_workspace(self) -> "None":
        route = respx.post(f"{ANTHROPIC_BASE_URL}/workspaces").mock(
            return_value=httpx.Response(
                201,
                json={
                    "id": "wrkspc_2",
                    "name": "nodes",
                    "created_at": "2025-08-01T00:00:00Z",
                    "archived_at": None,
                },
            )
        )

        client = AnthropicAdminClient()
        workspace = await client.create_workspace("sk-ant-admin", "nodes")

        assert workspace.id == "wrkspc_2"
        assert workspace.archived_at is None
        assert json.loads(route.calls.last.request.content) == {"name": "nodes"}
