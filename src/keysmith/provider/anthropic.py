import httpx
import structlog

from keysmith.errors import (
    RateLimitedError,
    UpstreamForbiddenError,
    UpstreamTransientError,
    UpstreamUnauthorizedError,
)
from keysmith.models import CostBucket, CostReportPage, UpstreamApiKey, Workspace

logger = structlog.get_logger()

ANTHROPIC_BASE_URL = "https://api.anthropic.com/v1/organizations"
ANTHROPIC_VERSION = "2023-06-01"

# fixed per-call timeout, not configurable by callers
REQUEST_TIMEOUT_SECONDS = 30.0
# daily buckets per page
COST_REPORT_PAGE_LIMIT = 31


class AnthropicAdminClient:
    """
    AnthropicAdminClient talks to the organization admin API. It fetches
    cost report pages and lists keys and workspaces. The admin key is
    passed per call since it can be replaced while the process runs.

    Every failure is mapped onto an UpstreamError subclass: 401 and
    403 are fatal, 429 is a rate limit, anything else (transport
    errors, other statuses, malformed bodies) is transient.
    """

    def __init__(
        self,
        base_url: "str" = ANTHROPIC_BASE_URL,
        client: "httpx.AsyncClient | None" = None,
    ) -> "None":
        self._base_url = base_url.rstrip("/")
        self._client: "httpx.AsyncClient" = client or httpx.AsyncClient(
            timeout=REQUEST_TIMEOUT_SECONDS,
        )

    @property
    def base_url(self) -> "str":
        return self._base_url

    async def close(self) -> "None":
        """
        closes the underlying HTTP client.
        """
        await self._client.aclose()

    @staticmethod
    def _headers(admin_key: "str") -> "dict[str, str]":
        return {
            "x-api-key": admin_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }

    async def _request(
        self,
        method: "str",
        path: "str",
        admin_key: "str",
        params: "list[tuple[str, str | int]] | None" = None,
        json: "dict | None" = None,
    ) -> "dict":
        url = f"{self._base_url}/{path}"
        logger.debug("anthropic_request", method=method, url=url)

        try:
            resp = await self._client.request(
                method,
                url,
                params=params,
                json=json,
                headers=self._headers(admin_key),
                timeout=REQUEST_TIMEOUT_SECONDS,
            )
        except httpx.HTTPError as e:
            raise UpstreamTransientError(f"HTTP request failed: {e!r}") from e

        status = resp.status_code
        if status == 401:
            raise UpstreamUnauthorizedError(
                f"API returned status 401: {resp.text}", status_code=status
            )
        if status == 403:
            raise UpstreamForbiddenError(
                f"API returned status 403: {resp.text}", status_code=status
            )
        if status == 429:
            raise RateLimitedError("Rate limited", status_code=status)
        if not resp.is_success:
            raise UpstreamTransientError(
                f"API returned status {status}: {resp.text}", status_code=status
            )

        try:
            body = resp.json()
        except ValueError as e:
            raise UpstreamTransientError(
                f"Failed to parse response: {e}", status_code=status
            ) from e

        if not isinstance(body, dict):
            raise UpstreamTransientError(
                "Failed to parse response: expected a JSON object",
                status_code=status,
            )
        return body

    async def fetch_cost_report_page(
        self,
        admin_key: "str",
        starting_at: "str",
        page: "str | None" = None,
    ) -> "CostReportPage":
        """
        fetches a single page of the cost report starting at the given
        RFC3339 timestamp, grouped by workspace and description.
        """
        params: "list[tuple[str, str | int]]" = [
            ("starting_at", starting_at),
            ("group_by[]", "workspace_id"),
            ("group_by[]", "description"),
            ("limit", COST_REPORT_PAGE_LIMIT),
        ]
        if page:
            params.append(("page", page))

        body = await self._request("GET", "cost_report", admin_key, params=params)
        return _parse_cost_report(body)

    async def list_api_keys(
        self,
        admin_key: "str",
        workspace_id: "str | None" = None,
    ) -> "list[UpstreamApiKey]":
        """
        lists the active API keys of the organization, optionally
        restricted to a workspace.
        """
        params: "list[tuple[str, str | int]]" = [("limit", 100), ("status", "active")]
        if workspace_id:
            params.append(("workspace_id", workspace_id))

        body = await self._request("GET", "api_keys", admin_key, params=params)
        try:
            return [
                UpstreamApiKey(
                    id=item["id"],
                    name=item.get("name", ""),
                    status=item.get("status", ""),
                    created_at=item.get("created_at", ""),
                    workspace_id=item.get("workspace_id"),
                )
                for item in body.get("data", [])
            ]
        except (KeyError, TypeError, AttributeError) as e:
            raise UpstreamTransientError(f"Failed to parse response: {e!r}") from e

    async def create_workspace(self, admin_key: "str", name: "str") -> "Workspace":
        body = await self._request("POST", "workspaces", admin_key, json={"name": name})
        try:
            return Workspace(
                id=body["id"],
                name=body["name"],
                created_at=body.get("created_at", ""),
                archived_at=body.get("archived_at"),
            )
        except KeyError as e:
            raise UpstreamTransientError(f"Failed to parse response: {e!r}") from e


def _parse_cost_report(body: "dict") -> "CostReportPage":
    """
    validates the page envelope. Individual results are left raw so a
    single malformed entry does not fail the whole page.
    """
    data = body.get("data")
    has_more = body.get("has_more")
    if not isinstance(data, list) or not isinstance(has_more, bool):
        raise UpstreamTransientError("Failed to parse response: malformed cost report")

    buckets: "list[CostBucket]" = []
    for bucket in data:
        try:
            results = bucket.get("results") or []
            if not isinstance(results, list):
                raise TypeError("results is not a list")
            buckets.append(
                CostBucket(
                    starting_at=str(bucket["starting_at"]),
                    ending_at=str(bucket["ending_at"]),
                    results=[r for r in results if isinstance(r, dict)],
                )
            )
        except (KeyError, TypeError, AttributeError) as e:
            raise UpstreamTransientError(
                f"Failed to parse response: malformed bucket ({e!r})"
            ) from e

    next_page = body.get("next_page")
    return CostReportPage(
        buckets=buckets,
        has_more=has_more,
        next_page=str(next_page) if next_page else None,
    )
