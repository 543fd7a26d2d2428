from typing import Protocol

from keysmith.models import CostReportPage


class CostReportSource(Protocol):
    """
    CostReportSource stands as the protocol the ingestion pipeline
    fetches cost report pages through.

    Implementations raise the UpstreamError subclasses from
    keysmith.errors so the pipeline can tell fatal failures
    (unauthorized, forbidden) from retriable ones.
    """

    async def fetch_cost_report_page(
        self,
        admin_key: "str",
        starting_at: "str",
        page: "str | None" = None,
    ) -> "CostReportPage": ...

    async def close(self) -> "None": ...
