import asyncio
from datetime import datetime, timedelta
from decimal import Decimal, InvalidOperation
from typing import Awaitable, Callable

import structlog

from keysmith.errors import RateLimitedError, UpstreamError
from keysmith.ledger import normalize_currency
from keysmith.models import CostBucket, CostRecord, CostReportPage, IngestionReport
from keysmith.provider.base import CostReportSource
from keysmith.retry import RATE_LIMIT_POLICY, TRANSPORT_POLICY, RetryPolicy
from keysmith.state import ManagerState
from keysmith.timestamps import format_rfc3339, parse_rfc3339

logger = structlog.get_logger()

# hard bound on pages per run, whatever the upstream claims
MAX_PAGES = 100
DEFAULT_LOOKBACK = timedelta(days=30)

CENTS_PER_DOLLAR = Decimal(100)


class CostIngestionPipeline:
    """
    CostIngestionPipeline pulls the paginated cost report from the
    upstream billing API and feeds it into the ledger.

    A run starts where the cursor left off (or a default lookback
    window back from now) and walks pages until the upstream reports
    no more, or MAX_PAGES is hit. Each page is fetched with its own
    attempt budget:
     - transport failures, non-2xx statuses and malformed bodies are
     retried with exponential backoff.
     - 429 responses are retried with the longer, linear rate limit
     backoff.
     - 401/403 abort the run on the spot.

    Pages are committed one at a time, so a failure keeps the pages
    that came before it and the cursor never sits mid-page. The state
    lock is never held while a request or a backoff sleep is pending.
    """

    def __init__(
        self,
        state: "ManagerState",
        source: "CostReportSource",
        default_lookback: "timedelta" = DEFAULT_LOOKBACK,
        transport_policy: "RetryPolicy" = TRANSPORT_POLICY,
        rate_limit_policy: "RetryPolicy" = RATE_LIMIT_POLICY,
        sleep: "Callable[[float], Awaitable[None]]" = asyncio.sleep,
        max_pages: "int" = MAX_PAGES,
    ) -> "None":
        self._state = state
        self._source = source
        self._default_lookback = default_lookback
        self._transport_policy = transport_policy
        self._rate_limit_policy = rate_limit_policy
        self._sleep = sleep
        self._max_pages = max_pages

    async def run(self) -> "IngestionReport":
        """
        runs one ingestion pass. Raises the last UpstreamError on
        failure, with pages_processed/records_added set to whatever
        was committed before it.
        """
        started_at = self._state.now()
        starting_at = self._state.ingestion_start(self._default_lookback)
        logger.info("cost_ingestion_start", starting_at=starting_at)

        pages = 0
        added = 0
        amount = Decimal("0")
        page_token: "str | None" = None

        try:
            while pages < self._max_pages:
                admin_key = self._state.require_admin_key()
                page = await self._fetch_page(admin_key, starting_at, page_token)

                records, ending_at = self._parse_page(page)
                added += self._state.commit_page(records, ending_at)
                amount += sum((r.amount for r in records), Decimal("0"))
                pages += 1

                logger.debug(
                    "cost_page_committed",
                    page=pages,
                    record_count=len(records),
                    ending_at=ending_at,
                )

                if not (page.has_more and page.next_page):
                    break
                page_token = page.next_page
            else:
                logger.warning("cost_page_cap_reached", max_pages=self._max_pages)

        except UpstreamError as e:
            e.pages_processed = pages
            e.records_added = added
            logger.error(
                "cost_ingestion_failed",
                error=str(e),
                pages_processed=pages,
                records_added=added,
            )
            raise

        self._state.finish_run(started_at)
        cursor = self._state.cursor()
        logger.info(
            "cost_ingestion_done",
            pages_processed=pages,
            records_added=added,
            queried_through=cursor.last_queried_through,
        )
        return IngestionReport(
            pages_processed=pages,
            records_added=added,
            amount_added=amount,
            queried_through=cursor.last_queried_through,
        )

    async def _fetch_page(
        self,
        admin_key: "str",
        starting_at: "str",
        page_token: "str | None",
    ) -> "CostReportPage":
        attempt = 0

        while True:
            attempt += 1
            try:
                return await self._source.fetch_cost_report_page(
                    admin_key, starting_at, page_token
                )
            except RateLimitedError as e:
                policy = self._rate_limit_policy
                error: "UpstreamError" = e
            except UpstreamError as e:
                policy = self._transport_policy
                error = e

            if not policy.should_retry(attempt, error.status_code):
                raise error

            delay = policy.delay(attempt)
            logger.warning(
                "cost_page_retry",
                attempt=attempt,
                max_attempts=policy.max_attempts,
                delay_seconds=delay,
                error=str(error),
            )
            await self._sleep(delay)

    def _parse_page(
        self,
        page: "CostReportPage",
    ) -> "tuple[list[CostRecord], str | None]":
        """
        converts a page into ledger records and returns them with the
        latest ending_at of the page in canonical form.
        """
        records: "list[CostRecord]" = []
        latest_end: "datetime | None" = None

        for bucket in page.buckets:
            ending_at = parse_rfc3339(bucket.ending_at)
            if ending_at is None:
                logger.warning("cost_bucket_end_unparseable", ending_at=bucket.ending_at)
            elif latest_end is None or ending_at > latest_end:
                latest_end = ending_at

            records.extend(self._parse_bucket(bucket))

        return records, format_rfc3339(latest_end) if latest_end else None

    def _parse_bucket(self, bucket: "CostBucket") -> "list[CostRecord]":
        incurred_at = parse_rfc3339(bucket.starting_at)
        if incurred_at is None:
            incurred_at = self._state.now()
            logger.warning(
                "cost_bucket_start_unparseable",
                starting_at=bucket.starting_at,
                fallback=incurred_at.isoformat(),
            )

        records: "list[CostRecord]" = []
        for result in bucket.results:
            amount = _parse_cents(result.get("amount"))
            if amount is None:
                logger.warning("cost_result_skipped", amount=result.get("amount"))
                continue

            currency = result.get("currency")
            if currency is not None and not isinstance(currency, str):
                logger.warning("cost_result_skipped", currency=currency)
                continue

            # zero entries carry no ledger value
            if amount == 0:
                continue

            records.append(
                CostRecord(
                    incurred_at=incurred_at,
                    amount=amount / CENTS_PER_DOLLAR,
                    currency=normalize_currency(currency),
                    description=str(result.get("description") or ""),
                )
            )

        return records


def _parse_cents(value: "object") -> "Decimal | None":
    if value is None or isinstance(value, bool):
        return None

    try:
        amount = Decimal(str(value).strip())
    except InvalidOperation:
        return None

    if not amount.is_finite():
        return None
    return amount
