import asyncio
import time
from datetime import timedelta

import structlog

from keysmith.errors import UpstreamError
from keysmith.ingestion import CostIngestionPipeline
from keysmith.metrics import MetricsUpdater
from keysmith.models import RefreshResult
from keysmith.state import ManagerState

logger = structlog.get_logger()

DEFAULT_COOLDOWN = timedelta(seconds=60)


class RefreshGovernor:
    """
    RefreshGovernor decides whether an ingestion run may start now.

    Manual and periodic refreshes both come through attempt_refresh().
    The check of last_run_at and the run that sets it happen under one
    asyncio lock, so two refreshes can never both get past the
    cooldown. That lock is not the state lock, and key assignment
    keeps flowing while a run is in progress.
    """

    def __init__(
        self,
        state: "ManagerState",
        pipeline: "CostIngestionPipeline",
        cooldown: "timedelta" = DEFAULT_COOLDOWN,
        metrics: "MetricsUpdater | None" = None,
    ) -> "None":
        self._state = state
        self._pipeline = pipeline
        self._cooldown = cooldown
        self._metrics = metrics
        self._run_lock: "asyncio.Lock" = asyncio.Lock()

    @property
    def lock(self) -> "asyncio.Lock":
        """
        held for the whole of a refresh; cost resets take it too so
        they never interleave with a run.
        """
        return self._run_lock

    async def attempt_refresh(self) -> "RefreshResult":
        """
        runs an ingestion pass unless one ran within the cooldown.
        Raises AdminKeyMissingError without an admin key and
        propagates pipeline errors, in which case last_run_at is left
        alone so the next attempt may retry right away.
        """
        self._state.require_admin_key()

        async with self._run_lock:
            last_run_at = self._state.check_cooldown(self._cooldown)
            if last_run_at is not None:
                logger.info("refresh_too_soon", last_run_at=last_run_at.isoformat())
                self._observe_outcome("too_soon")
                return RefreshResult(
                    refreshed=False,
                    message=f"Costs were recently refreshed at {last_run_at.isoformat()}",
                    timestamp=last_run_at,
                )

            cycle_start = time.monotonic()
            try:
                report = await self._pipeline.run()
            except UpstreamError as e:
                self._observe_outcome("error")
                if self._metrics is not None:
                    self._metrics.inc_refresh_error(type(e).__name__)
                raise
            finally:
                if self._metrics is not None:
                    self._metrics.observe_refresh_duration(time.monotonic() - cycle_start)

            finished = self._state.cursor().last_run_at or self._state.now()

        self._observe_outcome("refreshed")
        if self._metrics is not None:
            self._metrics.record_ingested(report.records_added, report.amount_added)
            self._metrics.set_last_refresh_success(time.time())

        return RefreshResult(
            refreshed=True,
            message=(
                "Costs refreshed successfully. "
                f"Added {report.records_added} cost records"
            ),
            timestamp=finished,
            records_added=report.records_added,
        )

    def _observe_outcome(self, outcome: "str") -> "None":
        if self._metrics is not None:
            self._metrics.inc_refresh_outcome(outcome)
