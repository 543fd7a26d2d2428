import asyncio
from typing import Callable

import structlog

from keysmith.errors import AdminKeyMissingError, KeysmithError
from keysmith.service import KeyManager

logger = structlog.get_logger()

DEFAULT_REFRESH_INTERVAL_SECONDS = 3600


class RefreshLoop:
    """
    RefreshLoop triggers a cost refresh on a fixed interval. It goes
    through the same governor as manual refreshes, so a periodic run
    never lands inside the cooldown of a manual one. A failed cycle is
    logged and the loop keeps going; the next cycle retries.
    """

    def __init__(
        self,
        manager: "KeyManager",
        interval_seconds: "int" = DEFAULT_REFRESH_INTERVAL_SECONDS,
        on_cycle: "Callable[[], None] | None" = None,
    ) -> "None":
        self._manager = manager
        self._interval = interval_seconds
        self._on_cycle = on_cycle
        self._stop_event: "asyncio.Event" = asyncio.Event()

    def stop(self) -> "None":
        """
        signals the loop to stop after the current cycle.
        """
        self._stop_event.set()

    async def run(self) -> "None":
        """
        runs the refresh loop until stop() is called.
        """
        while not self._stop_event.is_set():
            await self.run_once()

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._interval)
            except TimeoutError:
                pass

    async def run_once(self) -> "None":
        logger.info("refresh_cycle_start")

        try:
            result = await self._manager.refresh_costs()
            logger.info(
                "refresh_cycle_end",
                refreshed=result.refreshed,
                records_added=result.records_added,
            )
        except AdminKeyMissingError:
            logger.debug("refresh_cycle_skipped", reason="admin key not configured")
        except KeysmithError as e:
            logger.error("refresh_cycle_failed", error=str(e))
        except Exception:
            logger.exception("refresh_cycle_error")

        if self._on_cycle is not None:
            self._on_cycle()
