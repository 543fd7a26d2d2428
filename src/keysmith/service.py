import asyncio
from datetime import timedelta
from typing import Awaitable, Callable

import structlog

from keysmith.governor import DEFAULT_COOLDOWN, RefreshGovernor
from keysmith.ingestion import DEFAULT_LOOKBACK, CostIngestionPipeline
from keysmith.ledger import parse_window
from keysmith.metrics import MetricsUpdater
from keysmith.models import (
    Assignment,
    CostRecord,
    CostTotals,
    KeyCosts,
    KeyInfo,
    RefreshResult,
    UpstreamApiKey,
    Workspace,
)
from keysmith.provider.anthropic import AnthropicAdminClient
from keysmith.state import ManagerState

logger = structlog.get_logger()


def mask_key(credential: "str") -> "str":
    """
    short, log-safe form of a credential.
    """
    if len(credential) <= 12:
        return "***"
    return f"{credential[:7]}...{credential[-4:]}"


def admin_key_prefix(admin_key: "str") -> "str":
    return "sk-***" if admin_key.startswith("sk-") else "invalid"


class KeyManager:
    """
    KeyManager is the entry point for every inbound operation: key
    pool administration, credential requests from remote callers,
    cost queries, and cost refresh/reset. It wires the manager state,
    the ingestion pipeline and the refresh governor together; all
    state access goes through ManagerState.
    """

    def __init__(
        self,
        state: "ManagerState",
        client: "AnthropicAdminClient",
        cooldown: "timedelta" = DEFAULT_COOLDOWN,
        default_lookback: "timedelta" = DEFAULT_LOOKBACK,
        metrics: "MetricsUpdater | None" = None,
        sleep: "Callable[[float], Awaitable[None]]" = asyncio.sleep,
    ) -> "None":
        self._state = state
        self._client = client
        self._metrics = metrics
        self._pipeline = CostIngestionPipeline(
            state,
            client,
            default_lookback=default_lookback,
            sleep=sleep,
        )
        self._governor = RefreshGovernor(
            state,
            self._pipeline,
            cooldown=cooldown,
            metrics=metrics,
        )

    @property
    def state(self) -> "ManagerState":
        return self._state

    async def close(self) -> "None":
        await self._client.close()

    # key pool

    def add_key(self, api_key: "str") -> "None":
        self._state.add_key(api_key)
        logger.info("api_key_added", key=mask_key(api_key))
        self._update_active_gauge()

    def remove_key(self, api_key: "str") -> "None":
        self._state.remove_key(api_key)
        logger.info("api_key_removed", key=mask_key(api_key))
        self._update_active_gauge()

    def list_keys(self) -> "list[KeyInfo]":
        return self._state.list_active()

    def key_status(self, api_key: "str") -> "KeyInfo":
        return self._state.key_info(api_key)

    def node_history(self) -> "list[Assignment]":
        return self._state.assignment_history()

    def request_api_key(self, caller_id: "str") -> "str":
        """
        hands out the caller's credential. The first request picks one
        at random; later ones return the same credential.
        """
        credential, is_new = self._state.assign(caller_id)
        if is_new:
            logger.info("api_key_assigned", caller=caller_id, key=mask_key(credential))
            if self._metrics is not None:
                self._metrics.inc_assignment()
        return credential

    # admin key

    def set_admin_key(self, admin_key: "str") -> "None":
        self._state.set_admin_key(admin_key)
        logger.info("admin_key_set", key_prefix=admin_key_prefix(admin_key))

    def check_admin_key(self) -> "tuple[bool, str | None]":
        admin_key = self._state.admin_key()
        if admin_key is None:
            return False, None
        return True, admin_key_prefix(admin_key)

    # costs

    def total_costs(
        self,
        start_date: "str | None" = None,
        end_date: "str | None" = None,
    ) -> "CostTotals":
        start, end = parse_window(start_date, end_date)
        return self._state.total_costs(start, end)

    def key_costs(
        self,
        api_key: "str",
        start_date: "str | None" = None,
        end_date: "str | None" = None,
    ) -> "KeyCosts":
        start, end = parse_window(start_date, end_date)
        return self._state.key_costs(api_key, start, end)

    def all_costs(self) -> "list[CostRecord]":
        return self._state.all_costs()

    async def refresh_costs(self) -> "RefreshResult":
        return await self._governor.attempt_refresh()

    async def reset_costs(self) -> "None":
        """
        discards cost history and the ingestion cursor. Waits for any
        refresh in progress so the two never interleave.
        """
        self._state.require_admin_key()
        async with self._governor.lock:
            self._state.reset_costs()
        logger.info("costs_reset")

    async def create_workspace(self, name: "str") -> "Workspace":
        admin_key = self._state.require_admin_key()
        workspace = await self._client.create_workspace(admin_key, name)
        logger.info("workspace_created", workspace_id=workspace.id, name=workspace.name)
        return workspace

    async def list_upstream_keys(
        self,
        workspace_id: "str | None" = None,
    ) -> "list[UpstreamApiKey]":
        admin_key = self._state.require_admin_key()
        return await self._client.list_api_keys(admin_key, workspace_id)

    def _update_active_gauge(self) -> "None":
        if self._metrics is not None:
            self._metrics.set_active_keys(self._state.active_count())
