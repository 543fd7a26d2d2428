import asyncio
import signal
from datetime import timedelta

import structlog
from prometheus_client import start_http_server

from keysmith.cli import parse_args
from keysmith.config import Config
from keysmith.errors import AlreadyExistsError
from keysmith.logging import setup_logging
from keysmith.metrics import MetricsUpdater
from keysmith.persistence import StateStore
from keysmith.provider.anthropic import AnthropicAdminClient
from keysmith.scheduler import RefreshLoop
from keysmith.service import KeyManager, mask_key
from keysmith.state import ManagerState

logger = structlog.get_logger()


def _parse_listen_address(addr: "str") -> "tuple[str, int]":
    """
    parses listen address in format ':9186' or '0.0.0.0:9186'.
    """
    if addr.startswith(":"):
        return ("0.0.0.0", int(addr[1:]))

    host, port = addr.rsplit(":", 1)
    return (host, int(port))


def build_manager(
    config: "Config",
    state: "ManagerState",
    metrics: "MetricsUpdater | None" = None,
) -> "KeyManager":
    """
    wires a KeyManager from configuration and seeds the admin key and
    the key pool from it.
    """
    manager = KeyManager(
        state,
        AnthropicAdminClient(base_url=config.base_url),
        cooldown=timedelta(seconds=config.refresh_cooldown),
        default_lookback=timedelta(days=config.lookback_days),
        metrics=metrics,
    )

    if config.admin_key_configured:
        manager.set_admin_key(config.admin_key)

    for api_key in config.api_keys:
        try:
            manager.add_key(api_key)
        except AlreadyExistsError:
            logger.debug("seed_key_known", key=mask_key(api_key))

    return manager


def main() -> "None":
    config = parse_args()
    setup_logging(config.log_level, config.log_format)

    state = ManagerState()
    store = StateStore(config.state_path)
    store.load(state)

    metrics = MetricsUpdater()
    manager = build_manager(config, state, metrics)
    metrics.set_active_keys(state.active_count())

    host, port = _parse_listen_address(config.listen_address)
    start_http_server(port, addr=host)
    logger.info("metrics_server_started", host=host, port=port)

    loop_runner = RefreshLoop(
        manager,
        interval_seconds=config.refresh_interval,
        on_cycle=lambda: store.save(state),
    )

    async def _run() -> "None":
        loop = asyncio.get_running_loop()
        # for SIGINT and SIGTERM, signal the refresh loop
        # to stop gracefully
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, loop_runner.stop)

        try:
            await loop_runner.run()
        finally:
            logger.info("shutting_down")
            store.save(state)
            await manager.close()
            logger.info("shutdown_complete")

    asyncio.run(_run())


if __name__ == "__main__":
    main()
