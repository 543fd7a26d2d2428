import argparse

from keysmith.config import Config


def parse_args(argv: "list[str] | None" = None) -> "Config":
    parser = argparse.ArgumentParser(
        prog="keysmith",
        description="API key pool manager with cost reconciliation",
    )
    parser.add_argument(
        "--web.listen-address",
        dest="listen_address",
        default=":9186",
        help="Address to expose metrics on (default: :9186)",
    )
    parser.add_argument(
        "--refresh.interval",
        dest="refresh_interval",
        type=int,
        default=3600,
        help="Periodic cost refresh interval in seconds (default: 3600)",
    )
    parser.add_argument(
        "--refresh.cooldown",
        dest="refresh_cooldown",
        type=int,
        default=60,
        help="Minimum seconds between two cost refreshes (default: 60)",
    )
    parser.add_argument(
        "--cost.lookback-days",
        dest="lookback_days",
        type=int,
        default=30,
        help="Days of cost history fetched on the first run (default: 30)",
    )
    parser.add_argument(
        "--state.path",
        dest="state_path",
        default=None,
        help="Path of the state snapshot (default: $KEYSMITH_STATE_PATH)",
    )
    parser.add_argument(
        "--log.level",
        dest="log_level",
        default="info",
        choices=["debug", "info", "warning", "error"],
        help="Log level (default: info)",
    )
    parser.add_argument(
        "--log.format",
        dest="log_format",
        default="console",
        choices=["console", "json"],
        help="Log output format (default: console)",
    )

    args = parser.parse_args(argv)
    config = Config.from_env()
    config.listen_address = args.listen_address
    config.refresh_interval = args.refresh_interval
    config.refresh_cooldown = args.refresh_cooldown
    config.lookback_days = args.lookback_days
    config.log_level = args.log_level
    config.log_format = args.log_format
    if args.state_path:
        config.state_path = args.state_path
    return config
