import os
from dataclasses import dataclass, field

from keysmith.provider.anthropic import ANTHROPIC_BASE_URL


@dataclass
class Config:
    # listen_address for the metrics server: format ":9186" or
    # "0.0.0.0:9186"
    listen_address: "str" = ":9186"
    # periodic refresh interval in seconds
    refresh_interval: "int" = 3600
    # minimum seconds between two cost refresh runs
    refresh_cooldown: "int" = 60
    # how far back the first ingestion run reaches
    lookback_days: "int" = 30
    log_level: "str" = "info"
    log_format: "str" = "console"

    admin_key: "str" = ""
    # keys added to the pool at startup
    api_keys: "list[str]" = field(default_factory=list)
    state_path: "str" = "keysmith-state.json"
    base_url: "str" = ANTHROPIC_BASE_URL

    @classmethod
    def from_env(cls) -> "Config":
        api_keys = os.environ.get("KEYSMITH_API_KEYS", "")
        return cls(
            admin_key=os.environ.get("KEYSMITH_ADMIN_KEY", ""),
            api_keys=[k.strip() for k in api_keys.split(",") if k.strip()],
            state_path=os.environ.get("KEYSMITH_STATE_PATH", "keysmith-state.json"),
            base_url=os.environ.get("KEYSMITH_BASE_URL", ANTHROPIC_BASE_URL),
        )

    @property
    def admin_key_configured(self) -> "bool":
        return bool(self.admin_key)
