"""Application settings and configuration management."""

from pathlib import Path
from typing import Literal

import structlog
import yaml
from pydantic import Field, ValidationError
from pydantic_settings import BaseSettings

logger = structlog.get_logger(__name__)

PROFILES = ("dev", "prod")


class AppSettings(BaseSettings):
    """Application settings with environment variable support."""

    # Environment
    env: Literal["dev", "prod"] = Field(description="Environment: dev, prod")

    # Chain and price endpoints
    rpc_url: str = Field(description="Ethereum JSON-RPC URL")
    coincap_base: str = Field(
        default="https://api.coincap.io/v2", description="CoinCap API base URL"
    )
    defillama_base: str = Field(
        default="https://coins.llama.fi", description="DefiLlama coins API base URL"
    )
    defillama_chain: str = Field(
        default="ethereum", description="DefiLlama chain prefix for token lookups"
    )

    # Batching
    quiet_period_ms: int = Field(
        default=300, gt=0, description="Debounce quiet period in milliseconds"
    )
    busy_policy: Literal["queue", "drop"] = Field(
        default="queue",
        description="What to do with logs arriving while a batch is processing",
    )
    poll_interval_seconds: float = Field(
        default=2.0, gt=0, description="Delay between log source polls"
    )
    start_block: int | None = Field(
        default=None, description="First block to poll (defaults to latest)"
    )

    # Pricing
    oracle_fallback: Literal["first_leg", "both_legs"] = Field(
        default="both_legs",
        description="Which swap legs trigger an oracle lookup when unpriced",
    )
    anchor_stablecoins: list[str] = Field(
        default_factory=lambda: ["USDC", "USDT"],
        description="Symbols pegged to 1 USD",
    )
    native_symbol: str = Field(
        default="WETH", description="Wrapped native asset symbol"
    )

    # Metadata cache
    metadata_cache_max_entries: int | None = Field(
        default=None,
        description="LRU bound per metadata map (None keeps every entry)",
    )

    # Notifications
    telegram_bot_token: str | None = Field(
        default=None, description="Telegram bot token"
    )
    telegram_admin_ids: list[int] = Field(
        default_factory=list, description="Telegram admin user IDs"
    )
    alert_after_failed_batches: int = Field(
        default=10, gt=0, description="Consecutive unhealthy batches before alerting"
    )

    # Data storage
    database_path: str = Field(
        default="./swaps.sqlite", description="SQLite database file"
    )

    model_config = {
        "env_file": ".env",
        "env_file_encoding": "utf-8",
        "case_sensitive": False,
        "extra": "ignore",
    }


def load_settings(profile: str, yaml_path: str) -> AppSettings:
    """Load settings from YAML file and environment variables.

    Args:
        profile: Configuration profile name (dev, prod)
        yaml_path: Path to YAML configuration file

    Returns:
        AppSettings instance with loaded configuration

    Raises:
        FileNotFoundError: If YAML file doesn't exist
        ValidationError: If configuration is invalid
        ValueError: If profile is invalid or YAML cannot be parsed
    """
    if profile not in PROFILES:
        raise ValueError(f"Invalid profile: {profile}. Must be one of: dev, prod")

    yaml_file = Path(yaml_path)
    if not yaml_file.exists():
        raise FileNotFoundError(f"Configuration file not found: {yaml_path}")

    try:
        with open(yaml_file, encoding="utf-8") as f:
            yaml_config = yaml.safe_load(f) or {}

        yaml_config["env"] = profile

        logger.info("Loading configuration", profile=profile, yaml_path=yaml_path)

        settings = AppSettings(**yaml_config)

        logger.info(
            "Configuration loaded successfully",
            profile=profile,
            busy_policy=settings.busy_policy,
            oracle_fallback=settings.oracle_fallback,
            rpc_url=settings.rpc_url[:50] + "..."
            if len(settings.rpc_url) > 50
            else settings.rpc_url,
        )

        return settings

    except yaml.YAMLError as e:
        logger.error("Failed to parse YAML configuration", error=str(e))
        raise ValueError(f"Invalid YAML configuration: {e}") from e
    except ValidationError as e:
        logger.error("Configuration validation failed", error=str(e))
        raise
