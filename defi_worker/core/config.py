"""Pydantic-settings configuration for the DeFi portfolio worker.

Loads database, upstream API, scheduling and notification parameters from
the environment / .env file with defaults suitable for local development.
Computed fields produce the fully-formed database URL and the parsed pool
filter sets.
"""

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(raw: str) -> frozenset[str]:
    return frozenset(part.strip() for part in raw.split(",") if part.strip())


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore",
    )

    # Project
    project_name: str = "DeFi Portfolio Worker"
    debug: bool = False
    log_level: str = "INFO"

    # PostgreSQL
    postgres_host: str = "localhost"
    postgres_port: int = 5432
    postgres_db: str = "defi_dashboard"
    postgres_user: str = "defi_user"
    postgres_password: str = ""

    # SQLAlchemy pool settings
    db_pool_size: int = 10
    db_max_overflow: int = 5
    db_pool_pre_ping: bool = True
    db_sslmode: str = "prefer"  # Set to "require" in production

    # CoinGecko (price source)
    coingecko_base_url: str = "https://api.coingecko.com/api/v3"
    coingecko_api_key: str = ""
    coingecko_rate_limit_per_minute: int = 50

    # DefiLlama (yield-pool source)
    defillama_base_url: str = "https://api.llama.fi"
    defillama_api_key: str = ""
    defillama_api_key_header: str = "x-api-key"
    defillama_rate_limit_per_minute: int = 300

    # Shared HTTP behaviour
    http_timeout_seconds: float = 10.0
    http_max_retries: int = 3

    # Scheduling
    price_refresh_interval_minutes: int = 10
    alert_evaluation_interval_minutes: int = 5
    job_timeout_seconds: float = 300.0
    shutdown_grace_seconds: float = 30.0

    # Price refresh
    price_batch_size: int = 50
    min_pool_tvl_usd: float = 100_000.0
    supported_chains: str = "Ethereum,Polygon,Arbitrum,Optimism,Base"
    supported_protocols: str = (
        "aave-v3,aave-v2,compound-v3,compound-v2,uniswap-v3,"
        "curve,balancer-v2,yearn,convex,stargate"
    )

    # Alert evaluation
    alert_cooldown_minutes: int = 60

    # Notifications
    smtp_host: str = ""
    smtp_port: int = 587
    smtp_user: str = ""
    smtp_password: str = ""
    smtp_from: str = "alerts@defi-dashboard.local"
    telegram_bot_token: str = ""
    notification_timeout_seconds: float = 10.0

    @computed_field
    @property
    def async_database_url(self) -> str:
        """Async connection string for asyncpg."""
        base = (
            f"postgresql+asyncpg://{self.postgres_user}:{self.postgres_password}"
            f"@{self.postgres_host}:{self.postgres_port}/{self.postgres_db}"
        )
        if self.db_sslmode and self.db_sslmode != "disable":
            return f"{base}?ssl={self.db_sslmode}"
        return base

    @computed_field
    @property
    def supported_chain_set(self) -> frozenset[str]:
        """Chains whose pools are persisted even when untracked."""
        return _split_csv(self.supported_chains)

    @computed_field
    @property
    def supported_protocol_set(self) -> frozenset[str]:
        """Protocol slugs (lower-case) whose pools are persisted even when untracked."""
        return frozenset(p.lower() for p in _split_csv(self.supported_protocols))


# Singleton instance
settings = Settings()
