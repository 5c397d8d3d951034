from datetime import date
from functools import lru_cache
from typing import Any

from pydantic import AnyUrl, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


# Gnosis ConditionalTokens deployment used by Polymarket on Polygon.
DEFAULT_CTF_CONTRACT = "0x4D97DCd97eC945f40cF65F87097ACe5EA0476045"


def _split_csv(value: str) -> list[str]:
    return [item for item in (part.strip() for part in value.split(",")) if item]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    debug: bool = Field(False, description="Enable FastAPI debug mode and SQL echo")
    environment: str = Field(
        default="development",
        description="Runtime environment (development|staging|production)",
    )
    database_url: AnyUrl | str = Field(
        default="sqlite:///../data/tracker.db",
        description="SQLAlchemy compatible database URL for market snapshots",
    )
    persist_snapshots: bool = Field(
        default=True,
        description="Load the market snapshot at startup and save it after mutations",
    )
    log_file: str | None = Field(
        default="../data/tracking.log",
        description="Optional file sink for tracker logs (set blank to disable)",
    )
    gamma_base_url: AnyUrl = Field(
        default="https://gamma-api.polymarket.com",
        description="Base URL for the Polymarket Gamma API",
    )
    events_path: str = Field(default="/events", description="Relative path for events endpoint")
    markets_path: str = Field(default="/markets", description="Relative path for markets endpoint")
    ingestion_page_size: int = Field(
        100, description="Number of events to fetch per page", ge=1
    )
    resolved_since: date = Field(
        default=date(2024, 10, 10),
        description="Ignore closed events that ended before this date during resolved sweeps",
    )
    request_timeout_seconds: float = Field(
        default=30.0, description="Deadline applied to every outbound request", gt=0
    )
    request_min_interval_seconds: float = Field(
        default=0.1,
        description="Minimum spacing between two dispatched requests",
        ge=0,
    )
    request_retry_delay_seconds: float = Field(
        default=2.0,
        description="Fixed delay before a rate-limited or reset request is retried",
        ge=0,
    )
    request_max_retries: int = Field(
        default=3, description="Retry budget for transient request failures", ge=0
    )
    user_agent: str = Field(default="PolymarketTracker/1.0")
    polygon_rpc_url: AnyUrl | str = Field(
        default="https://polygon-rpc.com",
        description="JSON-RPC endpoint used to query ERC-1155 transfer logs",
    )
    ctf_contract_address: str = Field(
        default=DEFAULT_CTF_CONTRACT,
        description="Contract emitting outcome token TransferSingle/TransferBatch logs",
    )
    transfer_window_size: int = Field(
        default=10_000,
        description="Number of blocks requested per eth_getLogs window",
        ge=1,
    )
    transfer_start_block: int = Field(
        default=0, description="First block replayed when reconstructing balances", ge=0
    )
    winner_price_threshold: float = Field(
        default=0.9,
        description="Resolved outcome price strictly above which the outcome is the winner",
        gt=0,
        le=1,
    )
    enable_realtime: bool = Field(
        default=False, description="Connect to the push-update websocket at startup"
    )
    websocket_url: str = Field(default="wss://ws-subscriptions-clob.polymarket.com")
    ws_reconnect_delay: int = Field(
        default=5000, description="Base reconnect delay in milliseconds", ge=0
    )
    ws_max_reconnect_attempts: int = Field(
        default=10, description="Reconnect attempts before the channel gives up", ge=0
    )
    ws_channel: str = Field(default="market")
    ws_message_types: list[str] | str = Field(
        default_factory=lambda: ["price_change", "last_trade_price", "book"],
        description="Comma-separated list or array of message types to subscribe to",
    )
    enable_scheduler: bool = Field(
        default=True, description="Run the periodic full refresh in the API process"
    )
    refresh_interval_seconds: float = Field(
        default=3600.0, description="Seconds between scheduled full refreshes", gt=0
    )
    sse_queue_size: int = Field(
        default=100, description="Buffered events per SSE client before it is dropped", ge=1
    )

    @field_validator("ws_message_types", mode="after")
    @classmethod
    def _parse_message_types(cls, value: Any) -> list[str]:
        if value in (None, "", []):
            return []
        if isinstance(value, str):
            return _split_csv(value)
        if isinstance(value, (list, tuple, set)):
            return [str(item).strip() for item in value if str(item).strip()]
        raise ValueError(
            "WS_MESSAGE_TYPES must be provided as a list or comma-separated string"
        )

    @field_validator("log_file", mode="before")
    @classmethod
    def _blank_log_file(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("ctf_contract_address")
    @classmethod
    def _validate_contract_address(cls, value: str) -> str:
        candidate = value.strip()
        if not candidate.startswith("0x") or len(candidate) != 42:
            raise ValueError("CTF_CONTRACT_ADDRESS must be a 0x-prefixed 20 byte address")
        try:
            int(candidate[2:], 16)
        except ValueError as exc:
            raise ValueError("CTF_CONTRACT_ADDRESS must be hexadecimal") from exc
        return candidate

    @property
    def resolved_database_url(self) -> str:
        return str(self.database_url)


@lru_cache
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
