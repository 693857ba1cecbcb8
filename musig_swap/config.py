"""Configuration management for the swap SDK."""

from typing import Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    """Application configuration."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="MUSIG_SWAP_",
    )

    # Ledger Configuration
    ledger_url: str = Field(
        default="http://localhost:3030/jsrpc",
        description="JSON-RPC endpoint of the ledger"
    )
    request_timeout: float = Field(
        default=30.0,
        description="Timeout in seconds for a single ledger request"
    )
    confirmation_timeout: float = Field(
        default=300.0,
        description="Seconds to wait for a transaction receipt"
    )
    poll_interval: float = Field(
        default=1.0,
        description="Interval in seconds between receipt polls"
    )
    fee_cache_ttl: int = Field(
        default=60,
        description="Seconds a fee quote stays cached"
    )

    # Swap defaults
    default_swap_timeout: int = Field(
        default=600,
        description="Seconds from now until a new swap can be refunded"
    )
    create2_creator_address: str = Field(
        default="0x" + "00" * 20,
        description="Factory address used for CREATE2 escrow derivation"
    )
    create2_code_hash: str = Field(
        default="0x" + "00" * 32,
        description="Hash of the escrow recovery contract bytecode"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite+aiosqlite:///swaps.db",
        description="Database URL for the swap journal"
    )

    # Application Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level"
    )

    @field_validator("create2_code_hash")
    @classmethod
    def validate_code_hash(cls, v: str) -> str:
        """Code hashes are 32 bytes of hex."""
        if len(bytes.fromhex(v.removeprefix("0x"))) != 32:
            raise ValueError("create2_code_hash must be 32 bytes")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: Optional[str]) -> str:
        """Normalize the level name."""
        return (v or "INFO").upper()


# Global config instance
config = Config()
