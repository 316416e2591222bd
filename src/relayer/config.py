"""
Configuration management for the message relayer.

Supports configuration via environment variables and .env files.
"""

from enum import Enum
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class NetworkType(str, Enum):
    """Source ledger networks."""
    MAINNET = "mainnet"
    TESTNET = "testnet"
    DEVNET = "devnet"
    LOCAL = "local"


# Wormhole core bridge program per network
CORE_BRIDGE_PROGRAM_IDS = {
    NetworkType.MAINNET: "worm2ZoG2kUd4vFXhvjh93UUH596ayRfgQ2MgjNMTth",
    NetworkType.TESTNET: "3u8hJUVTA4jH1wYAyUur7FFZVQ8H635K3tSHHF4ssjQ5",
    NetworkType.DEVNET: "3u8hJUVTA4jH1wYAyUur7FFZVQ8H635K3tSHHF4ssjQ5",
    NetworkType.LOCAL: "Bridge1p5gheXUvJ6jGWGeCsgPKgnE3YgdGKRVCMY9o",
}

RPC_URLS = {
    NetworkType.MAINNET: "https://api.mainnet-beta.solana.com",
    NetworkType.TESTNET: "https://api.testnet.solana.com",
    NetworkType.DEVNET: "https://api.devnet.solana.com",
    NetworkType.LOCAL: "http://localhost:8899",
}

GUARDIAN_URLS = {
    NetworkType.MAINNET: "https://api.wormholescan.io",
    NetworkType.TESTNET: "https://api.testnet.wormholescan.io",
    NetworkType.DEVNET: "https://api.testnet.wormholescan.io",
    NetworkType.LOCAL: "http://localhost:7071",
}


class RelayConfig(BaseSettings):
    """
    Configuration settings for the relayer.

    All settings can be configured via environment variables with the RELAY_ prefix.
    Durations are given in milliseconds; the ``*_seconds`` properties convert them.
    """

    model_config = SettingsConfigDict(
        env_prefix="RELAY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # Network settings
    network: NetworkType = Field(
        default=NetworkType.DEVNET,
        description="Source ledger network"
    )
    rpc_url: Optional[str] = Field(
        default=None,
        description="Custom ledger JSON-RPC URL (optional)"
    )
    guardian_url: Optional[str] = Field(
        default=None,
        description="Custom attestation API base URL (optional)"
    )
    core_bridge_program_id: Optional[str] = Field(
        default=None,
        description="Custom core bridge program ID (optional)"
    )
    chain_id: int = Field(
        default=1,
        ge=1,
        description="Wormhole chain ID of the source ledger"
    )

    # Signer settings
    keypair_path: Optional[str] = Field(
        default=None,
        description="Path to a JSON keypair file (64-byte array)"
    )
    keypair_base58: Optional[str] = Field(
        default=None,
        description="Base58-encoded secret key (alternative to file path)"
    )

    # Message parameters
    message_nonce: int = Field(
        default=0,
        ge=0,
        le=0xFFFFFFFF,
        description="Nonce attached to each published message"
    )
    consistency_level: int = Field(
        default=1,
        ge=0,
        le=255,
        description="Finality level requested from the core bridge (0=confirmed, 1=finalized)"
    )
    message_fee_lamports: int = Field(
        default=0,
        ge=0,
        description="Bridge message fee paid alongside each message"
    )
    fee_collector: Optional[str] = Field(
        default=None,
        description="Account receiving the bridge message fee"
    )

    # Submission
    max_submit_attempts: int = Field(
        default=3,
        ge=1,
        description="Maximum send attempts per signed transaction"
    )
    submit_backoff_ms: int = Field(
        default=2000,
        ge=0,
        description="Fixed delay between send attempts"
    )
    skip_simulation: bool = Field(
        default=True,
        description="Send without preflight simulation (lower latency, later error detection)"
    )

    # Finality
    finality_poll_ms: int = Field(
        default=2000,
        ge=10,
        description="Interval between transaction status polls"
    )
    finality_timeout_ms: Optional[int] = Field(
        default=None,
        ge=1,
        description="Upper bound on finality wait; the freshness token expiry always applies"
    )
    max_token_age_seconds: int = Field(
        default=30,
        ge=1,
        description="Freshness tokens older than this are refreshed before signing"
    )
    token_ttl_seconds: int = Field(
        default=90,
        ge=1,
        description="Wall-clock validity assumed for a fresh blockhash"
    )
    status_retry_attempts: int = Field(
        default=5,
        ge=1,
        description="Consecutive status query failures tolerated while polling"
    )

    # Attestation
    attestation_poll_ms: int = Field(
        default=2000,
        ge=10,
        description="Interval between attestation polls"
    )
    attestation_timeout_ms: int = Field(
        default=60_000,
        ge=1,
        description="Maximum time to wait for a signed attestation"
    )

    # Journal settings
    database_url: Optional[str] = Field(
        default="sqlite+aiosqlite:///relayer.db",
        description="SQLAlchemy database URL for the relay journal (empty disables it)"
    )

    # Logging settings
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)"
    )
    log_json: bool = Field(
        default=False,
        description="Output logs in JSON format"
    )

    @property
    def ledger_rpc_url(self) -> str:
        """Get the JSON-RPC URL for the configured network."""
        return self.rpc_url or RPC_URLS[self.network]

    @property
    def attestation_url(self) -> str:
        """Get the attestation API URL for the configured network."""
        return self.guardian_url or GUARDIAN_URLS[self.network]

    @property
    def bridge_program_id(self) -> str:
        """Get the core bridge program ID for the configured network."""
        return self.core_bridge_program_id or CORE_BRIDGE_PROGRAM_IDS[self.network]

    @property
    def submit_backoff_seconds(self) -> float:
        return self.submit_backoff_ms / 1000

    @property
    def finality_poll_seconds(self) -> float:
        return self.finality_poll_ms / 1000

    @property
    def finality_timeout_seconds(self) -> Optional[float]:
        if self.finality_timeout_ms is None:
            return None
        return self.finality_timeout_ms / 1000

    @property
    def attestation_poll_seconds(self) -> float:
        return self.attestation_poll_ms / 1000

    @property
    def attestation_timeout_seconds(self) -> float:
        return self.attestation_timeout_ms / 1000


# Global config instance
_config: Optional[RelayConfig] = None


def get_config() -> RelayConfig:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = RelayConfig()
    return _config


def set_config(config: RelayConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config
