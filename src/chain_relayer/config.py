"""Configuration management for the chain relayer.

This module provides type-safe configuration dataclasses with validation for
the relayer that forwards transactions from a source chain to a target chain.
Configuration is loaded from environment variables with sensible defaults
where appropriate.
"""

import logging
import os
from dataclasses import dataclass, field
from urllib.parse import urlparse

# Get logger for this module
logger = logging.getLogger(__name__)

GWEI = 10**9


def _validate_rpc_url(rpc_url: str, env_var: str) -> None:
    if not rpc_url:
        raise ValueError(f"RPC URL is required ({env_var})")

    parsed = urlparse(rpc_url)
    if parsed.scheme not in ('http', 'https', 'ws', 'wss'):
        raise ValueError(
            f"Invalid RPC URL scheme: {parsed.scheme}. "
            "Expected http, https, ws, or wss"
        )


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None or value == "":
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True, slots=True)
class SourceChainConfig:
    """Configuration for the source chain whose transactions are relayed.

    Attributes:
        rpc_url: HTTP(S) or WS(S) RPC endpoint for the source chain
        chain_id: Expected chain ID, checked during connection verification
        name: Human readable network name
        explorer_urls: Block explorer base URLs keyed by explorer name
    """

    rpc_url: str
    chain_id: int = 138
    name: str = "defi-oracle-meta"
    explorer_urls: dict[str, str] = field(default_factory=lambda: {
        "blockscout": "https://blockscout.defi-oracle.io",
        "quorum": "https://explorer.defi-oracle.io",
    })

    def __post_init__(self) -> None:
        """Validate source chain configuration."""
        _validate_rpc_url(self.rpc_url, "SOURCE_RPC_URL")

        if self.chain_id <= 0:
            raise ValueError(f"Source chain ID must be positive, got {self.chain_id}")


@dataclass(frozen=True, slots=True)
class TargetChainConfig:
    """Configuration for the target chain that receives relayed transactions.

    Attributes:
        rpc_url: HTTP(S) or WS(S) RPC endpoint for the target chain
        chain_id: Expected chain ID, checked during connection verification
        private_key: Key used to sign relayed transactions (empty in mock mode)
        name: Human readable network name
        explorer_urls: Block explorer base URLs keyed by explorer name
    """

    rpc_url: str
    chain_id: int = 1
    private_key: str = ""
    name: str = "mainnet"
    explorer_urls: dict[str, str] = field(default_factory=lambda: {
        "etherscan": "https://etherscan.io",
    })

    def __post_init__(self) -> None:
        """Validate target chain configuration."""
        _validate_rpc_url(self.rpc_url, "TARGET_RPC_URL")

        if self.chain_id <= 0:
            raise ValueError(f"Target chain ID must be positive, got {self.chain_id}")

        if self.private_key:
            # Basic private key validation (should be 64 hex chars, optionally with 0x prefix)
            key = self.private_key.removeprefix('0x')

            if len(key) != 64:
                raise ValueError(
                    f"Invalid private key length. Expected 64 hex characters, got {len(key)}"
                )

            try:
                int(key, 16)
            except ValueError:
                raise ValueError(
                    "Invalid private key format. Must be hexadecimal"
                ) from None


@dataclass(frozen=True, slots=True)
class RelayPolicyConfig:
    """Per-transaction relay policy."""
    retry_count: int = 3  # total attempts per source transaction
    retry_delay: float = 1.0  # seconds between attempts
    max_gas_price_gwei: float = 100
    gas_price_buffer: float = 1.2  # safety multiplier on gas estimates
    confirmation_timeout: float = 120  # seconds to wait for one confirmation

    def __post_init__(self) -> None:
        """Validate relay policy configuration."""
        if self.retry_count < 1:
            raise ValueError(f"Retry count must be at least 1, got {self.retry_count}")
        if self.retry_count > 10:
            raise ValueError(f"Retry count too high (max 10), got {self.retry_count}")

        if self.retry_delay < 0:
            raise ValueError(f"Retry delay must be non-negative, got {self.retry_delay}")

        if self.max_gas_price_gwei <= 0:
            raise ValueError(f"Max gas price must be positive, got {self.max_gas_price_gwei}")

        if self.gas_price_buffer < 1.0:
            raise ValueError(f"Gas price buffer must be >= 1.0, got {self.gas_price_buffer}")

        if self.confirmation_timeout <= 0:
            raise ValueError(
                f"Confirmation timeout must be positive, got {self.confirmation_timeout}"
            )

    @property
    def max_gas_price_wei(self) -> int:
        return int(self.max_gas_price_gwei * GWEI)


@dataclass(frozen=True, slots=True)
class ReconnectConfig:
    """Exponential backoff used to reconnect the source endpoint."""
    base_delay: float = 1.0
    max_attempts: int = 5
    max_delay: float = 60.0

    def __post_init__(self) -> None:
        if self.base_delay < 0:
            raise ValueError(f"Reconnect base delay must be non-negative, got {self.base_delay}")
        if self.max_attempts < 1:
            raise ValueError(f"Reconnect attempts must be at least 1, got {self.max_attempts}")
        if self.max_delay < self.base_delay:
            raise ValueError(
                f"Reconnect max delay ({self.max_delay}) must not be below base delay ({self.base_delay})"
            )


@dataclass(frozen=True, slots=True)
class VerificationConfig:
    """Connection verification timing."""
    settle_delay: float = 3.0  # initial wait before the first poll
    max_attempts: int = 5
    attempt_delay: float = 2.0
    timeout: float = 30.0  # overall wall-clock bound
    connect_attempts: int = 3  # per-endpoint ceiling before Failed
    connect_retry_delay: float = 1.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"Verification attempts must be at least 1, got {self.max_attempts}")
        if self.connect_attempts < 1:
            raise ValueError(f"Connect attempts must be at least 1, got {self.connect_attempts}")
        if min(self.settle_delay, self.attempt_delay, self.connect_retry_delay) < 0:
            raise ValueError("Verification delays must be non-negative")
        if self.timeout <= 0:
            raise ValueError(f"Verification timeout must be positive, got {self.timeout}")


@dataclass(frozen=True, slots=True)
class MetricsConfig:
    """Configuration for the metrics HTTP server."""
    enabled: bool = True
    host: str = "0.0.0.0"
    port: int = 9091

    def __post_init__(self) -> None:
        if not 0 < self.port < 65536:
            raise ValueError(f"Metrics port out of range, got {self.port}")


@dataclass(frozen=True, slots=True)
class MockConfig:
    """Configuration for the simulated networks used in mock mode."""
    enabled: bool = False
    block_time: float = 5.0
    failure_rate: float = 0.0  # share of simulated target receipts that fail

    def __post_init__(self) -> None:
        if self.block_time <= 0:
            raise ValueError(f"Mock block time must be positive, got {self.block_time}")
        if not 0.0 <= self.failure_rate <= 1.0:
            raise ValueError(f"Mock failure rate must be within [0, 1], got {self.failure_rate}")


@dataclass(frozen=True, slots=True)
class RelayerConfig:
    """Main configuration for the chain relayer.

    Attributes:
        source_chain: Configuration for the source chain
        target_chain: Configuration for the target chain
        relay: Per-transaction relay policy
        reconnect: Source reconnection backoff
        verification: Connection verification timing
        metrics: Metrics server settings
        mock: Simulated network settings
    """

    source_chain: SourceChainConfig
    target_chain: TargetChainConfig
    relay: RelayPolicyConfig = field(default_factory=RelayPolicyConfig)
    reconnect: ReconnectConfig = field(default_factory=ReconnectConfig)
    verification: VerificationConfig = field(default_factory=VerificationConfig)
    metrics: MetricsConfig = field(default_factory=MetricsConfig)
    mock: MockConfig = field(default_factory=MockConfig)

    def __post_init__(self) -> None:
        """Validate cross-section settings."""
        if not self.mock.enabled and not self.target_chain.private_key:
            raise ValueError(
                "PRIVATE_KEY environment variable is required unless mock mode is enabled. "
                "This is used to sign transactions on the target chain"
            )

    @property
    def mock_mode(self) -> bool:
        return self.mock.enabled

    @classmethod
    def from_env(cls, mock_mode: bool = False) -> "RelayerConfig":
        """Load configuration from environment variables.

        Args:
            mock_mode: Force mock mode regardless of MOCK_MODE

        Returns:
            RelayerConfig instance with loaded values

        Raises:
            ValueError: If required environment variables are missing or invalid
        """
        mock_enabled = mock_mode or _env_bool("MOCK_MODE", False)

        # Load source chain config
        source_config = SourceChainConfig(
            rpc_url=os.environ.get("SOURCE_RPC_URL", "https://rpc.defi-oracle.io"),
            chain_id=int(os.environ.get("SOURCE_CHAIN_ID", "138")),
            name=os.environ.get("SOURCE_NETWORK_NAME", "defi-oracle-meta"),
        )

        # Load target chain config
        target_rpc_url = os.environ.get("TARGET_RPC_URL", "")
        if not target_rpc_url:
            if not mock_enabled:
                raise ValueError(
                    "TARGET_RPC_URL environment variable is required. "
                    "Example: https://mainnet.infura.io/v3/<key>"
                )
            target_rpc_url = "http://localhost:8545"

        target_config = TargetChainConfig(
            rpc_url=target_rpc_url,
            chain_id=int(os.environ.get("TARGET_CHAIN_ID", "1")),
            private_key=os.environ.get("PRIVATE_KEY", ""),
        )

        relay_config = RelayPolicyConfig(
            retry_count=int(os.environ.get("MAX_RETRIES", "3")),
            retry_delay=float(os.environ.get("RETRY_DELAY", "1.0")),
            max_gas_price_gwei=float(os.environ.get("MAX_GAS_PRICE", "100")),
            gas_price_buffer=float(os.environ.get("GAS_PRICE_BUFFER", "1.2")),
            confirmation_timeout=float(os.environ.get("CONFIRMATION_TIMEOUT", "120")),
        )

        reconnect_config = ReconnectConfig(
            base_delay=float(os.environ.get("RECONNECT_BASE_DELAY", "1.0")),
            max_attempts=int(os.environ.get("RECONNECT_MAX_ATTEMPTS", "5")),
        )

        metrics_config = MetricsConfig(
            enabled=_env_bool("METRICS_ENABLED", True),
            host=os.environ.get("METRICS_HOST", "0.0.0.0"),
            port=int(os.environ.get("METRICS_PORT", "9091")),
        )

        mock_config = MockConfig(
            enabled=mock_enabled,
            block_time=float(os.environ.get("MOCK_BLOCK_TIME", "5.0")),
            failure_rate=float(os.environ.get("MOCK_FAILURE_RATE", "0.0")),
        )

        return cls(
            source_chain=source_config,
            target_chain=target_config,
            relay=relay_config,
            reconnect=reconnect_config,
            metrics=metrics_config,
            mock=mock_config,
        )

    def log_config(self) -> None:
        """Log the configuration in a readable format (hiding sensitive data)."""
        logger.info("=" * 60)
        logger.info("Chain Relayer Configuration")
        logger.info("=" * 60)
        logger.info(f"Mode: {'MOCK' if self.mock_mode else 'LIVE'}")

        logger.info("Source Chain:")
        logger.info(f"  Name: {self.source_chain.name}")
        logger.info(f"  RPC URL: {self.source_chain.rpc_url}")
        logger.info(f"  Chain ID: {self.source_chain.chain_id}")

        logger.info("Target Chain:")
        logger.info(f"  Name: {self.target_chain.name}")
        logger.info(f"  RPC URL: {self.target_chain.rpc_url}")
        logger.info(f"  Chain ID: {self.target_chain.chain_id}")
        logger.info(f"  Private Key: {'[SET]' if self.target_chain.private_key else '[NOT SET]'}")

        logger.info("Relay Policy:")
        logger.info(f"  Retry Count: {self.relay.retry_count}")
        logger.info(f"  Retry Delay: {self.relay.retry_delay}s")
        logger.info(f"  Max Gas Price: {self.relay.max_gas_price_gwei} gwei")
        logger.info(f"  Gas Buffer: {self.relay.gas_price_buffer}x")

        logger.info("Reconnection:")
        logger.info(f"  Base Delay: {self.reconnect.base_delay}s")
        logger.info(f"  Max Attempts: {self.reconnect.max_attempts}")

        logger.info("Metrics:")
        if self.metrics.enabled:
            logger.info(f"  Listening on {self.metrics.host}:{self.metrics.port}")
        else:
            logger.info("  Disabled")

        if self.mock_mode:
            logger.info("Mock Networks:")
            logger.info(f"  Block Time: {self.mock.block_time}s")
            logger.info(f"  Failure Rate: {self.mock.failure_rate}")

        logger.info("=" * 60)

