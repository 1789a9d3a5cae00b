"""Shared fixtures for the chain relayer tests."""

import pytest

from chain_relayer.config import (
    MetricsConfig,
    MockConfig,
    ReconnectConfig,
    RelayerConfig,
    RelayPolicyConfig,
    SourceChainConfig,
    TargetChainConfig,
    VerificationConfig,
)
from chain_relayer.endpoint import NetworkEndpoint
from chain_relayer.models import Transaction, TransactionStatus
from chain_relayer.retry import RetryPolicy
from chain_relayer.simulator import ChainSimulator, SimulatorConfig

SOURCE_CHAIN_ID = 138
TARGET_CHAIN_ID = 1


@pytest.fixture
def fast_verification():
    """Verification timing with no settle delay and short waits."""
    return VerificationConfig(
        settle_delay=0,
        max_attempts=3,
        attempt_delay=0.01,
        timeout=5.0,
        connect_attempts=1,
        connect_retry_delay=0,
    )


@pytest.fixture
def relay_policy():
    return RelayPolicyConfig(retry_count=3, retry_delay=0, confirmation_timeout=5)


@pytest.fixture
def mock_config(fast_verification, relay_policy):
    """Mock-mode relayer configuration with near-zero delays and metrics disabled."""
    return RelayerConfig(
        source_chain=SourceChainConfig(rpc_url="http://localhost:8545"),
        target_chain=TargetChainConfig(rpc_url="http://localhost:8546"),
        relay=relay_policy,
        reconnect=ReconnectConfig(base_delay=0.01, max_attempts=3, max_delay=0.1),
        verification=fast_verification,
        metrics=MetricsConfig(enabled=False),
        mock=MockConfig(enabled=True, block_time=60.0),
    )


@pytest.fixture
def source_sim():
    """Source network simulator that never produces blocks on its own during a test."""
    return ChainSimulator(SimulatorConfig(
        chain_id=SOURCE_CHAIN_ID,
        block_time=60.0,
        detection_delay=0,
        seed=7,
    ))


@pytest.fixture
def target_sim():
    return ChainSimulator(SimulatorConfig(
        chain_id=TARGET_CHAIN_ID,
        name="mainnet",
        block_time=60.0,
        detection_delay=0,
        seed=11,
    ))


@pytest.fixture
def source_endpoint(source_sim):
    return NetworkEndpoint("source", source_sim, SOURCE_CHAIN_ID, RetryPolicy.fixed(1, 0))


@pytest.fixture
def target_endpoint(target_sim):
    return NetworkEndpoint("target", target_sim, TARGET_CHAIN_ID, RetryPolicy.fixed(1, 0))


@pytest.fixture
def source_tx():
    """A confirmed source transaction carrying source-specific nonce and chain id."""
    return Transaction(
        hash="0x" + "ab" * 32,
        from_address="0x" + "1" * 40,
        to_address="0x" + "2" * 40,
        value=10**18,
        gas_limit=21_000,
        gas_price=10**9,
        nonce=42,
        chain_id=SOURCE_CHAIN_ID,
        block_number=1,
        status=TransactionStatus.CONFIRMED,
    )
