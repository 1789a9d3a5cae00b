"""Unit tests for network endpoints and connection verification."""

from unittest.mock import MagicMock

import pytest

from chain_relayer.config import VerificationConfig
from chain_relayer.endpoint import NetworkEndpoint, wait_for_connections
from chain_relayer.exceptions import (
    InvalidStateTransition,
    NotConnected,
    RelayConnectionError,
    VerificationTimeout,
)
from chain_relayer.models import ConnectionState
from chain_relayer.retry import RetryPolicy
from chain_relayer.simulator import ChainSimulator, SimulatorConfig


def make_endpoint(name="source", chain_id=138, expected=None, attempts=1, **sim_overrides):
    sim_overrides.setdefault("detection_delay", 0)
    sim_overrides.setdefault("block_time", 60.0)
    sim = ChainSimulator(SimulatorConfig(chain_id=chain_id, **sim_overrides))
    endpoint = NetworkEndpoint(
        name,
        sim,
        expected if expected is not None else chain_id,
        RetryPolicy.fixed(attempts, 0),
    )
    return endpoint, sim


class TestStateMachine:
    """Tests for endpoint state transitions."""

    @pytest.mark.asyncio
    async def test_connect_then_verify(self):
        endpoint, _ = make_endpoint()

        await endpoint.connect()
        assert endpoint.state is ConnectionState.CONNECTED

        assert await endpoint.verify() is True
        assert endpoint.state is ConnectionState.VERIFIED
        assert endpoint.detected_chain_id == 138
        await endpoint.disconnect()

    @pytest.mark.asyncio
    async def test_verified_is_sticky(self):
        """A verified endpoint is not polled again."""
        endpoint, sim = make_endpoint()
        await endpoint.connect()
        await endpoint.verify()

        sim.request = MagicMock(side_effect=AssertionError("should not poll"))

        assert await endpoint.verify() is True
        assert endpoint.is_verified

    @pytest.mark.asyncio
    async def test_chain_id_mismatch_stays_connected(self):
        endpoint, _ = make_endpoint(chain_id=138, expected=1)
        await endpoint.connect()

        assert await endpoint.verify() is False
        assert endpoint.state is ConnectionState.CONNECTED
        assert endpoint.detected_chain_id == 138
        await endpoint.disconnect()

    @pytest.mark.asyncio
    async def test_connect_ceiling_moves_to_failed(self):
        """Exceeding the connect attempts moves to FAILED, which only reconnect() leaves."""
        endpoint, sim = make_endpoint(attempts=2, max_connect_attempts=0)

        with pytest.raises(RelayConnectionError):
            await endpoint.connect()
        assert endpoint.state is ConnectionState.FAILED

        with pytest.raises(RelayConnectionError, match="reconnect"):
            await endpoint.connect()

    @pytest.mark.asyncio
    async def test_reconnect_recovers_from_failed(self):
        endpoint, sim = make_endpoint(max_connect_attempts=1)
        await endpoint.connect()
        sim.simulate_drop()

        with pytest.raises(RelayConnectionError):
            await endpoint.reconnect()
        assert endpoint.state is ConnectionState.FAILED

        sim.reset_attempts()
        await endpoint.reconnect()
        assert endpoint.state is ConnectionState.CONNECTED
        await endpoint.disconnect()

    def test_invalid_transition_rejected(self):
        endpoint, _ = make_endpoint()

        with pytest.raises(InvalidStateTransition):
            endpoint._transition(ConnectionState.VERIFIED)
        assert endpoint.state is ConnectionState.DISCONNECTED

    @pytest.mark.asyncio
    async def test_operations_require_ready_state(self):
        endpoint, _ = make_endpoint()

        with pytest.raises(NotConnected):
            await endpoint.get_block(0)
        with pytest.raises(NotConnected):
            await endpoint.get_gas_price()
        with pytest.raises(NotConnected):
            await endpoint.verify()


class TestDisconnects:
    """Tests for transport and intentional disconnects."""

    @pytest.mark.asyncio
    async def test_transport_drop_counts_and_notifies(self):
        endpoint, sim = make_endpoint()
        listener = MagicMock()
        endpoint.add_disconnect_listener(listener)
        await endpoint.connect()
        await endpoint.verify()

        sim.simulate_drop()

        assert endpoint.state is ConnectionState.DISCONNECTED
        assert endpoint.disconnections == 1
        listener.assert_called_once_with(endpoint)

    @pytest.mark.asyncio
    async def test_intentional_disconnect_is_not_counted(self):
        endpoint, _ = make_endpoint()
        listener = MagicMock()
        endpoint.add_disconnect_listener(listener)
        await endpoint.connect()

        await endpoint.disconnect()
        await endpoint.disconnect()

        assert endpoint.state is ConnectionState.DISCONNECTED
        assert endpoint.disconnections == 0
        listener.assert_not_called()


class TestBlockSubscription:
    """Tests for the block queue."""

    @pytest.mark.asyncio
    async def test_blocks_are_queued_in_order(self):
        endpoint, sim = make_endpoint()
        await endpoint.connect()
        queue = endpoint.subscribe_blocks()

        for _ in range(3):
            sim.produce_block(tx_count=1)

        assert [queue.get_nowait() for _ in range(3)] == [1, 2, 3]
        assert endpoint.last_block_number == 3
        await endpoint.disconnect()

    @pytest.mark.asyncio
    async def test_unsubscribe_detaches_handler(self):
        endpoint, sim = make_endpoint()
        await endpoint.connect()
        queue = endpoint.subscribe_blocks()

        endpoint.unsubscribe_blocks()
        sim.produce_block(tx_count=1)

        assert queue.empty()
        assert sim.listener_count("block") == 0
        assert not endpoint.is_subscribed
        await endpoint.disconnect()


class TestWaitForConnections:
    """Tests for two-sided connection verification."""

    @pytest.mark.asyncio
    async def test_both_sides_verified(self, fast_verification):
        """Source 138 and target 1 reporting their expected ids verifies both."""
        source, _ = make_endpoint("source", chain_id=138)
        target, _ = make_endpoint("target", chain_id=1)

        assert await wait_for_connections(source, target, fast_verification) is True
        assert source.is_verified and target.is_verified
        await source.disconnect()
        await target.disconnect()

    @pytest.mark.asyncio
    async def test_unverified_side_is_named(self, fast_verification):
        source, _ = make_endpoint("source", chain_id=138)
        target, _ = make_endpoint("target", chain_id=1, expected=5)

        with pytest.raises(VerificationTimeout) as exc_info:
            await wait_for_connections(source, target, fast_verification)

        error = exc_info.value
        assert error.source_verified is True
        assert error.target_verified is False
        assert error.unverified == ["target"]
        assert error.attempts == fast_verification.max_attempts
        await source.disconnect()
        await target.disconnect()

    @pytest.mark.asyncio
    async def test_failed_endpoint_does_not_block_other_side(self, fast_verification):
        """An unreachable source still lets the target verify on its own."""
        source, _ = make_endpoint("source", chain_id=138, max_connect_attempts=0)
        target, _ = make_endpoint("target", chain_id=1)

        with pytest.raises(VerificationTimeout) as exc_info:
            await wait_for_connections(source, target, fast_verification)

        assert exc_info.value.unverified == ["source"]
        assert target.is_verified
        assert source.state is ConnectionState.FAILED
        await target.disconnect()

    @pytest.mark.asyncio
    async def test_wall_clock_timeout_bounds_attempts(self):
        config = VerificationConfig(settle_delay=0, max_attempts=1000, attempt_delay=0.01, timeout=0.1)
        source, _ = make_endpoint("source", chain_id=138, expected=2)
        target, _ = make_endpoint("target", chain_id=1)

        with pytest.raises(VerificationTimeout) as exc_info:
            await wait_for_connections(source, target, config)

        assert exc_info.value.attempts < 1000
        await source.disconnect()
        await target.disconnect()
