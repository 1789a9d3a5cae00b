"""
Relay metrics using prometheus_client.

Each relayer instance owns its own CollectorRegistry so that several
relayers in one process never share counters.
"""

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8"


class RelayMetrics:
    """Prometheus collectors for one relayer instance."""

    def __init__(self, registry: CollectorRegistry | None = None) -> None:
        self.registry = registry or CollectorRegistry()

        # ---------------------------------------------------------------------
        # Relay outcomes
        # ---------------------------------------------------------------------

        self.transactions_seen = Counter(
            "relay_transactions",
            "Source transactions observed by the relayer",
            registry=self.registry,
        )
        self.attempts = Counter(
            "relay_attempts",
            "Submission attempts on the target chain",
            registry=self.registry,
        )
        self.successes = Counter(
            "relay_successes",
            "Transactions relayed successfully",
            registry=self.registry,
        )
        self.failures = Counter(
            "relay_failures",
            "Transactions that permanently failed to relay",
            registry=self.registry,
        )
        self.retries = Counter(
            "relay_retries",
            "Submission attempts beyond the first per transaction",
            registry=self.registry,
        )
        self.relay_duration = Histogram(
            "relay_duration_seconds",
            "Time from first attempt to final outcome",
            buckets=(0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0),
            registry=self.registry,
        )

        # ---------------------------------------------------------------------
        # Chain state
        # ---------------------------------------------------------------------

        self.last_gas_used = Gauge(
            "relay_last_gas_used",
            "Gas used by the most recent successful relay",
            registry=self.registry,
        )
        self.disconnections = Gauge(
            "relay_disconnections",
            "Network disconnections observed",
            registry=self.registry,
        )
        self.source_block_height = Gauge(
            "relay_source_block_height",
            "Latest source block processed",
            registry=self.registry,
        )

        # ---------------------------------------------------------------------
        # Block queue
        # ---------------------------------------------------------------------

        self.block_queue_size = Gauge(
            "relay_block_queue_size",
            "Source blocks waiting for the block worker",
            registry=self.registry,
        )
        self.block_errors = Counter(
            "relay_block_errors",
            "Source blocks that could not be processed",
            registry=self.registry,
        )

    def generate(self) -> bytes:
        """
        Generate Prometheus metrics output.

        Returns:
            Prometheus text format output as bytes.
        """
        return generate_latest(self.registry)
