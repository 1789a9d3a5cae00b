"""
Chain relayer package.

Observes transactions on a source chain and resubmits them on a target chain,
with connection verification, bounded retries and Prometheus metrics.
"""

from .config import RelayerConfig
from .endpoint import NetworkEndpoint, wait_for_connections
from .models import MetricsSnapshot, RelayOutcome, RelayRecord
from .relayer import ChainRelayer
from .simulator import ChainSimulator, SimulatorConfig

__all__ = [
    "ChainRelayer",
    "ChainSimulator",
    "MetricsSnapshot",
    "NetworkEndpoint",
    "RelayOutcome",
    "RelayRecord",
    "RelayerConfig",
    "SimulatorConfig",
    "wait_for_connections",
]
__version__ = "0.1.0"
