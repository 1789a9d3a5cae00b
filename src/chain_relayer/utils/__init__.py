from .chain_client import ChainClient, ChainEventEmitter

__all__ = ["ChainClient", "ChainEventEmitter"]
