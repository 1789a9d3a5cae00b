#!/usr/bin/env python3
"""Entry point for the chain relayer service.

Relays transactions from the source chain to the target chain, either
against live RPC endpoints or against simulated networks (--mock).
"""

import argparse
import asyncio
import logging
import os
import sys


# Configure logging before any other imports create loggers
def setup_logging(level: str = "INFO") -> None:
    """Configure logging for the application.

    Args:
        level: Logging level as string (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    log_level: int = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


# Get logger for this module
logger = logging.getLogger(__name__)

from chain_relayer import ChainRelayer  # noqa: E402


async def main() -> None:
    """Main entry point for the chain relayer.

    Raises:
        SystemExit: On configuration or fatal runtime errors
    """
    parser = argparse.ArgumentParser(
        description="Chain Relayer - Relay transactions from a source chain to a target chain",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""Environment Variables:
  SOURCE_RPC_URL         - RPC endpoint for the source chain
  SOURCE_CHAIN_ID        - Expected source chain ID (default: 138)
  TARGET_RPC_URL         - RPC endpoint for the target chain
  TARGET_CHAIN_ID        - Expected target chain ID (default: 1)
  PRIVATE_KEY            - Key signing target transactions (not needed with --mock)
  MAX_RETRIES            - Relay attempts per transaction (default: 3)
  MAX_GAS_PRICE          - Gas price ceiling in gwei (default: 100)
  METRICS_PORT           - Metrics server port (default: 9091)
  LOG_LEVEL              - Logging level (can be overridden with --log-level)
        """
    )
    parser.add_argument(
        "--mock",
        action="store_true",
        default=False,
        help="Run against simulated networks instead of live RPC endpoints"
    )
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Set the logging level (default: INFO)"
    )
    args = parser.parse_args()

    setup_logging(args.log_level)
    logger.info(f"=== Chain Relayer Starting ({'MOCK' if args.mock else 'LIVE'} mode) ===")

    relayer: ChainRelayer | None = None
    try:
        relayer = ChainRelayer.from_env(mock_mode=args.mock)
        await relayer.run()

    except ValueError as e:
        logger.error(f"Configuration error: {e}")
        logger.error("Required environment variables:")
        logger.error("  - SOURCE_RPC_URL: Source chain RPC endpoint")
        logger.error("  - TARGET_RPC_URL: Target chain RPC endpoint")
        if not args.mock:
            logger.error("  - PRIVATE_KEY: Private key for signing target transactions")
        sys.exit(1)

    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down...")
        if relayer is not None:
            relayer.stop()

    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
