"""Block explorer links for relayed transactions."""

from collections.abc import Mapping


def transaction_url(base_url: str, tx_hash: str) -> str:
    return f"{base_url.rstrip('/')}/tx/{tx_hash}"


def transaction_urls(tx_hash: str, explorer_urls: Mapping[str, str]) -> dict[str, str]:
    """
    Build a transaction link for every configured explorer of a network.

    Args:
        tx_hash: Transaction hash (with 0x prefix)
        explorer_urls: Explorer base URLs keyed by explorer name

    Returns:
        Transaction URLs keyed by explorer name
    """
    return {name: transaction_url(base, tx_hash) for name, base in explorer_urls.items()}
