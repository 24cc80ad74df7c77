"""Wallet address validation and display utilities."""

from __future__ import annotations

from solders.pubkey import Pubkey

from staking_client.config.env import SOLSCAN_URL


def to_pubkey(value: Pubkey | str) -> Pubkey:
    if isinstance(value, Pubkey):
        return value
    if not value or not value.strip():
        raise ValueError("Wallet address must be non-empty")
    try:
        return Pubkey.from_string(value.strip())
    except Exception as e:
        raise ValueError(f"Invalid Solana wallet address: {value!r}") from e


def short_address(address: Pubkey | str) -> str:
    """9QCfNuQu...Urka style: first 4 and last 4 characters."""
    s = str(address)
    if len(s) <= 8:
        return s
    return f"{s[:4]}...{s[-4:]}"


def explorer_tx_url(signature: str, network: str = "mainnet") -> str:
    url = f"{SOLSCAN_URL}/tx/{signature}"
    if network == "devnet":
        url += "?cluster=devnet"
    return url
