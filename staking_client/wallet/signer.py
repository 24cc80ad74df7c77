"""
Wallet signer capability.

The staking core never holds keys. It hands a compiled message to a
WalletSigner and gets back a signed VersionedTransaction, or None when the
user declines. KeypairSigner is the headless implementation used by the CLI
and scripts; browser/hardware wallets implement the same protocol elsewhere.
"""

from __future__ import annotations

import json
from typing import Protocol

from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction

from staking_client.core.exceptions import ConfigError
from staking_client.staking_logging import get_logger

logger = get_logger(__name__)


class WalletSigner(Protocol):
    @property
    def address(self) -> Pubkey: ...

    async def sign(self, message: MessageV0) -> VersionedTransaction | None:
        """Return the signed transaction, or None if the user cancelled."""
        ...


def load_keypair(private_key: str) -> Keypair:
    """Load Keypair from a base58 secret key string or a JSON array of 64 bytes."""
    raw = private_key.strip()
    if raw.startswith("["):
        try:
            arr = json.loads(raw)
            if len(arr) >= 64:
                return Keypair.from_bytes(bytes(arr[:64]))
        except (json.JSONDecodeError, TypeError, ValueError):
            pass
    try:
        import base58

        secret = base58.b58decode(raw)
        return Keypair.from_bytes(secret)
    except Exception as e:
        logger.warning("keypair_load_failed", error=str(e))
        raise ConfigError("Invalid staker private key") from e


class KeypairSigner:
    """Signs every message with a local keypair; never cancels."""

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair

    @classmethod
    def from_secret(cls, private_key: str) -> "KeypairSigner":
        return cls(load_keypair(private_key))

    @property
    def address(self) -> Pubkey:
        return self._keypair.pubkey()

    async def sign(self, message: MessageV0) -> VersionedTransaction | None:
        return VersionedTransaction(message, [self._keypair])
