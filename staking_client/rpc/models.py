"""
Data models for RPC responses the staking core consumes.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from solders.hash import Hash


@dataclass(frozen=True)
class BlockhashInfo:
    """A recent blockhash and the last block height at which it is still accepted."""

    blockhash: Hash
    last_valid_block_height: int

    @classmethod
    def from_rpc(cls, value: dict[str, Any]) -> "BlockhashInfo":
        return cls(
            blockhash=Hash.from_string(value["blockhash"]),
            last_valid_block_height=int(value["lastValidBlockHeight"]),
        )


@dataclass(frozen=True)
class SignatureStatus:
    """
    One getSignatureStatuses entry.

    Mirrors Solana RPC response fields; ``err`` is None on success.
    """

    slot: int
    confirmations: int | None
    err: Any
    confirmation_status: str | None  # processed | confirmed | finalized

    @classmethod
    def from_rpc(cls, item: dict[str, Any]) -> "SignatureStatus":
        return cls(
            slot=int(item.get("slot") or 0),
            confirmations=item.get("confirmations"),
            err=item.get("err"),
            confirmation_status=item.get("confirmationStatus"),
        )

    def reached(self, commitment: str) -> bool:
        order = ("processed", "confirmed", "finalized")
        if self.confirmation_status not in order:
            return False
        return order.index(self.confirmation_status) >= order.index(commitment)
