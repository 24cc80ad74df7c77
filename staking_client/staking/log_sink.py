"""
Transaction log sink: best-effort notification of confirmed stake/unstake to an external service.

Wire payload (POST {base_url}/api/transaction/log):
    {walletAddress, amount, transactionType, transactionSignature, timestamp}
The sink never affects the staking operation; failures are the caller's to log.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Protocol

import httpx

from staking_client.staking_logging import get_logger

logger = get_logger(__name__)

LOG_PATH = "/api/transaction/log"
DEFAULT_TIMEOUT_SEC = 10.0


@dataclass(frozen=True)
class TransactionLogRecord:
    wallet_address: str
    amount: str
    transaction_type: str
    transaction_signature: str
    timestamp: str

    @classmethod
    def create(cls, wallet_address: str, amount: Any, transaction_type: str, signature: str) -> "TransactionLogRecord":
        if isinstance(amount, Decimal):
            amount = format(amount.normalize(), "f")
        return cls(
            wallet_address=wallet_address,
            amount=str(amount),
            transaction_type=transaction_type,
            transaction_signature=signature,
            timestamp=datetime.now(timezone.utc).isoformat(),
        )

    def to_payload(self) -> dict[str, str]:
        return {
            "walletAddress": self.wallet_address,
            "amount": self.amount,
            "transactionType": self.transaction_type,
            "transactionSignature": self.transaction_signature,
            "timestamp": self.timestamp,
        }


class TransactionLogSink(Protocol):
    async def emit(self, record: TransactionLogRecord) -> None: ...


class NullTransactionLogSink:
    async def emit(self, record: TransactionLogRecord) -> None:
        return None


class HttpTransactionLogSink:
    """POSTs records to the log service. Raises on HTTP errors; the service swallows them."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._url = base_url.rstrip("/") + LOG_PATH
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(timeout=timeout_sec)

    async def emit(self, record: TransactionLogRecord) -> None:
        resp = await self._client.post(self._url, json=record.to_payload())
        resp.raise_for_status()
        logger.debug(
            "transaction_log_sent",
            signature=record.transaction_signature,
            transaction_type=record.transaction_type,
        )

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
