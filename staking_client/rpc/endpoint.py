"""
Solana JSON-RPC endpoint over httpx.

Implements the RPC contract the staking core consumes and classifies every
failure at the source:
- HTTP 429, 5xx, timeouts, transport errors, node-behind RPC codes -> TransientNetworkError
- "could not find account" -> AccountNotFoundError
- preflight failures -> BlockhashExpiredError / ProgramError
- anything else -> RpcError (terminal)
No retries happen here; callers wrap calls in RetryScheduler.
"""

from __future__ import annotations

import base64
import itertools
from typing import Any, Protocol

import httpx
from solders.pubkey import Pubkey

from staking_client.core.exceptions import (
    AccountNotFoundError,
    RateLimitedError,
    RpcError,
    TransientNetworkError,
)
from staking_client.program.instructions import parse_transaction_error
from staking_client.rpc.models import BlockhashInfo, SignatureStatus
from staking_client.staking_logging import get_logger

logger = get_logger(__name__)

USER_AGENT = "staking-client/0.1.0"

# -32004 block not available, -32005 node unhealthy / behind, -32429 provider rate limit
TRANSIENT_RPC_CODES = frozenset({-32004, -32005, -32429, 429})
SEND_TX_PREFLIGHT_FAILURE = -32002
INVALID_PARAMS = -32602


class RpcEndpoint(Protocol):
    """RPC contract consumed by the staking core. Implemented by SolanaRpcEndpoint and test fakes."""

    async def get_account_info(self, address: Pubkey) -> bytes | None: ...

    async def get_token_balance(self, token_account: Pubkey) -> int: ...

    async def get_token_decimals(self, mint: Pubkey) -> int: ...

    async def get_latest_blockhash(self) -> BlockhashInfo: ...

    async def send_transaction(self, raw_transaction: bytes) -> str: ...

    async def get_signature_status(self, signature: str) -> SignatureStatus | None: ...

    async def get_block_height(self) -> int: ...


class SolanaRpcEndpoint:
    """
    Async JSON-RPC client for one Solana RPC URL.

    Owns its httpx.AsyncClient unless one is injected; close with aclose() or
    ``async with``.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        commitment: str = "confirmed",
        timeout_sec: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        self._rpc_url = rpc_url.rstrip("/")
        self._commitment = commitment
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=timeout_sec,
            headers={"Content-Type": "application/json", "User-Agent": USER_AGENT},
        )
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "SolanaRpcEndpoint":
        return self

    async def __aexit__(self, exc_type: Any, exc: Any, tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def _request(self, method: str, params: list[Any]) -> Any:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self._client.post(self._rpc_url, json=body)
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"{method}: request timed out") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"{method}: request failed: {e}") from e

        if resp.status_code == 429:
            raise RateLimitedError(f"{method}: rate limit exceeded", status_code=429)
        if resp.status_code >= 500:
            raise TransientNetworkError(f"{method}: HTTP {resp.status_code}", status_code=resp.status_code)
        if resp.status_code >= 400:
            raise RpcError(f"{method}: HTTP {resp.status_code}: {resp.text[:200]}", status_code=resp.status_code)

        try:
            data = resp.json()
        except ValueError as e:
            raise RpcError(f"{method}: invalid JSON response") from e

        if "error" in data:
            error = self._classify_rpc_error(method, data["error"])
            logger.debug("rpc_error", method=method, error_code=getattr(error, "code", None), error=str(error))
            raise error
        if "result" not in data:
            raise RpcError(f"{method}: missing result")
        return data["result"]

    @staticmethod
    def _classify_rpc_error(method: str, error: Any) -> Exception:
        if not isinstance(error, dict):
            return RpcError(f"{method}: {error}")
        code = error.get("code")
        message = str(error.get("message", error))
        if code in TRANSIENT_RPC_CODES or "rate limit" in message.lower():
            if code in (429, -32429) or "rate limit" in message.lower():
                return RateLimitedError(f"{method}: {message}")
            return TransientNetworkError(f"{method}: {message}")
        if code == INVALID_PARAMS and "could not find account" in message.lower():
            return AccountNotFoundError(f"{method}: {message}")
        if code == SEND_TX_PREFLIGHT_FAILURE:
            err = (error.get("data") or {}).get("err")
            if err is not None:
                return parse_transaction_error(err)
        return RpcError(f"{method}: {message}", rpc_code=code)

    async def get_account_info(self, address: Pubkey) -> bytes | None:
        result = await self._request(
            "getAccountInfo",
            [str(address), {"encoding": "base64", "commitment": self._commitment}],
        )
        value = (result or {}).get("value")
        if value is None:
            return None
        data = value.get("data")
        if isinstance(data, list) and data:
            return base64.b64decode(data[0])
        if isinstance(data, str):
            return base64.b64decode(data)
        raise RpcError(f"getAccountInfo: unexpected data encoding for {address}")

    async def get_token_balance(self, token_account: Pubkey) -> int:
        result = await self._request(
            "getTokenAccountBalance",
            [str(token_account), {"commitment": self._commitment}],
        )
        try:
            return int(result["value"]["amount"])
        except (KeyError, TypeError, ValueError) as e:
            raise RpcError(f"getTokenAccountBalance: invalid response format: {e}") from e

    async def get_token_decimals(self, mint: Pubkey) -> int:
        result = await self._request("getTokenSupply", [str(mint), {"commitment": self._commitment}])
        try:
            return int(result["value"]["decimals"])
        except (KeyError, TypeError, ValueError) as e:
            raise RpcError(f"getTokenSupply: invalid response format: {e}") from e

    async def get_latest_blockhash(self) -> BlockhashInfo:
        result = await self._request("getLatestBlockhash", [{"commitment": self._commitment}])
        try:
            return BlockhashInfo.from_rpc(result["value"])
        except (KeyError, TypeError, ValueError) as e:
            raise RpcError(f"getLatestBlockhash: invalid response format: {e}") from e

    async def send_transaction(self, raw_transaction: bytes) -> str:
        encoded = base64.b64encode(raw_transaction).decode("ascii")
        result = await self._request(
            "sendTransaction",
            [encoded, {"encoding": "base64", "skipPreflight": False, "preflightCommitment": self._commitment}],
        )
        if not isinstance(result, str) or not result:
            raise RpcError(f"sendTransaction: unexpected result {result!r}")
        return result

    async def get_signature_status(self, signature: str) -> SignatureStatus | None:
        result = await self._request(
            "getSignatureStatuses",
            [[signature], {"searchTransactionHistory": False}],
        )
        statuses = (result or {}).get("value") or []
        if not statuses or statuses[0] is None:
            return None
        return SignatureStatus.from_rpc(statuses[0])

    async def get_block_height(self) -> int:
        result = await self._request("getBlockHeight", [{"commitment": self._commitment}])
        return int(result)
