"""
Balance synchronizer: cached, debounced view of an owner's token and staked balances.

refresh() reads the owner's token account and user_info concurrently. Within
debounce_sec of the last completed refresh the cached snapshot is returned;
concurrent callers share one in-flight query per owner. force=True bypasses the
window; if a query is already running, the forced caller waits for it and then
starts a new one.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Callable

from solders.pubkey import Pubkey

from staking_client.staking.program_client import ProgramClient
from staking_client.staking_logging import get_logger
from staking_client.utils.amounts import from_base_units
from staking_client.utils.wallet_utils import short_address

logger = get_logger(__name__)

DEFAULT_DEBOUNCE_SEC = 10.0


@dataclass(frozen=True)
class BalanceSnapshot:
    owner: Pubkey
    token_mint: Pubkey
    token_account: Pubkey
    token_balance: int
    staked_amount: int
    rewards: int
    decimals: int
    registered: bool
    token_account_exists: bool
    fetched_at: float

    @property
    def available(self) -> Decimal:
        return from_base_units(self.token_balance, self.decimals)

    @property
    def staked(self) -> Decimal:
        return from_base_units(self.staked_amount, self.decimals)

    @property
    def pending_rewards(self) -> Decimal:
        return from_base_units(self.rewards, self.decimals)

    def to_dict(self) -> dict:
        return {
            "owner": str(self.owner),
            "token_account": str(self.token_account),
            "available": str(self.available),
            "staked": str(self.staked),
            "rewards": str(self.pending_rewards),
            "registered": self.registered,
        }


class BalanceSynchronizer:
    def __init__(
        self,
        client: ProgramClient,
        *,
        debounce_sec: float = DEFAULT_DEBOUNCE_SEC,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._client = client
        self._debounce = debounce_sec
        self._clock = clock
        self._snapshots: dict[str, BalanceSnapshot] = {}
        self._completed_at: dict[str, float] = {}
        self._inflight: dict[str, asyncio.Task] = {}

    def cached(self, owner: Pubkey) -> BalanceSnapshot | None:
        return self._snapshots.get(str(owner))

    def invalidate(self, owner: Pubkey) -> None:
        key = str(owner)
        self._snapshots.pop(key, None)
        self._completed_at.pop(key, None)

    def _fresh(self, key: str) -> BalanceSnapshot | None:
        snapshot = self._snapshots.get(key)
        completed = self._completed_at.get(key)
        if snapshot is None or completed is None:
            return None
        if self._clock() - completed < self._debounce:
            return snapshot
        return None

    async def refresh(self, owner: Pubkey, force: bool = False) -> BalanceSnapshot:
        key = str(owner)
        waited = False
        while True:
            inflight = self._inflight.get(key)
            if inflight is not None:
                if force and not waited:
                    # The running query may predate the change the caller wants to see.
                    waited = True
                    try:
                        await asyncio.shield(inflight)
                    except Exception as e:
                        logger.info("balance_refresh_superseded", owner=short_address(owner), error=str(e))
                    continue
                return await asyncio.shield(inflight)
            if not force:
                snapshot = self._fresh(key)
                if snapshot is not None:
                    return snapshot
            task = asyncio.ensure_future(self._run(key, owner))
            self._inflight[key] = task
            return await asyncio.shield(task)

    async def _run(self, key: str, owner: Pubkey) -> BalanceSnapshot:
        try:
            snapshot = await self._fetch(owner)
            self._snapshots[key] = snapshot
            self._completed_at[key] = self._clock()
            return snapshot
        finally:
            self._inflight.pop(key, None)

    async def _fetch(self, owner: Pubkey) -> BalanceSnapshot:
        addresses = await self._client.resolve_addresses(owner)
        decimals, balance, user_info = await asyncio.gather(
            self._client.token_decimals(),
            self._client.token_balance(addresses.user_token_account),
            self._client.fetch_user_info(owner),
        )
        snapshot = BalanceSnapshot(
            owner=owner,
            token_mint=addresses.token_mint,
            token_account=addresses.user_token_account,
            token_balance=balance or 0,
            staked_amount=user_info.staked_amount if user_info else 0,
            rewards=user_info.rewards if user_info else 0,
            decimals=decimals,
            registered=user_info is not None,
            token_account_exists=balance is not None,
            fetched_at=time.time(),
        )
        logger.info(
            "balances_refreshed",
            owner=short_address(owner),
            token_balance=snapshot.token_balance,
            staked_amount=snapshot.staked_amount,
            registered=snapshot.registered,
        )
        return snapshot
