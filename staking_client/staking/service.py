"""
Staking service: the user-facing operations (stake, unstake, claim, compound, register).

Control flow for stake/unstake:
    local pre-checks against the cached snapshot (no network on rejection)
    -> ensure_registered (stake only)
    -> build -> sign -> submit -> confirm
    -> transaction log record emitted in the background
    -> forced balance refresh (a failure here leaves snapshot=None, never an error)
Every component is injected; there are no module-level clients.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable

from solders.pubkey import Pubkey

from staking_client.config.settings import StakingClientConfig
from staking_client.core.exceptions import (
    InsufficientBalanceError,
    InsufficientStakedError,
    InvalidAmountError,
    NotRegisteredError,
    StakingError,
    TransactionFailedError,
)
from staking_client.core.retry import RetryPolicy, RetryScheduler
from staking_client.program.layouts import GlobalState
from staking_client.program.seeds import StakingAddresses
from staking_client.rpc.endpoint import RpcEndpoint, SolanaRpcEndpoint
from staking_client.staking.balances import BalanceSnapshot, BalanceSynchronizer
from staking_client.staking.log_sink import (
    HttpTransactionLogSink,
    NullTransactionLogSink,
    TransactionLogRecord,
    TransactionLogSink,
)
from staking_client.staking.program_client import ProgramClient, TransactionRequest
from staking_client.staking.registration import RegistrationCoordinator, RegistrationState
from staking_client.staking.status import (
    ConfirmationResult,
    FailureReason,
    TrackedTransaction,
    TransactionKind,
    TransactionStatusTracker,
)
from staking_client.staking_logging import bind_owner, get_logger
from staking_client.utils.amounts import from_base_units, parse_amount, to_base_units
from staking_client.utils.wallet_utils import short_address
from staking_client.wallet.signer import WalletSigner

logger = get_logger(__name__)


@dataclass(frozen=True)
class StakeResult:
    kind: TransactionKind
    signature: str
    amount: int | None
    snapshot: BalanceSnapshot | None

    def to_dict(self) -> dict:
        out = {"kind": self.kind.value, "signature": self.signature, "amount": self.amount}
        if self.snapshot is not None:
            out["balances"] = self.snapshot.to_dict()
        return out


class StakingService:
    def __init__(
        self,
        config: StakingClientConfig,
        rpc: RpcEndpoint,
        signer: WalletSigner,
        *,
        log_sink: TransactionLogSink | None = None,
        retry: RetryScheduler | None = None,
        tracker: TransactionStatusTracker | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config
        self._rpc = rpc
        self._signer = signer
        self._log_sink = log_sink or NullTransactionLogSink()
        retry = retry or RetryScheduler(
            RetryPolicy(max_attempts=config.retry_attempts, base_delay_sec=config.retry_backoff_sec),
            sleep=sleep,
        )
        self.client = ProgramClient(
            rpc,
            signer,
            Pubkey.from_string(config.program_id),
            Pubkey.from_string(config.token_mint),
            retry=retry,
            tracker=tracker,
            token_decimals=config.token_decimals,
            commitment=config.commitment,
            confirm_poll_interval_sec=config.confirm_poll_interval_sec,
            confirm_max_polls=config.confirm_max_polls,
            sleep=sleep,
        )
        self.registration = RegistrationCoordinator(
            self.client,
            settle_delay_sec=config.registration_settle_sec,
            settle_attempts=config.registration_settle_attempts,
            sleep=sleep,
        )
        self.balances = BalanceSynchronizer(self.client, debounce_sec=config.balance_debounce_sec, clock=clock)
        self._background: set[asyncio.Task] = set()
        self._closers: list[Callable[[], Awaitable[None]]] = []
        self._log = bind_owner(short_address(signer.address))

    @classmethod
    def from_config(cls, config: StakingClientConfig, signer: WalletSigner) -> "StakingService":
        """Service with its own RPC endpoint and log sink; close with aclose()."""
        rpc = SolanaRpcEndpoint(config.rpc_url, commitment=config.commitment, timeout_sec=config.rpc_timeout_sec)
        sink: TransactionLogSink | None = None
        if config.transaction_log_url:
            sink = HttpTransactionLogSink(config.transaction_log_url)
        service = cls(config, rpc, signer, log_sink=sink)
        service._closers.append(rpc.aclose)
        if isinstance(sink, HttpTransactionLogSink):
            service._closers.append(sink.aclose)
        return service

    async def __aenter__(self) -> "StakingService":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self.drain()
        for close in self._closers:
            await close()
        self._closers.clear()

    async def drain(self) -> None:
        """Wait for pending background log emissions."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    @property
    def owner(self) -> Pubkey:
        return self._signer.address

    @property
    def tracker(self) -> TransactionStatusTracker:
        return self.client.tracker

    # --- reads ---------------------------------------------------------------

    async def refresh_balances(self, force: bool = False) -> BalanceSnapshot:
        snapshot = await self.balances.refresh(self.owner, force=force)
        if snapshot.registered:
            self.registration.mark_registered(self.owner)
        return snapshot

    async def get_global_state(self) -> GlobalState | None:
        return await self.client.fetch_global_state(refresh=True)

    async def addresses(self) -> StakingAddresses:
        return await self.client.resolve_addresses(self.owner)

    async def _snapshot(self) -> BalanceSnapshot:
        snapshot = self.balances.cached(self.owner)
        if snapshot is None:
            snapshot = await self.refresh_balances()
        return snapshot

    # --- mutations -----------------------------------------------------------

    async def register(self, referrer: Pubkey | None = None) -> RegistrationState:
        state = await self.registration.ensure_registered(self.owner, referrer)
        await self.refresh_balances(force=True)
        return state

    async def stake(self, amount: Decimal | int | float | str, referrer: Pubkey | None = None) -> StakeResult:
        value = parse_amount(amount)
        if value <= 0:
            raise InvalidAmountError(f"amount must be positive, got {value}")
        snapshot = await self._snapshot()
        raw = to_base_units(value, snapshot.decimals)
        if raw > snapshot.token_balance:
            raise InsufficientBalanceError(
                f"stake of {value} exceeds available balance {snapshot.available}",
                requested=raw,
                available=snapshot.token_balance,
            )
        state = self.client.cached_global_state
        if state is not None and raw < state.min_stake_amount:
            raise InvalidAmountError(
                f"stake of {value} is below the minimum {from_base_units(state.min_stake_amount, snapshot.decimals)}"
            )

        await self.registration.ensure_registered(self.owner, referrer)

        async def build() -> TransactionRequest:
            return await self.client.build_stake_transaction(
                self.owner,
                value,
                self.client.addresses(self.owner),
                token_account_exists=snapshot.token_account_exists,
            )

        return await self._run(TransactionKind.STAKE, build, raw, log_type="stake")

    async def unstake(self, amount: Decimal | int | float | str) -> StakeResult:
        value = parse_amount(amount)
        if value <= 0:
            raise InvalidAmountError(f"amount must be positive, got {value}")
        snapshot = await self._snapshot()
        raw = to_base_units(value, snapshot.decimals)
        if raw > snapshot.staked_amount:
            raise InsufficientStakedError(
                f"unstake of {value} exceeds staked amount {snapshot.staked}",
                requested=raw,
                staked=snapshot.staked_amount,
            )

        async def build() -> TransactionRequest:
            return await self.client.build_unstake_transaction(
                self.owner,
                value,
                self.client.addresses(self.owner),
                token_account_exists=snapshot.token_account_exists,
            )

        return await self._run(TransactionKind.UNSTAKE, build, raw, log_type="unstake")

    async def claim_rewards(self) -> StakeResult:
        snapshot = await self._snapshot()
        if not snapshot.registered:
            raise NotRegisteredError(f"{self.owner} is not registered")
        if snapshot.rewards <= 0:
            raise InvalidAmountError("no rewards to claim")

        async def build() -> TransactionRequest:
            return await self.client.build_claim_transaction(
                self.owner,
                self.client.addresses(self.owner),
                token_account_exists=snapshot.token_account_exists,
            )

        return await self._run(TransactionKind.CLAIM, build, snapshot.rewards)

    async def compound_rewards(self) -> StakeResult:
        snapshot = await self._snapshot()
        if not snapshot.registered:
            raise NotRegisteredError(f"{self.owner} is not registered")

        async def build() -> TransactionRequest:
            return await self.client.build_compound_transaction(self.owner, self.client.addresses(self.owner))

        return await self._run(TransactionKind.COMPOUND, build, None)

    async def _run(
        self,
        kind: TransactionKind,
        build: Callable[[], Awaitable[TransactionRequest]],
        raw_amount: int | None,
        *,
        log_type: str | None = None,
    ) -> StakeResult:
        tracked = self.tracker.begin(kind, self.owner)
        try:
            request = await build()
        except Exception as e:
            self.tracker.fail(tracked, FailureReason.REJECTED, message=str(e))
            raise

        result = await self.client.execute(request, tracked)
        if not result.confirmed:
            self._log.warning("staking_action_failed", kind=kind.value, signature=result.signature, reason=result.reason.value if result.reason else None)
            raise TransactionFailedError(
                f"{kind.value} transaction {result.signature} failed: {result.reason.value if result.reason else 'unknown'}",
                result=result,
                signature=result.signature,
            )

        self._log.info("staking_action_confirmed", kind=kind.value, signature=result.signature, amount=raw_amount)
        if log_type is not None and raw_amount is not None:
            # decimals were resolved while building the request
            self._schedule_log(log_type, raw_amount, await self.client.token_decimals(), result)

        # confirmed on chain from here on; refresh failures are logged, not raised
        snapshot: BalanceSnapshot | None
        try:
            snapshot = await self.refresh_balances(force=True)
        except StakingError as e:
            self._log.warning("post_confirm_refresh_failed", kind=kind.value, signature=result.signature, error=str(e))
            self.balances.invalidate(self.owner)
            snapshot = None
        return StakeResult(kind=kind, signature=result.signature, amount=raw_amount, snapshot=snapshot)

    def _schedule_log(self, log_type: str, raw_amount: int, decimals: int, result: ConfirmationResult) -> None:
        record = TransactionLogRecord.create(
            wallet_address=str(self.owner),
            amount=from_base_units(raw_amount, decimals),
            transaction_type=log_type,
            signature=result.signature,
        )
        task = asyncio.ensure_future(self._emit(record))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _emit(self, record: TransactionLogRecord) -> None:
        try:
            await self._log_sink.emit(record)
        except Exception as e:
            logger.warning(
                "transaction_log_failed",
                owner=short_address(self.owner),
                signature=record.transaction_signature,
                error=str(e),
            )

    def last_transaction(self) -> TrackedTransaction | None:
        return self.tracker.last(self.owner)
