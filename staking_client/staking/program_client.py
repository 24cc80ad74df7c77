"""
Program client: build, sign via wallet, submit and confirm referral staking transactions.

- Builders assemble the ordered instruction list (idempotent ATA creation first
  when the owner's token account is missing) and attach a blockhash.
- submit() refreshes the blockhash at the send boundary, asks the wallet to
  sign, and sends. A cancelled signature raises UserCancelledError.
- confirm() polls signature status until confirmed, a transaction error, the
  blockhash expiry height, or confirm_max_polls. It always terminates.
Every RPC call goes through the shared RetryScheduler.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Awaitable, Callable

from solders.hash import Hash
from solders.instruction import Instruction
from solders.message import MessageV0
from solders.pubkey import Pubkey
from spl.token.instructions import create_idempotent_associated_token_account

from staking_client.core.exceptions import (
    AccountDecodeError,
    AccountNotFoundError,
    BlockhashExpiredError,
    ConfigError,
    ProgramError,
    StakingError,
    TransientNetworkError,
    UserCancelledError,
)
from staking_client.core.retry import RetryScheduler
from staking_client.program.instructions import (
    build_claim_rewards_instruction,
    build_compound_rewards_instruction,
    build_register_user_instruction,
    build_stake_instruction,
    build_unstake_instruction,
    parse_transaction_error,
)
from staking_client.program.layouts import GlobalState, UserInfo
from staking_client.program.seeds import AddressDeriver, StakingAddresses
from staking_client.rpc.endpoint import RpcEndpoint
from staking_client.rpc.models import BlockhashInfo
from staking_client.staking.status import (
    ConfirmationResult,
    FailureReason,
    TrackedTransaction,
    TransactionKind,
    TransactionStatus,
    TransactionStatusTracker,
)
from staking_client.staking_logging import get_logger
from staking_client.utils.amounts import to_base_units
from staking_client.utils.wallet_utils import short_address
from staking_client.wallet.signer import WalletSigner

logger = get_logger(__name__)

DEFAULT_CONFIRM_POLL_INTERVAL_SEC = 1.0
DEFAULT_CONFIRM_MAX_POLLS = 90


@dataclass(frozen=True)
class TransactionRequest:
    """Unsigned transaction: ordered instructions, fee payer, blockhash and its expiry height."""

    kind: TransactionKind
    fee_payer: Pubkey
    instructions: tuple[Instruction, ...]
    blockhash: Hash
    last_valid_block_height: int
    amount: int | None = None

    def with_blockhash(self, info: BlockhashInfo) -> "TransactionRequest":
        return replace(self, blockhash=info.blockhash, last_valid_block_height=info.last_valid_block_height)

    def compile(self) -> MessageV0:
        return MessageV0.try_compile(self.fee_payer, list(self.instructions), [], self.blockhash)


@dataclass(frozen=True)
class SubmittedTransaction:
    signature: str
    request: TransactionRequest

    @property
    def last_valid_block_height(self) -> int:
        return self.request.last_valid_block_height


class ProgramClient:
    """Transaction construction and lifecycle for one program id, mint and signer."""

    def __init__(
        self,
        rpc: RpcEndpoint,
        signer: WalletSigner,
        program_id: Pubkey,
        token_mint: Pubkey,
        *,
        retry: RetryScheduler | None = None,
        tracker: TransactionStatusTracker | None = None,
        token_decimals: int | None = None,
        commitment: str = "confirmed",
        confirm_poll_interval_sec: float = DEFAULT_CONFIRM_POLL_INTERVAL_SEC,
        confirm_max_polls: int = DEFAULT_CONFIRM_MAX_POLLS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._rpc = rpc
        self._signer = signer
        self.program_id = program_id
        self.token_mint = token_mint
        self.deriver = AddressDeriver(program_id)
        self._retry = retry or RetryScheduler()
        self.tracker = tracker or TransactionStatusTracker()
        self._decimals = token_decimals
        self._commitment = commitment
        self._poll_interval = confirm_poll_interval_sec
        self._max_polls = confirm_max_polls
        self._sleep = sleep
        self._global_state: GlobalState | None = None

    @property
    def signer(self) -> WalletSigner:
        return self._signer

    # --- reads ---------------------------------------------------------------

    async def token_decimals(self) -> int:
        if self._decimals is None:
            self._decimals = await self._retry.run(
                lambda: self._rpc.get_token_decimals(self.token_mint), label="get_token_decimals"
            )
        return self._decimals

    @property
    def cached_global_state(self) -> GlobalState | None:
        return self._global_state

    async def fetch_global_state(self, *, refresh: bool = False) -> GlobalState | None:
        if self._global_state is not None and not refresh:
            return self._global_state
        address = self.deriver.global_state()
        data = await self._retry.run(lambda: self._rpc.get_account_info(address), label="get_global_state")
        if data is None:
            logger.warning("global_state_missing", address=address)
            return None
        state = GlobalState.decode(data)
        if state.token_mint != self.token_mint:
            raise ConfigError(
                f"program {self.program_id} stakes mint {state.token_mint}, configured mint is {self.token_mint}"
            )
        self._global_state = state
        return state

    async def fetch_user_info(self, owner: Pubkey) -> UserInfo | None:
        address = self.deriver.user_info(owner)
        data = await self._retry.run(lambda: self._rpc.get_account_info(address), label="get_user_info")
        if data is None:
            return None
        info = UserInfo.decode(data)
        if info.owner != owner:
            raise AccountDecodeError(f"user_info {address} belongs to {info.owner}, expected {owner}")
        return info

    async def user_info_exists(self, owner: Pubkey) -> bool:
        address = self.deriver.user_info(owner)
        data = await self._retry.run(lambda: self._rpc.get_account_info(address), label="get_user_info")
        return data is not None

    async def token_balance(self, token_account: Pubkey) -> int | None:
        """Raw balance of a token account; None when the account does not exist."""
        try:
            return await self._retry.run(
                lambda: self._rpc.get_token_balance(token_account), label="get_token_balance"
            )
        except AccountNotFoundError:
            return None

    def addresses(self, owner: Pubkey) -> StakingAddresses:
        """Derived addresses; vault replaced by the GlobalState vault once it has been read."""
        addresses = self.deriver.resolve(owner, self.token_mint)
        if self._global_state is not None:
            addresses = addresses.with_vault(self._global_state.vault)
        return addresses

    async def resolve_addresses(self, owner: Pubkey) -> StakingAddresses:
        await self.fetch_global_state()
        return self.addresses(owner)

    async def latest_blockhash(self) -> BlockhashInfo:
        return await self._retry.run(self._rpc.get_latest_blockhash, label="get_latest_blockhash")

    # --- builders ------------------------------------------------------------

    async def _request(
        self,
        kind: TransactionKind,
        owner: Pubkey,
        instructions: list[Instruction],
        amount: int | None = None,
    ) -> TransactionRequest:
        info = await self.latest_blockhash()
        return TransactionRequest(
            kind=kind,
            fee_payer=owner,
            instructions=tuple(instructions),
            blockhash=info.blockhash,
            last_valid_block_height=info.last_valid_block_height,
            amount=amount,
        )

    def _ata_instructions(self, addresses: StakingAddresses, token_account_exists: bool) -> list[Instruction]:
        if token_account_exists:
            return []
        return [create_idempotent_associated_token_account(addresses.owner, addresses.owner, addresses.token_mint)]

    async def build_stake_transaction(
        self,
        owner: Pubkey,
        amount: Decimal | int | float | str,
        addresses: StakingAddresses,
        *,
        token_account_exists: bool = True,
    ) -> TransactionRequest:
        raw = to_base_units(amount, await self.token_decimals())
        instructions = self._ata_instructions(addresses, token_account_exists)
        instructions.append(build_stake_instruction(self.program_id, addresses, raw))
        return await self._request(TransactionKind.STAKE, owner, instructions, amount=raw)

    async def build_unstake_transaction(
        self,
        owner: Pubkey,
        amount: Decimal | int | float | str,
        addresses: StakingAddresses,
        *,
        token_account_exists: bool = True,
    ) -> TransactionRequest:
        raw = to_base_units(amount, await self.token_decimals())
        instructions = self._ata_instructions(addresses, token_account_exists)
        instructions.append(build_unstake_instruction(self.program_id, addresses, raw))
        return await self._request(TransactionKind.UNSTAKE, owner, instructions, amount=raw)

    async def build_register_transaction(self, owner: Pubkey, referrer: Pubkey | None = None) -> TransactionRequest:
        if referrer is not None and referrer == owner:
            raise ValueError("referrer must differ from owner")
        addresses = self.addresses(owner)
        ix = build_register_user_instruction(self.program_id, addresses, referrer)
        return await self._request(TransactionKind.REGISTER, owner, [ix])

    async def build_claim_transaction(
        self,
        owner: Pubkey,
        addresses: StakingAddresses,
        *,
        token_account_exists: bool = True,
    ) -> TransactionRequest:
        instructions = self._ata_instructions(addresses, token_account_exists)
        instructions.append(build_claim_rewards_instruction(self.program_id, addresses))
        return await self._request(TransactionKind.CLAIM, owner, instructions)

    async def build_compound_transaction(self, owner: Pubkey, addresses: StakingAddresses) -> TransactionRequest:
        ix = build_compound_rewards_instruction(self.program_id, addresses)
        return await self._request(TransactionKind.COMPOUND, owner, [ix])

    # --- lifecycle -----------------------------------------------------------

    async def submit(
        self,
        request: TransactionRequest,
        tracked: TrackedTransaction | None = None,
    ) -> SubmittedTransaction:
        """Refresh blockhash, sign via wallet, send. Returns the signature and the request actually signed."""
        if self._signer.address != request.fee_payer:
            raise ConfigError(f"signer {self._signer.address} is not the fee payer {request.fee_payer}")

        # Blockhash from build time may be stale by now.
        request = request.with_blockhash(await self.latest_blockhash())
        message = request.compile()

        if tracked is not None:
            self.tracker.advance(tracked, TransactionStatus.AWAITING_SIGNATURE)
        signed = await self._signer.sign(message)
        if signed is None:
            logger.info("transaction_signature_declined", kind=request.kind.value, owner=short_address(request.fee_payer))
            raise UserCancelledError("user declined to sign the transaction")

        raw = bytes(signed)
        signature = await self._retry.run(lambda: self._rpc.send_transaction(raw), label="send_transaction")
        logger.info(
            "transaction_sent",
            kind=request.kind.value,
            owner=short_address(request.fee_payer),
            signature=signature,
            amount=request.amount,
            last_valid_block_height=request.last_valid_block_height,
        )
        if tracked is not None:
            self.tracker.advance(tracked, TransactionStatus.SUBMITTED, signature=signature)
        return SubmittedTransaction(signature=signature, request=request)

    async def _poll_status(self, signature: str) -> ConfirmationResult | None:
        status = await self._retry.run(lambda: self._rpc.get_signature_status(signature), label="get_signature_status")
        if status is None:
            return None
        if status.err is not None:
            error = parse_transaction_error(status.err)
            if isinstance(error, BlockhashExpiredError):
                return ConfirmationResult(TransactionStatus.FAILED, signature, FailureReason.EXPIRED, message=str(error), slot=status.slot)
            code = error.error_code if isinstance(error, ProgramError) else None
            return ConfirmationResult(
                TransactionStatus.FAILED,
                signature,
                FailureReason.PROGRAM_ERROR,
                error_code=code,
                message=str(error),
                slot=status.slot,
            )
        if status.reached(self._commitment):
            return ConfirmationResult(TransactionStatus.CONFIRMED, signature, slot=status.slot)
        return None

    async def confirm(self, signature: str, last_valid_block_height: int) -> ConfirmationResult:
        """Poll until a terminal outcome; bounded by the expiry height and confirm_max_polls."""
        for poll in range(1, self._max_polls + 1):
            try:
                result = await self._poll_status(signature)
                if result is not None:
                    self._log_confirmation(result, poll)
                    return result
                height = await self._retry.run(self._rpc.get_block_height, label="get_block_height")
                if height > last_valid_block_height:
                    # It may have landed in the last valid block.
                    result = await self._poll_status(signature) or ConfirmationResult(
                        TransactionStatus.FAILED,
                        signature,
                        FailureReason.EXPIRED,
                        message=f"block height {height} passed last valid height {last_valid_block_height}",
                    )
                    self._log_confirmation(result, poll)
                    return result
            except TransientNetworkError as e:
                logger.warning("confirm_poll_error", signature=signature, poll=poll, error=str(e))
            if poll < self._max_polls:
                await self._sleep(self._poll_interval)
        result = ConfirmationResult(
            TransactionStatus.FAILED,
            signature,
            FailureReason.TIMEOUT,
            message=f"no terminal status after {self._max_polls} polls",
        )
        self._log_confirmation(result, self._max_polls)
        return result

    def _log_confirmation(self, result: ConfirmationResult, polls: int) -> None:
        if result.confirmed:
            logger.info("transaction_confirmed", signature=result.signature, slot=result.slot, polls=polls)
        else:
            logger.warning(
                "transaction_confirm_failed",
                signature=result.signature,
                reason=result.reason.value if result.reason else None,
                error_code=result.error_code,
                message=result.message,
                polls=polls,
            )

    async def execute(self, request: TransactionRequest, tracked: TrackedTransaction) -> ConfirmationResult:
        """submit() then confirm(), driving ``tracked`` to a terminal state."""
        try:
            submitted = await self.submit(request, tracked)
        except UserCancelledError as e:
            self.tracker.fail(tracked, FailureReason.USER_CANCELLED, message=str(e))
            raise
        except BlockhashExpiredError as e:
            self.tracker.fail(tracked, FailureReason.EXPIRED, message=str(e))
            raise
        except ProgramError as e:
            self.tracker.fail(tracked, FailureReason.PROGRAM_ERROR, error_code=e.error_code, message=str(e))
            raise
        except StakingError as e:
            self.tracker.fail(tracked, FailureReason.REJECTED, message=str(e))
            raise
        except Exception as e:
            self.tracker.fail(tracked, FailureReason.UNKNOWN, message=str(e))
            raise
        try:
            result = await self.confirm(submitted.signature, submitted.last_valid_block_height)
        except BaseException as e:
            self.tracker.fail(tracked, FailureReason.UNKNOWN, message=str(e) or type(e).__name__)
            raise
        self.tracker.complete(tracked, result)
        return result
