"""
Pytest fixtures for staking client tests.

FakeLedger is an in-memory RPC endpoint: it holds account data and token
balances, applies register/stake/unstake/claim/compound instructions from the
transactions it receives, and records every call so tests can assert on RPC
traffic (including "no calls at all").
"""

from __future__ import annotations

import struct
from collections import defaultdict
from dataclasses import replace

import pytest
from solders.hash import Hash
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.transaction import VersionedTransaction
from spl.token.constants import ASSOCIATED_TOKEN_PROGRAM_ID

from staking_client.config.env import DEFAULT_PROGRAM_ID, DEFAULT_TOKEN_MINT
from staking_client.config.settings import StakingClientConfig
from staking_client.core.exceptions import AccountNotFoundError, ProgramError
from staking_client.program.instructions import (
    CLAIM_REWARDS_DISCRIMINATOR,
    COMPOUND_REWARDS_DISCRIMINATOR,
    REGISTER_USER_DISCRIMINATOR,
    STAKE_DISCRIMINATOR,
    UNSTAKE_DISCRIMINATOR,
)
from staking_client.program.layouts import GlobalState, UserInfo
from staking_client.program.seeds import AddressDeriver
from staking_client.rpc.models import BlockhashInfo, SignatureStatus
from staking_client.wallet.signer import KeypairSigner

PROGRAM_ID = Pubkey.from_string(DEFAULT_PROGRAM_ID)
MINT = Pubkey.from_string(DEFAULT_TOKEN_MINT)
DECIMALS = 9
ONE = 10**DECIMALS


class FakeLedger:
    def __init__(self, program_id: Pubkey = PROGRAM_ID, mint: Pubkey = MINT, decimals: int = DECIMALS) -> None:
        self.program_id = program_id
        self.mint = mint
        self.decimals = decimals
        self.deriver = AddressDeriver(program_id)
        self.accounts: dict[str, bytes] = {}
        self.token_balances: dict[str, int] = {}
        self.calls: list[str] = []
        self.sent: list[VersionedTransaction] = []
        self.statuses: dict[str, SignatureStatus] = {}
        self.failures: dict[str, list[Exception]] = defaultdict(list)
        self.block_height = 1_000
        self.block_height_step = 0
        self.blockhash_ttl = 150
        self.auto_confirm = True
        self.status_err = None
        self.registration_lag = 0
        self._hidden_reads: dict[str, int] = {}
        self._slot = 500

    # --- setup helpers -----------------------------------------------------

    def set_global_state(self, *, vault: Pubkey | None = None, min_stake_amount: int = 0) -> GlobalState:
        state = GlobalState(
            authority=Pubkey.new_unique(),
            token_mint=self.mint,
            vault=vault or self.deriver.vault(self.mint),
            reward_rate=100,
            unlock_duration=86_400,
            early_unstake_penalty=10,
            min_stake_amount=min_stake_amount,
            referral_reward_rate=5,
            total_staked=0,
            stakers_count=0,
            reward_pool=0,
            last_update_time=0,
            bump=255,
        )
        self.accounts[str(self.deriver.global_state())] = state.encode()
        return state

    def fund(self, owner: Pubkey, raw: int) -> None:
        ata = self.deriver.resolve(owner, self.mint).user_token_account
        self.token_balances[str(ata)] = raw

    def register(self, owner: Pubkey, *, staked: int = 0, rewards: int = 0, referrer: Pubkey | None = None) -> None:
        info = UserInfo(
            owner=owner,
            staked_amount=staked,
            rewards=rewards,
            last_stake_time=0,
            last_claim_time=0,
            referrer=referrer,
            referral_count=0,
            total_referral_rewards=0,
        )
        self.accounts[str(self.deriver.user_info(owner))] = info.encode()

    def hide_reads(self, address: Pubkey, count: int) -> None:
        self._hidden_reads[str(address)] = count

    def fail_next(self, method: str, *errors: Exception) -> None:
        self.failures[method].extend(errors)

    def user_info(self, owner: Pubkey) -> UserInfo | None:
        data = self.accounts.get(str(self.deriver.user_info(owner)))
        return UserInfo.decode(data) if data else None

    def balance(self, owner: Pubkey) -> int | None:
        return self.token_balances.get(str(self.deriver.resolve(owner, self.mint).user_token_account))

    def count(self, method: str) -> int:
        return self.calls.count(method)

    # --- RpcEndpoint -------------------------------------------------------

    def _enter(self, method: str) -> None:
        self.calls.append(method)
        queue = self.failures.get(method)
        if queue:
            raise queue.pop(0)

    async def get_account_info(self, address: Pubkey) -> bytes | None:
        self._enter("get_account_info")
        key = str(address)
        if self._hidden_reads.get(key, 0) > 0:
            self._hidden_reads[key] -= 1
            return None
        return self.accounts.get(key)

    async def get_token_balance(self, token_account: Pubkey) -> int:
        self._enter("get_token_balance")
        key = str(token_account)
        if key not in self.token_balances:
            raise AccountNotFoundError(f"could not find account {key}")
        return self.token_balances[key]

    async def get_token_decimals(self, mint: Pubkey) -> int:
        self._enter("get_token_decimals")
        return self.decimals

    async def get_latest_blockhash(self) -> BlockhashInfo:
        self._enter("get_latest_blockhash")
        return BlockhashInfo(Hash.new_unique(), self.block_height + self.blockhash_ttl)

    async def send_transaction(self, raw_transaction: bytes) -> str:
        self._enter("send_transaction")
        tx = VersionedTransaction.from_bytes(raw_transaction)
        signature = str(tx.signatures[0])
        if self.status_err is None:
            self._apply(tx)
        self.sent.append(tx)
        if self.auto_confirm:
            self._slot += 1
            self.statuses[signature] = SignatureStatus(
                slot=self._slot,
                confirmations=1,
                err=self.status_err,
                confirmation_status="confirmed",
            )
        return signature

    async def get_signature_status(self, signature: str) -> SignatureStatus | None:
        self._enter("get_signature_status")
        return self.statuses.get(signature)

    async def get_block_height(self) -> int:
        self._enter("get_block_height")
        self.block_height += self.block_height_step
        return self.block_height

    # --- instruction effects -----------------------------------------------

    def _apply(self, tx: VersionedTransaction) -> None:
        message = tx.message
        keys = list(message.account_keys)
        owner = keys[0]
        addresses = self.deriver.resolve(owner, self.mint)
        ata = str(addresses.user_token_account)
        info_key = str(addresses.user_info)
        for ix in message.instructions:
            program = keys[ix.program_id_index]
            data = bytes(ix.data)
            if program == ASSOCIATED_TOKEN_PROGRAM_ID:
                self.token_balances.setdefault(ata, 0)
                continue
            if program != self.program_id:
                continue
            tag = data[:8]
            if tag == REGISTER_USER_DISCRIMINATOR:
                if info_key in self.accounts:
                    raise ProgramError("account already in use", error_code=0, name="AccountAlreadyInUse")
                referrer = Pubkey.from_bytes(data[9:41]) if data[8] == 1 else None
                self.register(owner, referrer=referrer)
                if self.registration_lag:
                    self.hide_reads(addresses.user_info, self.registration_lag)
                continue
            info = self.user_info(owner)
            if info is None:
                raise ProgramError("account not initialized", error_code=3012, name="AccountNotInitialized")
            if tag == STAKE_DISCRIMINATOR:
                (amount,) = struct.unpack("<Q", data[8:16])
                if self.token_balances.get(ata, 0) < amount:
                    raise ProgramError("insufficient funds", error_code=1, name="InsufficientFunds")
                self.token_balances[ata] -= amount
                info = replace(info, staked_amount=info.staked_amount + amount)
            elif tag == UNSTAKE_DISCRIMINATOR:
                (amount,) = struct.unpack("<Q", data[8:16])
                if info.staked_amount < amount:
                    raise ProgramError("Insufficient staked amount", error_code=6006, name="InsufficientStakedAmount")
                self.token_balances[ata] = self.token_balances.get(ata, 0) + amount
                info = replace(info, staked_amount=info.staked_amount - amount)
            elif tag == CLAIM_REWARDS_DISCRIMINATOR:
                if info.rewards == 0:
                    raise ProgramError("No rewards to claim", error_code=6007, name="NoRewardsToClaim")
                self.token_balances[ata] = self.token_balances.get(ata, 0) + info.rewards
                info = replace(info, rewards=0)
            elif tag == COMPOUND_REWARDS_DISCRIMINATOR:
                info = replace(info, staked_amount=info.staked_amount + info.rewards, rewards=0)
            self.accounts[info_key] = info.encode()


class CancellingSigner:
    """Wallet that always declines to sign."""

    def __init__(self, keypair: Keypair) -> None:
        self._keypair = keypair
        self.requests = 0

    @property
    def address(self) -> Pubkey:
        return self._keypair.pubkey()

    async def sign(self, message: MessageV0) -> VersionedTransaction | None:
        self.requests += 1
        return None


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def keypair():
    return Keypair()


@pytest.fixture
def owner(keypair):
    return keypair.pubkey()


@pytest.fixture
def signer(keypair):
    return KeypairSigner(keypair)


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config():
    return StakingClientConfig(
        network="devnet",
        rpc_url="http://localhost:8899",
        program_id=DEFAULT_PROGRAM_ID,
        token_mint=DEFAULT_TOKEN_MINT,
        token_decimals=DECIMALS,
        transaction_log_url=None,
        balance_debounce_sec=10.0,
        retry_attempts=2,
        retry_backoff_sec=0.4,
        confirm_poll_interval_sec=1.0,
        confirm_max_polls=5,
        registration_settle_sec=0.5,
        registration_settle_attempts=3,
    )
