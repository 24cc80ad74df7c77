"""End-to-end StakingService scenarios against the in-memory ledger."""

from __future__ import annotations

import asyncio
from decimal import Decimal

import pytest

from staking_client.core.exceptions import (
    InsufficientBalanceError,
    InsufficientStakedError,
    InvalidAmountError,
    NotRegisteredError,
    RateLimitedError,
    TransactionFailedError,
    TransientNetworkError,
)
from staking_client.program.instructions import sighash
from staking_client.staking.registration import RegistrationState
from staking_client.staking.service import StakingService
from staking_client.staking.status import FailureReason, TransactionKind, TransactionStatus

from tests.conftest import ONE


class RecordingSink:
    def __init__(self):
        self.records = []

    async def emit(self, record):
        self.records.append(record)


class BrokenSink:
    async def emit(self, record):
        raise RuntimeError("log service down")


def _service(config, ledger, signer, sleep, clock, **kwargs) -> StakingService:
    return StakingService(config, ledger, signer, sleep=sleep, clock=clock, **kwargs)


def test_stake_forty_of_hundred(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.fund(owner, 100 * ONE)
    ledger.register(owner)
    sink = RecordingSink()
    service = _service(config, ledger, signer, sleep, clock, log_sink=sink)

    async def run():
        result = await service.stake(Decimal(40))
        await service.drain()
        return result

    result = asyncio.run(run())
    assert result.kind is TransactionKind.STAKE
    assert result.amount == 40 * ONE
    assert result.snapshot.available == Decimal(60)
    assert result.snapshot.staked == Decimal(40)
    assert ledger.balance(owner) == 60 * ONE
    assert ledger.user_info(owner).staked_amount == 40 * ONE
    assert len(sink.records) == 1
    payload = sink.records[0].to_payload()
    assert payload["walletAddress"] == str(owner)
    assert payload["amount"] == "40"
    assert payload["transactionType"] == "stake"
    assert payload["transactionSignature"] == result.signature
    assert service.last_transaction().status is TransactionStatus.CONFIRMED


def test_stake_registers_first_and_builds_after_recheck(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.fund(owner, 100 * ONE)
    ledger.registration_lag = 1
    service = _service(config, ledger, signer, sleep, clock)

    result = asyncio.run(service.stake("10"))

    assert [bytes(tx.message.instructions[-1].data)[:8] for tx in ledger.sent] == [
        sighash("register_user"),
        sighash("stake"),
    ]
    first_send = ledger.calls.index("send_transaction")
    second_send = len(ledger.calls) - 1 - ledger.calls[::-1].index("send_transaction")
    between = ledger.calls[first_send:second_send]
    # one read hidden by the lag, one that sees the new record
    assert between.count("get_account_info") == 2
    assert service.registration.state(owner) is RegistrationState.REGISTERED
    assert result.snapshot.staked == Decimal(10)


def test_unstake_over_staked_makes_no_rpc_calls(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.fund(owner, 100 * ONE)
    ledger.register(owner, staked=10 * ONE)
    service = _service(config, ledger, signer, sleep, clock)
    asyncio.run(service.refresh_balances())
    ledger.calls.clear()

    with pytest.raises(InsufficientStakedError):
        asyncio.run(service.unstake(20))
    assert ledger.calls == []


def test_stake_over_balance_makes_no_rpc_calls(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.fund(owner, 5 * ONE)
    service = _service(config, ledger, signer, sleep, clock)
    asyncio.run(service.refresh_balances())
    ledger.calls.clear()

    with pytest.raises(InsufficientBalanceError):
        asyncio.run(service.stake(6))
    assert ledger.calls == []


@pytest.mark.parametrize("amount", [0, "-1", "abc"])
def test_invalid_amount_makes_no_rpc_calls(config, ledger, signer, sleep, clock, amount):
    service = _service(config, ledger, signer, sleep, clock)
    with pytest.raises(InvalidAmountError):
        asyncio.run(service.stake(amount))
    assert ledger.calls == []


def test_below_minimum_stake_rejected(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state(min_stake_amount=ONE)
    ledger.fund(owner, 100 * ONE)
    ledger.register(owner)
    service = _service(config, ledger, signer, sleep, clock)
    with pytest.raises(InvalidAmountError, match="minimum"):
        asyncio.run(service.stake("0.5"))
    assert ledger.sent == []


def test_one_rate_limit_then_success(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.fund(owner, 100 * ONE)
    ledger.register(owner)
    ledger.fail_next("send_transaction", RateLimitedError("429 Too Many Requests", status_code=429))
    service = _service(config, ledger, signer, sleep, clock)

    result = asyncio.run(service.stake(40))

    assert result.snapshot.available == Decimal(60)
    assert ledger.count("send_transaction") == 2
    assert len(ledger.sent) == 1
    assert sleep.delays[0] == pytest.approx(0.4)


def test_unstake_returns_tokens(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.fund(owner, 60 * ONE)
    ledger.register(owner, staked=40 * ONE)
    sink = RecordingSink()
    service = _service(config, ledger, signer, sleep, clock, log_sink=sink)

    async def run():
        result = await service.unstake("15.5")
        await service.drain()
        return result

    result = asyncio.run(run())
    assert result.snapshot.available == Decimal("75.5")
    assert result.snapshot.staked == Decimal("24.5")
    assert sink.records[0].transaction_type == "unstake"
    assert sink.records[0].amount == "15.5"


def test_failed_confirmation_raises_and_does_not_resend(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.fund(owner, 60 * ONE)
    ledger.register(owner, staked=40 * ONE)
    ledger.status_err = {"InstructionError": [0, {"Custom": 6006}]}
    sink = RecordingSink()
    service = _service(config, ledger, signer, sleep, clock, log_sink=sink)

    with pytest.raises(TransactionFailedError) as exc_info:
        asyncio.run(service.unstake(10))
    result = exc_info.value.result
    assert result.reason is FailureReason.PROGRAM_ERROR
    assert result.error_code == 6006
    assert len(ledger.sent) == 1
    assert sink.records == []
    assert service.last_transaction().status is TransactionStatus.FAILED


def test_log_sink_failure_never_fails_stake(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.fund(owner, 100 * ONE)
    ledger.register(owner)
    service = _service(config, ledger, signer, sleep, clock, log_sink=BrokenSink())

    async def run():
        result = await service.stake(1)
        await service.drain()
        return result

    result = asyncio.run(run())
    assert result.snapshot.staked == Decimal(1)


def test_failed_refresh_after_confirmed_stake_still_succeeds(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.fund(owner, 100 * ONE)
    ledger.register(owner)
    sink = RecordingSink()
    service = _service(config, ledger, signer, sleep, clock, log_sink=sink)

    async def run():
        await service.refresh_balances()
        ledger.fail_next("get_token_balance", TransientNetworkError("node down"), TransientNetworkError("node down"))
        result = await service.stake(Decimal(40))
        await service.drain()
        return result

    result = asyncio.run(run())
    assert result.snapshot is None
    assert result.amount == 40 * ONE
    assert ledger.user_info(owner).staked_amount == 40 * ONE
    assert len(ledger.sent) == 1
    assert len(sink.records) == 1
    assert sink.records[0].transaction_signature == result.signature
    assert service.balances.cached(owner) is None
    assert service.last_transaction().status is TransactionStatus.CONFIRMED


def test_claim_requires_registration_and_rewards(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    service = _service(config, ledger, signer, sleep, clock)
    with pytest.raises(NotRegisteredError):
        asyncio.run(service.claim_rewards())

    ledger.register(owner)
    service = _service(config, ledger, signer, sleep, clock)
    with pytest.raises(InvalidAmountError, match="no rewards"):
        asyncio.run(service.claim_rewards())
    assert ledger.sent == []


def test_claim_creates_token_account_when_missing(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.register(owner, staked=10 * ONE, rewards=2 * ONE)
    service = _service(config, ledger, signer, sleep, clock)

    result = asyncio.run(service.claim_rewards())

    assert len(ledger.sent[0].message.instructions) == 2
    assert result.snapshot.available == Decimal(2)
    assert result.snapshot.pending_rewards == Decimal(0)


def test_compound_moves_rewards_into_stake(config, ledger, signer, owner, sleep, clock):
    ledger.set_global_state()
    ledger.fund(owner, ONE)
    ledger.register(owner, staked=10 * ONE, rewards=3 * ONE)
    service = _service(config, ledger, signer, sleep, clock)

    result = asyncio.run(service.compound_rewards())

    assert result.kind is TransactionKind.COMPOUND
    assert result.snapshot.staked == Decimal(13)


def test_register_is_idempotent(config, ledger, signer, owner, sleep, clock):
    service = _service(config, ledger, signer, sleep, clock)

    async def run():
        await service.register()
        return await service.register()

    assert asyncio.run(run()) is RegistrationState.REGISTERED
    assert len(ledger.sent) == 1


def test_addresses_use_global_state_vault(config, ledger, signer, owner, sleep, clock):
    from solders.pubkey import Pubkey

    vault = Pubkey.new_unique()
    ledger.set_global_state(vault=vault)
    service = _service(config, ledger, signer, sleep, clock)
    addresses = asyncio.run(service.addresses())
    assert addresses.owner == owner
    assert addresses.vault == vault
