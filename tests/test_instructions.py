"""Tests for instruction encoding and transaction error mapping."""

from __future__ import annotations

import hashlib
import struct

import pytest
from solders.pubkey import Pubkey
from solders.system_program import ID as SYS_PROGRAM_ID
from solders.sysvar import RENT
from spl.token.constants import TOKEN_PROGRAM_ID

from staking_client.core.exceptions import BlockhashExpiredError, ProgramError
from staking_client.program.instructions import (
    build_claim_rewards_instruction,
    build_compound_rewards_instruction,
    build_register_user_instruction,
    build_stake_instruction,
    build_unstake_instruction,
    parse_transaction_error,
    sighash,
)
from staking_client.program.seeds import AddressDeriver

from tests.conftest import MINT, PROGRAM_ID


@pytest.fixture
def addresses():
    return AddressDeriver(PROGRAM_ID).resolve(Pubkey.new_unique(), MINT)


def test_sighash_is_anchor_global_namespace():
    assert sighash("stake") == hashlib.sha256(b"global:stake").digest()[:8]


def test_stake_instruction_layout(addresses):
    ix = build_stake_instruction(PROGRAM_ID, addresses, 1_500_000_000)
    assert ix.program_id == PROGRAM_ID
    assert bytes(ix.data) == sighash("stake") + struct.pack("<Q", 1_500_000_000)
    assert [m.pubkey for m in ix.accounts] == [
        addresses.owner,
        addresses.global_state,
        addresses.user_info,
        addresses.user_token_account,
        addresses.vault,
        TOKEN_PROGRAM_ID,
        SYS_PROGRAM_ID,
    ]
    assert ix.accounts[0].is_signer and ix.accounts[0].is_writable
    assert not ix.accounts[5].is_writable


def test_unstake_uses_own_discriminator(addresses):
    ix = build_unstake_instruction(PROGRAM_ID, addresses, 20)
    assert bytes(ix.data)[:8] == sighash("unstake")
    assert struct.unpack("<Q", bytes(ix.data)[8:])[0] == 20


def test_register_without_referrer(addresses):
    ix = build_register_user_instruction(PROGRAM_ID, addresses)
    assert bytes(ix.data) == sighash("register_user") + b"\x00"
    assert [m.pubkey for m in ix.accounts] == [addresses.owner, addresses.user_info, SYS_PROGRAM_ID, RENT]


def test_register_with_referrer(addresses):
    referrer = Pubkey.new_unique()
    ix = build_register_user_instruction(PROGRAM_ID, addresses, referrer)
    assert bytes(ix.data) == sighash("register_user") + b"\x01" + bytes(referrer)


def test_claim_and_compound_have_no_args(addresses):
    claim = build_claim_rewards_instruction(PROGRAM_ID, addresses)
    compound = build_compound_rewards_instruction(PROGRAM_ID, addresses)
    assert bytes(claim.data) == sighash("claim_rewards")
    assert bytes(compound.data) == sighash("compound_rewards")
    assert len(claim.accounts) == 7
    assert [m.pubkey for m in compound.accounts] == [
        addresses.owner,
        addresses.global_state,
        addresses.user_info,
        SYS_PROGRAM_ID,
    ]


def test_zero_amount_is_not_encodable(addresses):
    with pytest.raises(ValueError):
        build_stake_instruction(PROGRAM_ID, addresses, 0)


def test_custom_error_maps_to_program_error():
    err = parse_transaction_error({"InstructionError": [0, {"Custom": 6006}]})
    assert isinstance(err, ProgramError)
    assert err.error_code == 6006
    assert err.name == "InsufficientStakedAmount"


def test_account_in_use_maps_to_named_error():
    err = parse_transaction_error({"InstructionError": [0, {"Custom": 0}]})
    assert err.error_code == 0
    assert err.name == "AccountAlreadyInUse"


def test_blockhash_not_found_maps_to_expired():
    assert isinstance(parse_transaction_error("BlockhashNotFound"), BlockhashExpiredError)


def test_unknown_error_kept_as_program_error():
    err = parse_transaction_error({"InstructionError": [1, "InvalidAccountData"]})
    assert isinstance(err, ProgramError)
    assert err.error_code is None
    assert err.name == "InvalidAccountData"
