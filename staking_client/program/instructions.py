"""
Instruction encoding for the referral staking program.

Anchor: instruction discriminator = first 8 bytes of sha256("global:<snake_case_name>"),
followed by Borsh-encoded args. Account order follows REFERRAL_STAKING_IDL;
the program rejects instructions whose accounts are out of order.
"""

from __future__ import annotations

import hashlib
import struct
from typing import Any

from solders.instruction import AccountMeta, Instruction
from solders.pubkey import Pubkey
from solders.system_program import ID as SYS_PROGRAM_ID
from solders.sysvar import RENT
from spl.token.constants import TOKEN_PROGRAM_ID

from staking_client.core.exceptions import BlockhashExpiredError, ProgramError
from staking_client.program.seeds import StakingAddresses


def sighash(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


REGISTER_USER_DISCRIMINATOR = sighash("register_user")
STAKE_DISCRIMINATOR = sighash("stake")
UNSTAKE_DISCRIMINATOR = sighash("unstake")
CLAIM_REWARDS_DISCRIMINATOR = sighash("claim_rewards")
COMPOUND_REWARDS_DISCRIMINATOR = sighash("compound_rewards")

_TOKEN_ACCOUNTS = [
    {"name": "owner", "writable": True, "signer": True},
    {"name": "global_state", "writable": True, "signer": False},
    {"name": "user_info", "writable": True, "signer": False},
    {"name": "user_token_account", "writable": True, "signer": False},
    {"name": "vault", "writable": True, "signer": False},
    {"name": "token_program", "writable": False, "signer": False},
    {"name": "system_program", "writable": False, "signer": False},
]

# Client-side subset of the referral_staking IDL (0.1.0): user-facing instructions and errors.
# Pinned to the web client's StakingIDL (client/src/utils/anchor.ts): user_token_account before
# vault, errors 6000 Unauthorized..6010. The older client/src/utils/idl.ts orders vault first and
# only defines 6000..6003; audit against the deployed program before changing either.
REFERRAL_STAKING_IDL: dict[str, Any] = {
    "version": "0.1.0",
    "name": "referral_staking",
    "instructions": [
        {
            "name": "register_user",
            "discriminator": list(REGISTER_USER_DISCRIMINATOR),
            "accounts": [
                {"name": "owner", "writable": True, "signer": True},
                {"name": "user_info", "writable": True, "signer": False},
                {"name": "system_program", "writable": False, "signer": False},
                {"name": "rent", "writable": False, "signer": False},
            ],
            "args": [{"name": "referrer", "type": {"option": "publicKey"}}],
        },
        {
            "name": "stake",
            "discriminator": list(STAKE_DISCRIMINATOR),
            "accounts": _TOKEN_ACCOUNTS,
            "args": [{"name": "amount", "type": "u64"}],
        },
        {
            "name": "unstake",
            "discriminator": list(UNSTAKE_DISCRIMINATOR),
            "accounts": _TOKEN_ACCOUNTS,
            "args": [{"name": "amount", "type": "u64"}],
        },
        {
            "name": "claim_rewards",
            "discriminator": list(CLAIM_REWARDS_DISCRIMINATOR),
            "accounts": _TOKEN_ACCOUNTS,
            "args": [],
        },
        {
            "name": "compound_rewards",
            "discriminator": list(COMPOUND_REWARDS_DISCRIMINATOR),
            "accounts": [
                {"name": "owner", "writable": True, "signer": True},
                {"name": "global_state", "writable": True, "signer": False},
                {"name": "user_info", "writable": True, "signer": False},
                {"name": "system_program", "writable": False, "signer": False},
            ],
            "args": [],
        },
    ],
    "errors": [
        {"code": 6000, "name": "Unauthorized", "msg": "Unauthorized operation"},
        {"code": 6001, "name": "InvalidOwner", "msg": "Invalid owner"},
        {"code": 6002, "name": "InvalidMint", "msg": "Invalid mint"},
        {"code": 6003, "name": "InvalidVault", "msg": "Invalid vault"},
        {"code": 6004, "name": "InvalidMintAuthority", "msg": "Invalid mint authority"},
        {"code": 6005, "name": "AmountTooSmall", "msg": "Amount too small"},
        {"code": 6006, "name": "InsufficientStakedAmount", "msg": "Insufficient staked amount"},
        {"code": 6007, "name": "NoRewardsToClaim", "msg": "No rewards to claim"},
        {"code": 6008, "name": "InsufficientRewardPool", "msg": "Insufficient reward pool"},
        {"code": 6009, "name": "PenaltyTooHigh", "msg": "Early unstake penalty too high (max 50%)"},
        {"code": 6010, "name": "ReferralRateTooHigh", "msg": "Referral reward rate too high (max 20%)"},
    ],
}

PROGRAM_ERRORS: dict[int, tuple[str, str]] = {
    e["code"]: (e["name"], e["msg"]) for e in REFERRAL_STAKING_IDL["errors"]
}

# System program "account already in use": what Anchor's `init` fails with for an existing user_info
ACCOUNT_ALREADY_IN_USE_CODE = 0


def _u64(value: int) -> bytes:
    if not (0 < value < 2**64):
        raise ValueError(f"u64 amount out of range: {value}")
    return struct.pack("<Q", value)


def _token_metas(addresses: StakingAddresses) -> list[AccountMeta]:
    return [
        AccountMeta(pubkey=addresses.owner, is_signer=True, is_writable=True),
        AccountMeta(pubkey=addresses.global_state, is_signer=False, is_writable=True),
        AccountMeta(pubkey=addresses.user_info, is_signer=False, is_writable=True),
        AccountMeta(pubkey=addresses.user_token_account, is_signer=False, is_writable=True),
        AccountMeta(pubkey=addresses.vault, is_signer=False, is_writable=True),
        AccountMeta(pubkey=TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
    ]


def build_register_user_instruction(
    program_id: Pubkey,
    addresses: StakingAddresses,
    referrer: Pubkey | None = None,
) -> Instruction:
    data = bytearray(REGISTER_USER_DISCRIMINATOR)
    if referrer is None:
        data.append(0)
    else:
        data.append(1)
        data.extend(bytes(referrer))
    accounts = [
        AccountMeta(pubkey=addresses.owner, is_signer=True, is_writable=True),
        AccountMeta(pubkey=addresses.user_info, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(pubkey=RENT, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=program_id, data=bytes(data), accounts=accounts)


def build_stake_instruction(program_id: Pubkey, addresses: StakingAddresses, amount: int) -> Instruction:
    data = STAKE_DISCRIMINATOR + _u64(amount)
    return Instruction(program_id=program_id, data=data, accounts=_token_metas(addresses))


def build_unstake_instruction(program_id: Pubkey, addresses: StakingAddresses, amount: int) -> Instruction:
    data = UNSTAKE_DISCRIMINATOR + _u64(amount)
    return Instruction(program_id=program_id, data=data, accounts=_token_metas(addresses))


def build_claim_rewards_instruction(program_id: Pubkey, addresses: StakingAddresses) -> Instruction:
    return Instruction(program_id=program_id, data=CLAIM_REWARDS_DISCRIMINATOR, accounts=_token_metas(addresses))


def build_compound_rewards_instruction(program_id: Pubkey, addresses: StakingAddresses) -> Instruction:
    accounts = [
        AccountMeta(pubkey=addresses.owner, is_signer=True, is_writable=True),
        AccountMeta(pubkey=addresses.global_state, is_signer=False, is_writable=True),
        AccountMeta(pubkey=addresses.user_info, is_signer=False, is_writable=True),
        AccountMeta(pubkey=SYS_PROGRAM_ID, is_signer=False, is_writable=False),
    ]
    return Instruction(program_id=program_id, data=COMPOUND_REWARDS_DISCRIMINATOR, accounts=accounts)


def parse_transaction_error(err: Any) -> Exception:
    """
    Map a JSON-RPC transaction error (simulation or signature status `err`) to an exception.

    "BlockhashNotFound" -> BlockhashExpiredError;
    {"InstructionError": [i, {"Custom": n}]} -> ProgramError(error_code=n);
    {"InstructionError": [i, "InvalidAccountData"]} -> ProgramError(name=...).
    """
    if err == "BlockhashNotFound" or (isinstance(err, dict) and "BlockhashNotFound" in err):
        return BlockhashExpiredError("blockhash not found or expired; rebuild the transaction")
    if isinstance(err, dict) and "InstructionError" in err:
        detail = err["InstructionError"]
        index, cause = (detail[0], detail[1]) if isinstance(detail, list) and len(detail) == 2 else (None, detail)
        if isinstance(cause, dict) and "Custom" in cause:
            code = int(cause["Custom"])
            name, msg = PROGRAM_ERRORS.get(code, (None, None))
            if code == ACCOUNT_ALREADY_IN_USE_CODE:
                name, msg = "AccountAlreadyInUse", "account already in use"
            return ProgramError(
                f"program error {code}: {msg or 'unknown custom error'}",
                error_code=code,
                name=name,
                instruction_index=index,
            )
        return ProgramError(f"instruction error: {cause}", name=str(cause), instruction_index=index)
    return ProgramError(f"transaction error: {err}", name=str(err))
