"""
Account layouts for the referral staking program.

Anchor accounts: 8-byte discriminator (sha256("account:<Name>")[:8]) followed
by the Borsh-encoded struct. Fields are read in declaration order with a
cursor; Option<Pubkey> is a 1-byte tag followed by 32 bytes only when Some.
Decoding fails fast (AccountDecodeError) on a wrong discriminator, truncated
data or an invalid option tag.

GlobalState: authority, token_mint, vault (Pubkey) | reward_rate u64 |
    unlock_duration i64 | early_unstake_penalty, min_stake_amount,
    referral_reward_rate, total_staked, stakers_count, reward_pool u64 |
    last_update_time i64 | bump u8
UserInfo: owner (Pubkey) | staked_amount, rewards u64 | last_stake_time,
    last_claim_time i64 | referrer Option<Pubkey> | referral_count,
    total_referral_rewards u64
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass

from solders.pubkey import Pubkey

from staking_client.core.exceptions import AccountDecodeError

LAYOUT_VERSION = 1
DISCRIMINATOR_LEN = 8
PUBKEY_LEN = 32


def account_discriminator(name: str) -> bytes:
    return hashlib.sha256(f"account:{name}".encode()).digest()[:DISCRIMINATOR_LEN]


GLOBAL_STATE_DISCRIMINATOR = account_discriminator("GlobalState")
USER_INFO_DISCRIMINATOR = account_discriminator("UserInfo")


class _Cursor:
    def __init__(self, data: bytes, account: str) -> None:
        self._data = data
        self._pos = 0
        self._account = account

    def _take(self, n: int, field_name: str) -> bytes:
        end = self._pos + n
        if end > len(self._data):
            raise AccountDecodeError(
                f"{self._account}: truncated at field {field_name!r} (need {end} bytes, have {len(self._data)})"
            )
        chunk = self._data[self._pos:end]
        self._pos = end
        return chunk

    def pubkey(self, field_name: str) -> Pubkey:
        return Pubkey(self._take(PUBKEY_LEN, field_name))

    def u64(self, field_name: str) -> int:
        return struct.unpack("<Q", self._take(8, field_name))[0]

    def i64(self, field_name: str) -> int:
        return struct.unpack("<q", self._take(8, field_name))[0]

    def u8(self, field_name: str) -> int:
        return self._take(1, field_name)[0]

    def option_pubkey(self, field_name: str) -> Pubkey | None:
        tag = self.u8(field_name)
        if tag == 0:
            return None
        if tag == 1:
            return self.pubkey(field_name)
        raise AccountDecodeError(f"{self._account}: invalid option tag {tag} at field {field_name!r}")


def _check_discriminator(data: bytes | None, expected: bytes, account: str) -> bytes:
    if data is None:
        raise AccountDecodeError(f"{account}: no account data")
    if len(data) < DISCRIMINATOR_LEN:
        raise AccountDecodeError(f"{account}: data shorter than discriminator ({len(data)} bytes)")
    if data[:DISCRIMINATOR_LEN] != expected:
        raise AccountDecodeError(
            f"{account}: discriminator mismatch (got {data[:DISCRIMINATOR_LEN].hex()}, want {expected.hex()})"
        )
    return data[DISCRIMINATOR_LEN:]


@dataclass(frozen=True)
class GlobalState:
    authority: Pubkey
    token_mint: Pubkey
    vault: Pubkey
    reward_rate: int
    unlock_duration: int
    early_unstake_penalty: int
    min_stake_amount: int
    referral_reward_rate: int
    total_staked: int
    stakers_count: int
    reward_pool: int
    last_update_time: int
    bump: int

    @classmethod
    def decode(cls, data: bytes | None) -> "GlobalState":
        c = _Cursor(_check_discriminator(data, GLOBAL_STATE_DISCRIMINATOR, "GlobalState"), "GlobalState")
        return cls(
            authority=c.pubkey("authority"),
            token_mint=c.pubkey("token_mint"),
            vault=c.pubkey("vault"),
            reward_rate=c.u64("reward_rate"),
            unlock_duration=c.i64("unlock_duration"),
            early_unstake_penalty=c.u64("early_unstake_penalty"),
            min_stake_amount=c.u64("min_stake_amount"),
            referral_reward_rate=c.u64("referral_reward_rate"),
            total_staked=c.u64("total_staked"),
            stakers_count=c.u64("stakers_count"),
            reward_pool=c.u64("reward_pool"),
            last_update_time=c.i64("last_update_time"),
            bump=c.u8("bump"),
        )

    def encode(self) -> bytes:
        return (
            GLOBAL_STATE_DISCRIMINATOR
            + bytes(self.authority)
            + bytes(self.token_mint)
            + bytes(self.vault)
            + struct.pack(
                "<QqQQQQQQqB",
                self.reward_rate,
                self.unlock_duration,
                self.early_unstake_penalty,
                self.min_stake_amount,
                self.referral_reward_rate,
                self.total_staked,
                self.stakers_count,
                self.reward_pool,
                self.last_update_time,
                self.bump,
            )
        )


@dataclass(frozen=True)
class UserInfo:
    owner: Pubkey
    staked_amount: int
    rewards: int
    last_stake_time: int
    last_claim_time: int
    referrer: Pubkey | None
    referral_count: int
    total_referral_rewards: int

    @classmethod
    def decode(cls, data: bytes | None) -> "UserInfo":
        c = _Cursor(_check_discriminator(data, USER_INFO_DISCRIMINATOR, "UserInfo"), "UserInfo")
        return cls(
            owner=c.pubkey("owner"),
            staked_amount=c.u64("staked_amount"),
            rewards=c.u64("rewards"),
            last_stake_time=c.i64("last_stake_time"),
            last_claim_time=c.i64("last_claim_time"),
            referrer=c.option_pubkey("referrer"),
            referral_count=c.u64("referral_count"),
            total_referral_rewards=c.u64("total_referral_rewards"),
        )

    def encode(self) -> bytes:
        referrer = b"\x00" if self.referrer is None else b"\x01" + bytes(self.referrer)
        return (
            USER_INFO_DISCRIMINATOR
            + bytes(self.owner)
            + struct.pack("<QQqq", self.staked_amount, self.rewards, self.last_stake_time, self.last_claim_time)
            + referrer
            + struct.pack("<QQ", self.referral_count, self.total_referral_rewards)
        )
