"""
Program-derived addresses for the referral staking program.

SEED_TABLE is the only place seed strings appear. Every call site goes through
AddressDeriver; a seed spelled differently elsewhere would derive an address
the ledger treats as empty (false "not registered" / "no balance").

Layout pinned to the referral_staking IDL (version 0.1.0):
    global_state: [b"global_state"]
    user_info:    [b"user_info", owner]
    vault:        [b"vault", token_mint]
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

from staking_client.core.exceptions import AddressDerivationError

SEED_TABLE_VERSION = 1

GLOBAL_STATE_SEED = b"global_state"
USER_INFO_SEED = b"user_info"
VAULT_SEED = b"vault"

# account name -> static seed prefix; dynamic parts (owner, mint) follow the prefix
SEED_TABLE: dict[str, bytes] = {
    "global_state": GLOBAL_STATE_SEED,
    "user_info": USER_INFO_SEED,
    "vault": VAULT_SEED,
}

MAX_SEED_LEN = 32
# find_program_address appends the bump seed; the runtime allows 16 seeds in total
MAX_SEEDS = 16


def derive(program_id: Pubkey, seed_parts: Sequence[bytes | Pubkey]) -> Pubkey:
    """
    Derive a program address from (program_id, seeds). Pure and deterministic.

    Pubkey seed parts are converted to their 32 raw bytes. Raises
    AddressDerivationError for inputs outside the PDA address space.
    """
    seeds: list[bytes] = []
    for part in seed_parts:
        if isinstance(part, Pubkey):
            part = bytes(part)
        if not isinstance(part, (bytes, bytearray)):
            raise AddressDerivationError(f"seed must be bytes or Pubkey, got {type(part).__name__}")
        if len(part) > MAX_SEED_LEN:
            raise AddressDerivationError(f"seed longer than {MAX_SEED_LEN} bytes: {len(part)}")
        seeds.append(bytes(part))
    if len(seeds) >= MAX_SEEDS:
        raise AddressDerivationError(f"too many seeds: {len(seeds)} (max {MAX_SEEDS - 1})")
    try:
        pda, _bump = Pubkey.find_program_address(seeds, program_id)
    except Exception as e:
        raise AddressDerivationError(f"no viable bump for seeds under {program_id}") from e
    return pda


@dataclass(frozen=True)
class StakingAddresses:
    """Every account an owner's staking instructions touch."""

    owner: Pubkey
    token_mint: Pubkey
    global_state: Pubkey
    user_info: Pubkey
    vault: Pubkey
    user_token_account: Pubkey

    def with_vault(self, vault: Pubkey) -> "StakingAddresses":
        return StakingAddresses(
            owner=self.owner,
            token_mint=self.token_mint,
            global_state=self.global_state,
            user_info=self.user_info,
            vault=vault,
            user_token_account=self.user_token_account,
        )


class AddressDeriver:
    """Seed-table-backed derivation for one program id."""

    def __init__(self, program_id: Pubkey) -> None:
        self.program_id = program_id

    def global_state(self) -> Pubkey:
        return derive(self.program_id, [SEED_TABLE["global_state"]])

    def user_info(self, owner: Pubkey) -> Pubkey:
        return derive(self.program_id, [SEED_TABLE["user_info"], owner])

    def vault(self, token_mint: Pubkey) -> Pubkey:
        return derive(self.program_id, [SEED_TABLE["vault"], token_mint])

    def resolve(self, owner: Pubkey, token_mint: Pubkey) -> StakingAddresses:
        return StakingAddresses(
            owner=owner,
            token_mint=token_mint,
            global_state=self.global_state(),
            user_info=self.user_info(owner),
            vault=self.vault(token_mint),
            user_token_account=get_associated_token_address(owner, token_mint),
        )
