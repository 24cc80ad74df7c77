"""
Referral staking program interface: PDA seeds, account layouts, instruction encoding.
"""

from staking_client.program.layouts import GlobalState, UserInfo
from staking_client.program.seeds import SEED_TABLE_VERSION, AddressDeriver, StakingAddresses, derive

__all__ = [
    "AddressDeriver",
    "GlobalState",
    "SEED_TABLE_VERSION",
    "StakingAddresses",
    "UserInfo",
    "derive",
]
