"""
Staking client for the Solana referral staking program.

Derives program addresses, keeps registration and balances in sync with the
ledger, and drives stake / unstake / claim / compound transactions from build
through wallet signature to confirmation.
"""

__version__ = "0.1.0"
