"""
Environment variable loading and validation for the staking client.

- SOLANA_NETWORK: devnet | mainnet (default: devnet)
- SOLANA_RPC_URL: RPC endpoint (read from .env)
- HELIUS_API_KEY: Helius API key (fallback for RPC URL)
- STAKING_PROGRAM_ID: Deployed referral staking program ID
- STAKING_TOKEN_MINT: Mint of the staked token
- STAKING_TOKEN_DECIMALS: Optional; pins mint decimals instead of reading them from chain
- TRANSACTION_LOG_URL: Optional base URL of the transaction log service
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

# Project root: config is staking_client/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

# referral_staking program (Anchor IDL name) and the HATM mint it stakes
DEFAULT_PROGRAM_ID = "EnGhdovdYhHk4nsHEJr6gmV5cYfrx53ky19RD56eRRGm"
DEFAULT_TOKEN_MINT = "6f6GFixp6dh2UeMzDZpgR84rWgHu8oQVPWfrUUV94aj4"

DEVNET_RPC_URL = "https://api.devnet.solana.com"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_MAINNET_URL_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"
HELIUS_DEVNET_URL_TEMPLATE = "https://devnet.helius-rpc.com/?api-key={key}"

SOLSCAN_URL = "https://solscan.io"


def load_client_env() -> None:
    """Load .env from project root. Safe to call multiple times."""
    from dotenv import load_dotenv

    load_dotenv(_ENV_PATH)


def get_solana_network() -> str:
    """
    Return SOLANA_NETWORK from env: devnet | mainnet.
    Default: devnet.
    """
    load_client_env()
    raw = (os.getenv("SOLANA_NETWORK") or os.getenv("SOLANA_CLUSTER") or "devnet").strip().lower()
    if raw in ("mainnet", "mainnet-beta"):
        return "mainnet"
    return "devnet"


def get_solana_rpc_url() -> str:
    """
    Resolve Solana RPC URL from env.
    Order: SOLANA_RPC_URL > HELIUS_API_KEY (network-specific) > devnet/mainnet default.
    """
    load_client_env()
    url = (os.getenv("SOLANA_RPC_URL") or "").strip()
    if url:
        return url
    network = get_solana_network()
    key = (os.getenv("HELIUS_API_KEY") or "").strip()
    if key:
        template = HELIUS_DEVNET_URL_TEMPLATE if network == "devnet" else HELIUS_MAINNET_URL_TEMPLATE
        return template.format(key=key)
    return DEVNET_RPC_URL if network == "devnet" else MAINNET_RPC_URL


def get_program_id() -> str:
    """Return STAKING_PROGRAM_ID from env, or the default deployment. PDA derivation must use this program ID."""
    load_client_env()
    return (os.getenv("STAKING_PROGRAM_ID") or "").strip() or DEFAULT_PROGRAM_ID


def get_token_mint() -> str:
    load_client_env()
    return (os.getenv("STAKING_TOKEN_MINT") or "").strip() or DEFAULT_TOKEN_MINT


def get_token_decimals() -> int | None:
    """Pinned mint decimals, or None to read them from chain."""
    load_client_env()
    raw = (os.getenv("STAKING_TOKEN_DECIMALS") or "").strip()
    if not raw:
        return None
    return int(raw)


def get_transaction_log_url() -> str | None:
    load_client_env()
    return (os.getenv("TRANSACTION_LOG_URL") or "").strip() or None


def mask_rpc_url(rpc: str) -> str:
    """Hide the API key in an RPC URL before it is logged or printed."""
    if "api-key=" in rpc:
        return rpc.split("api-key=")[0] + "api-key=***"
    return rpc
