"""
Staking client settings.

Typed configuration for every component (RPC URL, program id, mint, retry,
debounce, confirmation and registration settle parameters). Fields read their
defaults from the environment; pass values explicitly to build isolated
configurations (tests, multiple clients in one process).
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from staking_client.config.env import (
    get_program_id,
    get_solana_network,
    get_solana_rpc_url,
    get_token_decimals,
    get_token_mint,
    get_transaction_log_url,
    load_client_env,
)
from staking_client.core.exceptions import ConfigError

DEFAULT_BALANCE_DEBOUNCE_SEC = 10.0
DEFAULT_RETRY_ATTEMPTS = 2
DEFAULT_RETRY_BACKOFF_SEC = 0.4
DEFAULT_CONFIRM_POLL_INTERVAL_SEC = 1.0
DEFAULT_CONFIRM_MAX_POLLS = 90
DEFAULT_REGISTRATION_SETTLE_SEC = 1.0
DEFAULT_REGISTRATION_SETTLE_ATTEMPTS = 5
DEFAULT_RPC_TIMEOUT_SEC = 30.0
DEFAULT_COMMITMENT = "confirmed"


def _env_float(name: str, default: float) -> float:
    return float(os.getenv(name, str(default)))


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


@dataclass
class StakingClientConfig:
    """Config for one staking client instance (env or explicit)."""

    network: str = field(default_factory=get_solana_network)
    rpc_url: str = field(default_factory=get_solana_rpc_url)
    program_id: str = field(default_factory=get_program_id)
    token_mint: str = field(default_factory=get_token_mint)
    token_decimals: int | None = field(default_factory=get_token_decimals)
    transaction_log_url: str | None = field(default_factory=get_transaction_log_url)
    commitment: str = DEFAULT_COMMITMENT
    rpc_timeout_sec: float = field(default_factory=lambda: _env_float("RPC_TIMEOUT_SEC", DEFAULT_RPC_TIMEOUT_SEC))
    balance_debounce_sec: float = field(default_factory=lambda: _env_float("BALANCE_DEBOUNCE_SEC", DEFAULT_BALANCE_DEBOUNCE_SEC))
    retry_attempts: int = field(default_factory=lambda: _env_int("RETRY_ATTEMPTS", DEFAULT_RETRY_ATTEMPTS))
    retry_backoff_sec: float = field(default_factory=lambda: _env_float("RETRY_BACKOFF_SEC", DEFAULT_RETRY_BACKOFF_SEC))
    confirm_poll_interval_sec: float = field(default_factory=lambda: _env_float("CONFIRM_POLL_INTERVAL_SEC", DEFAULT_CONFIRM_POLL_INTERVAL_SEC))
    confirm_max_polls: int = field(default_factory=lambda: _env_int("CONFIRM_MAX_POLLS", DEFAULT_CONFIRM_MAX_POLLS))
    registration_settle_sec: float = DEFAULT_REGISTRATION_SETTLE_SEC
    registration_settle_attempts: int = DEFAULT_REGISTRATION_SETTLE_ATTEMPTS

    def __post_init__(self) -> None:
        if not self.rpc_url.strip():
            raise ConfigError("rpc_url must be non-empty")
        if self.commitment not in ("processed", "confirmed", "finalized"):
            raise ConfigError(f"unsupported commitment: {self.commitment}")
        if self.token_decimals is not None and not (0 <= self.token_decimals <= 18):
            raise ConfigError("token_decimals must be between 0 and 18")
        if self.retry_attempts < 1:
            self.retry_attempts = 1
        if self.retry_backoff_sec < 0:
            self.retry_backoff_sec = 0.0
        if self.balance_debounce_sec < 0:
            self.balance_debounce_sec = 0.0
        if self.confirm_max_polls < 1:
            raise ConfigError("confirm_max_polls must be >= 1")
        if self.registration_settle_attempts < 1:
            self.registration_settle_attempts = 1
        # Fail fast on malformed addresses rather than at the first PDA derivation.
        from solders.pubkey import Pubkey

        for name in ("program_id", "token_mint"):
            try:
                Pubkey.from_string(getattr(self, name))
            except Exception as e:
                raise ConfigError(f"{name} is not a valid pubkey: {getattr(self, name)!r}") from e


def get_settings() -> StakingClientConfig:
    """Return settings resolved from the environment (.env included)."""
    load_client_env()
    return StakingClientConfig()
