"""
Configuration management for the staking client.

Loads and validates settings from environment variables and .env. Exposes a
single source of truth for one client instance's configuration.
"""

from staking_client.config.settings import StakingClientConfig, get_settings  # noqa: F401

__all__ = ["StakingClientConfig", "get_settings"]
