"""
Structured logging for the staking client.

JSON logs with timestamp, owner, event_type and transaction signature.
"""

from staking_client.staking_logging.logger import bind_owner, get_logger

__all__ = ["bind_owner", "get_logger"]
