"""
Core building blocks shared by every component: exceptions and retry policy.
"""

from staking_client.core.exceptions import StakingError
from staking_client.core.retry import RetryPolicy, RetryScheduler

__all__ = ["RetryPolicy", "RetryScheduler", "StakingError"]
