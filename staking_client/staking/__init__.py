"""Staking orchestration: program client, registration, balances, status tracking and the service."""

from staking_client.staking.balances import BalanceSnapshot, BalanceSynchronizer
from staking_client.staking.log_sink import (
    HttpTransactionLogSink,
    NullTransactionLogSink,
    TransactionLogRecord,
    TransactionLogSink,
)
from staking_client.staking.program_client import ProgramClient, SubmittedTransaction, TransactionRequest
from staking_client.staking.registration import RegistrationCoordinator, RegistrationState
from staking_client.staking.service import StakeResult, StakingService
from staking_client.staking.status import (
    ConfirmationResult,
    FailureReason,
    TrackedTransaction,
    TransactionKind,
    TransactionStatus,
    TransactionStatusTracker,
)

__all__ = [
    "BalanceSnapshot",
    "BalanceSynchronizer",
    "ConfirmationResult",
    "FailureReason",
    "HttpTransactionLogSink",
    "NullTransactionLogSink",
    "ProgramClient",
    "RegistrationCoordinator",
    "RegistrationState",
    "StakeResult",
    "StakingService",
    "SubmittedTransaction",
    "TrackedTransaction",
    "TransactionKind",
    "TransactionLogRecord",
    "TransactionLogSink",
    "TransactionRequest",
    "TransactionStatus",
    "TransactionStatusTracker",
]
