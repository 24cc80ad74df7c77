"""
Staking client exceptions.

Every failure surfaced to a caller is a StakingError with a stable ``code`` and
a ``retryable`` flag. ``retryable`` means the whole user action may be started
again from scratch (fresh transaction, fresh blockhash). It never means the
same signed transaction may be resent.
"""

from __future__ import annotations

from typing import Any


class StakingError(Exception):
    """Base class for all staking client errors."""

    code = "unknown"
    retryable = False

    def __init__(self, message: str = "", **context: Any) -> None:
        super().__init__(message or self.code)
        self.message = message or self.code
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        return {
            "code": self.code,
            "message": self.message,
            "retryable": self.retryable,
            **{k: str(v) for k, v in self.context.items()},
        }


class ConfigError(StakingError):
    code = "config_error"


class UserCancelledError(StakingError):
    """The wallet signer declined to sign."""

    code = "user_cancelled"
    retryable = True


class InvalidAmountError(StakingError):
    code = "invalid_amount"


class InsufficientBalanceError(StakingError):
    """Requested stake exceeds the cached available token balance."""

    code = "insufficient_balance"


class InsufficientStakedError(StakingError):
    """Requested unstake exceeds the cached staked amount."""

    code = "insufficient_staked"


class NotRegisteredError(StakingError):
    code = "not_registered"


class AddressDerivationError(StakingError):
    code = "address_derivation_failed"


class AccountDecodeError(StakingError):
    """Fetched account bytes do not match the pinned account layout."""

    code = "account_decode_failed"


class AccountNotFoundError(StakingError):
    code = "account_not_found"


class RpcError(StakingError):
    """Terminal RPC failure: malformed request, rejected params, 4xx."""

    code = "rpc_error"

    def __init__(self, message: str = "", *, rpc_code: int | None = None, status_code: int | None = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.rpc_code = rpc_code
        self.status_code = status_code


class TransientNetworkError(StakingError):
    """Timeouts, transport errors, 5xx and node-behind responses. Retried internally."""

    code = "transient_network"
    retryable = True

    def __init__(self, message: str = "", *, status_code: int | None = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.status_code = status_code
        self.attempts = 1


class RateLimitedError(TransientNetworkError):
    code = "rate_limited"


class BlockhashExpiredError(StakingError):
    """The transaction's blockhash is no longer valid; the request must be rebuilt."""

    code = "blockhash_expired"


class ProgramError(StakingError):
    """Authoritative rejection by the on-chain program (Anchor custom error code)."""

    code = "program_error"

    def __init__(self, message: str = "", *, error_code: int | None = None, name: str | None = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.error_code = error_code
        self.name = name


class RegistrationError(StakingError):
    """Registration confirmed but the user record never became visible."""

    code = "registration_failed"
    retryable = True


class TransactionFailedError(StakingError):
    """A submitted transaction reached a Failed terminal state during confirmation."""

    code = "transaction_failed"

    def __init__(self, message: str = "", *, result: Any = None, **context: Any) -> None:
        super().__init__(message, **context)
        self.result = result


class InvalidTransitionError(StakingError):
    code = "invalid_status_transition"
