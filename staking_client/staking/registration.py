"""
Registration coordinator.

Registration is the existence of the owner's user_info account. ensure_registered()
submits register_user only when that account is absent, then re-reads until the
account is visible, so a subsequent stake never races an unconfirmed record.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Awaitable, Callable

from solders.pubkey import Pubkey

from staking_client.core.exceptions import ProgramError, RegistrationError, TransactionFailedError
from staking_client.program.instructions import ACCOUNT_ALREADY_IN_USE_CODE
from staking_client.staking.program_client import ProgramClient
from staking_client.staking.status import FailureReason, TransactionKind
from staking_client.staking_logging import get_logger
from staking_client.utils.wallet_utils import short_address

logger = get_logger(__name__)

DEFAULT_SETTLE_DELAY_SEC = 1.0
DEFAULT_SETTLE_ATTEMPTS = 5


class RegistrationState(str, Enum):
    UNKNOWN = "unknown"
    NOT_REGISTERED = "not_registered"
    REGISTERING = "registering"
    REGISTERED = "registered"


def _already_registered(error_code: int | None, name: str | None = None) -> bool:
    return error_code == ACCOUNT_ALREADY_IN_USE_CODE or name == "AccountAlreadyInUse"


class RegistrationCoordinator:
    def __init__(
        self,
        client: ProgramClient,
        *,
        settle_delay_sec: float = DEFAULT_SETTLE_DELAY_SEC,
        settle_attempts: int = DEFAULT_SETTLE_ATTEMPTS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._client = client
        self._settle_delay = settle_delay_sec
        self._settle_attempts = max(1, settle_attempts)
        self._sleep = sleep
        self._states: dict[str, RegistrationState] = {}
        self._locks: dict[str, asyncio.Lock] = {}

    def state(self, owner: Pubkey) -> RegistrationState:
        return self._states.get(str(owner), RegistrationState.UNKNOWN)

    def mark_registered(self, owner: Pubkey) -> None:
        """Record a registration observed elsewhere (e.g. a balance refresh that saw user_info)."""
        self._states[str(owner)] = RegistrationState.REGISTERED

    def _set(self, owner: Pubkey, state: RegistrationState) -> None:
        key = str(owner)
        if self._states.get(key) is not state:
            logger.info("registration_state", owner=short_address(owner), state=state.value)
        self._states[key] = state

    async def ensure_registered(self, owner: Pubkey, referrer: Pubkey | None = None) -> RegistrationState:
        """
        Return REGISTERED once user_info is visible on the ledger.

        Submits at most one register_user per call, and none if the account
        already exists. Concurrent calls for the same owner are serialized.
        """
        lock = self._locks.setdefault(str(owner), asyncio.Lock())
        async with lock:
            if self.state(owner) is RegistrationState.REGISTERED:
                return RegistrationState.REGISTERED
            if await self._client.user_info_exists(owner):
                self._set(owner, RegistrationState.REGISTERED)
                return RegistrationState.REGISTERED

            self._set(owner, RegistrationState.NOT_REGISTERED)
            try:
                await self._register(owner, referrer)
            except BaseException:
                self._set(owner, RegistrationState.NOT_REGISTERED)
                raise
            return RegistrationState.REGISTERED

    async def _register(self, owner: Pubkey, referrer: Pubkey | None) -> None:
        self._set(owner, RegistrationState.REGISTERING)
        tracker = self._client.tracker
        tracked = tracker.begin(TransactionKind.REGISTER, owner)
        try:
            request = await self._client.build_register_transaction(owner, referrer)
        except Exception as e:
            tracker.fail(tracked, FailureReason.REJECTED, message=str(e))
            raise

        try:
            result = await self._client.execute(request, tracked)
        except ProgramError as e:
            # Simulation rejected: someone else created the account first.
            if not _already_registered(e.error_code, e.name):
                raise
            logger.info("registration_already_exists", owner=short_address(owner))
        else:
            if not result.confirmed:
                if not (result.reason is FailureReason.PROGRAM_ERROR and _already_registered(result.error_code)):
                    raise TransactionFailedError(
                        f"register_user failed: {result.reason.value if result.reason else 'unknown'}",
                        result=result,
                        signature=result.signature,
                    )
                logger.info("registration_already_exists", owner=short_address(owner), signature=result.signature)

        await self._settle(owner)

    async def _settle(self, owner: Pubkey) -> None:
        for attempt in range(1, self._settle_attempts + 1):
            if await self._client.user_info_exists(owner):
                self._set(owner, RegistrationState.REGISTERED)
                return
            logger.info("registration_settle_wait", owner=short_address(owner), attempt=attempt)
            if attempt < self._settle_attempts:
                await self._sleep(self._settle_delay)
        raise RegistrationError(
            f"user_info for {owner} not visible after {self._settle_attempts} reads",
            owner=owner,
        )
