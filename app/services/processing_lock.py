"""In-process lock table that keeps the bot and human operators from replying
to the same conversation at the same time.

Locks are owned by time, not by a caller handle: a record blocks new
acquisitions until it is released or its TTL passes. Expiry is checked lazily
on every read, and a background sweep purges abandoned records.

Single-process only. Running several workers needs a shared lock (for example a
database advisory lock) instead of this table.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from app.logging_config import get_logger

logger = get_logger("processing_lock")

DEFAULT_TTL_SECONDS = 10.0
SWEEP_INTERVAL_SECONDS = 5.0
POLL_INTERVAL_SECONDS = 0.1
DEFAULT_WAIT_TIMEOUT_SECONDS = 5.0


class LockType(str, Enum):
    BOT_PROCESSING = "bot_processing"
    OWNER_SENDING = "owner_sending"
    GENERAL = "general"


@dataclass(frozen=True)
class LockInfo:
    conversation_id: str
    lock_type: LockType
    acquired_at: float
    ttl: float

    @property
    def expires_at(self) -> float:
        return self.acquired_at + self.ttl

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at


class ProcessingLockManager:
    def __init__(
        self,
        clock: Callable[[], float] = time.monotonic,
        default_ttl: float = DEFAULT_TTL_SECONDS,
        sweep_interval: float = SWEEP_INTERVAL_SECONDS,
        poll_interval: float = POLL_INTERVAL_SECONDS,
    ):
        self._clock = clock
        self.default_ttl = default_ttl
        self.sweep_interval = sweep_interval
        self.poll_interval = poll_interval
        self._locks: dict[str, LockInfo] = {}
        self._sweeper: Optional[asyncio.Task] = None

    def _current(self, conversation_id: str) -> Optional[LockInfo]:
        info = self._locks.get(conversation_id)
        if info is None:
            return None
        if info.is_expired(self._clock()):
            self._locks.pop(conversation_id, None)
            logger.debug(
                "Lock expired",
                extra={"context": {"conversation_id": conversation_id, "lock_type": info.lock_type.value}},
            )
            return None
        return info

    def acquire(
        self,
        conversation_id: str,
        lock_type: LockType = LockType.GENERAL,
        ttl: Optional[float] = None,
    ) -> bool:
        """Install a lock unless an unexpired one is already held."""
        existing = self._current(conversation_id)
        if existing is not None:
            logger.info(
                "Lock busy",
                extra={
                    "context": {
                        "conversation_id": conversation_id,
                        "requested": lock_type.value,
                        "held": existing.lock_type.value,
                        "remaining_seconds": round(existing.expires_at - self._clock(), 3),
                    }
                },
            )
            return False

        self._locks[conversation_id] = LockInfo(
            conversation_id=conversation_id,
            lock_type=lock_type,
            acquired_at=self._clock(),
            ttl=self.default_ttl if ttl is None else ttl,
        )
        return True

    def release(self, conversation_id: str) -> None:
        self._locks.pop(conversation_id, None)

    def is_locked(self, conversation_id: str) -> Optional[LockInfo]:
        return self._current(conversation_id)

    def is_locked_by(self, conversation_id: str, lock_type: LockType) -> bool:
        info = self._current(conversation_id)
        return info is not None and info.lock_type == lock_type

    def remaining_time(self, conversation_id: str) -> float:
        info = self._current(conversation_id)
        if info is None:
            return 0.0
        return max(info.expires_at - self._clock(), 0.0)

    def lock_count(self) -> int:
        return len(self._locks)

    def clear_all(self) -> None:
        self._locks.clear()

    async def wait_for_release(
        self,
        conversation_id: str,
        timeout: float = DEFAULT_WAIT_TIMEOUT_SECONDS,
        sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> bool:
        """Poll until the conversation is unlocked. False if ``timeout`` passes first."""
        deadline = self._clock() + timeout
        while self._current(conversation_id) is not None:
            if self._clock() >= deadline:
                return False
            await sleep_func(self.poll_interval)
        return True

    def sweep(self) -> int:
        now = self._clock()
        expired = [key for key, info in self._locks.items() if info.is_expired(now)]
        for key in expired:
            self._locks.pop(key, None)
        if expired:
            logger.debug("Swept expired locks", extra={"context": {"count": len(expired)}})
        return len(expired)

    async def _sweep_loop(self, sleep_func: Callable[[float], Awaitable[None]]) -> None:
        while True:
            try:
                await sleep_func(self.sweep_interval)
                self.sweep()
            except asyncio.CancelledError:
                break
            except Exception as exc:
                logger.error("Lock sweep failed", extra={"context": {"error": str(exc)}})

    def start_sweeper(self, sleep_func: Callable[[float], Awaitable[None]] = asyncio.sleep) -> asyncio.Task:
        if self._sweeper is None or self._sweeper.done():
            self._sweeper = asyncio.create_task(self._sweep_loop(sleep_func))
            logger.info("Lock sweeper started", extra={"context": {"interval_seconds": self.sweep_interval}})
        return self._sweeper

    async def stop_sweeper(self) -> None:
        if self._sweeper is None:
            return
        self._sweeper.cancel()
        try:
            await self._sweeper
        except asyncio.CancelledError:
            pass
        self._sweeper = None
