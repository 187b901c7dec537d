# stepflow/core/cooldown.py
"""Resend cooldown: idle -> running(remaining=N) -> ... -> expired."""

from enum import Enum
from typing import Awaitable, Callable, Optional
import asyncio
import logging

from stepflow.models.flow_state import CooldownState

logger = logging.getLogger(__name__)

DEFAULT_COOLDOWN_SECONDS = 60


class CooldownPhase(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    EXPIRED = "expired"


class ResendCooldownTimer:
    """
    Countdown gating the resend action.

    Purely time driven: a background task ticks once per second while
    running. can_trigger is always derived from remaining_seconds.
    """

    def __init__(
        self,
        duration_seconds: int = DEFAULT_COOLDOWN_SECONDS,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
        on_tick: Optional[Callable[[CooldownState], None]] = None,
    ):
        if duration_seconds < 0:
            raise ValueError("duration_seconds must be non-negative")
        self.duration_seconds = duration_seconds
        self._sleep = sleep or asyncio.sleep
        self._on_tick = on_tick
        self._remaining = 0
        self._phase = CooldownPhase.IDLE
        self._task: Optional[asyncio.Task] = None

    @property
    def phase(self) -> CooldownPhase:
        return self._phase

    @property
    def remaining_seconds(self) -> int:
        return self._remaining

    @property
    def can_trigger(self) -> bool:
        return self._remaining == 0

    @property
    def state(self) -> CooldownState:
        return CooldownState(remaining_seconds=self._remaining)

    def start(self) -> None:
        """(Re)start at the full duration"""
        self._stop_task()
        self._remaining = self.duration_seconds
        self._phase = CooldownPhase.RUNNING if self._remaining > 0 else CooldownPhase.EXPIRED
        logger.debug(f"Cooldown started at {self._remaining}s")
        self._notify()

        if self._phase is CooldownPhase.RUNNING:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                # No loop: ticks are driven manually via tick()
                return
            self._task = loop.create_task(self._run())

    def tick(self) -> None:
        """Advance the countdown by one elapsed second"""
        if self._phase is not CooldownPhase.RUNNING:
            return
        self._remaining = max(0, self._remaining - 1)
        if self._remaining == 0:
            self._phase = CooldownPhase.EXPIRED
            logger.debug("Cooldown expired, resend available")
        self._notify()

    def cancel(self) -> None:
        """Stop ticking and return to idle (teardown)"""
        self._stop_task()
        self._remaining = 0
        self._phase = CooldownPhase.IDLE

    async def _run(self) -> None:
        while self._phase is CooldownPhase.RUNNING:
            await self._sleep(1)
            self.tick()

    def _stop_task(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done() and task is not _current_task():
            task.cancel()

    def _notify(self) -> None:
        if self._on_tick:
            self._on_tick(self.state)


def _current_task() -> Optional[asyncio.Task]:
    try:
        return asyncio.current_task()
    except RuntimeError:
        return None
