# stepflow/core/transition_animator.py
"""
Two-phase step transition: exiting -> mutate -> entering.

The animator owns timing only. Rendering listens to phase changes; the
controller passes in the state mutation. The mutation of a transition runs
strictly after its fade-out and strictly before its fade-in, so the old step
is never shown entering and the new step is never shown exiting.

Back-to-back calls are last-write-wins: a transition superseded by a newer
one before its fade-out completes does not mutate at all.
"""

from enum import Enum
from typing import Awaitable, Callable, Optional
import asyncio
import logging

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]
PhaseListener = Callable[["AnimationPhase", int], None]


class AnimationPhase(str, Enum):
    IDLE = "idle"
    EXITING = "exiting"
    ENTERING = "entering"


class TransitionAnimator:
    """Coordinates fade/slide-out, mutation and fade/slide-in"""

    def __init__(
        self,
        fade_out_ms: int = 150,
        fade_in_ms: int = 200,
        sleep: Optional[Sleep] = None,
        on_phase_change: Optional[PhaseListener] = None,
    ):
        self.fade_out_ms = fade_out_ms
        self.fade_in_ms = fade_in_ms
        self._sleep = sleep or asyncio.sleep
        self._on_phase_change = on_phase_change
        self._phase = AnimationPhase.IDLE
        self._generation = 0

    @property
    def phase(self) -> AnimationPhase:
        return self._phase

    @property
    def is_animating(self) -> bool:
        return self._phase is not AnimationPhase.IDLE

    @property
    def generation(self) -> int:
        """Number of transitions requested so far"""
        return self._generation

    def _set_phase(self, phase: AnimationPhase, generation: int) -> None:
        self._phase = phase
        if self._on_phase_change:
            self._on_phase_change(phase, generation)

    async def transition(
        self,
        mutate: Callable[[], None],
        fade_out_ms: Optional[int] = None,
        fade_in_ms: Optional[int] = None,
    ) -> bool:
        """
        Animate out, apply mutate, animate in.

        Returns:
            True if this call's mutation was applied, False if a newer
            transition superseded it during fade-out.
        """
        self._generation += 1
        generation = self._generation
        fade_out = self.fade_out_ms if fade_out_ms is None else fade_out_ms
        fade_in = self.fade_in_ms if fade_in_ms is None else fade_in_ms

        self._set_phase(AnimationPhase.EXITING, generation)
        await self._sleep(fade_out / 1000)

        if generation != self._generation:
            logger.debug(f"Transition {generation} superseded by {self._generation}")
            return False

        mutate()

        self._set_phase(AnimationPhase.ENTERING, generation)
        await self._sleep(fade_in / 1000)

        if generation == self._generation:
            self._set_phase(AnimationPhase.IDLE, generation)
        return True

    def reset(self) -> None:
        """Drop any in-flight transition; pending mutations will not run"""
        self._generation += 1
        self._phase = AnimationPhase.IDLE
