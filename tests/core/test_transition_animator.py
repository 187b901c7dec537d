# tests/core/test_transition_animator.py
"""Unit tests for the two-phase TransitionAnimator"""

import asyncio

import pytest

from stepflow.core.transition_animator import AnimationPhase, TransitionAnimator


@pytest.mark.unit
class TestTransitionAnimator:

    @pytest.mark.asyncio
    async def test_mutation_runs_between_fade_out_and_fade_in(self, manual_sleep):
        phases = []
        animator = TransitionAnimator(
            fade_out_ms=150,
            fade_in_ms=200,
            sleep=manual_sleep,
            on_phase_change=lambda phase, generation: phases.append(phase),
        )
        mutated = []

        task = asyncio.create_task(animator.transition(lambda: mutated.append(animator.phase)))
        await asyncio.sleep(0)

        assert animator.phase is AnimationPhase.EXITING
        assert animator.is_animating
        assert manual_sleep.durations == [0.15]
        assert mutated == []

        await manual_sleep.release_next()
        # Mutation ran while still exiting, then entering started
        assert mutated == [AnimationPhase.EXITING]
        assert animator.phase is AnimationPhase.ENTERING
        assert manual_sleep.durations == [0.2]

        await manual_sleep.release_next()
        assert await task is True
        assert animator.phase is AnimationPhase.IDLE
        assert phases == [AnimationPhase.EXITING, AnimationPhase.ENTERING, AnimationPhase.IDLE]

    @pytest.mark.asyncio
    async def test_last_write_wins(self, manual_sleep):
        animator = TransitionAnimator(sleep=manual_sleep)
        applied = []

        first = asyncio.create_task(animator.transition(lambda: applied.append("first")))
        await asyncio.sleep(0)
        second = asyncio.create_task(animator.transition(lambda: applied.append("second")))
        await asyncio.sleep(0)

        # Both are fading out; the older one wakes first but is superseded
        await manual_sleep.release_next()
        assert await first is False
        assert applied == []

        await manual_sleep.release_next()
        await manual_sleep.release_next()
        assert await second is True
        assert applied == ["second"]
        assert animator.phase is AnimationPhase.IDLE
        assert animator.generation == 2

    @pytest.mark.asyncio
    async def test_duration_overrides(self, manual_sleep):
        animator = TransitionAnimator(sleep=manual_sleep)
        task = asyncio.create_task(animator.transition(lambda: None, fade_out_ms=200, fade_in_ms=200))
        await asyncio.sleep(0)

        assert manual_sleep.durations == [0.2]
        await manual_sleep.release_next()
        assert manual_sleep.durations == [0.2]
        await manual_sleep.release_next()
        assert await task is True

    @pytest.mark.asyncio
    async def test_reset_drops_pending_mutation(self, manual_sleep):
        animator = TransitionAnimator(sleep=manual_sleep)
        applied = []

        task = asyncio.create_task(animator.transition(lambda: applied.append(True)))
        await asyncio.sleep(0)
        animator.reset()
        assert animator.phase is AnimationPhase.IDLE

        await manual_sleep.release_next()
        assert await task is False
        assert applied == []
