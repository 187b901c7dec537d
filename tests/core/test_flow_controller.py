# tests/core/test_flow_controller.py
"""Unit tests for FlowController and OnboardingFlowController"""

import asyncio

import pytest
from unittest.mock import AsyncMock, Mock

from stepflow.content.onboarding_steps import INCOMPLETE_MESSAGE, build_onboarding_registry
from stepflow.core.exceptions import FlowError
from stepflow.core.flow_controller import FlowController, OnboardingFlowController
from stepflow.core.transition_animator import AnimationPhase, TransitionAnimator
from stepflow.models.flow_state import ErrorScope, UserFacingError


@pytest.fixture
def controller(scenario_registry, fast_animator):
    return FlowController(scenario_registry, animator=fast_animator)


@pytest.mark.unit
class TestScenario:
    """gender (single-select) -> vision (free-text)"""

    @pytest.mark.asyncio
    async def test_advance_without_selection_sets_field_error(self, controller):
        moved = await controller.advance()

        assert moved is False
        assert controller.current_index == 0
        error = controller.current_error
        assert error.scope is ErrorScope.FIELD
        assert error.field == "gender"
        assert error.message == "Please select an option"

    @pytest.mark.asyncio
    async def test_selecting_then_advancing_moves_to_vision(self, controller):
        await controller.advance()
        assert controller.select_option("female")
        assert controller.field_errors == {}

        assert await controller.advance() is True
        assert controller.current_step.id == "vision"
        assert controller.current_error is None

    @pytest.mark.asyncio
    async def test_gate_also_applies_on_last_step(self, controller):
        on_complete = Mock()
        controller.on_complete = on_complete
        controller.select_option("female")
        await controller.advance()

        assert await controller.advance() is False
        assert controller.field_errors["vision"].message == "This field is required"
        on_complete.assert_not_called()

        controller.update_field("vision", "Run a marathon")
        assert await controller.advance() is True
        assert controller.is_completed
        on_complete.assert_called_once_with(controller.state)


@pytest.mark.unit
class TestNavigation:

    @pytest.mark.asyncio
    async def test_advance_visits_every_step_then_completes(self, three_step_registry, fast_animator):
        on_complete = AsyncMock()
        controller = FlowController(three_step_registry, animator=fast_animator, on_complete=on_complete)
        controller.select_option("a")

        visited = [controller.current_step.id]
        for _ in range(len(three_step_registry) - 1):
            if controller.current_step.id == "goals":
                controller.select_option("x")
            assert await controller.advance()
            visited.append(controller.current_step.id)

        assert visited == list(three_step_registry.order)
        assert not controller.is_completed

        assert await controller.advance()
        assert controller.is_completed
        on_complete.assert_awaited_once()

        # Completion fires exactly once
        assert await controller.advance() is False
        on_complete.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_back_on_first_step_invokes_exit_once_per_call(self, scenario_registry, fast_animator):
        on_exit = Mock()
        controller = FlowController(scenario_registry, animator=fast_animator, on_exit=on_exit)

        assert await controller.back() is False
        assert await controller.back() is False

        assert controller.current_index == 0
        assert on_exit.call_count == 2

    @pytest.mark.asyncio
    async def test_back_moves_to_previous_step(self, controller):
        controller.select_option("female")
        await controller.advance()

        assert await controller.back() is True
        assert controller.current_step.id == "gender"
        # Answers are kept when going back
        assert controller.state.selection("gender") == frozenset({"female"})

    @pytest.mark.asyncio
    async def test_jump_to_current_step_is_a_noop(self, controller):
        controller.select_option("female")
        before = controller.state.model_copy(deep=True)

        assert await controller.jump_to("gender") is False
        assert controller.current_index == 0
        assert controller.state == before

    @pytest.mark.asyncio
    async def test_jump_skips_the_gate(self, controller):
        assert await controller.jump_to("vision") is True
        assert controller.current_step.id == "vision"

    @pytest.mark.asyncio
    async def test_jump_to_unknown_step_raises(self, controller):
        with pytest.raises(FlowError):
            await controller.jump_to("nowhere")

    @pytest.mark.asyncio
    async def test_step_change_clears_errors(self, controller):
        await controller.advance()
        controller.set_field_error("vision", "stale")
        controller.select_option("male")

        await controller.advance()

        assert controller.field_errors == {}
        assert controller.flow_error is None


@pytest.mark.unit
class TestReentrancy:

    @pytest.mark.asyncio
    async def test_advance_rejected_while_transition_in_flight(self, scenario_registry, manual_sleep):
        animator = TransitionAnimator(sleep=manual_sleep)
        controller = FlowController(scenario_registry, animator=animator)
        controller.select_option("female")

        first = asyncio.create_task(controller.advance())
        await asyncio.sleep(0)
        assert controller.is_busy
        assert animator.phase is AnimationPhase.EXITING

        assert await controller.advance() is False
        assert await controller.back() is False

        await manual_sleep.release_next()
        await manual_sleep.release_next()
        assert await first is True
        assert controller.current_step.id == "vision"
        assert not controller.is_busy


@pytest.mark.unit
class TestDataChanges:

    def test_single_select_replaces(self, controller):
        controller.select_option("female")
        controller.select_option("male")
        assert controller.state.selection("gender") == frozenset({"male"})

    def test_disabled_option_is_rejected(self, controller):
        assert controller.select_option("other") is False
        assert controller.state.is_empty("gender")

    def test_unknown_option_raises(self, controller):
        with pytest.raises(FlowError):
            controller.select_option("robot")

    @pytest.mark.asyncio
    async def test_multi_select_toggles(self, three_step_registry, fast_animator):
        controller = FlowController(three_step_registry, animator=fast_animator)
        await controller.jump_to("goals")

        controller.select_option("x")
        controller.select_option("y")
        controller.select_option("x")

        assert controller.state.selection("goals") == frozenset({"y"})

    @pytest.mark.asyncio
    async def test_update_field_clears_only_that_fields_error(self, controller):
        await controller.advance()
        controller.set_field_error("vision", "Required")

        controller.update_field("gender", "female")

        assert "gender" not in controller.field_errors
        assert "vision" in controller.field_errors

    def test_update_field_rejects_disabled_option(self, controller):
        with pytest.raises(FlowError):
            controller.update_field("gender", ["other"])

    def test_update_field_rejects_two_ids_for_single_select(self, controller):
        controller.update_field("gender", ["female"])

        with pytest.raises(FlowError):
            controller.update_field("gender", ["female", "male"])
        assert controller.state.selection("gender") == frozenset({"female"})

    def test_update_field_rejects_unknown_field(self, controller):
        with pytest.raises(FlowError):
            controller.update_field("age", "42")

    def test_dismiss_error_clears_flow_error(self, controller):
        controller.set_error(UserFacingError.for_flow("Something went wrong"))
        assert controller.current_error.message == "Something went wrong"

        controller.dismiss_error()
        assert controller.flow_error is None

    def test_progress(self, three_step_registry, fast_animator):
        controller = FlowController(three_step_registry, animator=fast_animator)
        controller.select_option("a")

        progress = controller.progress()

        assert progress == {
            "current_step": 1,
            "total_steps": 3,
            "completed_steps": 1,
            "completion_percentage": 33,
        }


@pytest.mark.unit
class TestClose:

    @pytest.mark.asyncio
    async def test_close_resets_and_blocks_further_use(self, controller):
        controller.select_option("female")
        await controller.advance()

        controller.close()

        assert controller.is_closed
        assert controller.current_index == 0
        assert controller.state.is_empty("gender")
        assert await controller.advance() is False
        with pytest.raises(FlowError):
            controller.update_field("vision", "x")

    @pytest.mark.asyncio
    async def test_close_during_transition_drops_mutation(self, scenario_registry, manual_sleep):
        controller = FlowController(scenario_registry, animator=TransitionAnimator(sleep=manual_sleep))
        controller.select_option("female")

        pending = asyncio.create_task(controller.advance())
        await asyncio.sleep(0)
        controller.close()
        await manual_sleep.release_next()

        assert await pending is False
        assert controller.current_index == 0


@pytest.mark.unit
class TestOnboardingCompletion:

    @pytest.fixture
    def onboarding(self, fast_animator):
        return OnboardingFlowController(build_onboarding_registry(), animator=fast_animator)

    @pytest.mark.asyncio
    async def test_skipped_required_step_blocks_completion(self, onboarding):
        await onboarding.jump_to("workout_frequency")
        onboarding.select_option("2-3_times")

        assert await onboarding.advance() is False
        assert not onboarding.is_completed
        assert onboarding.flow_error.message == INCOMPLETE_MESSAGE
        assert onboarding.record is None

    @pytest.mark.asyncio
    async def test_completion_builds_flattened_record(self, onboarding):
        received = []
        onboarding.on_complete = received.append

        onboarding.select_option("beginner")
        await onboarding.advance()
        onboarding.select_option("weight_loss")
        onboarding.select_option("endurance")
        await onboarding.advance()
        onboarding.select_option("4-5_times")

        assert await onboarding.advance() is True
        assert onboarding.is_completed
        assert received == [onboarding.state]
        assert onboarding.record == {
            "fitness_level": "beginner",
            "goals": frozenset({"weight_loss", "endurance"}),
            "workout_frequency": "4-5_times",
        }

    @pytest.mark.asyncio
    async def test_snapshot_copy_follows_position(self, onboarding):
        assert onboarding.snapshot()["copy"] == {
            "progress": "Step 1 of 3",
            "primary_button": "Continue",
            "back_button": "Back",
        }

        await onboarding.jump_to("workout_frequency")

        copy = onboarding.snapshot()["copy"]
        assert copy["progress"] == "Step 3 of 3"
        assert copy["primary_button"] == "Complete Setup"
