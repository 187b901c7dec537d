# stepflow/core/flow_controller.py
"""
Flow controller - state machine over a StepOrder.

The controller owns the FlowState, the current step index and the error
slots, and is the only code that mutates them. Navigation goes through the
ValidationGate and the TransitionAnimator:

    advance()  -> gate -> animate(index + 1)  | completion on the last step
    back()     -> animate(index - 1)          | exit callback on the first step
    jump_to()  -> animate(index of step)      (no gate)

Validation failures are reported as errors on the controller, never raised.
Exceptions are reserved for programming errors (unknown step or field,
operating on a closed flow).
"""

from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Tuple, Union
import inspect
import logging

from stepflow.content.onboarding_steps import INCOMPLETE_MESSAGE, onboarding_copy
from stepflow.core.config import settings
from stepflow.core.exceptions import FlowError
from stepflow.core.step_registry import StepRegistry
from stepflow.core.transition_animator import TransitionAnimator
from stepflow.core.validation_gate import ValidationGate
from stepflow.models.flow_models import SELECT_KINDS, InputKind, StepBase
from stepflow.models.flow_state import ErrorKind, FlowState, UserFacingError
from stepflow.services.profile_service import flatten_onboarding_record

logger = logging.getLogger(__name__)

Callback = Callable[..., Union[None, Awaitable[None]]]


async def _invoke(callback: Optional[Callback], *args: Any) -> None:
    """Call a sync or async callback"""
    if callback is None:
        return
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


class FlowController:
    """
    Generic stepped-flow controller.

    Subclasses customize completion (_finish), side effects of leaving a
    step backwards (_on_leave_backward), the forward move (_advance_from)
    and teardown (_on_close).
    """

    def __init__(
        self,
        registry: StepRegistry,
        state: Optional[FlowState] = None,
        animator: Optional[TransitionAnimator] = None,
        on_complete: Optional[Callback] = None,
        on_exit: Optional[Callback] = None,
    ):
        self.registry = registry
        self.state = state if state is not None else FlowState.initial(registry)
        self.animator = animator or TransitionAnimator()
        self.on_complete = on_complete
        self.on_exit = on_exit

        self._index = 0
        self._field_errors: Dict[str, UserFacingError] = {}
        self._flow_error: Optional[UserFacingError] = None
        self._busy = False
        self._completed = False
        self._completion_fired = False
        self._closed = False

    # ------------------------------------------------------------------
    # Read side
    # ------------------------------------------------------------------

    @property
    def current_index(self) -> int:
        return self._index

    @property
    def current_step(self) -> StepBase:
        return self.registry.at(self._index)

    @property
    def field_errors(self) -> Dict[str, UserFacingError]:
        return dict(self._field_errors)

    @property
    def flow_error(self) -> Optional[UserFacingError]:
        return self._flow_error

    @property
    def current_error(self) -> Optional[UserFacingError]:
        """Error to render on the current step: its field error, else the flow error"""
        step = self.current_step
        if step.has_input and step.field_key in self._field_errors:
            return self._field_errors[step.field_key]
        return self._flow_error

    @property
    def can_advance(self) -> bool:
        return ValidationGate.can_advance(self.current_step, self.state)

    @property
    def is_completed(self) -> bool:
        return self._completed

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def is_busy(self) -> bool:
        return self._busy or self.animator.is_animating

    def progress(self) -> Dict[str, int]:
        input_steps = self.registry.input_steps()
        completed = sum(1 for step in input_steps if not self.state.is_empty(step.field_key))
        total = len(self.registry)
        return {
            "current_step": self._index + 1,
            "total_steps": total,
            "completed_steps": completed,
            "completion_percentage": round(completed / total * 100) if total else 0,
        }

    def snapshot(self) -> Dict[str, Any]:
        """JSON-friendly view for the UI boundary"""
        step = self.current_step
        current_error = self.current_error
        return {
            "flow": self.registry.name,
            "current_index": self._index,
            "current_step": step.model_dump(mode="json"),
            "values": self.state.as_dict(),
            "can_advance": self.can_advance,
            "current_error": current_error.model_dump(mode="json") if current_error else None,
            "field_errors": {k: v.model_dump(mode="json") for k, v in self._field_errors.items()},
            "flow_error": self._flow_error.model_dump(mode="json") if self._flow_error else None,
            "animation_phase": self.animator.phase.value,
            "progress": self.progress(),
            "completed": self._completed,
            "closed": self._closed,
        }

    # ------------------------------------------------------------------
    # Data changes
    # ------------------------------------------------------------------

    def _ensure_open(self) -> None:
        if self._closed:
            raise FlowError("Flow is closed", current_step=None)

    def update_field(self, key: str, value: Union[str, Iterable[str]]) -> None:
        """Replace a field's value. Clears that field's error."""
        self._ensure_open()
        kind = self.state.kinds.get(key)
        if kind is None:
            raise FlowError(f"Unknown field '{key}'", current_step=self.current_step.id)

        if kind in SELECT_KINDS:
            if isinstance(value, str):
                value = [value] if value else []
            value = list(value)
            if kind is InputKind.SINGLE_SELECT and len(set(value)) > 1:
                raise FlowError(f"Field '{key}' accepts one option", current_step=self.current_step.id)
            self._check_options(key, value)
            self.state.set_selection(key, value)
        else:
            if not isinstance(value, str):
                raise FlowError(f"Field '{key}' expects text", current_step=self.current_step.id)
            self.state.set_text(key, value)

        self._field_errors.pop(key, None)

    def select_option(self, option_id: str) -> bool:
        """
        Select an option of the current step.

        Single-select replaces the selection, multi-select toggles the id.

        Returns:
            False if the option is disabled (nothing changes)
        """
        self._ensure_open()
        step = self.current_step
        if step.kind not in SELECT_KINDS:
            raise FlowError(f"Step '{step.id}' has no options", current_step=step.id)

        option = step.option(option_id)
        if option is None:
            raise FlowError(f"Unknown option '{option_id}'", current_step=step.id)
        if option.disabled:
            logger.debug(f"Option '{option_id}' of step '{step.id}' is disabled")
            return False

        self.state.select(step.field_key, option_id)
        self._field_errors.pop(step.field_key, None)
        return True

    def _check_options(self, key: str, option_ids: Iterable[str]) -> None:
        step = next(s for s in self.registry if s.has_input and s.field_key == key)
        for option_id in option_ids:
            option = step.option(option_id)
            if option is None:
                raise FlowError(f"Unknown option '{option_id}'", current_step=self.current_step.id)
            if option.disabled:
                raise FlowError(f"Option '{option_id}' is disabled", current_step=self.current_step.id)

    def set_field_error(self, key: str, message: str, kind: ErrorKind = ErrorKind.LOCAL_VALIDATION) -> None:
        self._field_errors[key] = UserFacingError.for_field(key, message, kind=kind)

    def set_error(self, error: UserFacingError) -> None:
        if error.is_field_error:
            self._field_errors[error.field] = error
        else:
            self._flow_error = error

    def dismiss_error(self) -> None:
        self._flow_error = None

    def _clear_errors(self) -> None:
        self._field_errors.clear()
        self._flow_error = None

    # ------------------------------------------------------------------
    # Navigation
    # ------------------------------------------------------------------

    async def advance(self) -> bool:
        """
        Move forward one step, or complete the flow from the last step.

        Returns:
            True if the step changed or the flow completed
        """
        if self._closed or self._completed or self.is_busy:
            return False

        step = self.current_step
        self._busy = True
        try:
            if not ValidationGate.can_advance(step, self.state):
                self.set_field_error(step.field_key, step.error_message)
                logger.debug(f"Advance blocked on step '{step.id}'")
                return False
            return await self._advance_from(step)
        finally:
            self._busy = False

    async def _advance_from(self, step: StepBase) -> bool:
        if self.registry.is_last(self._index):
            return await self._complete()
        return await self._move_to(self._index + 1)

    async def back(self) -> bool:
        """
        Move back one step. On the first step the exit callback is invoked
        instead and the index does not change.
        """
        if self._closed or self._completed or self.is_busy:
            return False

        self._busy = True
        try:
            if self._index == 0:
                await _invoke(self.on_exit)
                return False
            leaving = self.current_step
            return await self._move_to(self._index - 1, before=lambda: self._on_leave_backward(leaving))
        finally:
            self._busy = False

    async def jump_to(self, step_id: str) -> bool:
        """Animated move to any step, without the gate"""
        self._ensure_open()
        index = self.registry.index_of(step_id)
        if index == self._index:
            return False
        return await self._move_to(index)

    async def _move_to(self, index: int, before: Optional[Callable[[], None]] = None) -> bool:
        def mutate() -> None:
            if before is not None:
                before()
            self._index = index
            self._clear_errors()

        moved = await self.animator.transition(mutate)
        if moved:
            logger.debug(f"{self.registry.name}: now on step '{self.current_step.id}'")
        return moved

    def _on_leave_backward(self, step: StepBase) -> None:
        """Hook: side effects of leaving a step towards the previous one"""

    # ------------------------------------------------------------------
    # Completion / teardown
    # ------------------------------------------------------------------

    async def _finish(self) -> Tuple[bool, Any]:
        """Hook: completion logic. Returns (ok, payload for on_complete)."""
        return True, self.state

    async def _complete(self) -> bool:
        ok, payload = await self._finish()
        if not ok or self._closed:
            return False

        self._completed = True
        logger.info(f"Flow '{self.registry.name}' completed")
        if not self._completion_fired:
            self._completion_fired = True
            await _invoke(self.on_complete, payload)
        return True

    def _on_close(self) -> None:
        """Hook: release timers and collaborators"""

    def close(self) -> None:
        """Tear the flow down. Pending transitions and late results are dropped."""
        if self._closed:
            return
        self._closed = True
        self.animator.reset()
        self._on_close()
        self.state.reset()
        self._clear_errors()
        self._index = 0
        logger.debug(f"Flow '{self.registry.name}' closed")


class OnboardingFlowController(FlowController):
    """
    Onboarding questionnaire. Completion re-checks every required step and
    reports the flattened record.
    """

    def __init__(
        self,
        registry: StepRegistry,
        state: Optional[FlowState] = None,
        animator: Optional[TransitionAnimator] = None,
        on_complete: Optional[Callback] = None,
        on_exit: Optional[Callback] = None,
    ):
        if animator is None:
            animator = TransitionAnimator(
                fade_out_ms=settings.ONBOARDING_FADE_OUT_MS,
                fade_in_ms=settings.ONBOARDING_FADE_IN_MS,
            )
        super().__init__(registry, state, animator, on_complete, on_exit)
        self.record: Optional[Dict[str, Any]] = None

    async def _finish(self) -> Tuple[bool, Any]:
        blocking = ValidationGate.first_blocking_step(self.registry, self.state)
        if blocking is not None:
            logger.info(f"Onboarding incomplete: step '{blocking.id}' unanswered")
            self._flow_error = UserFacingError.for_flow(INCOMPLETE_MESSAGE, kind=ErrorKind.LOCAL_VALIDATION)
            return False, None

        self.record = flatten_onboarding_record(self.state, self.registry)
        return True, self.state

    def snapshot(self) -> Dict[str, Any]:
        data = super().snapshot()
        data["copy"] = onboarding_copy(self._index, len(self.registry))
        return data
