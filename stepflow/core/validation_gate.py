# stepflow/core/validation_gate.py
"""
Validation gate - decides whether a step's required input is satisfied.

Pure functions of (step, state): no UI, no network, no mutation.
"""

from typing import Iterable, Optional

from stepflow.models.flow_models import InputKind, StepBase
from stepflow.models.flow_state import FlowState


class ValidationGate:
    """Per-step advance predicate"""

    @staticmethod
    def can_advance(step: StepBase, state: FlowState) -> bool:
        if not step.required or not step.has_input:
            return True

        if step.kind is InputKind.MULTI_SELECT:
            return len(state.selection(step.field_key)) > 0

        # single-select, free-text and long-text: non-empty after trimming
        return not state.is_empty(step.field_key)

    @classmethod
    def first_blocking_step(cls, steps: Iterable[StepBase], state: FlowState) -> Optional[StepBase]:
        """First step whose gate fails, or None when every step passes"""
        for step in steps:
            if not cls.can_advance(step, state):
                return step
        return None

