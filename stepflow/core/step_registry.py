# stepflow/core/step_registry.py
"""
Step registry - static, ordered mapping from step id to step metadata.

The registry fixes the StepOrder of a flow at construction time. Invalid
configurations (no steps, duplicate step ids, two steps writing the same
field) raise ConfigurationError instead of surfacing later as a missing key.
"""

from typing import Dict, Iterator, List, Sequence, Tuple
import logging

from stepflow.core.exceptions import ConfigurationError, FlowError
from stepflow.models.flow_models import StepBase

logger = logging.getLogger(__name__)

StepOrder = Tuple[str, ...]


class StepRegistry:
    """Ordered, immutable collection of steps"""

    def __init__(self, steps: Sequence[StepBase], name: str = "flow"):
        if not steps:
            raise ConfigurationError("A flow needs at least one step", component=name)

        ids = [step.id for step in steps]
        duplicates = sorted({step_id for step_id in ids if ids.count(step_id) > 1})
        if duplicates:
            raise ConfigurationError(
                f"Duplicate step ids: {duplicates}",
                component=name,
            )

        field_keys = [step.field_key for step in steps if step.has_input]
        shared = sorted({key for key in field_keys if field_keys.count(key) > 1})
        if shared:
            raise ConfigurationError(
                f"Several steps write the same field: {shared}",
                component=name,
            )

        self.name = name
        self._steps: Tuple[StepBase, ...] = tuple(steps)
        self._index: Dict[str, int] = {step.id: i for i, step in enumerate(self._steps)}

        logger.debug(f"StepRegistry '{name}' built with order {self.order}")

    @property
    def order(self) -> StepOrder:
        return tuple(step.id for step in self._steps)

    @property
    def steps(self) -> Tuple[StepBase, ...]:
        return self._steps

    def __len__(self) -> int:
        return len(self._steps)

    def __iter__(self) -> Iterator[StepBase]:
        return iter(self._steps)

    def __contains__(self, step_id: object) -> bool:
        return step_id in self._index

    def at(self, index: int) -> StepBase:
        if not 0 <= index < len(self._steps):
            raise FlowError(f"Step index {index} out of range for '{self.name}'")
        return self._steps[index]

    def get(self, step_id: str) -> StepBase:
        return self._steps[self.index_of(step_id)]

    def index_of(self, step_id: str) -> int:
        try:
            return self._index[step_id]
        except KeyError:
            raise FlowError(
                f"Unknown step '{step_id}'. Valid steps: {list(self.order)}"
            ) from None

    def is_last(self, index: int) -> bool:
        return index == len(self._steps) - 1

    def input_steps(self) -> List[StepBase]:
        return [step for step in self._steps if step.has_input]

