# stepflow/models/flow_state.py

from enum import Enum
from typing import Dict, FrozenSet, Iterable, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator

from stepflow.models.flow_models import InputKind, SELECT_KINDS, StepBase

FieldValue = Union[FrozenSet[str], str]


class ErrorScope(str, Enum):
    FIELD = "field"
    FLOW = "flow"


class ErrorKind(str, Enum):
    LOCAL_VALIDATION = "local_validation"
    FORMAT = "format"
    PROVIDER = "provider"
    ACCOUNT_CONFLICT = "account_conflict"
    ACCOUNT_NOT_FOUND = "account_not_found"


class UserFacingError(BaseModel):
    """
    An error shown to the user, scoped either to one input or to the whole flow.

    Field errors render next to the offending input and clear when that
    field changes; flow errors render globally and are dismissible.
    """
    model_config = ConfigDict(frozen=True)

    scope: ErrorScope
    message: str
    kind: ErrorKind
    field: Optional[str] = None
    continue_anyway: bool = False
    status_code: Optional[int] = None
    code: Optional[str] = None

    @model_validator(mode="after")
    def _field_matches_scope(self):
        if self.scope is ErrorScope.FIELD and not self.field:
            raise ValueError("field errors must name a field")
        if self.scope is ErrorScope.FLOW and self.field:
            raise ValueError("flow errors cannot name a field")
        return self

    @classmethod
    def for_field(cls, field: str, message: str, kind: ErrorKind = ErrorKind.LOCAL_VALIDATION, **extra) -> "UserFacingError":
        return cls(scope=ErrorScope.FIELD, field=field, message=message, kind=kind, **extra)

    @classmethod
    def for_flow(cls, message: str, kind: ErrorKind = ErrorKind.PROVIDER, **extra) -> "UserFacingError":
        return cls(scope=ErrorScope.FLOW, message=message, kind=kind, **extra)

    @property
    def is_field_error(self) -> bool:
        return self.scope is ErrorScope.FIELD


class CooldownState(BaseModel):
    model_config = ConfigDict(frozen=True)

    remaining_seconds: int = Field(default=0, ge=0)

    @computed_field
    @property
    def can_trigger(self) -> bool:
        return self.remaining_seconds == 0


class FlowState(BaseModel):
    """
    Accumulated answers of one flow run.

    Every field the flow collects is present from creation with an explicit
    empty value, so "required but unanswered" is always checkable. Only the
    owning controller mutates it.
    """
    values: Dict[str, FieldValue] = Field(default_factory=dict)
    kinds: Dict[str, InputKind] = Field(default_factory=dict)

    @classmethod
    def initial(cls, steps: Iterable[StepBase], **kwargs) -> "FlowState":
        state = cls(**kwargs)
        for step in steps:
            if step.has_input:
                state.declare(step.field_key, step.kind)
        return state

    def declare(self, key: str, kind: InputKind) -> None:
        self.kinds[key] = kind
        self.values[key] = frozenset() if kind in SELECT_KINDS else ""

    def _kind(self, key: str) -> InputKind:
        if key not in self.kinds:
            raise KeyError(f"Unknown field: {key}")
        return self.kinds[key]

    def get(self, key: str) -> FieldValue:
        self._kind(key)
        return self.values[key]

    def text(self, key: str) -> str:
        value = self.get(key)
        if not isinstance(value, str):
            raise TypeError(f"Field {key} holds a selection, not text")
        return value

    def selection(self, key: str) -> FrozenSet[str]:
        value = self.get(key)
        if isinstance(value, str):
            raise TypeError(f"Field {key} holds text, not a selection")
        return value

    def set_text(self, key: str, value: str) -> None:
        if self._kind(key) in SELECT_KINDS:
            raise TypeError(f"Field {key} is a selection field")
        self.values[key] = value

    def set_selection(self, key: str, option_ids: Iterable[str]) -> None:
        kind = self._kind(key)
        if kind not in SELECT_KINDS:
            raise TypeError(f"Field {key} is a text field")
        selection = frozenset(option_ids)
        if kind is InputKind.SINGLE_SELECT and len(selection) > 1:
            raise ValueError(f"Field {key} accepts at most one option")
        self.values[key] = selection

    def select(self, key: str, option_id: str) -> None:
        """Single-select replaces, multi-select toggles"""
        if self._kind(key) is InputKind.SINGLE_SELECT:
            self.set_selection(key, [option_id])
            return
        current = self.selection(key)
        if option_id in current:
            self.set_selection(key, current - {option_id})
        else:
            self.set_selection(key, current | {option_id})

    def clear(self, key: str) -> None:
        self.declare(key, self._kind(key))

    def is_empty(self, key: str) -> bool:
        value = self.get(key)
        if isinstance(value, str):
            return not value.strip()
        return len(value) == 0

    def reset(self) -> None:
        for key in list(self.kinds):
            self.clear(key)

    def as_dict(self) -> Dict[str, Union[list, str]]:
        """JSON-friendly view (selections as sorted lists)"""
        return {
            key: sorted(value) if not isinstance(value, str) else value
            for key, value in self.values.items()
        }


class AuthFlowState(FlowState):
    """FlowState of the sign-up / login flow with typed accessors"""
    code_sent_to: Optional[str] = None

    @classmethod
    def initial(cls, steps: Iterable[StepBase], **kwargs) -> "AuthFlowState":
        state = super().initial(steps, **kwargs)
        if "full_name" not in state.kinds:
            state.declare("full_name", InputKind.FREE_TEXT)
        return state

    @property
    def email(self) -> str:
        return self.text("email")

    @property
    def verification_code(self) -> str:
        return self.text("verification_code")

    @property
    def full_name(self) -> str:
        return self.text("full_name")

    def reset(self) -> None:
        super().reset()
        self.code_sent_to = None
