# stepflow/models/flow_models.py

from enum import Enum
from typing import Annotated, Any, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class InputKind(str, Enum):
    SINGLE_SELECT = "single-select"
    MULTI_SELECT = "multi-select"
    FREE_TEXT = "free-text"
    LONG_TEXT = "long-text"
    INFO = "info"  # no input, e.g. the auth welcome screen


class FlowMode(str, Enum):
    SIGNUP = "signup"
    LOGIN = "login"


class AuthStep(str, Enum):
    WELCOME = "welcome"
    EMAIL = "email"
    VERIFICATION = "verification"


class StepOption(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    label: str
    description: Optional[str] = None
    disabled: bool = False


class StepBase(BaseModel):
    """Metadata shared by every step variant"""
    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    title: str = ""
    description: str = ""
    required: bool = True
    field_key: Optional[str] = None  # defaults to id
    size_hint: str = "90%"  # presentation snap point
    show_back_button: bool = True
    error_message: str = "This field is required"

    @model_validator(mode="before")
    @classmethod
    def _default_field_key(cls, data: Any) -> Any:
        if isinstance(data, dict) and not data.get("field_key"):
            data = {**data, "field_key": data.get("id")}
        return data

    @property
    def has_input(self) -> bool:
        return True


class _SelectStep(StepBase):
    options: List[StepOption]

    @field_validator("options")
    @classmethod
    def _options_not_empty_and_unique(cls, options: List[StepOption]) -> List[StepOption]:
        if not options:
            raise ValueError("select steps need at least one option")
        ids = [option.id for option in options]
        if len(ids) != len(set(ids)):
            raise ValueError(f"duplicate option ids: {ids}")
        return options

    def option(self, option_id: str) -> Optional[StepOption]:
        for option in self.options:
            if option.id == option_id:
                return option
        return None


class SingleSelectStep(_SelectStep):
    kind: Literal[InputKind.SINGLE_SELECT] = InputKind.SINGLE_SELECT
    error_message: str = "Please select an option"


class MultiSelectStep(_SelectStep):
    kind: Literal[InputKind.MULTI_SELECT] = InputKind.MULTI_SELECT
    error_message: str = "Please select at least one option"


class FreeTextStep(StepBase):
    kind: Literal[InputKind.FREE_TEXT] = InputKind.FREE_TEXT
    placeholder: str = ""


class LongTextStep(StepBase):
    kind: Literal[InputKind.LONG_TEXT] = InputKind.LONG_TEXT
    placeholder: str = ""


class InfoStep(StepBase):
    kind: Literal[InputKind.INFO] = InputKind.INFO
    required: Literal[False] = False

    @property
    def has_input(self) -> bool:
        return False


Step = Annotated[
    Union[SingleSelectStep, MultiSelectStep, FreeTextStep, LongTextStep, InfoStep],
    Field(discriminator="kind"),
]

SELECT_KINDS = (InputKind.SINGLE_SELECT, InputKind.MULTI_SELECT)
