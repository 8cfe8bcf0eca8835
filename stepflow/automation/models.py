import re
from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Discriminator, Field, Tag, field_validator

from stepflow.automation.errors import MalformedStepValue

STEP_TYPES = ("goto", "click", "type", "wait")

# goto targets written in the selector field must carry their scheme
_ABSOLUTE_URL = re.compile(r"^https?://\S+$", re.IGNORECASE)
_LEADING_INT = re.compile(r"^\s*(\d+)")

NO_URL_PLACEHOLDER = "none"


class ExecutionStatus(str, Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    ERROR = "error"


class _StepBase(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    selector: Optional[str] = None
    value: Optional[str] = None

    @field_validator("id", mode="before")
    @classmethod
    def _coerce_id(cls, value: Any) -> Any:
        if isinstance(value, int):
            return str(value)
        return value


class GotoStep(_StepBase):
    type: Literal["goto"] = "goto"

    def target_url(self) -> Optional[str]:
        """URL to open, or None when the step has nothing to navigate to.

        The selector wins when it holds an absolute URL; otherwise the value is used.
        """
        if self.selector and _ABSOLUTE_URL.match(self.selector.strip()):
            url = self.selector.strip()
        else:
            url = (self.value or "").strip()
        if not url or url == NO_URL_PLACEHOLDER:
            return None
        return url


class ClickStep(_StepBase):
    type: Literal["click"] = "click"


class TypeStep(_StepBase):
    type: Literal["type"] = "type"


class WaitStep(_StepBase):
    type: Literal["wait"] = "wait"

    def duration_seconds(self) -> int:
        # Leading digits count, so "3s" waits three seconds
        match = _LEADING_INT.match(self.value or "")
        if not match:
            raise MalformedStepValue(
                f"wait duration {self.value!r} is not a whole number of seconds",
                step_id=self.id,
            )
        return int(match.group(1))


class UnsupportedStep(_StepBase):
    """A stored step whose type this engine does not know; executed as a no-op."""

    type: str


def _step_tag(raw: Any) -> str:
    kind = raw.get("type") if isinstance(raw, dict) else getattr(raw, "type", None)
    return kind if kind in STEP_TYPES else "unsupported"


KnownStep = Annotated[
    Union[GotoStep, ClickStep, TypeStep, WaitStep],
    Field(discriminator="type"),
]

Step = Annotated[
    Union[
        Annotated[GotoStep, Tag("goto")],
        Annotated[ClickStep, Tag("click")],
        Annotated[TypeStep, Tag("type")],
        Annotated[WaitStep, Tag("wait")],
        Annotated[UnsupportedStep, Tag("unsupported")],
    ],
    Discriminator(_step_tag),
]


class AutomationJob(BaseModel):
    """Snapshot of an automation handed to the execution engine."""

    model_config = ConfigDict(frozen=True)

    id: int
    steps: tuple[Step, ...] = ()


class Automation(BaseModel):
    id: int
    name: str
    url: str
    schedule: Optional[str] = None
    steps: list[Step] = Field(default_factory=list)
    status: ExecutionStatus = ExecutionStatus.STOPPED
    last_run: Optional[datetime] = None
    created_at: Optional[datetime] = None

    def to_job(self) -> AutomationJob:
        return AutomationJob(id=self.id, steps=tuple(self.steps))


class AutomationCreate(BaseModel):
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1)
    schedule: Optional[str] = None
    steps: list[KnownStep]


class AutomationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    url: Optional[str] = Field(None, min_length=1)
    schedule: Optional[str] = None
    steps: Optional[list[KnownStep]] = None

    @field_validator("name", "url", "steps")
    @classmethod
    def _not_null(cls, value: Any) -> Any:
        # Omit a field to leave it unchanged; null would clear a required column
        if value is None:
            raise ValueError("may be omitted but not null")
        return value


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str
    browser: Literal["running", "stopped", "error"]
