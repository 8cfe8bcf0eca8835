"""Error hierarchy for the automation engine."""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    """How the engine should react to a control-session failure."""

    TRANSIENT_CONNECTION = "transient-connection"
    FATAL = "fatal"


class StepflowError(Exception):
    """Base error for all stepflow exceptions."""

    code = "STEPFLOW_ERROR"

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class BackendUnavailable(StepflowError):
    """The browser control endpoint cannot be reached; nothing was run."""

    code = "BACKEND_UNAVAILABLE"


class AutomationNotFound(StepflowError):
    code = "NOT_FOUND"

    def __init__(self, automation_id: int):
        super().__init__(f"Automation {automation_id} not found", {"automation_id": automation_id})
        self.automation_id = automation_id


class AutomationAlreadyRunning(StepflowError):
    code = "ALREADY_RUNNING"

    def __init__(self, automation_id: int):
        super().__init__(
            f"Automation {automation_id} is already running", {"automation_id": automation_id}
        )
        self.automation_id = automation_id


class ExecutionCancelled(StepflowError):
    """A stop request was observed at a step boundary or during a wait."""

    code = "CANCELLED"


class MalformedStepValue(StepflowError):
    code = "MALFORMED_STEP_VALUE"

    def __init__(self, message: str, step_id: str | None = None):
        super().__init__(message, {"step_id": step_id})
        self.step_id = step_id


# Control session errors
class ControlError(StepflowError):
    """A control-session call failed.

    ``kind`` is decided once, where the failure leaves the client, so callers
    never inspect error text themselves.
    """

    code = "CONTROL_ERROR"

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.FATAL, details: dict | None = None):
        super().__init__(message, details)
        self.kind = kind

    @property
    def is_transient(self) -> bool:
        return self.kind is ErrorKind.TRANSIENT_CONNECTION


class TransientConnectionError(ControlError):
    """The session or frame was torn down underneath a navigation."""

    code = "TRANSIENT_CONNECTION"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message, ErrorKind.TRANSIENT_CONNECTION, details)


class NavigationError(ControlError):
    code = "NAVIGATION"

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message, ErrorKind.FATAL, {"url": url})
        self.url = url


class InteractionError(ControlError):
    """A click or type could not be performed (missing or non-interactable element)."""

    code = "INTERACTION"

    def __init__(self, message: str, selector: str | None = None):
        super().__init__(message, ErrorKind.FATAL, {"selector": selector})
        self.selector = selector
