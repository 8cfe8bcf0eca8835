from typing import Optional

from stepflow.automation.errors import (
    ControlError,
    ErrorKind,
    InteractionError,
    NavigationError,
    TransientConnectionError,
)

# Symptoms of the remote browser dropping the connection or frame under us.
# Compared with whitespace removed so "LifecycleWatcher disposed" and
# "lifecycle watcher disposed" both match.
TRANSIENT_SIGNATURES = (
    "frame was detached",
    "lifecycle watcher disposed",
    "connection closed",
)

_NORMALIZED_SIGNATURES = tuple(sig.replace(" ", "") for sig in TRANSIENT_SIGNATURES)


def _normalize(message: str) -> str:
    return "".join(message.split()).lower()


def classify(exc: BaseException, action: str = "goto") -> ErrorKind:
    """Label a control-session failure.

    Only navigation failures can be transient; click, type and wait failures
    are always fatal.
    """
    if isinstance(exc, ControlError):
        return exc.kind
    if action != "goto":
        return ErrorKind.FATAL
    message = _normalize(str(exc))
    if any(sig in message for sig in _NORMALIZED_SIGNATURES):
        return ErrorKind.TRANSIENT_CONNECTION
    return ErrorKind.FATAL


def to_control_error(
    exc: BaseException,
    action: str,
    url: Optional[str] = None,
    selector: Optional[str] = None,
) -> ControlError:
    """Wrap a raw driver exception in the engine's structured error type."""
    if isinstance(exc, ControlError):
        return exc
    message = str(exc) or exc.__class__.__name__
    if action == "goto":
        if classify(exc, action) is ErrorKind.TRANSIENT_CONNECTION:
            return TransientConnectionError(message, {"url": url})
        return NavigationError(message, url=url)
    return InteractionError(message, selector=selector)
