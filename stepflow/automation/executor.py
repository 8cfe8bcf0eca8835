import asyncio
import logging
from typing import Optional

from stepflow.automation.classifier import classify
from stepflow.automation.errors import ErrorKind, ExecutionCancelled, MalformedStepValue
from stepflow.automation.models import (
    ClickStep,
    GotoStep,
    Step,
    TypeStep,
    WaitStep,
)
from stepflow.automation.session_manager import Session, SessionManager
from stepflow.config import settings

logger = logging.getLogger(__name__)


class StepExecutor:
    """Runs one step against the current session and applies the retry policy."""

    def __init__(
        self,
        navigation_timeout_ms: Optional[int] = None,
        wait_until: Optional[str] = None,
    ) -> None:
        self._timeout_ms = (
            navigation_timeout_ms if navigation_timeout_ms is not None else settings.navigation_timeout_ms
        )
        self._wait_until = wait_until or settings.navigation_wait_until

    async def run(
        self,
        session: Session,
        step: Step,
        manager: SessionManager,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Session:
        """Execute ``step`` and return the session the next step should use."""
        match step:
            case GotoStep():
                return await self._goto(session, step, manager)
            case ClickStep(selector=selector) if selector:
                logger.info("Clicking %s", selector, extra={"step_id": step.id})
                await session.click(selector)
            case TypeStep(selector=selector, value=value) if selector and value:
                logger.info("Typing into %s", selector, extra={"step_id": step.id})
                await session.type(selector, value)
            case WaitStep():
                await self._wait(step, cancel_event)
            case _:
                logger.debug("Skipping %s step %s", step.type, step.id)
        return session

    async def _goto(self, session: Session, step: GotoStep, manager: SessionManager) -> Session:
        url = step.target_url()
        if url is None:
            logger.debug("goto step %s has no target; skipping", step.id)
            return session

        logger.info("Navigating to %s", url, extra={"step_id": step.id})
        try:
            await session.navigate(url, self._timeout_ms, self._wait_until)
            return session
        except Exception as exc:
            if classify(exc, "goto") is not ErrorKind.TRANSIENT_CONNECTION:
                raise
            logger.warning(
                "Navigation to %s dropped the connection (%s); reconnecting and retrying",
                url,
                exc,
                extra={"step_id": step.id},
            )

        session = await manager.reconnect()
        try:
            await session.navigate(url, self._timeout_ms, self._wait_until)
        except Exception as exc:
            if classify(exc, "goto") is not ErrorKind.TRANSIENT_CONNECTION:
                raise
            # A second drop on the same URL is what streaming/SSE endpoints do
            logger.warning(
                "Navigation to %s dropped the connection again; treating step as completed",
                url,
                extra={"step_id": step.id},
            )
        return session

    async def _wait(self, step: WaitStep, cancel_event: Optional[asyncio.Event]) -> None:
        if not step.value:
            return
        try:
            seconds = step.duration_seconds()
        except MalformedStepValue as exc:
            logger.debug("Skipping wait: %s", exc)
            return

        logger.info("Waiting %ds", seconds, extra={"step_id": step.id})
        if cancel_event is None:
            await asyncio.sleep(seconds)
            return
        try:
            await asyncio.wait_for(cancel_event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise ExecutionCancelled("Cancelled during wait", {"step_id": step.id})
