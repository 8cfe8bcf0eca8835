import asyncio
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Optional, Protocol

from stepflow.automation.errors import (
    AutomationAlreadyRunning,
    BackendUnavailable,
    ExecutionCancelled,
)
from stepflow.automation.executor import StepExecutor
from stepflow.automation.models import AutomationJob, ExecutionStatus
from stepflow.automation.session_manager import Connector, SessionManager
from stepflow.websocket_manager import WebSocketManager

logger = logging.getLogger(__name__)


class JobStore(Protocol):
    def get_job(self, automation_id: int) -> AutomationJob: ...

    def set_status(self, automation_id: int, status: ExecutionStatus) -> None: ...

    def set_last_run(self, automation_id: int, timestamp: datetime) -> None: ...


class Supervisor(Protocol):
    async def is_available(self) -> bool: ...


@dataclass
class RunHandle:
    automation_id: int
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    task: Optional[asyncio.Task] = None


class AutomationRunner:
    """Drives automations to completion and records their status.

    At most one run per automation id is live at a time; a second start while
    one is in flight is rejected with ``AutomationAlreadyRunning``.
    """

    def __init__(
        self,
        store: JobStore,
        supervisor: Supervisor,
        connector: Connector,
        executor: Optional[StepExecutor] = None,
        events: Optional[WebSocketManager] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self._store = store
        self._supervisor = supervisor
        self._connector = connector
        self._executor = executor or StepExecutor()
        self._events = events
        self._clock = clock
        self._runs: Dict[int, RunHandle] = {}

    def is_running(self, automation_id: int) -> bool:
        return automation_id in self._runs

    async def run_automation(self, automation_id: int) -> None:
        """Run an automation in the calling task.

        Outcome is only visible through the stored status and last-run time.
        Shares the per-id table with ``start``, so it is rejected while a
        background run of the same automation is live, and ``cancel`` reaches it.
        """
        handle = self._reserve(automation_id)
        try:
            await self._preflight()
            job = await asyncio.to_thread(self._store.get_job, automation_id)
            await self._execute(job, handle.cancel_event)
        finally:
            self._release(handle)

    async def start(self, automation_id: int) -> asyncio.Task:
        """Check the backend and launch the run as a background task."""
        handle = self._reserve(automation_id)
        try:
            await self._preflight()
            job = await asyncio.to_thread(self._store.get_job, automation_id)
        except BaseException:
            self._release(handle)
            raise

        handle.task = asyncio.create_task(
            self._execute(job, handle.cancel_event), name=f"automation-{automation_id}"
        )
        handle.task.add_done_callback(lambda task: self._on_done(automation_id, task))
        return handle.task

    def cancel(self, automation_id: int) -> bool:
        """Ask a live run to stop at its next step boundary or wait.

        Returns False when nothing is running for that id.
        """
        handle = self._runs.get(automation_id)
        if handle is None:
            return False
        logger.info("Cancellation requested", extra={"automation_id": automation_id})
        handle.cancel_event.set()
        return True

    async def shutdown(self) -> None:
        handles = list(self._runs.values())
        for handle in handles:
            handle.cancel_event.set()
        tasks = [h.task for h in handles if h.task is not None]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _reserve(self, automation_id: int) -> RunHandle:
        # Must run before the first await so a racing start or run sees the slot
        if automation_id in self._runs:
            raise AutomationAlreadyRunning(automation_id)
        handle = RunHandle(automation_id)
        self._runs[automation_id] = handle
        return handle

    def _release(self, handle: RunHandle) -> None:
        if self._runs.get(handle.automation_id) is handle:
            del self._runs[handle.automation_id]

    def _on_done(self, automation_id: int, task: asyncio.Task) -> None:
        handle = self._runs.get(automation_id)
        if handle is not None and handle.task is task:
            self._release(handle)
        if not task.cancelled() and task.exception() is not None:
            logger.error(
                "Background automation failed: %s",
                task.exception(),
                extra={"automation_id": automation_id},
            )

    async def _preflight(self) -> None:
        if not await self._supervisor.is_available():
            raise BackendUnavailable("Browser control endpoint is not running")

    async def _execute(self, job: AutomationJob, cancel_event: Optional[asyncio.Event]) -> None:
        automation_id = job.id
        log_extra = {"automation_id": automation_id}

        # sqlite writes block, so they go to a worker thread
        await asyncio.to_thread(self._store.set_status, automation_id, ExecutionStatus.RUNNING)
        await asyncio.to_thread(self._store.set_last_run, automation_id, self._clock())
        await self._emit_status(automation_id, ExecutionStatus.RUNNING)

        manager = SessionManager(self._connector)
        try:
            session = await manager.acquire()
            for index, step in enumerate(job.steps):
                if cancel_event is not None and cancel_event.is_set():
                    raise ExecutionCancelled("Cancelled before step", {"step_id": step.id})

                logger.info(
                    "Executing step %d: %s", index + 1, step.type,
                    extra={**log_extra, "step_id": step.id, "step_type": step.type},
                )
                await self._emit("STEP_STARTED", {"automation_id": automation_id, "index": index, "step": step.model_dump()})
                start = time.perf_counter()
                try:
                    session = await self._executor.run(session, step, manager, cancel_event)
                except ExecutionCancelled:
                    raise
                except Exception as exc:
                    duration_ms = int((time.perf_counter() - start) * 1000)
                    await self._emit(
                        "STEP_FAILED",
                        {"automation_id": automation_id, "index": index, "duration_ms": duration_ms, "error": str(exc)},
                    )
                    raise
                duration_ms = int((time.perf_counter() - start) * 1000)
                await self._emit(
                    "STEP_COMPLETED",
                    {"automation_id": automation_id, "index": index, "duration_ms": duration_ms},
                )
            status = ExecutionStatus.STOPPED
        except ExecutionCancelled as exc:
            logger.info("Run stopped: %s", exc, extra=log_extra)
            status = ExecutionStatus.STOPPED
        except asyncio.CancelledError:
            # Already cancelled; a synchronous write cannot be interrupted again
            self._store.set_status(automation_id, ExecutionStatus.STOPPED)
            raise
        except Exception:
            logger.exception("Error running automation %s", automation_id, extra=log_extra)
            status = ExecutionStatus.ERROR
        finally:
            await manager.release()

        await asyncio.to_thread(self._store.set_status, automation_id, status)
        await self._emit_status(automation_id, status)

    async def _emit_status(self, automation_id: int, status: ExecutionStatus) -> None:
        if self._events is not None:
            await self._events.send_status(automation_id, status.value)

    async def _emit(self, event_type: str, payload: dict) -> None:
        if self._events is not None:
            await self._events.send_event(event_type, payload)
