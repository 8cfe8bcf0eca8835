"""Pytest configuration and shared fakes for the automation engine."""

import threading
from datetime import datetime

import pytest

from stepflow.automation.errors import AutomationNotFound
from stepflow.automation.models import AutomationJob, ExecutionStatus


class FakeSession:
    """Control session that records calls into its connector's shared log."""

    def __init__(self, connector: "FakeConnector", number: int) -> None:
        self._connector = connector
        self.number = number
        self.closed = False

    async def navigate(self, url: str, timeout_ms: int, wait_until: str) -> None:
        self._connector.calls.append(("navigate", url, self.number))
        self._connector.last_navigation = (timeout_ms, wait_until)
        if self._connector.navigate_failures:
            failure = self._connector.navigate_failures.pop(0)
            if failure is not None:
                raise failure

    async def click(self, selector: str) -> None:
        self._connector.calls.append(("click", selector, self.number))
        failure = self._connector.click_failures.get(selector)
        if failure is not None:
            raise failure

    async def type(self, selector: str, text: str) -> None:
        self._connector.calls.append(("type", selector, text, self.number))

    async def close(self) -> None:
        self.closed = True
        self._connector.calls.append(("close", self.number))
        if self._connector.close_failure is not None:
            raise self._connector.close_failure


class FakeConnector:
    def __init__(self, navigate_failures=None, click_failures=None, close_failure=None, connect_failure=None):
        self.navigate_failures = list(navigate_failures or [])
        self.click_failures = dict(click_failures or {})
        self.close_failure = close_failure
        self.connect_failure = connect_failure
        self.calls = []
        self.sessions = []
        self.last_navigation = None
        self.closed = False

    @property
    def connect_count(self) -> int:
        return len(self.sessions)

    def actions(self):
        return [call for call in self.calls if call[0] != "close"]

    async def connect(self) -> FakeSession:
        if self.connect_failure is not None:
            raise self.connect_failure
        session = FakeSession(self, len(self.sessions) + 1)
        self.sessions.append(session)
        return session

    async def aclose(self) -> None:
        self.closed = True


class FakeStore:
    def __init__(self, jobs=None) -> None:
        self.jobs = {job.id: job for job in (jobs or [])}
        self.status = {}
        self.last_run = {}
        self.writes = []
        self.write_threads = []

    def get_job(self, automation_id: int) -> AutomationJob:
        if automation_id not in self.jobs:
            raise AutomationNotFound(automation_id)
        return self.jobs[automation_id]

    def set_status(self, automation_id: int, status: ExecutionStatus) -> None:
        self.write_threads.append(threading.get_ident())
        self.status[automation_id] = status
        self.writes.append(("status", automation_id, status))

    def set_last_run(self, automation_id: int, timestamp: datetime) -> None:
        self.write_threads.append(threading.get_ident())
        self.last_run[automation_id] = timestamp
        self.writes.append(("last_run", automation_id, timestamp))

    def statuses(self, automation_id: int):
        return [w[2] for w in self.writes if w[0] == "status" and w[1] == automation_id]


class FakeSupervisor:
    def __init__(self, available: bool = True) -> None:
        self.available = available
        self.probes = 0

    async def is_available(self) -> bool:
        self.probes += 1
        return self.available

    async def status(self) -> str:
        return "running" if self.available else "stopped"


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def supervisor():
    return FakeSupervisor()
