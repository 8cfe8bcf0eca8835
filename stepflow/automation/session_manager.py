import logging
from typing import Optional, Protocol


logger = logging.getLogger(__name__)


class Session(Protocol):
    async def navigate(self, url: str, timeout_ms: int, wait_until: str) -> None: ...

    async def click(self, selector: str) -> None: ...

    async def type(self, selector: str, text: str) -> None: ...

    async def close(self) -> None: ...


class Connector(Protocol):
    async def connect(self) -> Session: ...


class SessionManager:
    """Owns the one live control session of a single execution."""

    def __init__(self, connector: Connector) -> None:
        self._connector = connector
        self._session: Optional[Session] = None
        self.reconnects = 0

    @property
    def current(self) -> Optional[Session]:
        return self._session

    async def acquire(self) -> Session:
        if self._session is None:
            self._session = await self._connector.connect()
        return self._session

    async def reconnect(self) -> Session:
        self.reconnects += 1
        logger.info("Reconnecting control session (reconnect #%d)", self.reconnects)
        await self.release()
        self._session = await self._connector.connect()
        return self._session

    async def release(self) -> None:
        """Tear the current session down; failures here are logged, never raised."""
        session, self._session = self._session, None
        if session is None:
            return
        try:
            await session.close()
        except Exception as exc:
            logger.debug("Ignoring session teardown failure: %s", exc)
