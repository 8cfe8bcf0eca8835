import logging
from typing import Optional

import httpx

from stepflow.config import settings

logger = logging.getLogger(__name__)


class BrowserSupervisor:
    """Answers whether the browser control endpoint is up.

    It does not start or stop the browser process; it only asks the running
    one for ``/json/version``.
    """

    def __init__(
        self,
        probe_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._probe_url = (probe_url or settings.probe_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.probe_timeout_s
        self._transport = transport

    async def is_available(self) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.get(f"{self._probe_url}/json/version")
        except httpx.HTTPError as exc:
            logger.debug("Control endpoint probe failed: %s", exc)
            return False
        return response.status_code == 200

    async def status(self) -> str:
        return "running" if await self.is_available() else "stopped"
