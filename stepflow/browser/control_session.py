import asyncio
import logging
from typing import Optional

from playwright.async_api import Browser, Page, Playwright, async_playwright

from stepflow.automation.classifier import to_control_error
from stepflow.automation.errors import ControlError
from stepflow.config import settings

logger = logging.getLogger(__name__)


class ControlSession:
    """One CDP connection to the control endpoint plus the single page it drives.

    Every driver failure leaves this class as a ``ControlError`` whose ``kind``
    is already decided.
    """

    def __init__(self, browser: Browser, page: Page) -> None:
        self._browser = browser
        self._page = page

    @property
    def page(self) -> Page:
        return self._page

    def is_connected(self) -> bool:
        return self._browser.is_connected()

    async def navigate(self, url: str, timeout_ms: int, wait_until: str) -> None:
        try:
            await self._page.goto(url, timeout=timeout_ms, wait_until=wait_until)
        except Exception as exc:
            raise to_control_error(exc, "goto", url=url) from exc

    async def click(self, selector: str) -> None:
        try:
            await self._page.click(selector)
        except Exception as exc:
            raise to_control_error(exc, "click", selector=selector) from exc

    async def type(self, selector: str, text: str) -> None:
        try:
            await self._page.locator(selector).press_sequentially(text)
        except Exception as exc:
            raise to_control_error(exc, "type", selector=selector) from exc

    async def close(self) -> None:
        """Close the page and disconnect. Never raises."""
        try:
            await self._page.close()
        except Exception as exc:
            logger.debug("Ignoring page close failure: %s", exc)
        try:
            await self._browser.close()
        except Exception as exc:
            logger.debug("Ignoring disconnect failure: %s", exc)


class CdpConnector:
    """Opens ``ControlSession`` objects against a CDP WebSocket endpoint.

    A single Playwright driver is started lazily and shared by every session.
    """

    def __init__(self, endpoint: Optional[str] = None, timeout_ms: Optional[int] = None) -> None:
        self._endpoint = endpoint or settings.control_endpoint
        self._timeout_ms = timeout_ms if timeout_ms is not None else settings.navigation_timeout_ms
        self._playwright: Optional[Playwright] = None
        self._lock = asyncio.Lock()

    @property
    def endpoint(self) -> str:
        return self._endpoint

    async def _driver(self) -> Playwright:
        async with self._lock:
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            return self._playwright

    async def connect(self) -> ControlSession:
        playwright = await self._driver()
        try:
            browser = await playwright.chromium.connect_over_cdp(
                self._endpoint, timeout=self._timeout_ms
            )
        except Exception as exc:
            raise ControlError(
                f"Could not connect to control endpoint {self._endpoint}: {exc}",
                details={"endpoint": self._endpoint},
            ) from exc

        try:
            context = browser.contexts[0] if browser.contexts else await browser.new_context()
            page = await context.new_page()
        except Exception as exc:
            try:
                await browser.close()
            except Exception:
                logger.debug("Ignoring disconnect failure after page open error")
            raise ControlError(f"Could not open a page: {exc}") from exc

        logger.debug("Connected to %s", self._endpoint)
        return ControlSession(browser, page)

    async def aclose(self) -> None:
        async with self._lock:
            if self._playwright is not None:
                try:
                    await self._playwright.stop()
                except Exception as exc:
                    logger.debug("Ignoring Playwright stop failure: %s", exc)
                self._playwright = None
