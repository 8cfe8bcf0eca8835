"""Tests for the CDP control session with all Playwright objects mocked."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from stepflow.automation.errors import (
    ControlError,
    InteractionError,
    NavigationError,
    TransientConnectionError,
)
from stepflow.browser.control_session import CdpConnector, ControlSession


def _page():
    page = MagicMock()
    page.goto = AsyncMock()
    page.click = AsyncMock()
    page.close = AsyncMock()
    locator = MagicMock()
    locator.press_sequentially = AsyncMock()
    page.locator = MagicMock(return_value=locator)
    return page


def _browser(page=None, contexts=True):
    browser = MagicMock()
    browser.close = AsyncMock()
    browser.is_connected = MagicMock(return_value=True)
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page or _page())
    browser.contexts = [context] if contexts else []
    browser.new_context = AsyncMock(return_value=context)
    return browser


class TestControlSession:
    @pytest.mark.asyncio
    async def test_navigate_passes_options(self):
        page = _page()
        session = ControlSession(_browser(page), page)

        await session.navigate("https://example.com", 30000, "domcontentloaded")

        page.goto.assert_awaited_once_with(
            "https://example.com", timeout=30000, wait_until="domcontentloaded"
        )

    @pytest.mark.asyncio
    async def test_frame_detach_becomes_transient_error(self):
        page = _page()
        page.goto.side_effect = Exception("page.goto: Navigating frame was detached")
        session = ControlSession(_browser(page), page)

        with pytest.raises(TransientConnectionError):
            await session.navigate("https://example.com", 30000, "domcontentloaded")

    @pytest.mark.asyncio
    async def test_timeout_becomes_navigation_error(self):
        page = _page()
        page.goto.side_effect = Exception("Timeout 30000ms exceeded")
        session = ControlSession(_browser(page), page)

        with pytest.raises(NavigationError) as exc_info:
            await session.navigate("https://example.com", 30000, "domcontentloaded")
        assert exc_info.value.url == "https://example.com"

    @pytest.mark.asyncio
    async def test_click_failure_becomes_interaction_error(self):
        page = _page()
        page.click.side_effect = Exception("Connection closed")
        session = ControlSession(_browser(page), page)

        with pytest.raises(InteractionError) as exc_info:
            await session.click("#missing")
        assert exc_info.value.selector == "#missing"
        assert not exc_info.value.is_transient

    @pytest.mark.asyncio
    async def test_type_presses_keys_sequentially(self):
        page = _page()
        session = ControlSession(_browser(page), page)

        await session.type("#q", "hello")

        page.locator.assert_called_once_with("#q")
        page.locator.return_value.press_sequentially.assert_awaited_once_with("hello")

    @pytest.mark.asyncio
    async def test_close_swallows_errors(self):
        page = _page()
        page.close.side_effect = Exception("Target closed")
        browser = _browser(page)
        browser.close.side_effect = Exception("Connection closed")
        session = ControlSession(browser, page)

        await session.close()

        page.close.assert_awaited_once()
        browser.close.assert_awaited_once()


class TestCdpConnector:
    def _patched_playwright(self, browser=None, connect_error=None):
        playwright = MagicMock()
        playwright.chromium.connect_over_cdp = AsyncMock(return_value=browser, side_effect=connect_error)
        playwright.stop = AsyncMock()
        starter = MagicMock()
        starter.start = AsyncMock(return_value=playwright)
        return playwright, patch(
            "stepflow.browser.control_session.async_playwright", return_value=starter
        )

    @pytest.mark.asyncio
    async def test_connect_opens_page_in_existing_context(self):
        page = _page()
        browser = _browser(page)
        playwright, patcher = self._patched_playwright(browser)

        with patcher:
            connector = CdpConnector("ws://127.0.0.1:9222", timeout_ms=5000)
            session = await connector.connect()
            await connector.connect()

        playwright.chromium.connect_over_cdp.assert_awaited_with("ws://127.0.0.1:9222", timeout=5000)
        assert session.page is page
        assert session.is_connected()
        browser.new_context.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_connect_creates_context_when_none_exists(self):
        browser = _browser(contexts=False)
        _, patcher = self._patched_playwright(browser)

        with patcher:
            await CdpConnector("ws://127.0.0.1:9222").connect()

        browser.new_context.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_failure_raises_control_error(self):
        _, patcher = self._patched_playwright(connect_error=Exception("ECONNREFUSED"))

        with patcher:
            with pytest.raises(ControlError) as exc_info:
                await CdpConnector("ws://127.0.0.1:9222").connect()

        assert exc_info.value.details == {"endpoint": "ws://127.0.0.1:9222"}

    @pytest.mark.asyncio
    async def test_driver_is_started_once_and_stopped_on_close(self):
        playwright, patcher = self._patched_playwright(_browser())

        with patcher as async_playwright:
            connector = CdpConnector("ws://127.0.0.1:9222")
            await connector.connect()
            await connector.connect()
            await connector.aclose()

        assert async_playwright.call_count == 1
        playwright.stop.assert_awaited_once()
