"""BrowserSession のテスト.

async_playwright をモックし、実際の Chromium は起動しない。
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from page_caster.audio import AudioProbeResult, Silence, resolve_audio_source
from page_caster.browser import BrowserSession
from page_caster.config import CasterConfig
from page_caster.errors import BrowserSetupError


def _config(**kwargs) -> CasterConfig:
    return CasterConfig(
        page_url="https://example.com",
        destination_url="rtmp://live.example.com/app/key",
        **kwargs,
    )


@pytest.fixture
def playwright_mocks():
    """(async_playwright, pw, browser, page) のモック一式."""
    page = MagicMock()
    page.goto = AsyncMock()
    page.wait_for_function = AsyncMock()
    page.evaluate = AsyncMock()
    page.close = AsyncMock()

    browser = MagicMock()
    browser.new_page = AsyncMock(return_value=page)
    browser.close = AsyncMock()

    pw = MagicMock()
    pw.chromium.launch = AsyncMock(return_value=browser)
    pw.stop = AsyncMock()

    factory = MagicMock()
    factory.return_value.start = AsyncMock(return_value=pw)

    with patch("page_caster.browser.async_playwright", factory):
        yield factory, pw, browser, page


# ============================================================
# start
# ============================================================


class TestStart:
    @pytest.mark.asyncio
    async def test_launch_and_navigate(self, playwright_mocks):
        _, pw, browser, page = playwright_mocks
        session = BrowserSession(_config(width=1280, height=720, display=":5"), settle_delay=0)
        await session.start()

        kwargs = pw.chromium.launch.await_args.kwargs
        assert kwargs["headless"] is False
        assert kwargs["ignore_default_args"] == ["--enable-automation"]
        assert "--display=:5" in kwargs["args"]
        assert "--window-size=1280,720" in kwargs["args"]
        assert "--autoplay-policy=no-user-gesture-required" in kwargs["args"]
        browser.new_page.assert_awaited_once_with(
            viewport={"width": 1280, "height": 720}
        )
        page.goto.assert_awaited_once_with(
            "https://example.com", wait_until="domcontentloaded", timeout=60000.0
        )
        assert session.page is page

    @pytest.mark.asyncio
    async def test_navigation_timeout_is_soft(self, playwright_mocks, caplog):
        """遷移タイムアウトは警告のみで続行する."""
        _, _, _, page = playwright_mocks
        page.goto.side_effect = PlaywrightTimeoutError("Timeout 60000ms exceeded")
        session = BrowserSession(_config(), settle_delay=0)

        await session.start()

        assert session.page is page
        assert "timed out" in caplog.text

    @pytest.mark.asyncio
    async def test_navigation_error_raises(self, playwright_mocks):
        _, _, _, page = playwright_mocks
        page.goto.side_effect = RuntimeError("net::ERR_NAME_NOT_RESOLVED")
        session = BrowserSession(_config(), settle_delay=0)

        with pytest.raises(BrowserSetupError, match="ERR_NAME_NOT_RESOLVED"):
            await session.start()

    @pytest.mark.asyncio
    async def test_launch_error_raises(self, playwright_mocks):
        _, pw, _, _ = playwright_mocks
        pw.chromium.launch.side_effect = RuntimeError("Executable doesn't exist")
        session = BrowserSession(_config(), settle_delay=0)

        with pytest.raises(BrowserSetupError, match="launch"):
            await session.start()

        # 起動途中でも Playwright は解放できる
        await session.close()
        pw.stop.assert_awaited_once()


# ============================================================
# probe_audio_activity
# ============================================================


class TestProbe:
    @pytest.mark.asyncio
    async def test_probe_parses_page_result(self, playwright_mocks):
        _, _, _, page = playwright_mocks
        page.evaluate.return_value = {
            "audio_context_state": "running",
            "media_element_count": 0,
            "elements": [],
        }
        session = BrowserSession(_config(), settle_delay=0)
        await session.start()

        result = await session.probe_audio_activity()

        assert isinstance(result, AudioProbeResult)
        assert result.audio_context_running
        assert result.has_audio

    @pytest.mark.asyncio
    async def test_incomplete_page_falls_back_to_silence(self, playwright_mocks):
        """readyState=complete にならないページは media 要素があっても無音."""
        _, _, _, page = playwright_mocks
        page.wait_for_function.side_effect = PlaywrightTimeoutError("Timeout")
        page.evaluate.return_value = {"audio_context_state": "suspended", "media_element_count": 1}
        session = BrowserSession(_config(audio_strategy="page"), settle_delay=0)
        await session.start()

        with pytest.raises(PlaywrightTimeoutError):
            await session.probe_audio_activity()
        page.evaluate.assert_not_awaited()

        source = await resolve_audio_source(
            _config(audio_strategy="page"), session.probe_audio_activity
        )
        assert source == Silence()

    @pytest.mark.asyncio
    async def test_probe_before_start_raises(self):
        with pytest.raises(RuntimeError, match="not started"):
            await BrowserSession(_config()).probe_audio_activity()


# ============================================================
# close
# ============================================================


class TestClose:
    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, playwright_mocks):
        _, pw, browser, page = playwright_mocks
        session = BrowserSession(_config(), settle_delay=0)
        await session.start()

        await session.close_page()
        await session.close_page()
        await session.close()
        await session.close()

        page.close.assert_awaited_once()
        browser.close.assert_awaited_once()
        pw.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_never_started(self):
        session = BrowserSession(_config())
        await session.close_page()
        await session.close()

    @pytest.mark.asyncio
    async def test_playwright_stopped_even_if_browser_close_fails(self, playwright_mocks):
        _, pw, browser, _ = playwright_mocks
        browser.close.side_effect = RuntimeError("Target closed")
        session = BrowserSession(_config(), settle_delay=0)
        await session.start()

        with pytest.raises(RuntimeError, match="Target closed"):
            await session.close()
        pw.stop.assert_awaited_once()
