"""Playwright によるページ表示.

Xvfb 上に非 headless の Chromium を起動し、キャプチャ対象のページを開く。
ページ内の音声状態は page.evaluate 経由で問い合わせる
（ページとはメモリを共有しない。結果は JSON で受け取る）。
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from playwright.async_api import Browser, Page, Playwright, async_playwright
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from page_caster.audio import AudioProbeResult
from page_caster.errors import BrowserSetupError

if TYPE_CHECKING:
    from page_caster.config import CasterConfig

logger = logging.getLogger(__name__)

# ページ読み込み後、描画が落ち着くまでの待ち時間 (秒)
SETTLE_DELAY = 2.0

# ページ内で実行する音声検出スクリプト
# AudioContext を resume し、audio/video 要素の再生を試みる
_PROBE_AUDIO_SCRIPT = """
() => {
  let audioContextState = 'none';
  const AudioContextClass = window.AudioContext || window.webkitAudioContext;
  if (typeof AudioContextClass !== 'undefined') {
    const audioContext = new AudioContextClass();
    audioContextState = audioContext.state;
    audioContext.resume();
  }

  const mediaElements = Array.from(document.querySelectorAll('audio, video'));
  const elements = mediaElements.map(el => ({
    tag_name: el.tagName,
    src: el.src || el.currentSrc || null,
    paused: el.paused,
    muted: el.muted,
    autoplay: el.autoplay,
  }));
  mediaElements.forEach(el => {
    if (el.play) {
      el.play().catch(() => {});
    }
  });

  return {
    audio_context_state: audioContextState,
    media_element_count: mediaElements.length,
    elements,
  };
}
"""


class BrowserSession:
    """キャプチャ対象ページを表示する Chromium セッション.

    Usage:
        browser = BrowserSession(config)
        await browser.start()
        result = await browser.probe_audio_activity()
        ...
        await browser.close_page()
        await browser.close()
    """

    def __init__(self, config: CasterConfig, *, settle_delay: float = SETTLE_DELAY):
        self._config = config
        self._settle_delay = settle_delay
        self._pw: Playwright | None = None
        self._browser: Browser | None = None
        self._page: Page | None = None

    @property
    def page(self) -> Page | None:
        return self._page

    def _launch_args(self) -> list[str]:
        c = self._config
        return [
            f"--display={c.display}",
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
            "--no-first-run",
            f"--window-size={c.width},{c.height}",
            "--window-position=0,0",
            "--autoplay-policy=no-user-gesture-required",
            "--allow-running-insecure-content",
            "--disable-web-security",
            "--disable-features=VizDisplayCompositor",
            "--enable-features=PulseAudio",
            "--kiosk",
        ]

    async def start(self) -> None:
        """Chromium を起動してページを開く.

        ナビゲーションのタイムアウトは致命的ではない
        （読み込み途中のページでもキャプチャは可能なため続行する）。

        Raises:
            BrowserSetupError: 起動失敗、またはタイムアウト以外の遷移失敗
        """
        c = self._config
        logger.info("Starting Chromium on %s (%s)", c.display, c.resolution)

        try:
            self._pw = await async_playwright().start()
            self._browser = await self._pw.chromium.launch(
                headless=False,
                ignore_default_args=["--enable-automation"],
                args=self._launch_args(),
            )
            self._page = await self._browser.new_page(
                viewport={"width": c.width, "height": c.height}
            )
        except Exception as e:
            raise BrowserSetupError(f"Failed to launch browser: {e}") from e
        logger.info("Browser launched")

        logger.info("Navigating to: %s", c.page_url)
        try:
            await self._page.goto(
                c.page_url,
                wait_until="domcontentloaded",
                timeout=c.navigation_timeout * 1000,
            )
            logger.info("Page loaded successfully")
        except PlaywrightTimeoutError:
            logger.warning(
                "Navigation to %s timed out after %.0fs, continuing with partially loaded page",
                c.page_url,
                c.navigation_timeout,
            )
        except Exception as e:
            raise BrowserSetupError(f"Failed to navigate to {c.page_url}: {e}") from e

        await asyncio.sleep(self._settle_delay)
        logger.info("Browser setup complete")

    async def probe_audio_activity(self) -> AudioProbeResult:
        """ページ内の音声状態を問い合わせる.

        Returns:
            AudioProbeResult

        Raises:
            RuntimeError: ページが開かれていない場合
            PlaywrightTimeoutError: readyState が complete にならない場合
                (呼び出し側は無音にフォールバックする)
        """
        if self._page is None:
            raise RuntimeError("BrowserSession is not started")

        await self._page.wait_for_function(
            "() => document.readyState === 'complete'",
            timeout=self._config.audio_probe_timeout * 1000,
        )

        raw = await self._page.evaluate(_PROBE_AUDIO_SCRIPT)
        return AudioProbeResult.model_validate(raw)

    async def close_page(self) -> None:
        """ページを閉じる (未作成・クローズ済みなら何もしない)."""
        page, self._page = self._page, None
        if page is None:
            return
        await page.close()
        logger.info("Page closed")

    async def close(self) -> None:
        """ブラウザと Playwright を終了する.

        起動途中で失敗した場合も、確保済みの分だけ解放する。
        """
        browser, self._browser = self._browser, None
        pw, self._pw = self._pw, None
        try:
            if browser is not None:
                await browser.close()
                logger.info("Browser closed")
        finally:
            if pw is not None:
                await pw.stop()
                logger.info("Playwright stopped")
