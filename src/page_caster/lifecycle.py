"""キャストパイプラインのライフサイクル管理.

ブラウザ起動 → 音声ソース決定 → FFmpeg 起動 を順に行い、
FFmpeg 終了・起動失敗・終了シグナル・上流のエラーのいずれかで
確保済みリソースを逆順に 1 回だけ解放する。
"""

from __future__ import annotations

import asyncio
import logging
import signal
from collections.abc import Callable
from enum import Enum
from typing import TYPE_CHECKING

from page_caster.audio import resolve_audio_source
from page_caster.browser import BrowserSession
from page_caster.display import check_display
from page_caster.errors import BrowserSetupError, ConfigError, EncoderExit, StartError
from page_caster.ffmpeg_command import build_ffmpeg_args
from page_caster.ffmpeg_supervisor import FFmpegSupervisor

if TYPE_CHECKING:
    from page_caster.config import CasterConfig

logger = logging.getLogger(__name__)

EXIT_GRACEFUL = 0
EXIT_FAILURE = 1


class PipelineState(str, Enum):
    """パイプラインの状態."""

    IDLE = "idle"
    BROWSER_STARTING = "browser_starting"
    AUDIO_RESOLVING = "audio_resolving"
    ENCODER_STARTING = "encoder_starting"
    RUNNING = "running"
    TERMINATING = "terminating"
    TERMINATED = "terminated"


class LifecycleCoordinator:
    """ブラウザと FFmpeg の起動順序とティアダウンを管理する.

    ティアダウンは 1 つの Task に集約され、どの経路から何度呼ばれても
    同じ Task を待つだけになる（シグナルと FFmpeg 終了が同時に来ても 1 回）。

    Usage:
        coordinator = LifecycleCoordinator(config)
        coordinator.install_signal_handlers()
        exit_code = await coordinator.run()
    """

    def __init__(
        self,
        config: CasterConfig,
        *,
        browser_factory: Callable[[CasterConfig], BrowserSession] = BrowserSession,
        supervisor_factory: Callable[[str], FFmpegSupervisor] = FFmpegSupervisor,
    ):
        self._config = config
        self._browser_factory = browser_factory
        self._supervisor_factory = supervisor_factory
        self._state = PipelineState.IDLE

        # 確保済みリソース（ティアダウン対象）
        self._browser: BrowserSession | None = None
        self._supervisor: FFmpegSupervisor | None = None

        self._start_task: asyncio.Task | None = None
        self._teardown_task: asyncio.Task | None = None
        self._teardown_started = asyncio.Event()
        self._exit_code = EXIT_FAILURE

    @property
    def state(self) -> PipelineState:
        return self._state

    @property
    def exit_code(self) -> int:
        """終了コード (graceful なシグナル終了のみ 0)."""
        return self._exit_code

    async def run(self) -> int:
        """パイプラインを起動し、ティアダウン完了まで待つ.

        Returns:
            プロセス終了コード
        """
        self._start_task = asyncio.create_task(self.start(), name="page-caster-start")
        try:
            await self._start_task
        except asyncio.CancelledError:
            # 起動中にシャットダウンが要求された
            if self._teardown_task is None:
                raise
        except ConfigError as e:
            logger.error("ConfigError: %s", e)
            self._state = PipelineState.TERMINATED
            self._exit_code = EXIT_FAILURE
            return self._exit_code
        except (BrowserSetupError, StartError) as e:
            logger.error("%s: %s", type(e).__name__, e)
            self._begin_teardown(graceful=False, reason=type(e).__name__)
        except Exception as e:
            logger.exception("Unrecoverable error during startup: %s", e)
            self._begin_teardown(graceful=False, reason="startup error")

        # Running 中はいずれかのトリガーでティアダウンが始まるまで待つ
        await self._teardown_started.wait()
        await asyncio.shield(self._teardown_task)
        return self._exit_code

    async def start(self) -> None:
        """ブラウザ → 音声ソース決定 → FFmpeg の順に起動する.

        Raises:
            ConfigError: 必須設定がない場合（リソースは確保しない）
            RuntimeError: 既に起動済みの場合
            BrowserSetupError: ブラウザ起動失敗
            StartError: FFmpeg 起動失敗
        """
        if self._state is not PipelineState.IDLE:
            raise RuntimeError(f"Cannot start pipeline in {self._state.value} state")

        c = self._config
        c.validate()

        logger.info("Starting page caster")
        logger.info("Audio source: %s", c.audio_strategy)
        logger.info("Web URL: %s", c.page_url)
        logger.info("RTMP URL: %s", c.destination_url)
        logger.info("Screen size: %s", c.resolution)
        logger.info("Framerate: %dfps", c.framerate)

        # Phase 1: ブラウザ
        self._advance(PipelineState.BROWSER_STARTING)
        if not await asyncio.to_thread(check_display, c.display):
            logger.warning("Display %s is not reachable, capture may fail", c.display)
        self._browser = self._browser_factory(c)
        await self._browser.start()

        # Phase 2: 音声ソース（以後変更しない）
        self._advance(PipelineState.AUDIO_RESOLVING)
        audio = await resolve_audio_source(c, self._browser.probe_audio_activity)
        logger.info("Resolved audio source: %s", audio)

        # Phase 3: FFmpeg
        self._advance(PipelineState.ENCODER_STARTING)
        args = build_ffmpeg_args(c, audio)
        self._supervisor = self._supervisor_factory(c.ffmpeg_path)
        self._supervisor.on_exit(self._on_encoder_exit)
        await self._supervisor.start(args)

        if self._advance(PipelineState.RUNNING):
            logger.info("FFmpeg started, X11 screen capture in progress")

    def request_shutdown(self, reason: str = "termination request") -> None:
        """外部からの終了要求 (graceful)."""
        logger.info("Received %s, shutting down gracefully", reason)
        self._begin_teardown(graceful=True, reason=reason)

    async def shutdown(self, *, graceful: bool, reason: str) -> None:
        """ティアダウンを開始し、完了まで待つ."""
        await asyncio.shield(self._begin_teardown(graceful=graceful, reason=reason))

    def install_signal_handlers(
        self, loop: asyncio.AbstractEventLoop | None = None
    ) -> None:
        """SIGINT / SIGTERM をこのインスタンスの request_shutdown に結びつける."""
        loop = loop or asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.request_shutdown, sig.name)

    def _advance(self, state: PipelineState) -> bool:
        """ティアダウン開始前なら状態を進める."""
        if self._teardown_task is not None:
            return False
        self._state = state
        return True

    def _on_encoder_exit(self, result: EncoderExit) -> None:
        if result.error is not None:
            # spawn 失敗は start() の StartError として run() が扱う
            return
        if self._teardown_task is not None:
            logger.debug("FFmpeg exited during teardown (%s)", result.describe())
            return
        if result.failed:
            logger.error("EncoderExit: FFmpeg ended (%s)", result.describe())
        else:
            logger.info("EncoderExit: FFmpeg ended (%s)", result.describe())
        self._begin_teardown(graceful=False, reason="encoder exit")

    def _begin_teardown(self, *, graceful: bool, reason: str) -> asyncio.Task:
        """ティアダウン Task を 1 回だけ作成する."""
        if self._teardown_task is None:
            self._exit_code = EXIT_GRACEFUL if graceful else EXIT_FAILURE
            self._state = PipelineState.TERMINATING
            self._teardown_task = asyncio.create_task(
                self._teardown(reason), name="page-caster-teardown"
            )
            self._teardown_started.set()
        return self._teardown_task

    async def _teardown(self, reason: str) -> None:
        """確保済みリソースを逆順に解放する.

        解放順序: FFmpeg → ページ → ブラウザ
        各ステップは独立 try/except（1つの失敗で他が止まらない）。
        """
        logger.info("Cleaning up resources (%s)", reason)

        # 起動途中ならキャンセルして、それ以上リソースを確保させない
        task = self._start_task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait({task})

        # 1. FFmpeg 停止
        if self._supervisor is not None:
            try:
                await self._supervisor.terminate()
            except Exception:
                logger.exception("Error stopping FFmpeg")

        # 2. ページ
        if self._browser is not None:
            try:
                await self._browser.close_page()
            except Exception:
                logger.exception("Error closing page")

        # 3. ブラウザ + Playwright
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception:
                logger.exception("Error closing browser")

        self._state = PipelineState.TERMINATED
        logger.info("Page caster terminated (exit code %d)", self._exit_code)
