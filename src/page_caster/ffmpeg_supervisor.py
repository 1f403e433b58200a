"""FFmpeg プロセス監視.

FFmpeg を子プロセスとして起動し、stdout/stderr をログに流しつつ
終了を検知して登録済みコールバックに 1 回だけ通知する。
"""

import asyncio
import logging
import re
import signal
from collections.abc import Callable

from page_caster.errors import EncoderExit, StartError
from page_caster.ffmpeg_command import format_command

logger = logging.getLogger(__name__)

ExitCallback = Callable[[EncoderExit], None]

# FFmpeg stdout/stderr 読み取りチャンクサイズ
READ_CHUNK_SIZE = 4 * 1024

_LINE_BREAK = re.compile(rb"[\r\n]")

# 終了後に残りの出力を読み切るまでの待ち時間
_DRAIN_TIMEOUT = 1.0


class FFmpegSupervisor:
    """FFmpeg プロセスの起動・ログ転送・終了検知・停止を行う.

    Usage:
        supervisor = FFmpegSupervisor("ffmpeg")
        supervisor.on_exit(lambda result: ...)
        await supervisor.start(args)
        ...
        await supervisor.terminate()
    """

    def __init__(self, binary: str = "ffmpeg", *, stop_timeout: float = 5.0):
        self._binary = binary
        self._stop_timeout = stop_timeout
        self._process: asyncio.subprocess.Process | None = None
        self._callbacks: list[ExitCallback] = []
        self._exit: EncoderExit | None = None
        self._watch_task: asyncio.Task | None = None
        self._stop_task: asyncio.Task | None = None
        self._started = False

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def exit_info(self) -> EncoderExit | None:
        """通知済みの終了情報 (未終了なら None)."""
        return self._exit

    def on_exit(self, callback: ExitCallback) -> None:
        """終了コールバックを登録する."""
        self._callbacks.append(callback)

    async def start(self, args: list[str]) -> asyncio.subprocess.Process:
        """FFmpeg プロセスを起動する.

        Args:
            args: FFmpeg 引数 (build_ffmpeg_args の戻り値)

        Returns:
            起動したプロセス

        Raises:
            RuntimeError: 既に起動済みの場合
            StartError: spawn に失敗した場合 (実行ファイルが無いなど)
        """
        if self._started:
            raise RuntimeError("FFmpegSupervisor is already started")
        self._started = True

        logger.info("Starting FFmpeg: %s", format_command(self._binary, args))

        try:
            self._process = await asyncio.create_subprocess_exec(
                self._binary,
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.error("FFmpeg process error: %s", e)
            self._notify(EncoderExit(error=e))
            raise StartError(f"Failed to start {self._binary}: {e}") from e

        logger.info("FFmpeg started (PID=%d)", self._process.pid)
        self._watch_task = asyncio.create_task(
            self._watch(self._process), name=f"ffmpeg-watch-{self._process.pid}"
        )
        return self._process

    async def terminate(self) -> None:
        """FFmpeg を停止する (SIGTERM → タイムアウト → SIGKILL).

        未起動・終了済みの場合は何もしない。停止処理中に呼ばれた場合は
        シグナルを送らず、同じ停止処理の完了を待つ。
        """
        proc = self._process
        if proc is None:
            return
        if self._stop_task is None:
            if proc.returncode is not None:
                return
            self._stop_task = asyncio.create_task(
                self._stop(proc), name=f"ffmpeg-stop-{proc.pid}"
            )
        await asyncio.shield(self._stop_task)

    async def _stop(self, proc: asyncio.subprocess.Process) -> None:
        pid = proc.pid
        logger.info("Stopping FFmpeg (PID=%d)", pid)
        try:
            proc.send_signal(signal.SIGTERM)
            try:
                await asyncio.wait_for(proc.wait(), timeout=self._stop_timeout)
                logger.info("FFmpeg exited gracefully (PID=%d)", pid)
            except asyncio.TimeoutError:
                logger.warning(
                    "FFmpeg did not exit in %.1fs, sending SIGKILL (PID=%d)",
                    self._stop_timeout,
                    pid,
                )
                proc.kill()
                await proc.wait()
        except ProcessLookupError:
            logger.debug("FFmpeg already exited (PID=%d)", pid)

    async def wait(self) -> EncoderExit:
        """終了通知まで待つ.

        Raises:
            RuntimeError: 起動していない場合
        """
        if self._exit is not None:
            return self._exit
        if self._watch_task is None:
            raise RuntimeError("FFmpegSupervisor is not started")
        return await asyncio.shield(self._watch_task)

    async def _watch(self, proc: asyncio.subprocess.Process) -> EncoderExit:
        """stdout/stderr の転送と終了検知."""
        readers = [
            asyncio.create_task(self._forward(proc.stdout, "stdout")),
            asyncio.create_task(self._forward(proc.stderr, "stderr")),
        ]
        returncode = await proc.wait()

        # 残りの出力を読み切る（孫プロセスがパイプを握っている場合は打ち切る）
        _, pending = await asyncio.wait(readers, timeout=_DRAIN_TIMEOUT)
        for task in pending:
            task.cancel()
        for outcome in await asyncio.gather(*readers, return_exceptions=True):
            if isinstance(outcome, Exception):
                logger.warning("FFmpeg output reader failed: %s", outcome)

        if returncode == 0:
            logger.info("FFmpeg process exited with code %d", returncode)
        else:
            logger.error("FFmpeg process exited with code %d", returncode)
        result = EncoderExit(returncode=returncode)
        self._notify(result)
        return result

    async def _forward(self, stream: asyncio.StreamReader | None, name: str) -> None:
        """FFmpeg の出力を 1 行ずつそのままログに流す.

        進捗表示は \\r 区切りで届くため \\r と \\n の両方で行を分ける。
        """
        if stream is None:
            return
        pending = b""
        while True:
            chunk = await stream.read(READ_CHUNK_SIZE)
            if not chunk:
                break
            *lines, pending = _LINE_BREAK.split(pending + chunk)
            for line in lines:
                self._log_line(name, line)
        self._log_line(name, pending)

    def _log_line(self, name: str, line: bytes) -> None:
        text = line.decode("utf-8", errors="replace").rstrip()
        if text:
            logger.info("FFmpeg %s: %s", name, text)

    def _notify(self, result: EncoderExit) -> None:
        if self._exit is not None:
            return
        self._exit = result
        for callback in list(self._callbacks):
            try:
                callback(result)
            except Exception:
                logger.exception("Error in FFmpeg exit callback")
