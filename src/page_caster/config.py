"""キャスト設定 (環境変数から構築)."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass

from page_caster.errors import ConfigError

logger = logging.getLogger(__name__)

REQUIRED_ENV = ("WEB_URL", "RTMP_URL")

DEFAULT_WIDTH = 854
DEFAULT_HEIGHT = 480
DEFAULT_FRAMERATE = 30
DEFAULT_PRESET = "veryfast"


@dataclass(frozen=True)
class CasterConfig:
    """ブラウザ → FFmpeg → RTMP キャスト設定.

    Attributes:
        page_url: 表示するページの URL
        destination_url: 配信先 (例: "rtmp://host/live/key")
        audio_strategy: 音声ソース選択 ("page" | "relay" | "silence")
        relay_url: relay 戦略で使う音声ストリーム URL
        width: キャプチャ幅 (px)
        height: キャプチャ高さ (px)
        framerate: キャプチャ/エンコードのフレームレート (fps)
        preset: x264 プリセット (検証せずそのまま FFmpeg に渡す)
        display: X11 ディスプレイ (例: ":99")
        ffmpeg_path: FFmpeg 実行ファイル
        navigation_timeout: ページ遷移のタイムアウト (秒)
        audio_probe_timeout: ページ音声検出のタイムアウト (秒)
    """

    page_url: str
    destination_url: str
    audio_strategy: str = "silence"
    relay_url: str | None = None
    width: int = DEFAULT_WIDTH
    height: int = DEFAULT_HEIGHT
    framerate: int = DEFAULT_FRAMERATE
    preset: str = DEFAULT_PRESET
    display: str = ":99"
    ffmpeg_path: str = "ffmpeg"
    navigation_timeout: float = 60.0
    audio_probe_timeout: float = 10.0

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "CasterConfig":
        """環境変数から設定を構築する.

        Args:
            environ: 参照する環境 (None の場合は os.environ)

        Returns:
            CasterConfig

        Raises:
            ConfigError: WEB_URL / RTMP_URL が未設定の場合
        """
        env = os.environ if environ is None else environ

        missing = [key for key in REQUIRED_ENV if not env.get(key)]
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}"
            )

        relay_url = env.get("ICE_URL") or None
        # AUDIO_SOURCE 未指定で ICE_URL がある場合は relay を採用
        strategy = (env.get("AUDIO_SOURCE") or "").strip().lower()
        if not strategy:
            strategy = "relay" if relay_url else "silence"

        return cls(
            page_url=env["WEB_URL"],
            destination_url=env["RTMP_URL"],
            audio_strategy=strategy,
            relay_url=relay_url,
            width=_positive_int(env, "SCREEN_WIDTH", DEFAULT_WIDTH),
            height=_positive_int(env, "SCREEN_HEIGHT", DEFAULT_HEIGHT),
            framerate=_positive_int(env, "FRAMERATE", DEFAULT_FRAMERATE),
            preset=env.get("FFMPEG_PRESET") or DEFAULT_PRESET,
            display=env.get("DISPLAY") or ":99",
            ffmpeg_path=env.get("FFMPEG_BIN") or "ffmpeg",
            navigation_timeout=_positive_float(env, "NAVIGATION_TIMEOUT", 60.0),
            audio_probe_timeout=_positive_float(env, "AUDIO_PROBE_TIMEOUT", 10.0),
        )

    def validate(self) -> None:
        """必須項目と数値の範囲を検証する.

        Raises:
            ConfigError: 必須項目が空、または数値が正でない場合
        """
        missing = [
            key
            for key, value in (
                ("WEB_URL", self.page_url),
                ("RTMP_URL", self.destination_url),
            )
            if not value
        ]
        if missing:
            raise ConfigError(
                f"Missing required environment variables: {', '.join(missing)}"
            )
        for name in ("width", "height", "framerate"):
            value = getattr(self, name)
            if value <= 0:
                raise ConfigError(f"{name} must be a positive integer, got {value}")

    @property
    def resolution(self) -> str:
        """解像度 (例: '854x480')."""
        return f"{self.width}x{self.height}"


def _positive_int(env: Mapping[str, str], key: str, default: int) -> int:
    raw = env.get(key)
    if not raw:
        return default
    try:
        value = int(raw.strip())
    except ValueError:
        value = 0
    if value <= 0:
        logger.warning("Invalid %s=%r, using default %d", key, raw, default)
        return default
    return value


def _positive_float(env: Mapping[str, str], key: str, default: float) -> float:
    raw = env.get(key)
    if not raw:
        return default
    try:
        value = float(raw.strip())
    except ValueError:
        value = 0.0
    if value <= 0:
        logger.warning("Invalid %s=%r, using default %.1f", key, raw, default)
        return default
    return value
