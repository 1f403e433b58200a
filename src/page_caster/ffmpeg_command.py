"""FFmpeg 引数の構築.

x11grab 映像 + 音声ソース → libx264/AAC FLV → RTMP。
同じ入力からは常に同じ引数列を返す (副作用なし)。
"""

from __future__ import annotations

import shlex
from typing import TYPE_CHECKING

from page_caster.audio import AudioSource, PageAudio, RelayAudio, Silence
from page_caster.display import capture_surface

if TYPE_CHECKING:
    from page_caster.config import CasterConfig

# 出力ビットレート上限 / VBV バッファ
MAXRATE = "3000k"
BUFSIZE = "6000k"

AUDIO_BITRATE = "128k"
AUDIO_CHANNELS = "2"


def build_ffmpeg_args(config: CasterConfig, audio: AudioSource) -> list[str]:
    """FFmpeg 引数を構築する (実行ファイル名は含まない).

    トークン順序は FFmpeg の CLI 文法に従う:
    映像入力 → 音声入力 → エンコードオプション → 配信先。
    -r は入力側と出力側の 2 回指定する (出力を固定フレームレートにするため)。

    Args:
        config: キャスト設定
        audio: resolve_audio_source で決定した音声ソース

    Returns:
        FFmpeg 引数リスト
    """
    return [
        "-y",
        *_video_input_args(config),
        *_audio_input_args(audio),
        *_output_args(config),
    ]


def _video_input_args(config: CasterConfig) -> list[str]:
    return [
        "-f", "x11grab",
        "-r", str(config.framerate),
        "-s", config.resolution,
        "-draw_mouse", "0",
        "-i", capture_surface(config.display),
    ]


def _audio_input_args(audio: AudioSource) -> list[str]:
    if isinstance(audio, RelayAudio):
        return ["-i", audio.address]
    if isinstance(audio, PageAudio):
        return ["-f", "pulse", "-i", audio.device]
    if isinstance(audio, Silence):
        return [
            "-f", "lavfi",
            "-i", f"anullsrc=channel_layout={audio.channel_layout}:sample_rate={audio.sample_rate}",
        ]
    raise TypeError(f"Unsupported audio source: {audio!r}")


def _output_args(config: CasterConfig) -> list[str]:
    return [
        "-c:v", "libx264",
        "-preset", config.preset,
        "-tune", "zerolatency",
        "-maxrate", MAXRATE,
        "-bufsize", BUFSIZE,
        "-pix_fmt", "yuv420p",
        "-r", str(config.framerate),
        "-vsync", "cfr",
        "-c:a", "aac",
        "-b:a", AUDIO_BITRATE,
        "-ac", AUDIO_CHANNELS,
        "-f", "flv",
        config.destination_url,
    ]


def format_command(binary: str, args: list[str]) -> str:
    """ログ用にシェル形式のコマンド文字列を返す."""
    return shlex.join([binary, *args])
