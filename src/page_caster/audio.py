"""音声ソースの決定.

設定と (page 戦略の場合のみ) ページ音声検出結果から、
実行中に変わらない音声ソースを 1 つ決定する。
音声は best-effort なので、曖昧な場合はすべて無音トラックに倒す。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from page_caster.config import CasterConfig

logger = logging.getLogger(__name__)

# PulseAudio 仮想シンクの monitor（コンテナ側で作成済み）
PULSE_MONITOR_DEVICE = "virtual-audio.monitor"

# probe 全体の上限 = audio_probe_timeout (readyState 待ち) + evaluate 分の猶予
_PROBE_GRACE = 5.0


class AudioStrategy(str, Enum):
    """AUDIO_SOURCE で指定する音声戦略."""

    PAGE = "page"
    RELAY = "relay"
    SILENCE = "silence"

    @classmethod
    def parse(cls, raw: str | None) -> AudioStrategy | None:
        """戦略名を解釈する. 旧名 (browser/icecast/silent) も受け付ける.

        Returns:
            AudioStrategy、未知の名前なら None
        """
        if raw is None:
            return None
        name = raw.strip().lower()
        name = _LEGACY_NAMES.get(name, name)
        try:
            return cls(name)
        except ValueError:
            return None


_LEGACY_NAMES = {
    "browser": "page",
    "icecast": "relay",
    "silent": "silence",
}


# ============================================================
# 音声ソース (排他的なバリアント)
# ============================================================


@dataclass(frozen=True)
class PageAudio:
    """ページが再生する音声を PulseAudio monitor からキャプチャする."""

    device: str = PULSE_MONITOR_DEVICE


@dataclass(frozen=True)
class RelayAudio:
    """ネットワーク上の音声ストリーム (Icecast など) を入力にする."""

    address: str


@dataclass(frozen=True)
class Silence:
    """lavfi anullsrc で無音ステレオトラックを生成する."""

    channel_layout: str = "stereo"
    sample_rate: int = 44100


AudioSource = PageAudio | RelayAudio | Silence


# ============================================================
# ページ音声検出結果 (ページ内スクリプトから返る JSON)
# ============================================================


class MediaElementInfo(BaseModel):
    """ページ内の audio/video 要素の情報 (ログ用)."""

    tag_name: str = ""
    src: str | None = None
    paused: bool = True
    muted: bool = False
    autoplay: bool = False


class AudioProbeResult(BaseModel):
    """ページ音声検出の結果."""

    audio_context_state: str = "none"
    media_element_count: int = Field(default=0, ge=0)
    elements: list[MediaElementInfo] = Field(default_factory=list)

    @property
    def audio_context_running(self) -> bool:
        return self.audio_context_state == "running"

    @property
    def has_audio(self) -> bool:
        """AudioContext が動作中、または media 要素が 1 つ以上ある."""
        return self.audio_context_running or self.media_element_count > 0


AudioProbe = Callable[[], Awaitable[AudioProbeResult]]


async def resolve_audio_source(
    config: CasterConfig,
    probe: AudioProbe | None = None,
) -> AudioSource:
    """設定から音声ソースを決定する.

    例外は送出しない。relay URL 未設定、検出失敗、未知の戦略は
    すべて Silence にフォールバックし warning を出す。

    Args:
        config: キャスト設定
        probe: ページ音声検出 (page 戦略のときだけ呼ばれる)

    Returns:
        PageAudio / RelayAudio / Silence のいずれか
    """
    strategy = AudioStrategy.parse(config.audio_strategy)

    if strategy is AudioStrategy.RELAY:
        if config.relay_url:
            logger.info("Using relay audio from: %s", config.relay_url)
            return RelayAudio(config.relay_url)
        logger.warning("No ICE_URL provided, falling back to silent audio")
        return Silence()

    if strategy is AudioStrategy.PAGE:
        return await _resolve_page_audio(config, probe)

    if strategy is None:
        logger.warning(
            "Unknown audio source: %s, falling back to silence",
            config.audio_strategy,
        )
        return Silence()

    logger.info("Using silent audio track")
    return Silence()


async def _resolve_page_audio(
    config: CasterConfig, probe: AudioProbe | None
) -> AudioSource:
    if probe is None:
        logger.warning("No page audio probe available, falling back to silent audio")
        return Silence()

    timeout = config.audio_probe_timeout + _PROBE_GRACE
    try:
        result = await asyncio.wait_for(probe(), timeout=timeout)
    except asyncio.TimeoutError:
        logger.warning(
            "Page audio probe timed out after %.1fs, falling back to silent audio",
            timeout,
        )
        return Silence()
    except Exception as e:
        logger.warning(
            "Page audio probe failed (%s), falling back to silent audio", e
        )
        return Silence()

    logger.info(
        "Audio info on page: context=%s elements=%d",
        result.audio_context_state,
        result.media_element_count,
    )
    if result.has_audio:
        logger.info("Will capture page audio via PulseAudio (%s)", PULSE_MONITOR_DEVICE)
        return PageAudio()

    logger.warning("No audio context or media elements found, falling back to silent audio")
    return Silence()
