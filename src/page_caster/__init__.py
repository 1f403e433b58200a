"""page-caster: Web page → Xvfb + FFmpeg → RTMP continuous broadcast."""

from page_caster.audio import (
    AudioProbeResult,
    AudioStrategy,
    PageAudio,
    RelayAudio,
    Silence,
    resolve_audio_source,
)
from page_caster.browser import BrowserSession
from page_caster.config import CasterConfig
from page_caster.errors import BrowserSetupError, ConfigError, EncoderExit, StartError
from page_caster.ffmpeg_command import build_ffmpeg_args
from page_caster.ffmpeg_supervisor import FFmpegSupervisor
from page_caster.lifecycle import LifecycleCoordinator, PipelineState

__all__ = [
    "AudioProbeResult",
    "AudioStrategy",
    "BrowserSession",
    "BrowserSetupError",
    "CasterConfig",
    "ConfigError",
    "EncoderExit",
    "FFmpegSupervisor",
    "LifecycleCoordinator",
    "PageAudio",
    "PipelineState",
    "RelayAudio",
    "Silence",
    "StartError",
    "build_ffmpeg_args",
    "resolve_audio_source",
]
