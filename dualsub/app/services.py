from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from dualsub.app.config import PipelineConfig
from dualsub.asr.faster_whisper_pcm16 import FasterWhisperProvider
from dualsub.audio.frames import FrameSource
from dualsub.audio.mic import SoundDeviceFrameSource
from dualsub.audio.replay import WavFrameSource
from dualsub.audio.segmenter import FrameClassifier
from dualsub.audio.vad import EnergyVAD
from dualsub.audio.vad_webrtc import WebRtcVad
from dualsub.nlp.translator.base import Translator
from dualsub.nlp.translator.factory import get_translator


@dataclass(frozen=True)
class PipelineServices:
    source: FrameSource
    vad: FrameClassifier
    accurate: FasterWhisperProvider
    fast: Optional[FasterWhisperProvider]
    translator: Translator


def build_frame_source(config: PipelineConfig) -> FrameSource:
    audio = config.audio
    if audio.replay:
        return WavFrameSource(audio.replay, chunk_seconds=audio.chunk_sec, speed=audio.replay_speed)
    return SoundDeviceFrameSource(
        chunk_seconds=audio.chunk_sec,
        sample_rate=audio.sample_rate,
        channels=audio.channels,
        device=audio.device,
    )


def build_vad(config: PipelineConfig) -> FrameClassifier:
    vad = config.vad
    if vad.backend == "webrtc":
        return WebRtcVad(sr=16000, frame_ms=config.audio.frame_ms, aggressiveness=vad.aggressiveness)
    if vad.backend == "energy":
        return EnergyVAD(
            sensitivity=vad.sensitivity,
            rms_threshold=vad.rms_threshold,
            energy_window=vad.energy_window,
            noise_ratio=vad.noise_ratio,
        )
    raise ValueError(f"Unknown VAD backend: {vad.backend}")


def build_pipeline_services(config: PipelineConfig) -> PipelineServices:
    asr = config.asr
    accurate = FasterWhisperProvider(
        model_size=asr.accurate_model,
        device=asr.device,
        compute_type=asr.compute_type,
        beam_size=asr.accurate_beam_size,
    )
    fast = None
    if asr.fast_tier:
        fast = FasterWhisperProvider(
            model_size=asr.fast_model,
            device=asr.device,
            compute_type=asr.compute_type,
            beam_size=asr.fast_beam_size,
        )
    translator = get_translator(
        config.translation.provider,
        source_lang=config.translation.source_lang,
        target_lang=config.translation.target_lang,
    )
    return PipelineServices(
        source=build_frame_source(config),
        vad=build_vad(config),
        accurate=accurate,
        fast=fast,
        translator=translator,
    )
