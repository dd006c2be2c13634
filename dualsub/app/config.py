from __future__ import annotations

import argparse
import copy
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

from platformdirs import user_config_dir

from dualsub.contracts import GameProfile

DEFAULTS: dict[str, Any] = {
    "list_devices": False,
    "device": None,
    "sr": 16000,
    "channels": 1,
    "chunk_sec": 0.1,
    "frame_ms": 20,
    "replay": None,
    "replay_speed": 1.0,
    "vad": "energy",
    "vad_sensitivity": 0.5,
    "rms_th": None,
    "vad_aggressiveness": 2,
    "energy_window": 50,
    "noise_ratio": 3.0,
    "min_duration": 0.5,
    "max_duration": 6.0,
    "hangover": 0.3,
    "accurate_model": "small",
    "fast_model": "tiny",
    "fast_tier": True,
    "asr_device": "cpu",
    "compute_type": "int8",
    "accurate_beam_size": 5,
    "fast_beam_size": 1,
    "language_lock": "en",
    "fast_timeout": 1.5,
    "fast_workers": 2,
    "accurate_concurrency": 1,
    "accurate_retries": 2,
    "degraded_after": 3,
    "carry_context": True,
    "translator": "argos",
    "source_lang": "en",
    "target_lang": "ja",
    "translation_workers": 1,
    "cache_size": 1000,
    "display_duration": 5.0,
    "fade_duration": 0.5,
    "max_visible": 3,
    "tick_interval": 0.1,
    "untranslated_marker": "[untranslated] ",
    "overlay": False,
    "show_partials": True,
    "show_en": True,
    "font_size_ja": 28,
    "font_size_en": 16,
    "padding_px": 14,
    "overlay_opacity": 66,
    "poll_ms": 60,
    "queue_maxsize": 100,
    "max_updates_per_tick": 20,
    "debug": False,
    "active_profile": "default",
    "profiles": [],
}
CONFIG_KEYS: tuple[str, ...] = tuple(DEFAULTS.keys())


@dataclass(frozen=True)
class AppPaths:
    config_dir: Path
    config_path: Path


def app_paths() -> AppPaths:
    config_dir = Path(user_config_dir("dualsub", "dualsub"))
    return AppPaths(config_dir=config_dir, config_path=config_dir / "config.json")


def _load_json_dict(path: Path) -> dict[str, Any]:
    # Accept UTF-8 with or without BOM for Windows-edited config files.
    with path.open("r", encoding="utf-8-sig") as f:
        loaded = json.load(f)
    if not isinstance(loaded, dict):
        raise ValueError(f"config must be a JSON object: {path}")
    return loaded


def _write_json_dict(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)
        f.write("\n")


def _known_only(payload: dict[str, Any]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in CONFIG_KEYS:
        if key in payload:
            out[key] = payload[key]
    return out


def load_default_config() -> dict[str, Any]:
    return copy.deepcopy(DEFAULTS)


def load_user_config(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    defaults = load_default_config()
    if config_path:
        chosen = Path(config_path)
        if not chosen.exists():
            raise SystemExit(f"Config file not found: {chosen}")
    else:
        chosen = ensure_user_config_exists(defaults)
    merged = dict(defaults)
    merged.update(_known_only(_load_json_dict(chosen)))
    return merged, chosen


def ensure_user_config_exists(defaults: dict[str, Any] | None = None) -> Path:
    paths = app_paths()
    if paths.config_path.exists():
        return paths.config_path
    _write_json_dict(paths.config_path, defaults or load_default_config())
    return paths.config_path


def resolve_defaults(config_path: str | None = None) -> tuple[dict[str, Any], Path]:
    return load_user_config(config_path=config_path)


def parser_with_defaults(defaults: dict[str, Any]) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="dualsub", description="Live dual-fidelity subtitles (EN -> JA).")
    p.add_argument("--config", default=None, help="JSON config path (CLI flags override config)")
    p.add_argument("--list-devices", action="store_true", help="print audio devices and exit")
    p.add_argument("--device", type=int, default=defaults["device"], help="sounddevice input device id")
    p.add_argument("--sr", type=int, default=defaults["sr"], help="capture sample rate (Hz)")
    p.add_argument("--channels", type=int, default=defaults["channels"], help="input channels")
    p.add_argument("--chunk-sec", type=float, default=defaults["chunk_sec"], help="capture chunk size in seconds")
    p.add_argument("--frame-ms", type=int, default=defaults["frame_ms"], help="analysis frame size (ms)")
    p.add_argument("--replay", default=defaults["replay"], help="replay a PCM16 WAV file instead of the mic")
    p.add_argument(
        "--replay-speed",
        type=float,
        default=defaults["replay_speed"],
        help="replay pacing: 0 = as fast as possible, 1 = realtime",
    )
    p.add_argument("--vad", default=defaults["vad"], choices=["energy", "webrtc"], help="speech frame classifier")
    p.add_argument(
        "--vad-sensitivity",
        type=float,
        default=defaults["vad_sensitivity"],
        help="energy VAD sensitivity in [0, 1]; higher detects quieter speech",
    )
    p.add_argument("--rms-th", type=float, default=defaults["rms_th"], help="fixed RMS threshold (overrides sensitivity)")
    p.add_argument(
        "--vad-aggressiveness",
        type=int,
        default=defaults["vad_aggressiveness"],
        choices=[0, 1, 2, 3],
        help="webrtc VAD aggressiveness",
    )
    p.add_argument("--min-duration", type=float, default=defaults["min_duration"], help="drop utterances shorter than this")
    p.add_argument("--max-duration", type=float, default=defaults["max_duration"], help="split utterances longer than this")
    p.add_argument("--hangover", type=float, default=defaults["hangover"], help="trailing silence that closes an utterance")
    p.add_argument("--accurate-model", default=defaults["accurate_model"], help="faster-whisper model for finals")
    p.add_argument("--fast-model", default=defaults["fast_model"], help="faster-whisper model for partials")
    p.add_argument(
        "--fast-tier",
        action=argparse.BooleanOptionalAction,
        default=defaults["fast_tier"],
        help="run the fast tier for early partial subtitles",
    )
    p.add_argument("--asr-device", default=defaults["asr_device"], help="faster-whisper device (cpu/cuda)")
    p.add_argument("--compute-type", default=defaults["compute_type"], help="faster-whisper compute type")
    p.add_argument(
        "--language-lock",
        default=defaults["language_lock"],
        choices=["auto", "en"],
        help="ASR language lock: auto detect or force English",
    )
    p.add_argument("--fast-timeout", type=float, default=defaults["fast_timeout"], help="discard partials later than this (s)")
    p.add_argument(
        "--accurate-retries",
        type=int,
        default=defaults["accurate_retries"],
        help="extra attempts before an accurate failure drops the segment",
    )
    p.add_argument(
        "--carry-context",
        action=argparse.BooleanOptionalAction,
        default=defaults["carry_context"],
        help="prompt split continuations with the preceding transcript",
    )
    p.add_argument("--translator", default=defaults["translator"], choices=["argos", "stub"], help="translation provider")
    p.add_argument("--cache-size", type=int, default=defaults["cache_size"], help="translation cache entries")
    p.add_argument("--display-duration", type=float, default=defaults["display_duration"], help="seconds a final stays up")
    p.add_argument("--fade-duration", type=float, default=defaults["fade_duration"], help="fade-out length (s)")
    p.add_argument("--max-visible", type=int, default=defaults["max_visible"], help="visible subtitle items")
    p.add_argument("--profile", dest="active_profile", default=defaults["active_profile"], help="game profile name")
    p.add_argument(
        "--overlay",
        action=argparse.BooleanOptionalAction,
        default=defaults["overlay"],
        help="show subtitles in the PyQt6 overlay instead of the console",
    )
    p.add_argument(
        "--show-partials",
        action=argparse.BooleanOptionalAction,
        default=defaults["show_partials"],
        help="print partial subtitles to the console",
    )
    p.add_argument(
        "--show-en",
        action=argparse.BooleanOptionalAction,
        default=defaults["show_en"],
        help="show/hide the English line in the overlay",
    )
    p.add_argument("--font-size-ja", type=int, default=defaults["font_size_ja"], help="Japanese font size")
    p.add_argument("--font-size-en", type=int, default=defaults["font_size_en"], help="English font size")
    p.add_argument("--overlay-opacity", type=int, default=defaults["overlay_opacity"], help="overlay opacity (0-100)")
    p.add_argument("--poll-ms", type=int, default=defaults["poll_ms"], help="UI queue poll interval (ms)")
    p.add_argument(
        "--queue-maxsize",
        type=int,
        default=defaults["queue_maxsize"],
        help="max display events queued between worker and UI",
    )
    p.add_argument("--debug", action="store_true", help="log debug-level pipeline events")
    return p


def resolve_args(argv: list[str] | None = None) -> argparse.Namespace:
    pre = argparse.ArgumentParser(add_help=False)
    pre.add_argument("--config", default=None)
    pre_args, _ = pre.parse_known_args(argv)
    defaults, _ = resolve_defaults(config_path=pre_args.config)
    parser = parser_with_defaults(defaults)
    args = parser.parse_args(argv)
    if defaults.get("list_devices"):
        args.list_devices = True
    if defaults.get("debug"):
        args.debug = True
    for key in CONFIG_KEYS:
        # settings without a CLI flag come straight from the file
        if not hasattr(args, key):
            setattr(args, key, defaults[key])
    return args


# -- immutable snapshot handed to the pipeline ---------------------------


@dataclass(frozen=True)
class AudioConfig:
    device: Optional[int] = None
    sample_rate: int = 16000
    channels: int = 1
    chunk_sec: float = 0.1
    frame_ms: int = 20
    replay: Optional[str] = None
    replay_speed: float = 1.0


@dataclass(frozen=True)
class VadConfig:
    backend: str = "energy"
    sensitivity: float = 0.5
    rms_threshold: Optional[float] = None
    aggressiveness: int = 2
    energy_window: int = 50
    noise_ratio: float = 3.0


@dataclass(frozen=True)
class SegmenterConfig:
    min_duration: float = 0.5
    max_duration: float = 6.0
    hangover: float = 0.3


@dataclass(frozen=True)
class AsrConfig:
    accurate_model: str = "small"
    fast_model: str = "tiny"
    fast_tier: bool = True
    device: str = "cpu"
    compute_type: str = "int8"
    accurate_beam_size: int = 5
    fast_beam_size: int = 1
    language: Optional[str] = "en"


@dataclass(frozen=True)
class DispatcherConfig:
    fast_timeout: float = 1.5
    fast_workers: int = 2
    accurate_concurrency: int = 1
    accurate_retries: int = 2
    degraded_after: int = 3
    carry_context: bool = True


@dataclass(frozen=True)
class TranslationConfig:
    provider: str = "argos"
    source_lang: str = "en"
    target_lang: str = "ja"
    workers: int = 1
    cache_size: int = 1000


@dataclass(frozen=True)
class LifecycleConfig:
    display_duration: float = 5.0
    fade_duration: float = 0.5
    max_visible: int = 3
    tick_interval: float = 0.1
    untranslated_marker: str = "[untranslated] "


@dataclass(frozen=True)
class DisplayConfig:
    overlay: bool = False
    show_partials: bool = True
    show_en: bool = True
    font_size_ja: int = 28
    font_size_en: int = 16
    padding_px: int = 14
    overlay_opacity: int = 66
    poll_ms: int = 60
    queue_maxsize: int = 100
    max_updates_per_tick: int = 20


@dataclass(frozen=True)
class PipelineConfig:
    audio: AudioConfig = field(default_factory=AudioConfig)
    vad: VadConfig = field(default_factory=VadConfig)
    segmenter: SegmenterConfig = field(default_factory=SegmenterConfig)
    asr: AsrConfig = field(default_factory=AsrConfig)
    dispatcher: DispatcherConfig = field(default_factory=DispatcherConfig)
    translation: TranslationConfig = field(default_factory=TranslationConfig)
    lifecycle: LifecycleConfig = field(default_factory=LifecycleConfig)
    display: DisplayConfig = field(default_factory=DisplayConfig)
    profile: GameProfile = field(default_factory=GameProfile)


def select_profile(profiles: Any, active: str | None) -> GameProfile:
    name = str(active or "default")
    for raw in profiles or []:
        if not isinstance(raw, dict):
            raise ValueError(f"profile entries must be JSON objects, got {type(raw).__name__}")
        if str(raw.get("name") or "default") == name:
            return GameProfile.from_dict(raw)
    if name == "default":
        return GameProfile()
    raise ValueError(f"unknown profile: {name}")


def build_pipeline_config(args: Any) -> PipelineConfig:
    """Snapshot resolved CLI/config values; reconfiguring means building a new pipeline."""
    d = DEFAULTS

    def get(key: str) -> Any:
        return getattr(args, key, d[key])

    rms_th = get("rms_th")
    language_lock = str(get("language_lock") or "en").lower()
    return PipelineConfig(
        audio=AudioConfig(
            device=get("device"),
            sample_rate=int(get("sr")),
            channels=int(get("channels")),
            chunk_sec=float(get("chunk_sec")),
            frame_ms=int(get("frame_ms")),
            replay=get("replay") or None,
            replay_speed=float(get("replay_speed")),
        ),
        vad=VadConfig(
            backend=str(get("vad")).lower(),
            sensitivity=float(get("vad_sensitivity")),
            rms_threshold=None if rms_th is None else float(rms_th),
            aggressiveness=int(get("vad_aggressiveness")),
            energy_window=int(get("energy_window")),
            noise_ratio=float(get("noise_ratio")),
        ),
        segmenter=SegmenterConfig(
            min_duration=float(get("min_duration")),
            max_duration=float(get("max_duration")),
            hangover=float(get("hangover")),
        ),
        asr=AsrConfig(
            accurate_model=str(get("accurate_model")),
            fast_model=str(get("fast_model")),
            fast_tier=bool(get("fast_tier")),
            device=str(get("asr_device")),
            compute_type=str(get("compute_type")),
            accurate_beam_size=int(get("accurate_beam_size")),
            fast_beam_size=int(get("fast_beam_size")),
            language=None if language_lock == "auto" else language_lock,
        ),
        dispatcher=DispatcherConfig(
            fast_timeout=float(get("fast_timeout")),
            fast_workers=int(get("fast_workers")),
            accurate_concurrency=int(get("accurate_concurrency")),
            accurate_retries=int(get("accurate_retries")),
            degraded_after=int(get("degraded_after")),
            carry_context=bool(get("carry_context")),
        ),
        translation=TranslationConfig(
            provider=str(get("translator")).lower(),
            source_lang=str(get("source_lang")),
            target_lang=str(get("target_lang")),
            workers=int(get("translation_workers")),
            cache_size=int(get("cache_size")),
        ),
        lifecycle=LifecycleConfig(
            display_duration=float(get("display_duration")),
            fade_duration=float(get("fade_duration")),
            max_visible=int(get("max_visible")),
            tick_interval=float(get("tick_interval")),
            untranslated_marker=str(get("untranslated_marker")),
        ),
        display=DisplayConfig(
            overlay=bool(get("overlay")),
            show_partials=bool(get("show_partials")),
            show_en=bool(get("show_en")),
            font_size_ja=int(get("font_size_ja")),
            font_size_en=int(get("font_size_en")),
            padding_px=int(get("padding_px")),
            overlay_opacity=int(get("overlay_opacity")),
            poll_ms=int(get("poll_ms")),
            queue_maxsize=int(get("queue_maxsize")),
            max_updates_per_tick=int(get("max_updates_per_tick")),
        ),
        profile=select_profile(get("profiles"), get("active_profile")),
    )
