from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional, Sequence


@dataclass(frozen=True)
class RawAudioChunk:
    """
    Audio block as delivered by a capture provider, before normalization.
    samples: little-endian signed 16-bit PCM bytes (interleaved if channels > 1),
             or a numpy array shaped (n,) or (n, channels).
    """
    samples: Any
    sample_rate: int
    channels: int
    start_time: float  # seconds, monotonic


@dataclass(frozen=True)
class AudioFrame:
    """Fixed-size block of mono float32 samples in [-1, 1]."""
    samples: Any  # np.ndarray[float32]
    sample_rate: int
    timestamp: float

    @property
    def duration(self) -> float:
        return len(self.samples) / float(self.sample_rate)


@dataclass(frozen=True)
class SpeechSegment:
    id: int
    start_ts: float
    end_ts: float
    samples: Any  # np.ndarray[float32]
    sample_rate: int = 16000
    # id of the segment this one continues after a forced split
    continues_from: Optional[int] = None

    @property
    def duration(self) -> float:
        return self.end_ts - self.start_ts


@dataclass(frozen=True)
class TranslationRequest:
    text: str
    source_lang: str = "en"
    target_lang: str = "ja"


@dataclass(frozen=True)
class TranslationResult:
    source_text: str
    translated_text: str
    provider: str


@dataclass(frozen=True)
class TranscriptionResult:
    segment_id: int
    text: str
    is_final: bool
    produced_at: float
    start_ts: float = 0.0
    provider: str = ""


class SubtitleKind(str, Enum):
    PARTIAL = "partial"
    FINAL = "final"


class SubtitleState(str, Enum):
    ABSENT = "absent"
    PARTIAL = "partial"
    FINAL = "final"
    FADING_OUT = "fading_out"
    REMOVED = "removed"


class DisplayEventKind(str, Enum):
    SHOW_PARTIAL = "show-partial"
    SHOW_FINAL = "show-final"
    UPDATE_TRANSLATION = "update-translation"
    FADE = "fade"
    REMOVE = "remove"


@dataclass(frozen=True)
class DisplayEvent:
    segment_id: int
    kind: DisplayEventKind
    text: str
    timestamp: float
    start_ts: float = 0.0
    source_text: str = ""
    untranslated: bool = False


@dataclass(frozen=True)
class GameProfile:
    name: str = "default"
    hotwords: Sequence[str] = ()
    initial_prompt: str = ""
    asr_corrections: Mapping[str, str] = field(default_factory=dict)
    pre_translation: Mapping[str, str] = field(default_factory=dict)
    post_translation: Mapping[str, str] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "GameProfile":
        return cls(
            name=str(payload.get("name") or "default"),
            hotwords=tuple(str(w) for w in payload.get("hotwords") or () if str(w).strip()),
            initial_prompt=str(payload.get("initial_prompt") or ""),
            asr_corrections=MappingProxyType(dict(payload.get("asr_corrections") or {})),
            pre_translation=MappingProxyType(dict(payload.get("pre_translation") or {})),
            post_translation=MappingProxyType(dict(payload.get("post_translation") or {})),
        )
