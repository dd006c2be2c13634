from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Sequence

from dualsub.contracts import SpeechSegment


class TranscriptionError(RuntimeError):
    pass


@dataclass(frozen=True)
class TranscriptionRequest:
    segment: SpeechSegment
    hotwords: Sequence[str] = ()
    initial_prompt: str = ""
    language: Optional[str] = "en"


class TranscriptionProvider(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def transcribe(self, req: TranscriptionRequest) -> str:
        """Return the text spoken in req.segment; raise TranscriptionError on failure."""
        raise NotImplementedError
