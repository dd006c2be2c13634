from __future__ import annotations

import threading

import numpy as np

from dualsub.asr.base import TranscriptionError, TranscriptionProvider, TranscriptionRequest


class FasterWhisperProvider(TranscriptionProvider):
    """
    Transcription provider backed by faster-whisper.

    The model is loaded on first use. One provider instance serves one tier;
    calls on the same instance are serialized because a WhisperModel is not
    safe to drive from several threads at once.
    """

    def __init__(
        self,
        *,
        model_size: str = "tiny",
        device: str = "cpu",
        compute_type: str = "int8",
        beam_size: int = 1,
    ) -> None:
        if beam_size <= 0:
            raise ValueError("beam_size must be > 0")
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.beam_size = int(beam_size)
        self._model = None
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return f"faster-whisper:{self.model_size}"

    def _get_model(self):
        if self._model is None:
            from faster_whisper import WhisperModel

            self._model = WhisperModel(
                self.model_size,
                device=self.device,
                compute_type=self.compute_type,
            )
        return self._model

    def transcribe(self, req: TranscriptionRequest) -> str:
        audio = np.asarray(req.segment.samples, dtype=np.float32)
        if audio.size == 0:
            return ""
        if req.segment.sample_rate != 16000:
            raise TranscriptionError(
                f"faster-whisper expects 16000 Hz audio, got {req.segment.sample_rate}"
            )

        with self._lock:
            try:
                model = self._get_model()
                segments, _info = model.transcribe(
                    audio,
                    language=req.language,
                    beam_size=self.beam_size,
                    initial_prompt=req.initial_prompt.strip() or None,
                    hotwords=", ".join(req.hotwords) if req.hotwords else None,
                    vad_filter=False,
                    condition_on_previous_text=False,
                )
                texts = [(s.text or "").strip() for s in segments]
            except Exception as e:
                raise TranscriptionError(f"{self.name} failed: {e}") from e

        return " ".join(t for t in texts if t).strip()
