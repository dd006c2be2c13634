from __future__ import annotations

import numpy as np


def float_to_pcm16(samples: np.ndarray) -> bytes:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


class WebRtcVad:
    """
    WebRTC VAD expects:
      - 16-bit mono PCM
      - sample rate: 8000/16000/32000/48000
      - frame size: 10/20/30 ms
    aggressiveness: 0 (least) .. 3 (most aggressive)
    """
    def __init__(self, sr: int = 16000, frame_ms: int = 20, aggressiveness: int = 2):
        if frame_ms not in (10, 20, 30):
            raise ValueError("frame_ms must be 10/20/30")
        if sr not in (8000, 16000, 32000, 48000):
            raise ValueError("sr must be one of 8000/16000/32000/48000")
        if aggressiveness not in (0, 1, 2, 3):
            raise ValueError("aggressiveness must be 0..3")
        self.sr = sr
        self.frame_ms = frame_ms
        self.frame_samples = int(sr * frame_ms / 1000)
        try:
            import webrtcvad
        except ImportError as e:
            raise RuntimeError(
                "webrtcvad is not installed. Install with: python -m pip install webrtcvad"
            ) from e
        self.vad = webrtcvad.Vad(aggressiveness)

    def is_speech(self, samples: np.ndarray) -> bool:
        if len(samples) != self.frame_samples:
            raise ValueError(
                f"webrtc VAD needs {self.frame_samples}-sample frames, got {len(samples)}"
            )
        return self.vad.is_speech(float_to_pcm16(samples), self.sr)

    def reset(self) -> None:
        pass
