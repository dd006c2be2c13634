from __future__ import annotations

import threading
import time
import wave
from pathlib import Path
from typing import Iterator

from dualsub.audio.frames import FrameSourceError
from dualsub.contracts import RawAudioChunk


class WavFrameSource:
    """Replay a PCM16 WAV file as a capture source."""

    def __init__(self, path: str | Path, *, chunk_seconds: float = 0.1, speed: float = 0.0) -> None:
        if chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be > 0")
        if speed < 0:
            raise ValueError("speed must be >= 0")
        self.path = Path(path)
        self.chunk_seconds = float(chunk_seconds)
        # 0 = as fast as possible, 1.0 = realtime, 2.0 = 2x faster
        self.speed = float(speed)
        self._stop = threading.Event()

    def stop(self) -> None:
        self._stop.set()

    def chunks(self) -> Iterator[RawAudioChunk]:
        try:
            wf = wave.open(str(self.path), "rb")
        except (OSError, wave.Error) as e:
            raise FrameSourceError(f"cannot open wav file {self.path}: {e}") from e

        with wf:
            if wf.getsampwidth() != 2:
                raise FrameSourceError(f"{self.path}: only 16-bit PCM WAV is supported")
            sr = wf.getframerate()
            channels = wf.getnchannels()
            frames_per_chunk = max(1, int(round(self.chunk_seconds * sr)))
            frames_seen = 0
            start = time.perf_counter()

            while not self._stop.is_set():
                data = wf.readframes(frames_per_chunk)
                if not data:
                    return
                audio_time = frames_seen / float(sr)
                if self.speed > 0:
                    target = audio_time / self.speed
                    delay = target - (time.perf_counter() - start)
                    if delay > 0:
                        time.sleep(delay)
                frames_seen += len(data) // (2 * channels)
                yield RawAudioChunk(
                    samples=data,
                    sample_rate=sr,
                    channels=channels,
                    start_time=audio_time,
                )
