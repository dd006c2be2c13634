from __future__ import annotations

import contextlib
import threading
import time
from typing import Iterator, Optional

from dualsub.audio.frames import FrameSourceError
from dualsub.contracts import RawAudioChunk


class MicError(FrameSourceError):
    pass


def _import_sounddevice():
    try:
        import sounddevice as sd
    except ImportError as e:
        raise MicError(
            "sounddevice is not installed. Install with: python -m pip install sounddevice"
        ) from e
    return sd


class SoundDeviceFrameSource:
    """
    Live capture source using the `sounddevice` package (PortAudio).
    Captures raw PCM16 chunks of fixed duration until `stop()` is called.
    """

    def __init__(
        self,
        *,
        chunk_seconds: float = 0.1,
        sample_rate: int = 16000,
        channels: int = 1,
        device: Optional[int] = None,
    ) -> None:
        if chunk_seconds <= 0:
            raise ValueError("chunk_seconds must be > 0")
        if sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        if channels not in (1, 2):
            raise ValueError("channels must be 1 or 2 (for now)")

        self.chunk_seconds = float(chunk_seconds)
        self.sample_rate = int(sample_rate)
        self.channels = int(channels)
        self.device = device
        self.overflows = 0
        self._stop = threading.Event()

    @staticmethod
    def list_devices() -> str:
        sd = _import_sounddevice()
        return str(sd.query_devices())

    def stop(self) -> None:
        self._stop.set()

    @contextlib.contextmanager
    def _open_stream(self):
        sd = _import_sounddevice()
        try:
            stream = sd.RawInputStream(
                samplerate=self.sample_rate,
                channels=self.channels,
                dtype="int16",
                device=self.device,
                blocksize=0,  # let PortAudio choose
            )
        except Exception as e:
            raise MicError(
                "Failed to open capture stream. "
                "Try --list-devices and select a device id with --device."
            ) from e

        with stream:
            yield stream

    def chunks(self) -> Iterator[RawAudioChunk]:
        frames_per_chunk = max(1, int(round(self.chunk_seconds * self.sample_rate)))
        t0 = time.monotonic()
        frames_seen = 0

        with self._open_stream() as stream:
            while not self._stop.is_set():
                try:
                    data, overflowed = stream.read(frames_per_chunk)
                except Exception as e:
                    raise MicError(f"capture stream read failed: {e}") from e
                if overflowed:
                    # PortAudio dropped frames; timestamps stay sample-accurate.
                    self.overflows += 1

                start_time = t0 + frames_seen / self.sample_rate
                frames_seen += frames_per_chunk
                yield RawAudioChunk(
                    samples=bytes(data),
                    sample_rate=self.sample_rate,
                    channels=self.channels,
                    start_time=start_time,
                )
