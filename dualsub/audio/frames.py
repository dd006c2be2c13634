from __future__ import annotations

from typing import Iterator, List, Optional, Protocol

import numpy as np

from dualsub.contracts import AudioFrame, RawAudioChunk


class FrameSourceError(RuntimeError):
    """The capture provider halted with an error; fatal to the pipeline."""


class FrameSource(Protocol):
    def chunks(self) -> Iterator[RawAudioChunk]:
        ...


def _as_float_mono(chunk: RawAudioChunk) -> np.ndarray:
    channels = max(1, int(chunk.channels))
    data = chunk.samples
    if isinstance(data, (bytes, bytearray, memoryview)):
        ints = np.frombuffer(bytes(data), dtype="<i2")
        values = ints.astype(np.float32) / 32768.0
    else:
        arr = np.asarray(data)
        if np.issubdtype(arr.dtype, np.integer):
            values = arr.astype(np.float32) / 32768.0
        else:
            values = arr.astype(np.float32)
    if channels > 1:
        usable = (values.size // channels) * channels
        values = values.reshape(-1)[:usable].reshape(-1, channels).mean(axis=1)
    return values.reshape(-1).astype(np.float32)


def resample_linear(samples: np.ndarray, src_rate: int, dst_rate: int) -> np.ndarray:
    if src_rate == dst_rate or samples.size == 0:
        return samples
    n_out = int(round(samples.size * dst_rate / float(src_rate)))
    if n_out <= 0:
        return np.zeros(0, dtype=np.float32)
    src_t = np.arange(samples.size, dtype=np.float64) / src_rate
    dst_t = np.arange(n_out, dtype=np.float64) / dst_rate
    return np.interp(dst_t, src_t, samples).astype(np.float32)


class FrameAdapter:
    """
    Normalize raw capture chunks into fixed-size mono float32 frames.

    Leftover samples shorter than one frame are carried over to the next chunk.
    Frame timestamps are derived from the first chunk's start time plus the
    number of frames emitted, so they stay monotonic whatever the chunking.
    """

    def __init__(self, *, sample_rate: int = 16000, frame_ms: int = 20) -> None:
        if sample_rate <= 0:
            raise ValueError("sample_rate must be > 0")
        if frame_ms <= 0:
            raise ValueError("frame_ms must be > 0")
        self.sample_rate = int(sample_rate)
        self.frame_ms = int(frame_ms)
        self.frame_samples = max(1, int(self.sample_rate * self.frame_ms / 1000))
        self.frame_duration = self.frame_samples / float(self.sample_rate)
        self._pending = np.zeros(0, dtype=np.float32)
        self._t0: Optional[float] = None
        self._frames_emitted = 0

    def push(self, chunk: RawAudioChunk) -> List[AudioFrame]:
        if chunk.sample_rate <= 0:
            raise ValueError("chunk sample_rate must be > 0")
        if self._t0 is None:
            self._t0 = float(chunk.start_time)
        mono = resample_linear(_as_float_mono(chunk), int(chunk.sample_rate), self.sample_rate)
        buf = np.concatenate([self._pending, mono]) if self._pending.size else mono

        out: List[AudioFrame] = []
        n_full = buf.size // self.frame_samples
        for i in range(n_full):
            block = buf[i * self.frame_samples : (i + 1) * self.frame_samples]
            out.append(self._make_frame(block))
        self._pending = buf[n_full * self.frame_samples :].copy()
        return out

    def flush(self) -> List[AudioFrame]:
        if self._pending.size == 0:
            return []
        block = np.zeros(self.frame_samples, dtype=np.float32)
        block[: self._pending.size] = self._pending
        self._pending = np.zeros(0, dtype=np.float32)
        return [self._make_frame(block)]

    def _make_frame(self, block: np.ndarray) -> AudioFrame:
        ts = (self._t0 or 0.0) + self._frames_emitted * self.frame_duration
        self._frames_emitted += 1
        return AudioFrame(samples=block, sample_rate=self.sample_rate, timestamp=ts)

    def frames(self, source: FrameSource) -> Iterator[AudioFrame]:
        """Adapt a whole source; capture errors surface as FrameSourceError."""
        try:
            for chunk in source.chunks():
                yield from self.push(chunk)
        except FrameSourceError:
            raise
        except (OSError, RuntimeError) as e:
            raise FrameSourceError(f"frame source failed: {e}") from e
        yield from self.flush()
