from __future__ import annotations

from collections import deque
from typing import Deque

import numpy as np

BASE_ENERGY_THRESHOLD = 0.01
MAX_ENERGY_THRESHOLD = 0.1


def frame_rms(samples: np.ndarray) -> float:
    """Return RMS energy for float samples in [-1, 1]."""
    if samples is None or len(samples) == 0:
        return 0.0
    values = np.asarray(samples, dtype=np.float64)
    return float(np.sqrt(np.mean(values * values)))


def threshold_for_sensitivity(sensitivity: float) -> float:
    # higher sensitivity -> lower threshold
    s = min(1.0, max(0.0, float(sensitivity)))
    return BASE_ENERGY_THRESHOLD + (MAX_ENERGY_THRESHOLD - BASE_ENERGY_THRESHOLD) * (1.0 - s)


class EnergyVAD:
    """
    Frame classifier on RMS energy.

    A frame is speech when its RMS exceeds both the fixed threshold and
    `noise_ratio` times the rolling mean of recent non-speech frames, so a
    raised background level does not read as continuous speech.
    """

    def __init__(
        self,
        *,
        sensitivity: float = 0.5,
        rms_threshold: float | None = None,
        energy_window: int = 50,
        noise_ratio: float = 3.0,
    ) -> None:
        if not 0.0 <= sensitivity <= 1.0:
            raise ValueError("sensitivity must be within [0, 1]")
        if rms_threshold is not None and rms_threshold < 0:
            raise ValueError("rms_threshold must be >= 0")
        if energy_window <= 0:
            raise ValueError("energy_window must be > 0")
        self.rms_threshold = (
            float(rms_threshold) if rms_threshold is not None else threshold_for_sensitivity(sensitivity)
        )
        self.noise_ratio = float(noise_ratio)
        self._noise: Deque[float] = deque(maxlen=int(energy_window))

    @property
    def noise_floor(self) -> float:
        if not self._noise:
            return 0.0
        return sum(self._noise) / len(self._noise)

    def effective_threshold(self) -> float:
        return max(self.rms_threshold, self.noise_floor * self.noise_ratio)

    def is_speech(self, samples: np.ndarray) -> bool:
        rms = frame_rms(samples)
        speech = rms > self.effective_threshold()
        if not speech:
            self._noise.append(rms)
        return speech

    def reset(self) -> None:
        self._noise.clear()
