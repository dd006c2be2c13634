from unittest.mock import MagicMock

import numpy as np
import pytest

from dualsub.asr.base import TranscriptionError, TranscriptionRequest
from dualsub.asr.faster_whisper_pcm16 import FasterWhisperProvider
from dualsub.contracts import SpeechSegment


def _request(samples, **kwargs):
    seg = SpeechSegment(id=1, start_ts=0.0, end_ts=1.0, samples=samples)
    return TranscriptionRequest(segment=seg, **kwargs)


def test_transcribe_joins_segments(monkeypatch):
    fake_model = MagicMock()

    # Fake segment objects
    seg1 = MagicMock(start=0.0, end=1.2, text=" Hello")
    seg2 = MagicMock(start=1.2, end=2.5, text="world. ")
    fake_model.transcribe.return_value = ([seg1, seg2], MagicMock())

    provider = FasterWhisperProvider(model_size="base", beam_size=5)

    # Replace _get_model to avoid loading real model
    monkeypatch.setattr(provider, "_get_model", lambda: fake_model)

    out = provider.transcribe(_request(np.zeros(16000, dtype=np.float32), hotwords=("Zelda", "Hyrule")))
    assert out == "Hello world."
    kwargs = fake_model.transcribe.call_args.kwargs
    assert kwargs["beam_size"] == 5
    assert kwargs["language"] == "en"
    assert kwargs["hotwords"] == "Zelda, Hyrule"
    assert kwargs["initial_prompt"] is None


def test_transcribe_empty_audio_skips_model(monkeypatch):
    provider = FasterWhisperProvider()
    fake_model = MagicMock()
    monkeypatch.setattr(provider, "_get_model", lambda: fake_model)
    assert provider.transcribe(_request(np.zeros(0, dtype=np.float32))) == ""
    fake_model.transcribe.assert_not_called()


def test_transcribe_wraps_model_errors(monkeypatch):
    provider = FasterWhisperProvider()
    fake_model = MagicMock()
    fake_model.transcribe.side_effect = RuntimeError("boom")
    monkeypatch.setattr(provider, "_get_model", lambda: fake_model)
    with pytest.raises(TranscriptionError, match="boom"):
        provider.transcribe(_request(np.zeros(1600, dtype=np.float32)))


def test_provider_name_and_beam_validation():
    assert FasterWhisperProvider(model_size="small").name == "faster-whisper:small"
    with pytest.raises(ValueError):
        FasterWhisperProvider(beam_size=0)
