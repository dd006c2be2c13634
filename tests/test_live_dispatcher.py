from __future__ import annotations

import threading
from typing import Callable, Dict, List, Optional

import numpy as np
import pytest

from dualsub.asr.base import TranscriptionError, TranscriptionProvider, TranscriptionRequest
from dualsub.contracts import GameProfile, SpeechSegment, TranscriptionResult
from dualsub.live.dispatcher import TranscriptionDispatcher


class _ManualClock:
    def __init__(self) -> None:
        self.now = 100.0

    def __call__(self) -> float:
        return self.now

    def advance(self, dt: float) -> None:
        self.now += dt


class _FakeProvider(TranscriptionProvider):
    """Answers from a per-segment script; a script entry may be a callable."""

    def __init__(self, name: str, script: Optional[Dict[int, object]] = None, default: str = "text") -> None:
        self._name = name
        self.script = script or {}
        self.default = default
        self.requests: List[TranscriptionRequest] = []
        self._lock = threading.Lock()

    @property
    def name(self) -> str:
        return self._name

    def transcribe(self, req: TranscriptionRequest) -> str:
        with self._lock:
            self.requests.append(req)
        entry = self.script.get(req.segment.id, self.default)
        if callable(entry):
            entry = entry(req)
        if isinstance(entry, Exception):
            raise entry
        return str(entry)


def _segment(segment_id: int, start: float = 0.0, continues_from: Optional[int] = None) -> SpeechSegment:
    return SpeechSegment(
        id=segment_id,
        start_ts=start,
        end_ts=start + 1.0,
        samples=np.zeros(16000, dtype=np.float32),
        continues_from=continues_from,
    )


def _dispatcher(accurate, fast, results: List[TranscriptionResult], **kwargs) -> TranscriptionDispatcher:
    return TranscriptionDispatcher(accurate=accurate, fast=fast, on_result=results.append, **kwargs)


def test_partial_then_final() -> None:
    results: List[TranscriptionResult] = []
    partial_seen = threading.Event()

    def _after_partial(req: TranscriptionRequest) -> str:
        assert partial_seen.wait(5.0)
        return "hello there friend"

    def _record(r: TranscriptionResult) -> None:
        results.append(r)
        if not r.is_final:
            partial_seen.set()

    d = TranscriptionDispatcher(
        accurate=_FakeProvider("accurate", {1: _after_partial}),
        fast=_FakeProvider("fast", {1: "hello their"}),
        on_result=_record,
    )
    d.submit(_segment(1))
    assert d.wait_idle(5.0)
    assert [(r.is_final, r.text) for r in results] == [(False, "hello their"), (True, "hello there friend")]
    assert results[1].provider == "accurate"
    d.shutdown()


def test_late_partial_never_overwrites_final() -> None:
    results: List[TranscriptionResult] = []
    final_seen = threading.Event()

    def _after_final(req: TranscriptionRequest) -> str:
        assert final_seen.wait(5.0)
        return "late partial"

    def _record(r: TranscriptionResult) -> None:
        results.append(r)
        if r.is_final:
            final_seen.set()

    d = TranscriptionDispatcher(
        accurate=_FakeProvider("accurate", {1: "the final"}),
        fast=_FakeProvider("fast", {1: _after_final}),
        on_result=_record,
    )
    d.submit(_segment(1))
    assert d.wait_idle(5.0)
    assert [(r.is_final, r.text) for r in results] == [(True, "the final")]
    d.shutdown()


def test_slow_fast_tier_result_is_discarded() -> None:
    clock = _ManualClock()
    results: List[TranscriptionResult] = []

    def _slow(req: TranscriptionRequest) -> str:
        clock.advance(2.0)
        return "too late"

    d = _dispatcher(
        _FakeProvider("accurate", {42: "on time final"}),
        _FakeProvider("fast", {42: _slow}),
        results,
        fast_timeout=1.5,
        clock=clock,
    )
    d.submit(_segment(42))
    assert d.wait_idle(5.0)
    assert [(r.segment_id, r.is_final, r.text) for r in results] == [(42, True, "on time final")]
    d.shutdown()


def test_accurate_retries_then_succeeds() -> None:
    attempts: List[int] = []

    def _flaky(req: TranscriptionRequest) -> object:
        attempts.append(1)
        if len(attempts) < 3:
            return TranscriptionError("busy")
        return "third time lucky"

    results: List[TranscriptionResult] = []
    dropped: List[int] = []
    d = _dispatcher(_FakeProvider("accurate", {1: _flaky}), None, results, on_drop=dropped.append, accurate_retries=2)
    d.submit(_segment(1))
    assert d.wait_idle(5.0)
    assert len(attempts) == 3
    assert [r.text for r in results] == ["third time lucky"]
    assert dropped == []
    d.shutdown()


def test_exhausted_retries_drop_segment() -> None:
    results: List[TranscriptionResult] = []
    dropped: List[int] = []
    accurate = _FakeProvider("accurate", {7: TranscriptionError("model crashed")})
    d = _dispatcher(accurate, None, results, on_drop=dropped.append, accurate_retries=1)
    d.submit(_segment(7))
    assert d.wait_idle(5.0)
    assert results == []
    assert dropped == [7]
    assert len(accurate.requests) == 2
    d.shutdown()


def test_degraded_signal_after_consecutive_drops_and_recovery() -> None:
    signals: List[bool] = []
    results: List[TranscriptionResult] = []
    failing = {i: TranscriptionError("down") for i in (1, 2, 3, 4)}
    d = _dispatcher(
        _FakeProvider("accurate", failing, default="back again"),
        None,
        results,
        on_degraded=signals.append,
        accurate_retries=0,
        degraded_after=3,
    )
    for i in range(1, 6):
        d.submit(_segment(i, start=float(i)))
    assert d.wait_idle(5.0)
    assert signals == [True, False]
    assert not d.degraded
    assert [r.segment_id for r in results] == [5]
    d.shutdown()


def test_empty_final_drops_without_degrading() -> None:
    signals: List[bool] = []
    dropped: List[int] = []
    results: List[TranscriptionResult] = []
    d = _dispatcher(
        _FakeProvider("accurate", {1: "   "}),
        None,
        results,
        on_drop=dropped.append,
        on_degraded=signals.append,
        degraded_after=1,
    )
    d.submit(_segment(1))
    assert d.wait_idle(5.0)
    assert dropped == [1]
    assert signals == []
    d.shutdown()


def test_accurate_queue_keeps_submission_order() -> None:
    results: List[TranscriptionResult] = []
    d = _dispatcher(_FakeProvider("accurate", {i: f"seg {i}" for i in range(1, 9)}), None, results)
    for i in range(1, 9):
        d.submit(_segment(i, start=float(i)))
    assert d.wait_idle(5.0)
    assert [r.text for r in results] == [f"seg {i}" for i in range(1, 9)]
    d.shutdown()


def test_corrections_and_hotword_casing() -> None:
    profile = GameProfile(
        name="rpg",
        hotwords=("Whiterun",),
        initial_prompt="Fantasy game.",
        asr_corrections={"dragon bourne": "Dragonborn"},
    )
    results: List[TranscriptionResult] = []
    accurate = _FakeProvider("accurate", {1: "the dragon bourne went to whiterun"})
    d = _dispatcher(accurate, None, results, profile=profile)
    d.submit(_segment(1))
    assert d.wait_idle(5.0)
    assert results[0].text == "the Dragonborn went to Whiterun"
    req = accurate.requests[0]
    assert tuple(req.hotwords) == ("Whiterun",)
    assert req.initial_prompt == "Fantasy game."
    d.shutdown()


@pytest.mark.parametrize("carry, expected", [(True, "Fantasy game. first half"), (False, "Fantasy game.")])
def test_continuation_prompt(carry: bool, expected: str) -> None:
    results: List[TranscriptionResult] = []
    accurate = _FakeProvider("accurate", {1: "first half", 2: "second half"})
    d = _dispatcher(
        accurate,
        None,
        results,
        profile=GameProfile(initial_prompt="Fantasy game."),
        carry_context=carry,
    )
    d.submit(_segment(1))
    d.submit(_segment(2, start=6.0, continues_from=1))
    assert d.wait_idle(5.0)
    prompts = {req.segment.id: req.initial_prompt for req in accurate.requests}
    assert prompts[2] == expected
    d.shutdown()


def test_duplicate_segment_id_rejected() -> None:
    d = _dispatcher(_FakeProvider("accurate"), None, [])
    gate = threading.Event()
    d.accurate.script[1] = lambda req: "ok" if gate.wait(5.0) else "timeout"  # type: ignore[attr-defined]
    d.submit(_segment(1))
    with pytest.raises(ValueError):
        d.submit(_segment(1))
    gate.set()
    assert d.wait_idle(5.0)
    d.shutdown()


def test_nothing_published_after_shutdown() -> None:
    results: List[TranscriptionResult] = []
    gate = threading.Event()
    entered = threading.Event()

    def _blocked(req: TranscriptionRequest) -> str:
        entered.set()
        gate.wait(5.0)
        return "too late"

    d = _dispatcher(_FakeProvider("accurate", {1: _blocked}), None, results)
    d.submit(_segment(1))
    assert entered.wait(5.0)
    d.shutdown()
    gate.set()
    for f in d.supervisor.inflight():
        f.result(5.0)
    assert results == []
