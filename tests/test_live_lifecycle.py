from __future__ import annotations

from typing import List

import pytest

from dualsub.contracts import DisplayEvent, DisplayEventKind as K, SubtitleState, TranscriptionResult
from dualsub.live.lifecycle import SubtitleLifecycleManager
from dualsub.live.translation import TranslationOutcome


class _ManualClock:
    def __init__(self, now: float = 0.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _partial(segment_id: int, text: str, start: float = 0.0) -> TranscriptionResult:
    return TranscriptionResult(segment_id=segment_id, text=text, is_final=False, produced_at=0.0, start_ts=start)


def _final(segment_id: int, text: str, start: float = 0.0) -> TranscriptionResult:
    return TranscriptionResult(segment_id=segment_id, text=text, is_final=True, produced_at=0.0, start_ts=start)


def _manager(**kwargs):
    events: List[DisplayEvent] = []
    clock = _ManualClock()
    mgr = SubtitleLifecycleManager(sink=events.append, clock=clock, **kwargs)
    return mgr, events, clock


def _kinds(events: List[DisplayEvent]) -> List[tuple]:
    return [(e.segment_id, e.kind) for e in events]


def test_full_lifecycle_timing() -> None:
    mgr, events, clock = _manager(display_duration=5.0, fade_duration=0.5)
    mgr.register(1, 0.0)
    mgr.on_transcription(_partial(1, "hello their"))
    clock.now = 10.0
    mgr.on_transcription(_final(1, "hello there"))
    assert mgr.state_of(1) == SubtitleState.FINAL

    clock.now = 10.5
    mgr.on_translation(TranslationOutcome(text="こんにちは", source_text="hello there", segment_id=1))
    assert events[-1].kind == K.UPDATE_TRANSLATION
    assert events[-1].text == "こんにちは"
    assert events[-1].source_text == "hello there"

    mgr.tick(15.4)
    assert events[-1].kind == K.UPDATE_TRANSLATION
    mgr.tick(15.5)
    assert events[-1].kind == K.FADE
    assert mgr.state_of(1) == SubtitleState.FADING_OUT
    mgr.tick(15.9)
    assert events[-1].kind == K.FADE
    mgr.tick(16.0)
    assert events[-1].kind == K.REMOVE
    assert mgr.state_of(1) == SubtitleState.REMOVED

    assert _kinds(events) == [
        (1, K.SHOW_PARTIAL),
        (1, K.SHOW_FINAL),
        (1, K.UPDATE_TRANSLATION),
        (1, K.FADE),
        (1, K.REMOVE),
    ]
    assert [e.timestamp for e in events] == [0.0, 10.0, 10.5, 15.5, 16.0]


def test_events_for_removed_segment_are_ignored() -> None:
    mgr, events, clock = _manager(display_duration=1.0, fade_duration=0.0)
    mgr.on_transcription(_final(1, "done"))
    mgr.tick(1.0)
    mgr.tick(1.0)
    assert mgr.state_of(1) == SubtitleState.REMOVED
    n = len(events)
    mgr.on_translation(TranslationOutcome(text="late", source_text="done", segment_id=1))
    mgr.on_transcription(_partial(1, "late partial"))
    mgr.on_transcription(_final(1, "late final"))
    assert len(events) == n


def test_partial_after_final_is_ignored() -> None:
    mgr, events, _ = _manager()
    mgr.on_transcription(_final(1, "final text"))
    mgr.on_transcription(_partial(1, "stale partial"))
    assert _kinds(events) == [(1, K.SHOW_FINAL)]
    assert mgr.snapshot()[0].displayed_text == "final text"


def test_display_order_follows_start_time() -> None:
    mgr, events, _ = _manager()
    mgr.register(1, 0.0)
    mgr.register(2, 1.0)
    mgr.on_transcription(_partial(2, "second", start=1.0))
    assert events == []
    assert mgr.pending_count() == 2
    mgr.on_transcription(_partial(1, "first", start=0.0))
    assert _kinds(events) == [(1, K.SHOW_PARTIAL), (2, K.SHOW_PARTIAL)]
    assert [item.segment_id for item in mgr.snapshot()] == [1, 2]


def test_held_final_and_translation_release_together() -> None:
    mgr, events, _ = _manager()
    mgr.register(1, 0.0)
    mgr.register(2, 1.0)
    mgr.on_transcription(_final(2, "second", start=1.0))
    mgr.on_translation(TranslationOutcome(text="二番目", source_text="second", segment_id=2))
    assert events == []
    mgr.on_transcription(_final(1, "first"))
    assert _kinds(events) == [(1, K.SHOW_FINAL), (2, K.SHOW_FINAL), (2, K.UPDATE_TRANSLATION)]


def test_discard_unblocks_later_segments() -> None:
    mgr, events, _ = _manager()
    mgr.register(1, 0.0)
    mgr.register(2, 1.0)
    mgr.on_transcription(_final(2, "second", start=1.0))
    assert events == []
    mgr.discard(1)
    assert _kinds(events) == [(2, K.SHOW_FINAL)]
    assert mgr.state_of(1) == SubtitleState.REMOVED


def test_discard_removes_visible_partial() -> None:
    mgr, events, _ = _manager()
    mgr.register(1, 0.0)
    mgr.on_transcription(_partial(1, "maybe"))
    mgr.discard(1)
    assert _kinds(events) == [(1, K.SHOW_PARTIAL), (1, K.REMOVE)]


def test_partials_do_not_expire() -> None:
    mgr, events, _ = _manager(display_duration=1.0)
    mgr.on_transcription(_partial(1, "still talking"))
    mgr.tick(100.0)
    assert _kinds(events) == [(1, K.SHOW_PARTIAL)]


def test_max_visible_fades_oldest_final() -> None:
    mgr, events, _ = _manager(max_visible=2, fade_duration=0.5)
    for i in range(1, 4):
        mgr.register(i, float(i))
        mgr.on_transcription(_final(i, f"line {i}", start=float(i)))
    assert [k for sid, k in _kinds(events) if sid == 1] == [K.SHOW_FINAL, K.FADE]
    assert mgr.state_of(1) == SubtitleState.FADING_OUT
    mgr.tick(0.4)
    assert mgr.state_of(1) == SubtitleState.FADING_OUT
    mgr.tick(0.5)
    assert [k for sid, k in _kinds(events) if sid == 1] == [K.SHOW_FINAL, K.FADE, K.REMOVE]
    assert [item.segment_id for item in mgr.snapshot()] == [2, 3]


def test_max_visible_without_fade_still_emits_fade_first() -> None:
    mgr, events, _ = _manager(max_visible=1, fade_duration=0.0)
    mgr.on_transcription(_final(1, "first", start=1.0))
    mgr.on_transcription(_final(2, "second", start=2.0))
    assert [k for sid, k in _kinds(events) if sid == 1] == [K.SHOW_FINAL, K.FADE, K.REMOVE]
    assert [item.segment_id for item in mgr.snapshot()] == [2]


def test_max_visible_keeps_partial_until_its_final() -> None:
    mgr, events, _ = _manager(max_visible=3)
    for i in range(1, 5):
        mgr.register(i, float(i))
        mgr.on_transcription(_partial(i, f"part {i}", start=float(i)))
    assert all(k == K.SHOW_PARTIAL for _, k in _kinds(events))
    assert mgr.state_of(1) == SubtitleState.PARTIAL

    mgr.on_transcription(_final(1, "final 1", start=1.0))
    assert (1, K.SHOW_FINAL) in _kinds(events)
    assert [e.text for e in events if e.segment_id == 1 and e.kind == K.SHOW_FINAL] == ["final 1"]
    assert mgr.state_of(1) != SubtitleState.REMOVED


def test_removed_ids_are_bounded() -> None:
    mgr, _, _ = _manager(fade_duration=0.0)
    for i in range(1, 1500):
        mgr.on_transcription(_final(i, "x", start=float(i)))
    assert len(mgr._removed) <= 1024
    assert mgr.state_of(1400) == SubtitleState.REMOVED


def test_untranslated_marker_in_displayed_text() -> None:
    mgr, events, _ = _manager()
    mgr.on_transcription(_final(1, "Watch out"))
    mgr.on_translation(TranslationOutcome(text="Watch out", source_text="Watch out", untranslated=True, segment_id=1))
    assert events[-1].text == "[untranslated] Watch out"
    assert events[-1].untranslated


def test_late_translation_extends_display_window() -> None:
    mgr, events, clock = _manager(display_duration=5.0)
    mgr.on_transcription(_final(1, "hi"))
    clock.now = 4.0
    mgr.on_translation(TranslationOutcome(text="やあ", source_text="hi", segment_id=1))
    mgr.tick(5.0)
    assert events[-1].kind == K.UPDATE_TRANSLATION
    mgr.tick(9.0)
    assert events[-1].kind == K.FADE


def test_clear_removes_everything() -> None:
    mgr, events, _ = _manager()
    mgr.register(1, 0.0)
    mgr.register(2, 1.0)
    mgr.register(3, 2.0)
    mgr.on_transcription(_final(1, "a"))
    mgr.on_transcription(_partial(2, "b", start=1.0))
    mgr.clear()
    assert mgr.snapshot() == []
    assert mgr.pending_count() == 0
    assert _kinds(events)[-2:] == [(1, K.REMOVE), (2, K.REMOVE)]
    n = len(events)
    mgr.on_transcription(_final(3, "c", start=2.0))
    assert len(events) == n


def test_invalid_settings_rejected() -> None:
    with pytest.raises(ValueError):
        SubtitleLifecycleManager(sink=lambda e: None, max_visible=0)
