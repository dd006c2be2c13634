from __future__ import annotations

import logging
import re
import threading
import time
from concurrent.futures import Future
from dataclasses import dataclass, replace
from typing import Callable, Mapping, Optional

from dualsub.app.logging_setup import log_event
from dualsub.contracts import TranscriptionResult, TranslationRequest
from dualsub.live.supervisor import TaskSupervisor
from dualsub.nlp.cache import CacheKey, TranslationCache
from dualsub.nlp.dictionary import SubstitutionTable
from dualsub.nlp.translator.base import Translator

_WS = re.compile(r"\s+")


def normalize_text(text: str) -> str:
    return _WS.sub(" ", (text or "").strip())


@dataclass(frozen=True)
class TranslationOutcome:
    text: str
    source_text: str
    untranslated: bool = False
    from_cache: bool = False
    segment_id: int = -1


class TranslationStage:
    """
    Translate finalized transcriptions.

    Order per text: pre-dictionary, cache lookup keyed on the normalized text
    and target language, provider call on a miss (result cached), then
    post-dictionary. A provider failure yields the normalized source text
    marked `untranslated`, so the final text is never held back.
    """

    def __init__(
        self,
        *,
        translator: Translator,
        on_translated: Optional[Callable[[TranslationOutcome], None]] = None,
        cache: Optional[TranslationCache] = None,
        pre_dictionary: Optional[Mapping[str, str]] = None,
        post_dictionary: Optional[Mapping[str, str]] = None,
        source_lang: str = "en",
        target_lang: str = "ja",
        workers: int = 1,
        logger: logging.Logger | None = None,
    ) -> None:
        self.translator = translator
        self.on_translated = on_translated
        self.cache = cache
        self.pre = SubstitutionTable(pre_dictionary, ignore_case=True)
        self.post = SubstitutionTable(post_dictionary)
        self.source_lang = source_lang
        self.target_lang = target_lang
        self.logger = logger
        self._inflight: dict[CacheKey, Future] = {}
        self._inflight_lock = threading.Lock()
        self.supervisor = TaskSupervisor("translation", logger=logger)
        self.supervisor.add_pool("translate", workers)

    def _cache_get(self, key: CacheKey) -> Optional[str]:
        if self.cache is None:
            return None
        try:
            return self.cache.get(key)
        except Exception as e:
            log_event(self.logger, logging.WARNING, "cache_unavailable", op="get", error=repr(e))
            return None

    def _cache_put(self, key: CacheKey, value: str) -> None:
        if self.cache is None:
            return
        try:
            self.cache.put(key, value)
        except Exception as e:
            log_event(self.logger, logging.WARNING, "cache_unavailable", op="put", error=repr(e))

    def translate(self, text: str) -> TranslationOutcome:
        source = normalize_text(self.pre.apply(text or ""))
        if not source:
            return TranslationOutcome(text=source, source_text=source)

        key: CacheKey = (source, self.target_lang)
        cached = self._cache_get(key)
        if cached is not None:
            return TranslationOutcome(text=self.post.apply(cached), source_text=source, from_cache=True)

        # concurrent requests for the same key share one provider call
        with self._inflight_lock:
            waiter = self._inflight.get(key)
            owner = waiter is None
            if owner:
                waiter = Future()
                self._inflight[key] = waiter
        if not owner:
            shared = waiter.result()
            if shared is None:
                return TranslationOutcome(text=source, source_text=source, untranslated=True)
            return TranslationOutcome(text=self.post.apply(shared), source_text=source, from_cache=True)

        raw: Optional[str] = None
        t0 = time.perf_counter()
        try:
            res = self.translator.translate(
                TranslationRequest(text=source, source_lang=self.source_lang, target_lang=self.target_lang)
            )
            raw = str(res.translated_text)
            self._cache_put(key, raw)
        except Exception as e:
            log_event(
                self.logger,
                logging.WARNING,
                "translation_fallback",
                provider=self.translator.name,
                chars=len(source),
                error=repr(e),
            )
            return TranslationOutcome(text=source, source_text=source, untranslated=True)
        finally:
            with self._inflight_lock:
                self._inflight.pop(key, None)
            waiter.set_result(raw)

        log_event(
            self.logger,
            logging.INFO,
            "translation_done",
            provider=self.translator.name,
            chars=len(source),
            ms=round((time.perf_counter() - t0) * 1000.0, 2),
        )
        return TranslationOutcome(text=self.post.apply(raw), source_text=source)

    def submit(self, result: TranscriptionResult) -> None:
        if not result.is_final:
            return
        self.supervisor.submit("translate", f"translate:{result.segment_id}", self._run, result)

    def _run(self, result: TranscriptionResult) -> None:
        outcome = self.translate(result.text)
        if self.on_translated is not None:
            self.on_translated(replace(outcome, segment_id=result.segment_id))

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self.supervisor.wait_idle(timeout)

    def shutdown(self) -> None:
        self.supervisor.shutdown(wait=False)
