from __future__ import annotations
from abc import ABC, abstractmethod
from dualsub.contracts import TranslationRequest, TranslationResult


class TranslationError(RuntimeError):
    pass


class Translator(ABC):
    @property
    @abstractmethod
    def name(self) -> str: ...

    @abstractmethod
    def translate(self, req: TranslationRequest) -> TranslationResult:
        """Translate req.text; raise TranslationError when the engine is unavailable."""
