from __future__ import annotations

import threading

from .base import TranslationError, Translator
from dualsub.contracts import TranslationRequest, TranslationResult


class ArgosTranslator(Translator):
    def __init__(self, from_code: str = "en", to_code: str = "ja", auto_install: bool = True):
        self.from_code = from_code
        self.to_code = to_code
        self.auto_install = auto_install
        self._ready = False
        self._ready_lock = threading.Lock()

    @property
    def name(self) -> str:
        return "argos"

    def _ensure_ready(self) -> None:
        with self._ready_lock:
            if self._ready:
                return

            import argostranslate.package
            import argostranslate.translate

            installed = argostranslate.translate.get_installed_languages()
            have_from = any(l.code == self.from_code for l in installed)
            have_to = any(l.code == self.to_code for l in installed)

            if not (have_from and have_to):
                if not self.auto_install:
                    raise TranslationError("Argos model not installed and auto_install=False")

                argostranslate.package.update_package_index()
                available = argostranslate.package.get_available_packages()

                pkg = None
                for p in available:
                    if p.from_code == self.from_code and p.to_code == self.to_code:
                        pkg = p
                        break
                if pkg is None:
                    raise TranslationError(f"No Argos package found for {self.from_code}->{self.to_code}")

                path = pkg.download()
                argostranslate.package.install_from_path(path)

            self._ready = True

    def translate(self, req: TranslationRequest) -> TranslationResult:
        if (req.source_lang, req.target_lang) != (self.from_code, self.to_code):
            raise TranslationError(
                f"argos translator is set up for {self.from_code}->{self.to_code}, "
                f"got {req.source_lang}->{req.target_lang}"
            )
        try:
            self._ensure_ready()
            import argostranslate.translate
            out = argostranslate.translate.translate(req.text, self.from_code, self.to_code)
        except TranslationError:
            raise
        except Exception as e:
            raise TranslationError(f"argos translation failed: {e}") from e
        return TranslationResult(source_text=req.text, translated_text=out, provider=self.name)
