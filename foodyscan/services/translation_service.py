from __future__ import annotations

import logging
import threading
from typing import Dict, List, Sequence, Tuple

logger = logging.getLogger(__name__)

LANGUAGE_NAMES = {
    'en': 'English',
    'te': 'Telugu',
    'hi': 'Hindi',
    'ta': 'Tamil',
    'kn': 'Kannada',
    'ml': 'Malayalam',
    'bn': 'Bengali',
    'mr': 'Marathi',
    'gu': 'Gujarati',
    'pa': 'Punjabi',
}


def language_name(code: str) -> str:
    """Return the display name for a language code, or the code itself."""

    return LANGUAGE_NAMES.get(code, code)


class TranslationService:
    """Translate UI strings through the AI service with an in-memory cache.

    The cache is keyed by ``(language, text)`` and never evicts; it lives as
    long as the worker process.
    """

    def __init__(self, ai_service) -> None:
        self._ai = ai_service
        self._cache: Dict[Tuple[str, str], str] = {}
        self._lock = threading.Lock()

    def translate(self, text: str, target: str) -> str:
        if not text or target == 'en':
            return text

        key = (target, text)
        with self._lock:
            cached = self._cache.get(key)
        if cached is not None:
            return cached

        translated = self._ai.translate(text, language_name(target))
        if translated != text:
            with self._lock:
                self._cache[key] = translated
        return translated

    def translate_many(self, texts: Sequence[str], target: str) -> List[str]:
        if target == 'en':
            return list(texts)

        results: List[str] = list(texts)
        missing: List[int] = []
        with self._lock:
            for index, text in enumerate(texts):
                if not text:
                    continue
                cached = self._cache.get((target, text))
                if cached is None:
                    missing.append(index)
                else:
                    results[index] = cached

        if not missing:
            return results

        pending = [texts[index] for index in missing]
        # Duplicates in one request only need translating once.
        unique = list(dict.fromkeys(pending))
        translated = self._ai.translate_batch(unique, language_name(target))
        mapping = dict(zip(unique, translated))

        with self._lock:
            for text, value in mapping.items():
                if value != text:
                    self._cache[(target, text)] = value
        for index in missing:
            results[index] = mapping.get(texts[index], texts[index])

        logger.info('translate.batch', extra={'requested': len(texts), 'upstream': len(unique)})
        return results

    def cache_size(self) -> int:
        with self._lock:
            return len(self._cache)
