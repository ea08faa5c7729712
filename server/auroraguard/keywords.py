from __future__ import annotations

from typing import Iterable

DEFAULT_KEYWORDS: tuple[str, ...] = ("aurora", "help", "emergency")
MAX_KEYWORDS = 50


def normalize_keyword(raw: str) -> str:
    return " ".join(str(raw).strip().lower().split())


def match_keyword(transcript: str, keywords: Iterable[str]) -> str | None:
    """Return the first keyword (in configured order) contained in the transcript.

    Plain case-insensitive substring search with no word boundaries, so
    "helper" matches the keyword "help". Over-matching is accepted in exchange
    for never missing a keyword embedded in a longer recognised word.
    """
    text = str(transcript).lower()
    if not text:
        return None
    for kw in keywords:
        needle = str(kw).lower()
        if needle and needle in text:
            return kw
    return None


class KeywordSet:
    """Ordered, de-duplicated lowercase keywords. Every mutation replaces the whole set."""

    def __init__(self, keywords: Iterable[str] = DEFAULT_KEYWORDS) -> None:
        self._keywords: tuple[str, ...] = self._clean(keywords)

    @staticmethod
    def _clean(keywords: Iterable[str]) -> tuple[str, ...]:
        cleaned: list[str] = []
        for k in keywords:
            if not isinstance(k, str):
                continue
            kk = normalize_keyword(k)
            if kk and kk not in cleaned:
                cleaned.append(kk)
        return tuple(cleaned[:MAX_KEYWORDS])

    @property
    def keywords(self) -> tuple[str, ...]:
        return self._keywords

    def replace(self, keywords: Iterable[str]) -> tuple[str, ...]:
        self._keywords = self._clean(keywords)
        return self._keywords

    def add(self, keyword: str) -> bool:
        kk = normalize_keyword(keyword)
        if not kk or kk in self._keywords:
            return False
        self.replace([*self._keywords, kk])
        return kk in self._keywords

    def remove(self, keyword: str) -> bool:
        kk = normalize_keyword(keyword)
        if kk not in self._keywords:
            return False
        self.replace([k for k in self._keywords if k != kk])
        return True

    def match(self, transcript: str) -> str | None:
        return match_keyword(transcript, self._keywords)

    def __iter__(self):
        return iter(self._keywords)

    def __len__(self) -> int:
        return len(self._keywords)

    def __contains__(self, keyword: object) -> bool:
        return isinstance(keyword, str) and normalize_keyword(keyword) in self._keywords
