"""Lexical language detection and query normalization."""

import re

SUPPORTED_LANGUAGES = ("en", "nl")

_STOPWORDS: dict[str, frozenset[str]] = {
    "en": frozenset({"the", "a", "an", "of", "in", "on", "and", "is", "for", "to", "what", "me"}),
    "nl": frozenset({"de", "het", "een", "van", "in", "op", "en", "is", "voor", "naar", "wat", "mij"}),
}

_WHITESPACE_RE = re.compile(r"\s+")


def detect_language(text: str) -> str:
    """Pick the supported language whose stopwords occur most often.

    Ties (including text with no stopwords) resolve to English.
    """
    words = text.lower().split()
    counts = {
        lang: sum(1 for word in words if word in stopwords)
        for lang, stopwords in _STOPWORDS.items()
    }
    return "nl" if counts["nl"] > counts["en"] else "en"


def normalize(text: str) -> str:
    """Trim, lowercase and collapse internal whitespace."""
    return _WHITESPACE_RE.sub(" ", text.strip().lower())
