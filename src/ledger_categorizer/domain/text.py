import re

_WHITESPACE = re.compile(r"\s+")
_REFERENCE_CHARS = re.compile(r"[0-9\-*#]+")


def normalize_text(text: str | None) -> str:
    if not text:
        return ""
    return _WHITESPACE.sub(" ", text).strip().lower()


def correction_pattern(description: str | None) -> str:
    """Reduce a description to the stable part used for learned corrections.

    Reference numbers, store numbers and card masks vary between otherwise
    identical transactions, so digits and ``-*#`` are removed.
    """
    if not description:
        return ""
    stripped = _REFERENCE_CHARS.sub(" ", description.lower())
    return _WHITESPACE.sub(" ", stripped).strip()


def extract_merchant(description: str | None) -> str | None:
    if not description:
        return None
    words = [word for word in _REFERENCE_CHARS.sub(" ", description).split() if len(word) > 2]
    if not words:
        return None
    return " ".join(words[:2])
