"""Question text canonicalisation, hashing and typing."""

from __future__ import annotations

import hashlib
import re
import unicodedata

from core.models import QuestionType

# Quote variants folded onto a single form before punctuation is stripped.
_QUOTE_CHARS = "\"'`´‘’‚‛“”„‟«»‹›〝〞＂＇"
_QUOTE_TABLE = str.maketrans({c: '"' for c in _QUOTE_CHARS})

_WS_RE = re.compile(r"\s+")

HASH_LENGTH = 16


def _keep(ch: str) -> bool:
    if ch == "?" or ch.isspace():
        return True
    # Letters, marks (needed by Indic and other combining scripts) and numbers.
    return unicodedata.category(ch)[0] in ("L", "M", "N")


def _canonical_pass(text: str) -> str:
    s = unicodedata.normalize("NFKC", text)
    s = unicodedata.normalize("NFKC", s.lower())
    s = s.translate(_QUOTE_TABLE)
    s = "".join(ch if _keep(ch) else " " for ch in s)
    return _WS_RE.sub(" ", s).strip()


def normalize(text: str) -> str:
    """Canonical comparison key for a question.

    Idempotent: a handful of compatibility characters only settle after
    lowercasing, so the pass is repeated until it reaches a fixed point.
    """
    current = _canonical_pass(text or "")
    while True:
        again = _canonical_pass(current)
        if again == current:
            return current
        current = again


def question_hash(text: str) -> str:
    """Short storage key derived from the normalized form."""
    return hashlib.md5(normalize(text).encode("utf-8")).hexdigest()[:HASH_LENGTH]


# ── question typing ──────────────────────────────────────────────────

_DEFINITION_PREFIXES = ("what is", "what are", "what does", "what's")
_STEPS_PREFIXES = ("how to", "how do", "how can", "how does")
_COMPARISON_MARKERS = (" vs ", " vs. ", " versus ", "difference between", "compared to", "comparison")
_LIST_PREFIXES = ("best ", "top ", "most ")
_LIST_MARKERS = ("best ", "examples of", "types of", "list of")
_YESNO_PREFIXES = (
    "can ", "is ", "are ", "does ", "do ", "will ", "should ", "could ", "would ",
)


def detect_question_type(question: str) -> QuestionType:
    """Rough answer-format class of a question, checked in priority order."""
    q = question.lower().strip()

    if q.startswith(_DEFINITION_PREFIXES):
        return QuestionType.DEFINITION
    if q.startswith(_STEPS_PREFIXES):
        return QuestionType.STEPS
    if any(m in q for m in _COMPARISON_MARKERS):
        return QuestionType.COMPARISON
    if q.startswith(_LIST_PREFIXES) or any(m in q for m in _LIST_MARKERS):
        return QuestionType.LIST
    if q.startswith("why "):
        return QuestionType.EXPLANATION
    if q.startswith(_YESNO_PREFIXES):
        return QuestionType.YESNO
    return QuestionType.PARAGRAPH
