"""Literal match finding and keyword term extraction over chunk text."""

from __future__ import annotations

from collections import Counter
from dataclasses import dataclass
import re

from razdel import tokenize


CONTEXT_RADIUS_CHARS = 150
MIN_TERM_CHARS = 3
FUZZY_WORD_LIMIT = 3

_WORD_RE = re.compile(r"[^\W_]+")

STOPWORDS = frozenset(
    {
        # English
        "the", "and", "for", "are", "but", "not", "you", "all", "any", "can", "had", "her",
        "was", "one", "our", "out", "has", "him", "his", "how", "its", "may", "who", "did",
        "does", "she", "they", "them", "their", "there", "then", "than", "that", "this",
        "these", "those", "what", "when", "where", "which", "while", "with", "would",
        "could", "should", "about", "into", "from", "have", "been", "were", "will", "your",
        "also", "just", "only", "some", "such", "very", "more", "most", "other", "over",
        "why", "whom", "whose", "being", "because", "after", "before", "between", "during",
        # Russian
        "что", "как", "это", "для", "его", "она", "они", "оно", "или", "так", "все", "уже",
        "был", "была", "были", "было", "быть", "когда", "где", "кто", "чем", "мне", "нас",
        "вас", "них", "при", "про", "без", "под", "над", "также", "который", "которая",
    }
)


@dataclass(slots=True)
class TextMatch:
    start: int
    end: int
    context: str

    def to_dict(self) -> dict[str, int | str]:
        return {"start": self.start, "end": self.end, "context": self.context}


def compile_literal_pattern(query: str, *, case_sensitive: bool, whole_words: bool) -> re.Pattern[str]:
    """Build a regex matching ``query`` literally.

    Whole-word mode rejects matches preceded or followed by a word character,
    so ``cat`` does not match inside ``category``.
    """

    expression = re.escape(query)
    if whole_words:
        expression = rf"(?<!\w){expression}(?!\w)"
    return re.compile(expression, 0 if case_sensitive else re.IGNORECASE)


def compile_any_word_pattern(words: list[str]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(word) for word in sorted(words, key=len, reverse=True))
    return re.compile(f"(?:{alternatives})", re.IGNORECASE)


def fuzzy_words(query: str) -> list[str]:
    """Words used by the fallback search: the first few words longer than two characters."""

    words = [word for word in query.lower().split() if len(word) > 2]
    return words[:FUZZY_WORD_LIMIT]


def query_variations(query: str) -> list[str]:
    """Near spellings of a single term: lower-cased, minus the last character, minus the first."""

    variations = [query.lower(), query[:-1], query[1:]]
    return [variation for variation in dict.fromkeys(variations) if len(variation) >= MIN_TERM_CHARS]


def find_matches(text: str, pattern: re.Pattern[str], *, radius: int = CONTEXT_RADIUS_CHARS) -> list[TextMatch]:
    matches: list[TextMatch] = []
    for match in pattern.finditer(text):
        start, end = match.span()
        if start == end:
            continue
        context = text[max(0, start - radius) : end + radius]
        matches.append(TextMatch(start=start, end=end, context=context))
    return matches


def extract_terms(text: str) -> list[str]:
    """Lower-cased content words of ``text``, stop words and short words removed."""

    terms: list[str] = []
    for token in tokenize(text.lower().replace("ё", "е")):
        value = token.text.strip()
        if len(value) < MIN_TERM_CHARS or not _WORD_RE.fullmatch(value):
            continue
        if value in STOPWORDS:
            continue
        terms.append(value)
    return terms


def unique_terms(text: str) -> list[str]:
    return list(dict.fromkeys(extract_terms(text)))


def overlap_score(query_terms: list[str], text: str) -> tuple[int, int]:
    """Return (distinct query terms present, total occurrences of query terms)."""

    counts = Counter(extract_terms(text))
    distinct = sum(1 for term in query_terms if counts[term])
    occurrences = sum(counts[term] for term in query_terms)
    return distinct, occurrences
