"""Name normalization, tokenization and token-overlap scoring.

Shared by the corporate registry linker and the office seat resolver.
Registry names arrive surname-first and uppercase ("LAPORTA ESTRUCH
JOAN"), office feed names usually given-name-first with accents ("Joan
Laporta Estruch"), and organization names vary in punctuation and
abbreviation. Everything here is pure and synchronous.
"""

from __future__ import annotations

import re
import unicodedata

from contractes.config import MAX_PARTICLE_WORDS, MAX_QUERY_TOKENS

# Surname particles grouped with the word that follows them for display
PARTICLES: frozenset[str] = frozenset({
    "DE", "DEL", "DE LA", "DE LOS", "DE LAS",
    "VAN", "VAN DE", "VAN DER", "VAN DEN",
    "VON", "DI", "DA", "DOS", "DAS",
    "EL", "AL", "BEN", "LE", "LA",
})

# Single words of compound surnames that carry no identity on their own
CONNECTOR_WORDS: frozenset[str] = frozenset(
    word for phrase in PARTICLES for word in phrase.split()
) | {"LOS", "LAS", "DER", "DEN"}

_NON_ALNUM_RE = re.compile(r"[^A-Z0-9]+")


def strip_diacritics(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize(text: str | None) -> str:
    """Uppercase, strip accents and collapse punctuation runs to one space.

    >>> normalize("  Àngels  Puig-Ferrer, S.L. ")
    'ANGELS PUIG FERRER S L'
    """
    if not text:
        return ""
    upper = strip_diacritics(text).upper()
    return _NON_ALNUM_RE.sub(" ", upper).strip()


def tokenize(
    text: str | None,
    *,
    person: bool = False,
    max_tokens: int | None = MAX_QUERY_TOKENS,
) -> list[str]:
    """Split a name into distinct match tokens.

    Args:
        text: Raw name.
        person: Drop connector words ("DE", "VAN", ...) used in compound
            surnames. They stay in the display form, see
            :func:`group_display_tokens`.
        max_tokens: Cap on the number of tokens returned, None for no cap.

    Returns:
        Tokens in first-seen order. An empty list means no match is possible.
    """
    normalized = normalize(text)
    if not normalized:
        return []

    tokens = [t for t in dict.fromkeys(normalized.split(" ")) if len(t) >= 2]
    if person:
        tokens = [t for t in tokens if t not in CONNECTOR_WORDS]
    if max_tokens is not None:
        tokens = tokens[:max_tokens]
    return tokens


def group_display_tokens(words: list[str]) -> list[str]:
    """Group particle phrases with the word that follows them.

    "DE LA FUENTE GARCIA JUAN" -> ["DE LA FUENTE", "GARCIA", "JUAN"]
    "VAN DER BERG JOHANNES"    -> ["VAN DER BERG", "JOHANNES"]
    """
    tokens: list[str] = []
    i = 0

    while i < len(words):
        matched = False
        # Leave room for the word the particle attaches to
        for length in range(min(MAX_PARTICLE_WORDS, len(words) - i - 1), 0, -1):
            candidate = " ".join(words[i:i + length]).upper()
            if candidate in PARTICLES:
                tokens.append(" ".join(words[i:i + length + 1]))
                i += length + 1
                matched = True
                break

        if not matched:
            tokens.append(words[i])
            i += 1

    return tokens


def surname_pairs(text: str | None) -> set[frozenset[str]]:
    """Unordered pairs from the first two and last two person tokens."""
    tokens = tokenize(text, person=True, max_tokens=None)
    if len(tokens) < 2:
        return set()
    return {frozenset(tokens[:2]), frozenset(tokens[-2:])}


def surname_pair_compatible(target: str | None, candidate: str | None) -> bool:
    """Cheap pre-filter run before :func:`score`.

    A target too short to yield a surname pair cannot be filtered, so the
    decision is deferred to scoring.
    """
    target_pairs = surname_pairs(target)
    if not target_pairs:
        return True
    return bool(target_pairs & surname_pairs(candidate))


def score(target: str | None, candidate: str | None) -> float:
    """Symmetric token overlap normalized by the larger token set.

    >>> score("JOAN LAPORTA ESTRUCH", "Laporta Estruch, Joan")
    1.0
    >>> score("JOAN LAPORTA", "JOAN LAPORTA ESTRUCH")
    0.6666666666666666
    """
    a = set(tokenize(target, max_tokens=None))
    b = set(tokenize(candidate, max_tokens=None))
    if not a or not b:
        return 0.0
    overlap = len(a & b)
    if overlap == 0:
        return 0.0
    return overlap / max(len(a), len(b))
