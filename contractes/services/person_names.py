"""Display formatting for registry person names.

The registry stores names surname-first in uppercase (COGNOMS NOM):
"LAPORTA ESTRUCH JOAN" is shown as "Joan Laporta Estruch".
"""

from contractes.config import MAX_PARTICLE_WORDS
from contractes.services.name_matching import PARTICLES, group_display_tokens


def to_title_case(text: str) -> str:
    """Lowercase everything, then capitalize the first letter of each word."""
    result = []
    capitalize_next = True
    for char in text.lower():
        result.append(char.upper() if capitalize_next else char)
        capitalize_next = not char.isalnum()
    return "".join(result)


def _title_case_token(token: str, force_capital: bool) -> str:
    """Title-case one display token.

    Particles at the start of the token stay lowercase unless
    force_capital is set. Hyphenated surnames keep both halves
    capitalized: "MARTINEZ-ALMEIDA" -> "Martinez-Almeida".
    """
    parts = token.split(" ")

    particle_len = 0
    for length in range(min(MAX_PARTICLE_WORDS, len(parts) - 1), 0, -1):
        if " ".join(parts[:length]).upper() in PARTICLES:
            particle_len = length
            break

    formatted = []
    for idx, part in enumerate(parts):
        if idx < particle_len and not force_capital:
            formatted.append(part.lower())
            continue
        formatted.append(
            "-".join(seg[:1].upper() + seg[1:].lower() for seg in part.split("-"))
        )
    return " ".join(formatted)


def format_display_name(raw_name: str) -> str:
    """Reorder a COGNOMS NOM name into "Nom Cognoms" with particle-aware casing.

    The first two grouped tokens are surnames and the rest given names
    (Spanish/Catalan convention). One token is kept as is; two tokens are
    one surname plus one given name.

    Examples:
        "LAPORTA ESTRUCH JOAN"            -> "Joan Laporta Estruch"
        "GARCIA LOPEZ MARIA TERESA"       -> "Maria Teresa Garcia Lopez"
        "DE LA FUENTE GARCIA JUAN"        -> "Juan de la Fuente Garcia"
        "VAN DER BERG JOHANNES"           -> "Johannes van der Berg"
        "MARTINEZ-ALMEIDA NAVASQUES JOSE" -> "Jose Martinez-Almeida Navasques"
        "GARCIA JOAN"                     -> "Joan Garcia"
    """
    words = raw_name.split()
    if not words:
        return ""

    tokens = group_display_tokens(words)
    if len(tokens) == 1:
        return _title_case_token(tokens[0], True)

    if len(tokens) == 2:
        surnames, given = tokens[:1], tokens[1:]
    else:
        surnames, given = tokens[:2], tokens[2:]

    formatted_given = " ".join(_title_case_token(t, True) for t in given)
    formatted_surnames = " ".join(_title_case_token(t, False) for t in surnames)
    return f"{formatted_given} {formatted_surnames}".strip()
