import re
import unicodedata

QUOTES_MAP = {
    "“": '"', "”": '"', "«": '"', "»": '"',
    "‘": "'", "’": "'",
}

_PUNCT_RE = re.compile(r"[?!.,;:¿¡]")
_SLUG_RE = re.compile(r"[^a-z0-9]+")


def replace_quotes(t: str) -> str:
    for k, v in QUOTES_MAP.items():
        t = t.replace(k, v)
    return t


def strip_accents(text: str) -> str:
    decomposed = unicodedata.normalize("NFD", text)
    return "".join(ch for ch in decomposed if unicodedata.category(ch) != "Mn")


def normalize_text(value) -> str:
    """Lowercase, drop accents and sentence punctuation."""

    t = strip_accents(str(value or "").lower())
    t = _PUNCT_RE.sub("", t)
    return t.strip()


def slugify(value) -> str:
    t = strip_accents(str(value or "").lower())
    return _SLUG_RE.sub("-", t).strip("-")
