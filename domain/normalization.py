"""Domain normalization: pure functions, zero external dependencies.

Only stdlib imports allowed.
"""

import re
import unicodedata

_NON_ALNUM = re.compile(r"[^a-z0-9\s]")
_NON_ALNUM_UPPER = re.compile(r"[^A-Z0-9]")


def strip_diacritics(text):
    """Remove combining marks: "Caffè" -> "Caffe"."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_description(text):
    """Normalize a free-text line description for keying and scoring.

    Lowercase, strip diacritics, replace non-alphanumerics with spaces,
    collapse whitespace.
    """
    if not text:
        return ""
    result = strip_diacritics(text).lower()
    result = _NON_ALNUM.sub(" ", result)
    return " ".join(result.split())


def normalize_tax_id(country, code):
    """Join country and code of a VAT id, dropping whitespace: ("IT", "123") -> "IT123"."""
    code = "".join((code or "").split()).upper()
    if not code:
        return None
    country = "".join((country or "").split()).upper()
    if country and not code.startswith(country):
        return f"{country}{code}"
    return code


def lot_code_prefix(ingredient_name, max_length=10):
    """Upper-cased alphanumeric prefix of an ingredient name for lot codes."""
    prefix = _NON_ALNUM_UPPER.sub("", strip_diacritics(ingredient_name or "").upper())
    return prefix[:max_length] or "LOTTO"
