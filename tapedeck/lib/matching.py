"""
Name matching used by entity resolution.

Pure functions, no I/O.  Comparison is case-insensitive and ignores
runs of whitespace.  An empty name never matches anything.
"""

from tapedeck.models import normalize_name


def names_equal(a: str | None, b: str | None) -> bool:
    na, nb = normalize_name(a), normalize_name(b)
    return bool(na) and na == nb


def contains_either(a: str | None, b: str | None) -> bool:
    """True if either name is a substring of the other."""
    na, nb = normalize_name(a), normalize_name(b)
    if not na or not nb:
        return False
    return na in nb or nb in na


def names_match(a: str | None, b: str | None) -> bool:
    """Equality or substring containment in either direction."""
    return names_equal(a, b) or contains_either(a, b)
