"""Canonical autonomous-community (CCAA) codes and label resolution.

Publications label regions inconsistently ("Comunitat Valenciana",
"C. Valenciana", "D.E. Valencia"...). Every regional entry is keyed by the
official INE code below, resolved from free text through normalized aliases.
"""

from __future__ import annotations

from dataclasses import dataclass

from cuentas_publicas.utils.parsing import normalize_text

__all__ = ["CCAA", "Region", "resolve_region"]


@dataclass(frozen=True)
class Region:
    """One autonomous community."""

    code: str
    name: str


CCAA: dict[str, Region] = {
    code: Region(code, name)
    for code, name in (
        ("CA01", "Andalucía"),
        ("CA02", "Aragón"),
        ("CA03", "Asturias"),
        ("CA04", "Illes Balears"),
        ("CA05", "Canarias"),
        ("CA06", "Cantabria"),
        ("CA07", "Castilla y León"),
        ("CA08", "Castilla-La Mancha"),
        ("CA09", "Cataluña"),
        ("CA10", "C. Valenciana"),
        ("CA11", "Extremadura"),
        ("CA12", "Galicia"),
        ("CA13", "Madrid"),
        ("CA14", "Murcia"),
        ("CA15", "Navarra"),
        ("CA16", "País Vasco"),
        ("CA17", "La Rioja"),
    )
}

# Normalized alias -> code. Exact aliases are tried before substring ones.
_EXACT_ALIASES: dict[str, str] = {
    "andalucia": "CA01",
    "aragon": "CA02",
    "asturias": "CA03",
    "principado de asturias": "CA03",
    "illes balears": "CA04",
    "baleares": "CA04",
    "canarias": "CA05",
    "cantabria": "CA06",
    "castilla y leon": "CA07",
    "castilla-la mancha": "CA08",
    "castilla la mancha": "CA08",
    "cataluna": "CA09",
    "comunidad valenciana": "CA10",
    "comunitat valenciana": "CA10",
    "c. valenciana": "CA10",
    "extremadura": "CA11",
    "galicia": "CA12",
    "madrid": "CA13",
    "comunidad de madrid": "CA13",
    "murcia": "CA14",
    "region de murcia": "CA14",
    "navarra": "CA15",
    "comunidad foral de navarra": "CA15",
    "pais vasco": "CA16",
    "la rioja": "CA17",
}

# Substrings for labels with prefixes such as "D.E. " (longest first at lookup)
_SUBSTRING_ALIASES: dict[str, str] = {
    "andaluc": "CA01",
    "aragon": "CA02",
    "asturias": "CA03",
    "baleares": "CA04",
    "balears": "CA04",
    "canarias": "CA05",
    "cantabria": "CA06",
    "castilla y leon": "CA07",
    "castilla-la mancha": "CA08",
    "castilla la mancha": "CA08",
    "cataluna": "CA09",
    "valencia": "CA10",
    "extremadura": "CA11",
    "galicia": "CA12",
    "madrid": "CA13",
    "murcia": "CA14",
    "navarra": "CA15",
    "pais vasco": "CA16",
    "rioja": "CA17",
}


def resolve_region(label: object, *, allow_substring: bool = False) -> Region | None:
    """Resolve a free-text region label to its :class:`Region`.

    Parameters
    ----------
    label : object
        Cell text such as ``"Región de Murcia"`` or ``"D.E. Cataluña"``.
    allow_substring : bool, optional
        Also try substring aliases (for prefixed labels).

    Returns
    -------
    Region | None
        ``None`` for unknown labels, including summary rows.
    """
    key = normalize_text(label)
    if not key:
        return None
    if key in _EXACT_ALIASES:
        return CCAA[_EXACT_ALIASES[key]]
    if allow_substring:
        for alias in sorted(_SUBSTRING_ALIASES, key=len, reverse=True):
            if alias in key:
                return CCAA[_SUBSTRING_ALIASES[alias]]
    return None
