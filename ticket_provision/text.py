"""Name and phone normalization helpers."""
from __future__ import annotations

import re
import unicodedata

_COMPOUND_DELIMITERS = (" ", "-", "'")
_INTERNATIONAL = re.compile(r"\+\s*(\d+)[\s.\-/()]+(.*)")


def collapse_compound_name(name: str) -> str:
    """Collapse a compound name into a single alias-safe token.

    Only the first delimiter type present is removed, checked in the order
    space, hyphen, apostrophe: ``"John Paul"`` becomes ``"JohnPaul"`` and
    ``"Smith-Jones"`` becomes ``"SmithJones"``.
    """

    value = name or ""
    for delimiter in _COMPOUND_DELIMITERS:
        if delimiter in value:
            return value.replace(delimiter, "")
    return value


def strip_diacritics(text: str) -> str:
    """Remove combining marks after canonical decomposition (``"José"`` -> ``"Jose"``)."""

    decomposed = unicodedata.normalize("NFD", text or "")
    return "".join(char for char in decomposed if unicodedata.category(char) != "Mn")


def normalize_phone(raw: str, country_code: str = "+1") -> str:
    """Render a phone number as ``"+<country> <subscriber>"``.

    An explicit ``+`` prefix keeps its country code, taken from the digits
    before the first separator. Without a separator, ``+1`` followed by ten
    digits or the configured country code is split off. Returns an empty
    string when the input carries no digits.
    """

    stripped = (raw or "").strip()
    digits = "".join(char for char in stripped if char.isdigit())
    if not digits:
        return ""

    code = (country_code or "+1").strip().lstrip("+") or "1"
    if stripped.startswith("+"):
        separated = _INTERNATIONAL.match(stripped)
        if separated:
            subscriber = "".join(char for char in separated.group(2) if char.isdigit())
            if subscriber:
                return f"+{separated.group(1)} {subscriber}"
        if len(digits) == 11 and digits.startswith("1"):
            return f"+1 {digits[1:]}"
        if digits.startswith(code) and len(digits) > len(code):
            return f"+{code} {digits[len(code):]}"
        return f"+{digits}"

    if len(digits) == 11 and digits.startswith("1"):
        return f"+1 {digits[1:]}"
    return f"+{code} {digits}"


__all__ = ["collapse_compound_name", "strip_diacritics", "normalize_phone"]
