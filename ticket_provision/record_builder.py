"""Map parsed ticket fields onto a :class:`UserRecord`."""
from __future__ import annotations

import fnmatch
import logging
import re
from dataclasses import dataclass
from typing import Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from .models import LIST_SEPARATOR, RawField, UserRecord
from .text import collapse_compound_name
from .ticket_parser import DEFAULT_HEADER_MARKER, TicketParseError, parse_ticket_text

logger = logging.getLogger(__name__)

DEFAULT_FIELD_PATTERNS: Dict[str, Tuple[str, ...]] = {
    "first_name": ("*first name*", "*given name*"),
    "last_name": ("*last name*", "*surname*"),
    "manager_name": ("*manager*", "*supervisor*"),
    "title": ("*job title*", "*title*"),
    "division": ("*division*",),
    "personal_phone": ("*phone*", "*mobile*"),
    "department": ("*department*",),
    "office": ("*office*", "*location*"),
    "requested_groups": ("*group*", "*distribution*"),
    "additional_notes": ("*additional*", "*notes*"),
}

_WRITE_IN_MARKER = ">"
_CHOICE_PLACEHOLDERS = {"other", "other (please specify)"}
_GROUP_SPLIT = re.compile(r"\s*(?:,|" + re.escape(LIST_SEPARATOR.strip()) + r")\s*")
_GROUP_PUNCTUATION = ".;:"

Extractor = Callable[[UserRecord, str, RawField], None]


@dataclass(frozen=True)
class FieldRule:
    """One row of the field dispatch table."""

    attribute: str
    patterns: Tuple[str, ...]
    extractor: Extractor

    def matches(self, label: str) -> bool:
        lowered = label.lower()
        return any(fnmatch.fnmatchcase(lowered, pattern.lower()) for pattern in self.patterns)


def _first_line(raw: RawField) -> str:
    return raw.lines[0].strip() if raw.lines else ""


def _set_name(record: UserRecord, attribute: str, raw: RawField) -> None:
    setattr(record, attribute, collapse_compound_name(_first_line(raw)))


def _set_scalar(record: UserRecord, attribute: str, raw: RawField) -> None:
    setattr(record, attribute, " ".join(line.strip() for line in raw.lines).strip())


def _set_notes(record: UserRecord, attribute: str, raw: RawField) -> None:
    existing = getattr(record, attribute)
    value = "\n".join(raw.lines).strip()
    setattr(record, attribute, "\n".join(part for part in (existing, value) if part))


def extract_manager_name(value: str) -> str:
    """Return the display name part of ``"Jane Doe <jane@example.com>"``."""

    return value.split("<", 1)[0].strip()


def _set_manager(record: UserRecord, attribute: str, raw: RawField) -> None:
    setattr(record, attribute, extract_manager_name(_first_line(raw)))


def extract_choice(value: str) -> str:
    """Resolve a controlled-choice value, preferring a ``> write-in`` entry."""

    if _WRITE_IN_MARKER in value:
        return value.split(_WRITE_IN_MARKER, 1)[1].strip()
    cleaned = value.strip()
    if cleaned.lower() in _CHOICE_PLACEHOLDERS:
        return ""
    return cleaned


def resolve_choice(lines: Sequence[str]) -> str:
    """Pick the write-in line of a multi-line choice, else join the lines like a scalar."""

    for line in lines:
        if _WRITE_IN_MARKER in line:
            return extract_choice(line)
    return extract_choice(" ".join(line.strip() for line in lines))


def _set_choice(record: UserRecord, attribute: str, raw: RawField) -> None:
    if getattr(record, attribute):
        logger.debug("Keeping existing %s value; ignoring field %r.", attribute, raw.name)
        return
    setattr(record, attribute, resolve_choice(raw.lines))


def _clean_group_token(token: str) -> str:
    cleaned = token.strip()
    if "@" in cleaned:
        return cleaned.strip(_GROUP_PUNCTUATION).strip()
    for char in _GROUP_PUNCTUATION:
        cleaned = cleaned.replace(char, "")
    return cleaned.strip()


def split_group_names(value: str) -> List[str]:
    """Split an inline or multi-line group value into individual names."""

    names: List[str] = []
    for token in _GROUP_SPLIT.split(value or ""):
        cleaned = _clean_group_token(token)
        if cleaned:
            names.append(cleaned)
    return names


def _set_groups(record: UserRecord, attribute: str, raw: RawField) -> None:
    record.add_groups(split_group_names(raw.raw_value))


_EXTRACTORS: Dict[str, Extractor] = {
    "first_name": _set_name,
    "last_name": _set_name,
    "manager_name": _set_manager,
    "title": _set_scalar,
    "division": _set_scalar,
    "personal_phone": _set_scalar,
    "department": _set_choice,
    "office": _set_choice,
    "requested_groups": _set_groups,
    "additional_notes": _set_notes,
}


def build_field_rules(patterns: Optional[Mapping[str, Sequence[str]]] = None) -> List[FieldRule]:
    """Build the ordered dispatch table, overriding default label patterns."""

    overrides = dict(patterns or {})
    unknown = set(overrides) - set(_EXTRACTORS)
    if unknown:
        raise ValueError(f"Unknown ticket field(s): {', '.join(sorted(unknown))}.")

    rules: List[FieldRule] = []
    for attribute, defaults in DEFAULT_FIELD_PATTERNS.items():
        chosen = tuple(overrides.get(attribute) or defaults)
        rules.append(FieldRule(attribute, chosen, _EXTRACTORS[attribute]))
    return rules


class UserRecordBuilder:
    """Turn parsed ticket fields into a :class:`UserRecord`."""

    def __init__(self, rules: Optional[Iterable[FieldRule]] = None) -> None:
        self.rules = list(rules) if rules is not None else build_field_rules()

    def rule_for(self, label: str) -> Optional[FieldRule]:
        for rule in self.rules:
            if rule.matches(label):
                return rule
        return None

    def build(self, raw_fields: Iterable[RawField]) -> UserRecord:
        record = UserRecord()
        for raw in raw_fields:
            rule = self.rule_for(raw.name)
            if rule is None:
                logger.debug("Ignoring unrecognized ticket field %r.", raw.render())
                continue
            rule.extractor(record, rule.attribute, raw)

        if not record.first_name or not record.last_name:
            raise TicketParseError("Ticket does not contain both a first and a last name.")
        return record


def build_user_record(
    text: str,
    header_marker: str = DEFAULT_HEADER_MARKER,
    patterns: Optional[Mapping[str, Sequence[str]]] = None,
) -> UserRecord:
    """Parse ticket text and build the user record in one step."""

    builder = UserRecordBuilder(build_field_rules(patterns))
    return builder.build(parse_ticket_text(text, header_marker))


__all__ = [
    "DEFAULT_FIELD_PATTERNS",
    "FieldRule",
    "UserRecordBuilder",
    "build_field_rules",
    "build_user_record",
    "extract_choice",
    "extract_manager_name",
    "resolve_choice",
    "split_group_names",
]
