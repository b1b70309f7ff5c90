"""Split raw ticket text into header/value fields."""
from __future__ import annotations

import logging
from typing import List, Optional

from .models import RawField

logger = logging.getLogger(__name__)

DEFAULT_HEADER_MARKER = "###"


class TicketParseError(RuntimeError):
    """Raised when ticket text cannot be turned into a user record."""


def parse_ticket_text(text: str, header_marker: str = DEFAULT_HEADER_MARKER) -> List[RawField]:
    """Split a ticket body into ordered fields.

    A line starting with ``header_marker`` opens a field named by the rest of
    the line; the lines that follow, up to the next header, are its value.
    Each header produces exactly one field, in order, even when it has no
    value lines.
    """

    if not text or not text.strip():
        raise TicketParseError("Ticket text is empty.")
    if not header_marker:
        raise TicketParseError("A header marker is required to parse ticket text.")

    fields: List[RawField] = []
    current: Optional[RawField] = None
    for raw_line in text.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        if line.startswith(header_marker):
            current = RawField(name=line[len(header_marker) :].strip())
            fields.append(current)
            continue
        if current is None:
            logger.debug("Ignoring text before the first field header: %r", line)
            continue
        current.lines.append(line)

    logger.debug("Parsed %s ticket fields.", len(fields))
    return fields


__all__ = ["DEFAULT_HEADER_MARKER", "TicketParseError", "parse_ticket_text"]
