"""Monthly sequence numbers for each document type.

Numbers look like ``INV-202410-005``: prefix, issue year and month, and a
three-digit counter that restarts every month.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, replace
from datetime import date
from typing import Optional

from . import log
from .constants import DOCUMENT_PREFIXES, DocumentType


TRAILING_NUMBER = re.compile(r"-(\d+)$")


@dataclass(frozen=True)
class SequenceCounter:
    """Last number handed out for one document type in one month."""

    document_type: DocumentType
    prefix: str
    year: int
    month: int
    last_number: int = 0


def default_counter(document_type: DocumentType, today: date) -> SequenceCounter:
    return SequenceCounter(
        document_type=document_type,
        prefix=DOCUMENT_PREFIXES[document_type],
        year=today.year,
        month=today.month,
    )


def _roll_over(counter: SequenceCounter, today: date) -> SequenceCounter:
    if counter.year == today.year and counter.month == today.month:
        return counter
    log.info(
        "Resetting %s counter from %04d-%02d to %04d-%02d",
        counter.prefix,
        counter.year,
        counter.month,
        today.year,
        today.month,
    )
    return replace(counter, year=today.year, month=today.month, last_number=0)


def next_document_number(counter: SequenceCounter, today: date) -> str:
    """Format the number the next document of this type would receive.

    The counter itself is not advanced; call :func:`increment_counter`
    once the document is stored.
    """

    current = _roll_over(counter, today)
    return f"{current.prefix}-{today.year}{today.month:02d}-{current.last_number + 1:03d}"


def increment_counter(counter: SequenceCounter, assigned_number: str, today: date) -> SequenceCounter:
    """Advance ``counter`` past ``assigned_number``.

    ``last_number`` only ever moves up: a manually entered number lower
    than the current counter leaves it untouched.
    """

    current = _roll_over(counter, today)
    number = parse_sequence(assigned_number)
    if number is not None and number > current.last_number:
        return replace(current, last_number=number)
    return current


def parse_sequence(document_number: str) -> Optional[int]:
    match = TRAILING_NUMBER.search(document_number)
    return int(match.group(1)) if match else None


__all__ = [
    "SequenceCounter",
    "default_counter",
    "next_document_number",
    "increment_counter",
    "parse_sequence",
]
