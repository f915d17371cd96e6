"""Timestamp codec and reporting-period parsing."""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Optional

from .constants import TICK_EPOCH
from .errors import ValidationError


def to_timestamp(value: Optional[datetime]) -> int:
    """Return whole seconds between the tick epoch and *value* (0 for ``None``)."""

    if value is None:
        return 0
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.replace(tzinfo=None)
    else:
        value = datetime(value.year, value.month, value.day)
    delta = value - TICK_EPOCH
    return delta.days * 86400 + delta.seconds


def from_timestamp(ts: int) -> datetime:
    return TICK_EPOCH + timedelta(seconds=int(ts))


@dataclass(slots=True, frozen=True)
class Period:
    """Half-open ``[start, end)`` window; either bound may be open."""

    start: Optional[datetime] = None
    end: Optional[datetime] = None

    @property
    def start_ts(self) -> Optional[int]:
        return to_timestamp(self.start) if self.start is not None else None

    @property
    def end_ts(self) -> Optional[int]:
        return to_timestamp(self.end) if self.end is not None else None


_RELATIVE = re.compile(r"^(this|last)\s+(day|week|month|year)$")
_YEAR = re.compile(r"^(\d{4})$")
_MONTH = re.compile(r"^(\d{4})-(\d{1,2})$")
_DAY = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})$")


def _add_months(value: date, months: int) -> date:
    index = value.year * 12 + (value.month - 1) + months
    return date(index // 12, index % 12 + 1, 1)


def _unit_span(unit: str, anchor: date) -> tuple[date, date]:
    if unit == "day":
        return anchor, anchor + timedelta(days=1)
    if unit == "week":
        start = anchor - timedelta(days=anchor.weekday())
        return start, start + timedelta(days=7)
    if unit == "month":
        start = anchor.replace(day=1)
        return start, _add_months(start, 1)
    start = date(anchor.year, 1, 1)
    return start, date(anchor.year + 1, 1, 1)


def _shift(unit: str, span: tuple[date, date]) -> tuple[date, date]:
    start, _ = span
    if unit == "day":
        return start - timedelta(days=1), start
    if unit == "week":
        return start - timedelta(days=7), start
    if unit == "month":
        return _add_months(start, -1), start
    return date(start.year - 1, 1, 1), start


def _absolute_span(text: str) -> Optional[tuple[date, date]]:
    try:
        match = _DAY.match(text)
        if match:
            day = date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
            return day, day + timedelta(days=1)
        match = _MONTH.match(text)
        if match:
            start = date(int(match.group(1)), int(match.group(2)), 1)
            return start, _add_months(start, 1)
        match = _YEAR.match(text)
        if match:
            year = int(match.group(1))
            return date(year, 1, 1), date(year + 1, 1, 1)
    except ValueError:
        return None
    return None


def _span(text: str, today: date) -> Optional[tuple[date, date]]:
    if text == "today":
        return _unit_span("day", today)
    if text == "yesterday":
        return _shift("day", _unit_span("day", today))
    match = _RELATIVE.match(text)
    if match:
        which, unit = match.groups()
        span = _unit_span(unit, today)
        return span if which == "this" else _shift(unit, span)
    return _absolute_span(text)


def _as_datetime(value: date) -> datetime:
    return datetime(value.year, value.month, value.day)


def parse_period(text: str, now: Optional[datetime] = None) -> Period:
    """Parse expressions such as ``yesterday``, ``last month`` or ``2024-01..2024-03``."""

    cleaned = " ".join((text or "").strip().lower().split())
    if not cleaned:
        raise ValidationError("Could not parse period")
    today = (now or datetime.now()).date()
    if ".." in cleaned:
        left, _, right = (part.strip() for part in cleaned.partition(".."))
        start = _span(left, today) if left else None
        end = _span(right, today) if right else None
        if (left and start is None) or (right and end is None) or (start is None and end is None):
            raise ValidationError(f"Could not parse period '{text}'")
        period = Period(
            start=_as_datetime(start[0]) if start else None,
            end=_as_datetime(end[1]) if end else None,
        )
        if period.start and period.end and period.start >= period.end:
            raise ValidationError("Period start must be before its end")
        return period
    span = _span(cleaned, today)
    if span is None:
        raise ValidationError(f"Could not parse period '{text}'")
    return Period(start=_as_datetime(span[0]), end=_as_datetime(span[1]))
