"""Shared CLI helpers for operator tooling."""
from __future__ import annotations

import dataclasses
import json
import re
import sys
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, Optional, TextIO

import yaml

from ..errors import ValidationError
from ..hardware.parameters import LoggerParameters

_EMPTY_MARKERS = {"", "0", "0.0", "???", "N/A", "0D 0H 0M 0S"}
_DURATION_UNITS = {"s": 1, "m": 60, "h": 3600, "d": 86400}
_DURATION_SUFFIX = re.compile(r"^(\d+(?:\.\d+)?)\s*([smhd])$")
_DURATION_CLOCK = re.compile(r"^(?:(\d+)\.)?(\d{1,2}):(\d{2})(?::(\d{2}))?$")


def validate_serial(value: str) -> str:
    """argparse type for serial number filters."""

    if not value or not value.isalnum():
        raise ValidationError(f"Serial number '{value}' must be alphanumeric")
    return value


def parse_duration(text: str) -> timedelta:
    """Parse ``90s``, ``5m``, ``2h``, ``1d``, ``hh:mm``, ``hh:mm:ss`` or ``d.hh:mm:ss``."""

    cleaned = (text or "").strip().lower()
    match = _DURATION_SUFFIX.match(cleaned)
    if match:
        return timedelta(seconds=float(match.group(1)) * _DURATION_UNITS[match.group(2)])
    match = _DURATION_CLOCK.match(cleaned)
    if match:
        days, hours, minutes, seconds = (int(part or 0) for part in match.groups())
        return timedelta(days=days, hours=hours, minutes=minutes, seconds=seconds)
    if cleaned.isdigit():
        return timedelta(seconds=int(cleaned))
    raise ValidationError(f"Could not parse duration '{text}'")


def parse_bool(text: str) -> bool:
    cleaned = (text or "").strip().lower()
    if cleaned in {"1", "true", "yes", "on", "y"}:
        return True
    if cleaned in {"0", "false", "no", "off", "n"}:
        return False
    raise ValidationError(f"Expected true or false, got '{text}'")


def confirm(
    yes: bool,
    action: str,
    record_count: int,
    input_func: Callable[[str], str] = input,
) -> bool:
    """Ask the operator to confirm a destructive device operation."""

    if yes:
        return True
    answer = input_func(
        f"Are you sure you want to {action}? The device will be stopped and "
        f"{record_count:,} reading(s) deleted. Enter [y]es to confirm. "
    )
    if answer.strip().lower() in {"y", "yes"}:
        return True
    print("Aborted")
    return False


def _humanize(delta: timedelta) -> str:
    seconds = abs(int(delta.total_seconds()))
    for label, size in (("year", 365 * 86400), ("day", 86400), ("hour", 3600), ("minute", 60)):
        if seconds >= size:
            count = seconds // size
            break
    else:
        label, count = "second", seconds
    text = f"{count} {label}{'s' if count != 1 else ''}"
    return text if delta.total_seconds() >= 0 else f"{text} ago"


def describe_device(params: LoggerParameters, now: Optional[datetime] = None) -> str:
    parts = [f"Device: {params.travel_desc or params.model or ''}, serial number: {params.serial_number or ''}"]
    if params.device_state:
        parts.append(f"state: {params.device_state.rstrip('. ')}")
    if params.battery:
        parts.append(f"battery: {params.battery}")
    used = params.storage_used
    if used is not None:
        storage = f"storage: {used:.1%}"
        if params.expected_stop_at is not None:
            storage += f" ({_humanize(params.expected_stop_at - (now or datetime.now()))})"
        parts.append(storage)
    return ", ".join(parts)


def display_device(params: LoggerParameters, stream: Optional[TextIO] = None) -> None:
    print(describe_device(params), file=stream or sys.stdout)


def _default_values() -> Dict[str, Any]:
    defaults: Dict[str, Any] = {}
    for item in dataclasses.fields(LoggerParameters):
        if item.default is not dataclasses.MISSING:
            value = item.default
            defaults[item.name] = value.value if isinstance(value, Enum) else value
    return defaults


def _without_defaults(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    defaults = _default_values()
    return {key: value for key, value in snapshot.items() if key not in defaults or defaults[key] != value}


def format_info(params: LoggerParameters, fmt: str = "text") -> str:
    """Render a parameter snapshot as ``text`` (sorted, empties removed), ``yaml`` or ``json``."""

    snapshot = _without_defaults(params.snapshot())
    if params.sensor2_type is not None:
        snapshot["sensor2_type"] = params.sensor2_type
    fmt = fmt.lower()
    if fmt == "text":
        filtered = {key: value for key, value in snapshot.items() if not (isinstance(value, str) and value.strip() in _EMPTY_MARKERS)}
        return yaml.safe_dump(filtered, sort_keys=True, allow_unicode=True).rstrip()
    if fmt == "yaml":
        return yaml.safe_dump(snapshot, sort_keys=False, allow_unicode=True).rstrip()
    if fmt == "json":
        return json.dumps(snapshot, ensure_ascii=False, indent=2, default=str)
    raise ValidationError(f"Unsupported info format '{fmt}'")


class ProgressPrinter:
    """Single-line download progress written to a terminal stream."""

    def __init__(self, stream: Optional[TextIO] = None) -> None:
        self._stream = stream or sys.stdout
        self._started: Optional[datetime] = None
        self._active = False

    def update(self, current: int, total: int) -> None:
        if self._started is None:
            self._started = datetime.now()
        if not self._stream.isatty() or total <= 0:
            return
        elapsed = (datetime.now() - self._started).total_seconds()
        remaining = elapsed * (total - current) / current if current else 0.0
        self._stream.write(f"\rDownloading {current:,}/{total:,} ({current / total:.0%}, {remaining:.0f}s left)")
        self._stream.flush()
        self._active = True

    def finish(self) -> None:
        if self._active:
            self._stream.write("\n")
            self._stream.flush()
        self._active = False
        self._started = None
