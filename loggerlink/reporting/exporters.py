"""Streaming exports of stored readings."""
from __future__ import annotations

import csv
import json
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, TextIO

from ..config import EXPORT_FORMATS
from ..errors import ValidationError
from ..storage.database import ReadingStore
from ..timeutils import Period


def _json_value(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


def write_csv(rows: Iterable[Mapping[str, object]], columns: Sequence[str], stream: TextIO) -> int:
    """Write a header plus one line per row; ``None`` becomes an empty field."""

    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(columns)
    count = 0
    for row in rows:
        writer.writerow(["" if row.get(column) is None else row.get(column) for column in columns])
        count += 1
    return count


def write_json(rows: Iterable[Mapping[str, object]], stream: TextIO, indent: int = 2) -> int:
    """Stream rows as a JSON array of objects, omitting null fields."""

    pad = " " * indent
    count = 0
    stream.write("[")
    for row in rows:
        record: Dict[str, Any] = {key: _json_value(value) for key, value in row.items() if value is not None}
        body = json.dumps(record, ensure_ascii=False, indent=indent)
        stream.write("," if count else "")
        stream.write("\n" + "\n".join(pad + line for line in body.splitlines()))
        count += 1
    stream.write("\n]\n" if count else "]\n")
    return count


def export_readings(
    store: ReadingStore,
    stream: TextIO,
    fmt: str = "csv",
    *,
    serial_number: Optional[str] = None,
    period: Optional[Period] = None,
) -> int:
    """Write matching readings of *store* to *stream*; return the row count."""

    fmt = fmt.lower()
    if fmt not in EXPORT_FORMATS:
        raise ValidationError(f"Unsupported export format '{fmt}', expected one of {', '.join(EXPORT_FORMATS)}")
    columns = list(store.reading_columns())
    rows = store.query_readings(
        serial_numbers=[serial_number] if serial_number else (),
        start_ts=period.start_ts if period else None,
        end_ts=period.end_ts if period else None,
    )
    if fmt == "csv":
        return write_csv(rows, columns, stream)
    return write_json(rows, stream)
