"""Copy device batches from a legacy database into a :class:`ReadingStore`."""
from __future__ import annotations

import bisect
import logging
import sqlite3
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol

from ..constants import DATA_NAME_TIME_FORMAT
from ..errors import StorageError
from ..hardware.parameters import LoggerParameters, Reading, TransportKind
from ..timeutils import from_timestamp, to_timestamp
from .database import KEY_COLUMNS, ReadingStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[LoggerParameters, int], None]


@dataclass(slots=True)
class MigrationResult:
    batches: int = 0
    inserted: int = 0
    skipped: int = 0


class LegacySource(Protocol):
    """Anything able to replay historical device batches."""

    def iter_batches(self, serial_number: Optional[str] = None) -> Iterator[LoggerParameters]:  # pragma: no cover
        ...


def _parse_started_at(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value
    try:
        return datetime.fromisoformat(str(value))
    except ValueError:
        logger.debug("Unparseable started_at value %r in legacy device row", value)
        return None


def _series_key(row: Dict[str, Any]) -> Optional[str]:
    """Serial the row's readings are keyed on; older rows fall back to the data name prefix."""

    serial = row.get("serial_number")
    if serial:
        return serial
    data_name = row.get("data_name") or ""
    prefix, separator, _ = data_name.rpartition("_")
    return prefix if separator and prefix else None


def _optional_int(value: Any) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


class LegacyDatabaseSource:
    """Read-only view over a legacy SQLite file with ``device``/``reading`` tables."""

    def __init__(self, path: Path):
        self._path = Path(path).expanduser()

    @property
    def path(self) -> Path:
        return self._path

    def _connect(self) -> sqlite3.Connection:
        if not self._path.exists():
            raise StorageError(f"Legacy database not found: {self._path}")
        try:
            conn = sqlite3.connect(f"file:{self._path.as_posix()}?mode=ro", uri=True)
        except sqlite3.Error as exc:
            raise StorageError(f"Opening legacy database failed: {exc}") from exc
        conn.row_factory = sqlite3.Row
        return conn

    def iter_batches(self, serial_number: Optional[str] = None) -> Iterator[LoggerParameters]:
        """Yield one :class:`LoggerParameters` per legacy device row.

        Readings of a serial number are attached to the device row with the
        latest ``started_at`` not after the reading; older readings go to the
        earliest row.
        """

        conn = self._connect()
        try:
            query = "SELECT * FROM device"
            args: List[Any] = []
            if serial_number:
                query += " WHERE data_name LIKE ? ESCAPE '\\'"
                args.append(serial_number.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_") + "\\_%")
            query += " ORDER BY serial_number, started_at, data_name"
            try:
                device_rows = [dict(row) for row in conn.execute(query, args)]
            except sqlite3.Error as exc:
                raise StorageError(f"Reading legacy devices failed: {exc}") from exc

            grouped: Dict[Optional[str], List[Dict[str, Any]]] = {}
            for row in device_rows:
                grouped.setdefault(_series_key(row), []).append(row)

            for serial, rows in grouped.items():
                batches = [self._batch_from_row(row, serial) for row in rows]
                batches.sort(key=lambda batch: to_timestamp(batch.started_at))
                self._attach_readings(conn, serial, batches)
                yield from batches

            for serial in self._orphan_serials(conn, serial_number, grouped):
                batch = LoggerParameters(transport=TransportKind.COM, serial_number=serial)
                self._attach_readings(conn, serial, [batch])
                if not batch.readings:
                    continue
                batch.started_at = batch.readings[0].timestamp
                batch.data_name = f"{serial}_{batch.started_at.strftime(DATA_NAME_TIME_FORMAT)}"
                batch.records_actual = len(batch.readings)
                logger.warning("Legacy readings of %s have no device row; migrating them as %s", serial, batch.data_name)
                yield batch
        finally:
            conn.close()

    def _orphan_serials(
        self,
        conn: sqlite3.Connection,
        serial_number: Optional[str],
        known: Dict[Optional[str], Any],
    ) -> List[str]:
        """Return reading serials without a device row, honouring the serial filter."""

        try:
            rows = conn.execute("SELECT DISTINCT serial_number FROM reading ORDER BY serial_number").fetchall()
        except sqlite3.Error as exc:
            raise StorageError(f"Reading legacy readings failed: {exc}") from exc
        serials = [row[0] for row in rows if row[0] is not None and row[0] not in known]
        if serial_number:
            serials = [serial for serial in serials if serial == serial_number]
        return serials

    def _batch_from_row(self, row: Dict[str, Any], serial: Optional[str]) -> LoggerParameters:
        return LoggerParameters(
            transport=TransportKind.COM,
            serial_number=serial,
            data_name=row.get("data_name"),
            travel_number=row.get("travel_number") or "",
            records_actual=_optional_int(row.get("record_count")),
            max_value1=row.get("max_value1"),
            min_value1=row.get("min_value1"),
            max_value2=row.get("max_value2"),
            min_value2=row.get("min_value2"),
            sensor2_available=bool(row.get("sensor2_available")),
            started_at=_parse_started_at(row.get("started_at")),
            alarm_status=_optional_int(row.get("warning")),
        )

    def _attach_readings(self, conn: sqlite3.Connection, serial: Optional[str], batches: List[LoggerParameters]) -> None:
        if not batches:
            return
        if serial is None:
            logger.warning("Skipping %d legacy device row(s) without a serial number or data name", len(batches))
            return
        starts = [to_timestamp(batch.started_at) for batch in batches]
        try:
            cursor = conn.execute(
                "SELECT * FROM reading WHERE serial_number = ? ORDER BY timestamp",
                (serial,),
            )
            for row in cursor:
                ts = int(row["timestamp"])
                index = max(bisect.bisect_right(starts, ts) - 1, 0)
                values = {key: row[key] for key in row.keys() if key not in KEY_COLUMNS}
                batches[index].readings.append(Reading(timestamp=from_timestamp(ts), values=values))
        except sqlite3.Error as exc:
            raise StorageError(f"Reading legacy readings failed: {exc}") from exc


def migrate(
    source: LegacySource,
    store: ReadingStore,
    serial_number: Optional[str] = None,
    progress: Optional[ProgressCallback] = None,
) -> MigrationResult:
    """Replay every batch of *source* through ``store.store()``."""

    result = MigrationResult()
    for batch in source.iter_batches(serial_number):
        inserted = store.store(batch)
        result.batches += 1
        result.inserted += inserted
        result.skipped += len(batch.readings) - inserted
        logger.debug("Migrated %s: %d inserted", batch.data_name, inserted)
        if progress is not None:
            progress(batch, inserted)
    return result
