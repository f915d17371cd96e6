"""SQLite persistence for logger metadata and readings."""
from __future__ import annotations

import logging
import re
import sqlite3
import uuid
from contextlib import contextmanager
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Sequence

from ..config import StorageConfig
from ..constants import DATA_NAME_TIME_FORMAT
from ..errors import StorageError, ValidationError
from ..hardware.parameters import LoggerParameters, Reading
from ..timeutils import to_timestamp

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
KEY_COLUMNS = ("serial_number", "timestamp")

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])|(?<=[A-Z])(?=[A-Z][a-z])")
_IDENTIFIER = re.compile(r"^[a-z_][a-z0-9_]*$")


def column_name(field: str) -> str:
    """Map a measurement field name onto its underscored column name."""

    name = _CAMEL_BOUNDARY.sub("_", field.strip())
    name = re.sub(r"[\s\-]+", "_", name).lower()
    if not _IDENTIFIER.match(name):
        raise ValidationError(f"Unsupported measurement field name '{field}'")
    return name


def infer_column_type(value: Any) -> Optional[str]:
    """Return the SQLite column type for *value*, or ``None`` when it carries no type."""

    if value is None:
        return None
    if isinstance(value, (bool, int)):
        return "integer"
    if isinstance(value, (float, Decimal)):
        return "real"
    if isinstance(value, (datetime, date)):
        return "datetime"
    if isinstance(value, (bytes, bytearray, memoryview, uuid.UUID)):
        return "blob"
    return "text"


def _adapt(value: Any) -> Any:
    if value is None or isinstance(value, (str, int, float, bytes)):
        return value
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, datetime):
        return value.isoformat(sep=" ")
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, uuid.UUID):
        return value.bytes
    if isinstance(value, (bytearray, memoryview)):
        return bytes(value)
    return str(value)


def _chunks(rows: Sequence[Reading], size: int) -> Iterator[Sequence[Reading]]:
    for offset in range(0, len(rows), size):
        yield rows[offset:offset + size]


@contextmanager
def _storage_errors(action: str) -> Iterator[None]:
    try:
        yield
    except sqlite3.Error as exc:
        raise StorageError(f"{action} failed: {exc}") from exc


class ReadingStore:
    """Idempotent store for device batches and their time-series readings.

    The ``reading`` table gains a column the first time a measurement field is
    seen; the inferred type is cached in ``self._columns`` and never changes.
    """

    def __init__(
        self,
        config: StorageConfig,
        *,
        clock: Callable[[], datetime] = datetime.now,
        read_only: bool = False,
    ):
        self._config = config
        self._read_only = read_only
        self._path = config.database_path.expanduser()
        self._clock = clock
        self._connection: Optional[sqlite3.Connection] = None
        self._columns: Dict[str, str] = {}
        self._initialised = False

    @property
    def path(self) -> Path:
        return self._path

    @property
    def read_only(self) -> bool:
        return self._read_only

    def connect(self) -> sqlite3.Connection:
        if self._connection is None:
            if self._read_only:
                if not self._path.exists():
                    raise StorageError(f"Database file not found: {self._path}")
                target, uri = f"file:{self._path.as_posix()}?mode=ro", True
            else:
                if self._config.ensure_directories:
                    self._path.parent.mkdir(parents=True, exist_ok=True)
                target, uri = str(self._path), False
            with _storage_errors("Opening database"):
                self._connection = sqlite3.connect(target, uri=uri)
            self._connection.row_factory = sqlite3.Row
        return self._connection

    def open(self) -> "ReadingStore":
        self.initialise()
        return self

    def close(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None
            self._initialised = False

    def initialise(self) -> None:
        conn = self.connect()
        if self._read_only:
            self._load_columns(conn)
            if not self._columns:
                raise StorageError(f"Database has no reading table: {self._path}")
            self._initialised = True
            return
        with _storage_errors("Creating schema"), conn:
            conn.executescript(
                """
                CREATE TABLE IF NOT EXISTS device (
                    serial_number TEXT,
                    timestamp INTEGER,
                    data_name TEXT,
                    travel_number TEXT,
                    record_count TEXT,
                    read_count INTEGER,
                    max_value1 REAL,
                    min_value1 REAL,
                    max_value2 REAL,
                    min_value2 REAL,
                    sensor2_available INTEGER,
                    started_at DATETIME,
                    warning INTEGER,
                    sensor2_type TEXT,
                    UNIQUE(data_name)
                );
                CREATE TABLE IF NOT EXISTS reading (
                    serial_number TEXT,
                    timestamp INTEGER,
                    UNIQUE(serial_number, timestamp)
                );
                """
            )
            self._apply_migrations(conn)
        self._load_columns(conn)
        self._initialised = True

    def _apply_migrations(self, conn: sqlite3.Connection) -> None:
        row = conn.execute("PRAGMA user_version").fetchone()
        current_version = int(row[0]) if row is not None else 0
        if current_version < 1:
            conn.execute("CREATE INDEX IF NOT EXISTS idx_device_serial ON device(serial_number)")
            conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    def _load_columns(self, conn: sqlite3.Connection) -> None:
        with _storage_errors("Reading schema"):
            rows = conn.execute("PRAGMA table_info('reading')").fetchall()
        self._columns = {row["name"]: (row["type"] or "").lower() for row in rows}

    def _ensure_initialised(self) -> sqlite3.Connection:
        if not self._initialised:
            self.initialise()
        return self.connect()

    def reading_columns(self) -> Dict[str, str]:
        """Return the reading table's columns and their declared types, in table order."""

        self._ensure_initialised()
        return dict(self._columns)

    # -- ingestion -------------------------------------------------------------

    def store(self, params: LoggerParameters) -> int:
        """Persist *params* and its readings; return the number of new reading rows."""

        if self._read_only:
            raise StorageError(f"Database opened read-only: {self._path}")
        conn = self._ensure_initialised()
        now = self._clock()
        if not params.data_name:
            params.data_name = f"{params.identity}_{now.strftime(DATA_NAME_TIME_FORMAT)}"
        if not params.travel_number:
            params.travel_number = ""

        with _storage_errors("Storing device metadata"), conn:
            conn.execute(
                """
                INSERT OR IGNORE INTO device (
                    serial_number, timestamp, data_name, travel_number, record_count, read_count,
                    max_value1, min_value1, max_value2, min_value2,
                    sensor2_available, started_at, warning, sensor2_type
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    params.identity,
                    to_timestamp(now),
                    params.data_name,
                    params.travel_number,
                    params.records_actual,
                    len(params.readings),
                    params.max_value1,
                    params.min_value1,
                    params.max_value2,
                    params.min_value2,
                    int(params.sensor2_available),
                    _adapt(params.started_at),
                    params.alarm_status,
                    params.sensor2_type,
                ),
            )

        if not params.readings:
            return 0

        fields = self._extend_schema(conn, params.readings)
        columns = list(KEY_COLUMNS) + list(fields.values())
        sql = "INSERT OR IGNORE INTO reading ({}) VALUES ({})".format(
            ", ".join(f'"{column}"' for column in columns),
            ", ".join("?" for _ in columns),
        )
        serial = params.identity
        inserted = 0
        for batch in _chunks(params.readings, self._config.batch_size):
            rows = [
                (serial, to_timestamp(reading.timestamp), *(_adapt(reading.values.get(field)) for field in fields))
                for reading in batch
            ]
            with _storage_errors("Storing readings"), conn:
                cursor = conn.executemany(sql, rows)
                inserted += max(cursor.rowcount, 0)

        logger.debug("Stored %s: %d of %d readings inserted", params.data_name, inserted, len(params.readings))
        if inserted > 0 and self._config.vacuum_after_insert:
            with _storage_errors("Compacting database"):
                conn.execute("VACUUM")
        return inserted

    def _extend_schema(self, conn: sqlite3.Connection, readings: Sequence[Reading]) -> Dict[str, str]:
        """Add missing reading columns; return ``{field: column}`` for fields to insert."""

        fields: Dict[str, str] = {}
        claimed: Dict[str, str] = {}
        pending: Dict[str, str] = {}
        skipped: set[str] = set()
        for reading in readings:
            for field, value in reading.values.items():
                if field in fields or field in skipped:
                    continue
                column = column_name(field)
                if column in KEY_COLUMNS or claimed.get(column, field) != field:
                    logger.debug("Skipping measurement field %r (column %s already taken)", field, column)
                    skipped.add(field)
                    continue
                if column not in self._columns:
                    sql_type = infer_column_type(value)
                    if sql_type is None:
                        continue
                    pending[column] = sql_type
                fields[field] = column
                claimed[column] = field

        if pending:
            with _storage_errors("Extending reading schema"), conn:
                for column, sql_type in pending.items():
                    conn.execute(f'ALTER TABLE reading ADD COLUMN "{column}" {sql_type}')
            for column, sql_type in pending.items():
                self._columns[column] = sql_type
            logger.debug("Added reading columns: %s", ", ".join(pending))
        return fields

    # -- queries ---------------------------------------------------------------

    def query_readings(
        self,
        *,
        serial_numbers: Sequence[str] = (),
        start_ts: Optional[int] = None,
        end_ts: Optional[int] = None,
        columns: Optional[Sequence[str]] = None,
    ) -> Iterator[Dict[str, Any]]:
        """Yield reading rows ordered by serial number then timestamp."""

        conn = self._ensure_initialised()
        if columns is None:
            selected = list(self._columns)
        else:
            selected = list(KEY_COLUMNS) + [column for column in columns if column not in KEY_COLUMNS]
            missing = [column for column in selected if column not in self._columns]
            if missing:
                raise ValidationError(f"Unknown reading column(s): {', '.join(missing)}")

        clauses: List[str] = []
        params: List[Any] = []
        if serial_numbers:
            clauses.append(f"serial_number IN ({', '.join('?' for _ in serial_numbers)})")
            params.extend(serial_numbers)
        if start_ts is not None:
            clauses.append("timestamp >= ?")
            params.append(start_ts)
        if end_ts is not None:
            clauses.append("timestamp < ?")
            params.append(end_ts)

        query = ["SELECT", ", ".join(f'"{column}"' for column in selected), "FROM reading"]
        if clauses:
            query.append("WHERE " + " AND ".join(clauses))
        query.append("ORDER BY serial_number, timestamp")

        with _storage_errors("Querying readings"):
            cursor = conn.execute(" ".join(query), params)
            for row in cursor:
                yield {column: row[column] for column in selected}

    def list_devices(self, serial_number: Optional[str] = None) -> List[Dict[str, Any]]:
        conn = self._ensure_initialised()
        query = "SELECT * FROM device"
        params: List[Any] = []
        if serial_number:
            query += " WHERE serial_number = ?"
            params.append(serial_number)
        query += " ORDER BY data_name"
        with _storage_errors("Listing devices"):
            rows = conn.execute(query, params).fetchall()
        return [dict(row) for row in rows]

    def __enter__(self) -> "ReadingStore":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.close()
