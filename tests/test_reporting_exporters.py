from __future__ import annotations

import io
import json
from datetime import datetime

import pytest

from loggerlink.config import StorageConfig
from loggerlink.errors import ValidationError
from loggerlink.hardware import LoggerParameters, Reading, TransportKind
from loggerlink.reporting import export_readings, write_csv, write_json
from loggerlink.storage import ReadingStore
from loggerlink.timeutils import Period, from_timestamp


@pytest.fixture()
def store(tmp_path):
    store = ReadingStore(StorageConfig(database_path=tmp_path / 'readings.sqlite'))
    store.store(
        LoggerParameters(
            transport=TransportKind.COM,
            serial_number='ABC123',
            readings=[
                Reading(from_timestamp(100), {'temp': 5.0}),
                Reading(from_timestamp(200), {'temp': 5.5, 'humidity': 40.0}),
            ],
        )
    )
    store.store(
        LoggerParameters(
            transport=TransportKind.COM,
            serial_number='XYZ9',
            readings=[Reading(from_timestamp(150), {'temp': 9.0})],
        )
    )
    yield store
    store.close()


def test_export_csv_streams_all_columns(store):
    buffer = io.StringIO()

    count = export_readings(store, buffer, 'csv')

    assert count == 3
    assert buffer.getvalue().splitlines() == [
        'serial_number,timestamp,temp,humidity',
        'ABC123,100,5.0,',
        'ABC123,200,5.5,40.0',
        'XYZ9,150,9.0,',
    ]


def test_export_json_omits_nulls(store):
    buffer = io.StringIO()

    count = export_readings(store, buffer, 'JSON', serial_number='ABC123')

    assert count == 2
    assert json.loads(buffer.getvalue()) == [
        {'serial_number': 'ABC123', 'timestamp': 100, 'temp': 5.0},
        {'serial_number': 'ABC123', 'timestamp': 200, 'temp': 5.5, 'humidity': 40.0},
    ]


def test_export_respects_period(store):
    buffer = io.StringIO()
    period = Period(start=from_timestamp(150), end=from_timestamp(200))

    export_readings(store, buffer, 'csv', period=period)

    assert buffer.getvalue().splitlines()[1:] == ['XYZ9,150,9.0,']


def test_export_rejects_unknown_format(store):
    with pytest.raises(ValidationError):
        export_readings(store, io.StringIO(), 'xml')


def test_write_json_handles_empty_and_binary_rows():
    empty = io.StringIO()
    binary = io.StringIO()

    assert write_json([], empty) == 0
    write_json([{'raw': b'\x01\xff', 'when': datetime(2024, 1, 1).isoformat()}], binary)

    assert json.loads(empty.getvalue()) == []
    assert json.loads(binary.getvalue()) == [{'raw': '01ff', 'when': '2024-01-01T00:00:00'}]


def test_write_csv_blank_for_missing_values():
    buffer = io.StringIO()

    write_csv([{'a': 1}], ['a', 'b'], buffer)

    assert buffer.getvalue() == 'a,b\n1,\n'
