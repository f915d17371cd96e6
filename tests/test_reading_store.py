from __future__ import annotations

import sqlite3
from datetime import datetime

import pytest

from loggerlink.config import StorageConfig
from loggerlink.errors import StorageError, ValidationError
from loggerlink.hardware import LoggerParameters, Reading, TransportKind
from loggerlink.storage import ReadingStore, column_name, infer_column_type
from loggerlink.timeutils import from_timestamp

FIXED_NOW = datetime(2024, 3, 1, 12, 30, 0)


def _store(tmp_path, **overrides) -> ReadingStore:
    config = StorageConfig(database_path=tmp_path / 'readings.sqlite', **overrides)
    return ReadingStore(config, clock=lambda: FIXED_NOW)


def _params(serial='ABC123', rows=(), **kwargs) -> LoggerParameters:
    readings = [Reading(from_timestamp(ts), dict(values)) for ts, values in rows]
    return LoggerParameters(transport=TransportKind.COM, serial_number=serial, readings=readings, **kwargs)


def test_store_is_idempotent_for_repeated_snapshot(tmp_path):
    store = _store(tmp_path)
    params = _params(rows=[(100, {'temp': 5.0}), (200, {'temp': 5.5})])

    assert store.store(params) == 2
    assert store.store(params) == 0

    devices = store.list_devices()
    assert len(devices) == 1
    assert devices[0]['data_name'] == 'ABC123_20240301123000'
    assert devices[0]['read_count'] == 2
    assert devices[0]['travel_number'] == ''
    store.close()


def test_store_writes_derived_data_name_back(tmp_path):
    store = _store(tmp_path)
    params = _params(serial=None, model='RC-5', rows=[(100, {'temp': 1.0})])

    store.store(params)

    assert params.data_name == 'RC-5_20240301123000'
    rows = list(store.query_readings())
    assert rows[0]['serial_number'] == 'RC-5'
    store.close()


def test_schema_grows_monotonically(tmp_path):
    store = _store(tmp_path)
    store.store(_params(rows=[(100, {'temp': 5.0})], data_name='first'))
    store.store(_params(rows=[(200, {'temp': 6.0, 'humidity': 40.0})], data_name='second'))
    inserted = store.store(_params(rows=[(300, {'humidity': 41.0})], data_name='third'))
    store.close()

    reopened = _store(tmp_path)
    columns = reopened.reading_columns()
    rows = list(reopened.query_readings())
    reopened.close()

    assert inserted == 1
    assert list(columns) == ['serial_number', 'timestamp', 'temp', 'humidity']
    assert [row['humidity'] for row in rows] == [None, 40.0, 41.0]
    assert [row['temp'] for row in rows] == [5.0, 6.0, None]


def test_all_null_fields_get_no_column(tmp_path):
    store = _store(tmp_path)
    store.store(_params(rows=[(100, {'temp': 5.0, 'note': None}), (200, {'temp': 5.1, 'note': None})]))

    assert 'note' not in store.reading_columns()
    store.close()


def test_column_type_inferred_from_first_non_null_value(tmp_path):
    store = _store(tmp_path)
    rows = [
        (100, {'count': None, 'flag': True, 'value1': 1.5}),
        (200, {'count': 3, 'label': 'door open', 'taken': datetime(2024, 1, 1), 'raw': b'\x00\x01'}),
    ]
    store.store(_params(rows=rows))

    columns = store.reading_columns()
    assert columns['count'] == 'integer'
    assert columns['flag'] == 'integer'
    assert columns['value1'] == 'real'
    assert columns['label'] == 'text'
    assert columns['taken'] == 'datetime'
    assert columns['raw'] == 'blob'

    stored = list(store.query_readings())
    assert stored[1]['taken'] == '2024-01-01 00:00:00'
    assert stored[1]['raw'] == b'\x00\x01'
    store.close()


def test_duplicate_natural_keys_are_dropped(tmp_path):
    store = _store(tmp_path, batch_size=2)
    rows = [(100, {'temp': 1.0}), (100, {'temp': 2.0}), (200, {'temp': 3.0}), (300, {'temp': 4.0}), (400, {'temp': 5.0})]

    assert store.store(_params(rows=rows)) == 4

    stored = list(store.query_readings())
    assert [row['timestamp'] for row in stored] == [100, 200, 300, 400]
    assert stored[0]['temp'] == 1.0
    store.close()


def test_key_named_fields_are_not_turned_into_columns(tmp_path):
    store = _store(tmp_path)
    store.store(_params(rows=[(100, {'Timestamp': 5, 'Value1': 2.5})]))

    assert list(store.reading_columns()) == ['serial_number', 'timestamp', 'value1']
    store.close()


def test_query_readings_filters_by_serial_and_range(tmp_path):
    store = _store(tmp_path)
    store.store(_params(serial='AAA1', rows=[(100, {'temp': 1.0}), (200, {'temp': 2.0}), (300, {'temp': 3.0})]))
    store.store(_params(serial='BBB2', rows=[(150, {'temp': 9.0})]))

    rows = list(store.query_readings(serial_numbers=['AAA1'], start_ts=150, end_ts=300, columns=['temp']))
    everything = list(store.query_readings())

    assert rows == [{'serial_number': 'AAA1', 'timestamp': 200, 'temp': 2.0}]
    assert [(row['serial_number'], row['timestamp']) for row in everything] == [
        ('AAA1', 100),
        ('AAA1', 200),
        ('AAA1', 300),
        ('BBB2', 150),
    ]
    store.close()


def test_query_readings_rejects_unknown_columns(tmp_path):
    store = _store(tmp_path)
    store.initialise()

    with pytest.raises(ValidationError):
        list(store.query_readings(columns=['value7']))
    store.close()


def test_initialise_sets_user_version(tmp_path):
    with _store(tmp_path) as store:
        conn = store.connect()
        assert conn.execute('PRAGMA user_version').fetchone()[0] >= 1
        tables = {row['name'] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    assert {'device', 'reading'} <= tables


def test_sqlite_faults_surface_as_storage_error(tmp_path):
    path = tmp_path / 'readings.sqlite'
    path.write_bytes(b'this is not a database file' * 64)
    store = ReadingStore(StorageConfig(database_path=path))

    with pytest.raises(StorageError) as excinfo:
        store.initialise()

    assert isinstance(excinfo.value.__cause__, sqlite3.Error)
    store.close()


def test_column_name_uses_underscores():
    assert column_name('Value1') == 'value1'
    assert column_name('HumiValue') == 'humi_value'
    assert column_name('dew point') == 'dew_point'
    with pytest.raises(ValidationError):
        column_name('temp%')


def test_infer_column_type_handles_none():
    assert infer_column_type(None) is None
    assert infer_column_type(7) == 'integer'
    assert infer_column_type('x') == 'text'


def test_failing_batch_rolls_back_but_earlier_batches_stay(tmp_path):
    store = _store(tmp_path, batch_size=2, vacuum_after_insert=False)
    store.store(_params(rows=[(10, {'temp': 0.5})], data_name='seed'))
    conn = store.connect()
    conn.execute(
        "CREATE TRIGGER reject_fourth BEFORE INSERT ON reading WHEN NEW.timestamp = 400 "
        "BEGIN SELECT RAISE(ABORT, 'rejected'); END"
    )
    rows = [(100 * index, {'temp': float(index)}) for index in range(1, 6)]

    with pytest.raises(StorageError):
        store.store(_params(rows=rows, data_name='batched'))

    temps = [row['temp'] for row in store.query_readings()]
    store.close()
    assert temps == [0.5, 1.0, 2.0]


def _traced(store):
    statements = []
    store.connect().set_trace_callback(statements.append)
    return statements


def test_vacuum_runs_only_after_new_rows(tmp_path):
    store = _store(tmp_path)
    statements = _traced(store)
    params = _params(rows=[(100, {'temp': 5.0})])

    store.store(params)
    first = statements.count('VACUUM')
    store.store(params)
    second = statements.count('VACUUM')
    store.close()

    assert first == 1
    assert second == 1


def test_vacuum_disabled_by_config(tmp_path):
    store = _store(tmp_path, vacuum_after_insert=False)
    statements = _traced(store)

    assert store.store(_params(rows=[(100, {'temp': 5.0})])) == 1
    store.close()

    assert 'VACUUM' not in statements


def test_read_only_store_leaves_database_untouched(tmp_path):
    path = tmp_path / 'readings.sqlite'
    conn = sqlite3.connect(path)
    with conn:
        conn.execute('CREATE TABLE reading (serial_number TEXT, timestamp INTEGER, temp REAL)')
        conn.execute("INSERT INTO reading VALUES ('ABC123', 100, 5.0)")
    conn.close()

    with ReadingStore(StorageConfig(database_path=path), read_only=True) as store:
        rows = list(store.query_readings())
        with pytest.raises(StorageError):
            store.store(_params(rows=[(200, {'temp': 6.0})]))

    conn = sqlite3.connect(path)
    version = conn.execute('PRAGMA user_version').fetchone()[0]
    tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")}
    conn.close()
    assert rows == [{'serial_number': 'ABC123', 'timestamp': 100, 'temp': 5.0}]
    assert version == 0
    assert tables == {'reading'}


def test_read_only_store_requires_existing_reading_table(tmp_path):
    missing = ReadingStore(StorageConfig(database_path=tmp_path / 'missing.sqlite'), read_only=True)
    empty_path = tmp_path / 'empty.sqlite'
    conn = sqlite3.connect(empty_path)
    conn.execute('CREATE TABLE notes (body TEXT)')
    conn.close()
    empty = ReadingStore(StorageConfig(database_path=empty_path), read_only=True)

    with pytest.raises(StorageError):
        missing.open()
    with pytest.raises(StorageError):
        empty.open()
    empty.close()
    assert not (tmp_path / 'missing.sqlite').exists()
