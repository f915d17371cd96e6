"""Command line interface for pulling, configuring and reporting logger data."""
from __future__ import annotations

import argparse
import dataclasses
import logging
import shutil
import signal
import sys
from pathlib import Path
from typing import Callable, List, Optional

from ..config import EXPORT_FORMATS, AppConfig, ChartConfig, StorageConfig, load_config
from ..constants import RESETTABLE_WORK_MODE
from ..errors import DeviceStateError, LoggerError, ValidationError
from ..hardware.parameters import LoggerParameters, ParameterChanges, TempUnit
from ..reporting.chart import render_chart, render_single_chart, series_from_rows
from ..reporting.exporters import export_readings
from ..session.coordinator import SessionCoordinator, TransportFactory
from ..storage.database import ReadingStore
from ..storage.migration import LegacyDatabaseSource, migrate
from ..timeutils import Period, parse_period
from .common import (
    ProgressPrinter,
    confirm,
    display_device,
    format_info,
    parse_bool,
    parse_duration,
    validate_serial,
)

logger = logging.getLogger(__name__)

InputFunc = Callable[[str], str]


@dataclasses.dataclass(slots=True)
class CliContext:
    config: AppConfig
    transport_factory: Optional[TransportFactory] = None
    input_func: InputFunc = input

    def coordinator(self) -> SessionCoordinator:
        return SessionCoordinator(self.config.device, self.transport_factory)


def _storage_config(config: AppConfig, database: Optional[str]) -> StorageConfig:
    if database:
        return dataclasses.replace(config.storage, database_path=Path(database))
    return config.storage


def _require_database(storage: StorageConfig) -> None:
    if not storage.database_path.expanduser().exists():
        raise LoggerError(f"Database file not found: {storage.database_path}")


def _period(text: Optional[str]) -> Optional[Period]:
    return parse_period(text) if text else None


def _run_session(coordinator: SessionCoordinator, keep_listening: bool) -> int:
    """Block on the coordinator until a verb finishes or the operator hits Ctrl+C."""

    if keep_listening:
        coordinator.on_disconnected(lambda: print("Waiting for device..."))

    def _interrupt(signum, frame) -> None:  # noqa: ARG001 - signal signature
        coordinator.stop()

    previous = signal.signal(signal.SIGINT, _interrupt)
    print("Waiting for device...")
    try:
        coordinator.run()
    finally:
        signal.signal(signal.SIGINT, previous)
    return 0


def _finish(coordinator: SessionCoordinator, keep_listening: bool) -> None:
    if keep_listening:
        print("Device can be safely removed")
    else:
        coordinator.stop()


def _cmd_pull(args: argparse.Namespace, ctx: CliContext) -> int:
    storage = _storage_config(ctx.config, args.database)
    coordinator = ctx.coordinator()
    progress = ProgressPrinter()

    @coordinator.on_connected
    def _connected(params: LoggerParameters) -> None:
        display_device(params)
        if params.records_actual == 0:
            print("No readings found")
            _finish(coordinator, args.keep_listening)
            return
        coordinator.download()

    @coordinator.on_downloading
    def _downloading(current: int, total: int) -> None:
        progress.update(current, total)

    @coordinator.on_downloaded
    def _downloaded(params: LoggerParameters) -> None:
        progress.finish()
        # sqlite connections stay on the thread that delivered the download
        with ReadingStore(storage) as store:
            inserted = store.store(params)
        print(f"Inserted {inserted:,}, skipped {len(params.readings) - inserted:,}")
        _finish(coordinator, args.keep_listening)

    return _run_session(coordinator, args.keep_listening)


def _cmd_info(args: argparse.Namespace, ctx: CliContext) -> int:
    coordinator = ctx.coordinator()

    @coordinator.on_connected
    def _connected(params: LoggerParameters) -> None:
        print(format_info(params, args.format))
        _finish(coordinator, args.keep_listening)

    return _run_session(coordinator, args.keep_listening)


def _changes_from_args(args: argparse.Namespace) -> ParameterChanges:
    changes = ParameterChanges(
        travel_desc=args.travel_desc,
        temp_unit=TempUnit(args.temp_unit.upper()) if args.temp_unit else None,
        interval=args.interval,
        delay_time=args.delay_time,
        interval_shortened=args.interval_shortened,
        display_time=args.display_time,
        alarm_tone_interval=args.alarm_tone_interval,
        alarm_tone_beeps=args.alarm_tone_beeps,
        button_stop_allow=args.button_stop_allow,
        key_tone_allow=args.key_tone_allow,
        storage_model=args.storage_model,
        device_address=args.device_address,
        lower_limit_temp=args.lower_limit_temp,
        upper_limit_temp=args.upper_limit_temp,
        regulate_temp=args.regulate_temp,
        lower_limit_humi=args.lower_limit_humi,
        upper_limit_humi=args.upper_limit_humi,
        regulate_humi=args.regulate_humi,
    )
    if changes.is_empty():
        raise ValidationError("No parameters to set")
    return changes


def _cmd_set(args: argparse.Namespace, ctx: CliContext) -> int:
    changes = _changes_from_args(args)
    coordinator = ctx.coordinator()

    @coordinator.on_connected
    def _connected(params: LoggerParameters) -> None:
        display_device(params)
        params.apply_changes(changes)
        if not confirm(args.yes, "set device parameters", params.records_actual, ctx.input_func):
            coordinator.stop()
            return
        coordinator.update_parameters()

    @coordinator.on_updated
    def _updated() -> None:
        _finish(coordinator, args.keep_listening)

    return _run_session(coordinator, args.keep_listening)


def _cmd_reset(args: argparse.Namespace, ctx: CliContext) -> int:
    coordinator = ctx.coordinator()

    @coordinator.on_connected
    def _connected(params: LoggerParameters) -> None:
        display_device(params)
        if params.work_mode != RESETTABLE_WORK_MODE:
            raise DeviceStateError("Device cannot be reset")
        if not confirm(args.yes, "reset this device", params.records_actual, ctx.input_func):
            coordinator.stop()
            return
        coordinator.quick_reset()

    @coordinator.on_updated
    def _updated() -> None:
        _finish(coordinator, args.keep_listening)

    return _run_session(coordinator, args.keep_listening)


def _cmd_chart(args: argparse.Namespace, ctx: CliContext) -> int:
    storage = _storage_config(ctx.config, args.database)
    _require_database(storage)
    defaults = ctx.config.chart
    options = ChartConfig(
        width=args.width if args.width is not None else defaults.width,
        height=args.height if args.height is not None else defaults.height,
        value_index=args.value_index if args.value_index is not None else defaults.value_index,
    )
    period = _period(args.period)
    column = f"value{options.value_index}"
    with ReadingStore(storage, read_only=True) as store:
        rows = store.query_readings(
            serial_numbers=args.serial_number or (),
            start_ts=period.start_ts if period else None,
            end_ts=period.end_ts if period else None,
            columns=[column],
        )
        series = series_from_rows(rows, column)
    if not series:
        print("No readings found")
        return 1
    width = options.width or shutil.get_terminal_size().columns
    color = not args.no_color
    if args.single:
        text = render_single_chart(series, width=width, height=options.height, color=color)
    else:
        text = render_chart(series, width=width, height=options.height, color=color)
    print(text)
    return 0


def _cmd_export(args: argparse.Namespace, ctx: CliContext) -> int:
    storage = _storage_config(ctx.config, args.database)
    _require_database(storage)
    fmt = args.format or ctx.config.export.default_format
    with ReadingStore(storage, read_only=True) as store:
        count = export_readings(
            store,
            sys.stdout,
            fmt,
            serial_number=args.serial_number,
            period=_period(args.period),
        )
    logger.debug("Exported %d readings as %s", count, fmt)
    return 0


def _cmd_migrate(args: argparse.Namespace, ctx: CliContext) -> int:
    storage = _storage_config(ctx.config, args.database)
    source = LegacyDatabaseSource(Path(args.source_file))

    def _progress(batch: LoggerParameters, inserted: int) -> None:
        print(f"{batch.data_name}: inserted {inserted:,} of {len(batch.readings):,}")

    with ReadingStore(storage) as store:
        result = migrate(source, store, args.serial_number, progress=_progress)
    print(f"Inserted {result.inserted:,}, skipped {result.skipped:,}")
    return 0


def _add_session_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '-k', '--keep-listening', action='store_true', help='Continue listening for another device on disconnect.'
    )


def _add_database_option(parser: argparse.ArgumentParser) -> None:
    parser.add_argument('-d', '--database', type=str, help='Override SQLite database file path.')


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='loggerlink',
        description='Pull, configure and chart temperature/humidity data logger readings.',
    )
    parser.add_argument('--config', type=str, help='Path to a config file (.toml, .yaml or .json).')
    parser.add_argument('--simulate', action='store_true', help='Use the simulated transport instead of the device SDK.')
    parser.add_argument('-v', '--verbose', action='store_true', help='Enable debug logging.')
    subparsers = parser.add_subparsers(dest='command', required=True)

    pull = subparsers.add_parser('pull', help='Pull the latest readings from the connected device.')
    _add_session_options(pull)
    _add_database_option(pull)
    pull.set_defaults(handler=_cmd_pull)

    info = subparsers.add_parser('info', help='Display status information about the connected device.')
    _add_session_options(info)
    info.add_argument('-f', '--format', choices=('text', 'yaml', 'json'), default='text', help='Output format.')
    info.set_defaults(handler=_cmd_info)

    set_parser = subparsers.add_parser('set', help='Set parameters on the connected device.')
    _add_session_options(set_parser)
    set_parser.add_argument('-y', '--yes', action='store_true', help='Suppress confirmation prompt.')
    set_parser.add_argument('--travel-desc', type=str)
    set_parser.add_argument('--temp-unit', choices=('C', 'F', 'c', 'f'))
    set_parser.add_argument('--interval', type=parse_duration, help='Logging interval, e.g. 10m or 00:10:00.')
    set_parser.add_argument('--delay-time', type=parse_duration, help='Start delay, in 30 minute steps.')
    set_parser.add_argument('--interval-shortened', type=parse_duration)
    set_parser.add_argument('--display-time', type=parse_duration)
    set_parser.add_argument('--alarm-tone-interval', type=parse_duration)
    set_parser.add_argument('--alarm-tone-beeps', type=int)
    set_parser.add_argument('--button-stop-allow', type=parse_bool)
    set_parser.add_argument('--key-tone-allow', type=parse_bool)
    set_parser.add_argument('--storage-model', type=parse_bool)
    set_parser.add_argument('--device-address', type=int)
    set_parser.add_argument('--lower-limit-temp', type=float)
    set_parser.add_argument('--upper-limit-temp', type=float)
    set_parser.add_argument('--regulate-temp', type=float)
    set_parser.add_argument('--lower-limit-humi', type=float)
    set_parser.add_argument('--upper-limit-humi', type=float)
    set_parser.add_argument('--regulate-humi', type=float)
    set_parser.set_defaults(handler=_cmd_set)

    reset = subparsers.add_parser('reset', help='Delete all readings on the connected device.')
    _add_session_options(reset)
    reset.add_argument('-y', '--yes', action='store_true', help='Suppress confirmation prompt.')
    reset.set_defaults(handler=_cmd_reset)

    chart = subparsers.add_parser('chart', help='Display device readings in a simple chart.')
    _add_database_option(chart)
    chart.add_argument('-s', '--serial-number', action='append', help='Restrict to specific devices (repeatable).')
    chart.add_argument('-p', '--period', type=str, help="Time period, e.g. yesterday, 'last month', 2024-01..2024-03.")
    chart.add_argument('-i', '--value-index', type=int, help='Value index to display, between 1 and 9.')
    chart.add_argument('-w', '--width', type=int, help='Chart width in characters (default: terminal width).')
    chart.add_argument('-H', '--height', type=int, help='Chart height in characters.')
    chart.add_argument('--single', action='store_true', help='Chart exactly one device.')
    chart.add_argument('--no-color', action='store_true', help='Disable ANSI colors.')
    chart.set_defaults(handler=_cmd_chart)

    export = subparsers.add_parser('export', help='Export readings in the specified format.')
    _add_database_option(export)
    export.add_argument('-s', '--serial-number', type=str, help='Restrict to a specific device.')
    export.add_argument('-p', '--period', type=str, help='Time period to export.')
    export.add_argument('-f', '--format', choices=EXPORT_FORMATS, help='Output format.')
    export.set_defaults(handler=_cmd_export)

    migrate_parser = subparsers.add_parser('migrate', help='Copy readings from a legacy database.')
    _add_database_option(migrate_parser)
    migrate_parser.add_argument('--source-file', type=str, required=True, help='Legacy SQLite database to import.')
    migrate_parser.add_argument('-s', '--serial-number', type=str, help='Restrict to a specific device.')
    migrate_parser.set_defaults(handler=_cmd_migrate)

    return parser


def _validate_serials(args: argparse.Namespace) -> None:
    serials = getattr(args, 'serial_number', None)
    if serials is None:
        return
    for serial in serials if isinstance(serials, list) else [serials]:
        validate_serial(serial)


def main(
    argv: List[str] | None = None,
    *,
    transport_factory: Optional[TransportFactory] = None,
    input_func: InputFunc = input,
) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )
    try:
        config = load_config(Path(args.config) if args.config else None)
        if args.simulate:
            config.device = dataclasses.replace(config.device, transport='sim')
        _validate_serials(args)
        ctx = CliContext(config=config, transport_factory=transport_factory, input_func=input_func)
        return args.handler(args, ctx)
    except ValidationError as exc:
        print(f'ERROR: {exc}', file=sys.stderr)
        return 2
    except LoggerError as exc:
        print(f'ERROR: {exc}', file=sys.stderr)
        return 1
    except ValueError as exc:
        print(f'ERROR: {exc}', file=sys.stderr)
        return 2


if __name__ == '__main__':
    raise SystemExit(main(sys.argv[1:]))
