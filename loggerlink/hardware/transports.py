"""Transport adapters feeding the session coordinator.

Real COM/USB adapters are provided by the external device SDK; this module
defines the contract the coordinator relies on, a simulated adapter for bench
runs and tests, and the factory that picks between them.
"""
from __future__ import annotations

import copy
import importlib
import math
import threading
import time
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Protocol

from ..config import DeviceConfig
from ..constants import MODE_QUICK_RESET
from ..errors import LoggerError
from .parameters import LoggerParameters, Reading, TransportKind


@dataclass(slots=True)
class TransportCallbacks:
    """Events a transport adapter delivers, possibly from its own threads."""

    on_parameters_loaded: Callable[[LoggerParameters, str], None]
    on_download_progress: Callable[[int, int, str], None]
    on_download_complete: Callable[[LoggerParameters], None]
    on_disconnected: Callable[[], None]
    on_notify: Callable[[bool, str], None]


class Transport(Protocol):
    """Command surface of one transport adapter."""

    kind: TransportKind

    def run(self) -> None:  # pragma: no cover - protocol signature
        ...

    def stop(self) -> None:  # pragma: no cover - protocol signature
        ...

    def download(self, parameters: LoggerParameters) -> None:  # pragma: no cover - protocol signature
        ...

    def set_parameters(self, parameters: LoggerParameters, mode: int) -> None:  # pragma: no cover - protocol signature
        ...


CallbacksFactory = Callable[[TransportKind], TransportCallbacks]


def simulated_parameters(
    kind: TransportKind,
    serial: str,
    readings: int,
    interval_s: int,
    started_at: Optional[datetime] = None,
) -> LoggerParameters:
    """Build a plausible temperature/humidity logger snapshot."""

    start = started_at or datetime(2024, 1, 1, 8, 0, 0)
    return LoggerParameters(
        transport=kind,
        serial_number=serial,
        model="Simulated RC-5",
        travel_desc="Simulated logger",
        device_state="Logging",
        battery="100%",
        records_actual=readings,
        capacity_max=32000,
        started_at=start,
        work_mode=2,
        sensor2_available=True,
        sensor_type_value=22,
        interval_s=interval_s,
        lower_limit_temp=2.0,
        upper_limit_temp=8.0,
        lower_limit_humi=20.0,
        upper_limit_humi=80.0,
    )


def _simulated_readings(params: LoggerParameters) -> list[Reading]:
    start = params.started_at or datetime(2024, 1, 1)
    step = timedelta(seconds=max(params.interval_s, 1))
    rows: list[Reading] = []
    for index in range(params.records_actual):
        rows.append(
            Reading(
                timestamp=start + step * index,
                values={
                    "value1": round(5.0 + 2.5 * math.sin(index / 6.0), 1),
                    "value2": round(55.0 + 10.0 * math.cos(index / 9.0), 1),
                },
            )
        )
    return rows


class SimulatedTransport:
    """In-memory logger adapter delivering callbacks from worker threads."""

    def __init__(
        self,
        kind: TransportKind,
        callbacks: TransportCallbacks,
        device: Optional[LoggerParameters] = None,
        *,
        session_identity: Optional[str] = None,
        event_delay_s: float = 0.01,
    ) -> None:
        self.kind = kind
        self._callbacks = callbacks
        self._device = device
        self._identity = session_identity or (f"{kind.value}:{device.identity}" if device else None)
        self._event_delay_s = max(event_delay_s, 0.0)
        self._threads: list[threading.Thread] = []
        self._stopped = threading.Event()

    @property
    def device(self) -> Optional[LoggerParameters]:
        return self._device

    def run(self) -> None:
        self._stopped.clear()
        if self._device is not None:
            self._spawn(self._emit_loaded)

    def stop(self) -> None:
        self._stopped.set()

    def join(self, timeout: float = 2.0) -> None:
        for thread in list(self._threads):
            thread.join(timeout)

    def disconnect(self) -> None:
        """Simulate unplugging the device."""

        self._device = None
        self._spawn(self._callbacks.on_disconnected)

    def download(self, parameters: LoggerParameters) -> None:
        self._spawn(self._run_download, copy.deepcopy(parameters))

    def set_parameters(self, parameters: LoggerParameters, mode: int) -> None:
        self._spawn(self._run_set_parameters, copy.deepcopy(parameters), mode)

    def _spawn(self, target: Callable[..., None], *args: object) -> None:
        thread = threading.Thread(
            target=self._delayed,
            name=f"sim-{self.kind.value}-transport",
            args=(target, args),
            daemon=True,
        )
        self._threads.append(thread)
        thread.start()

    def _delayed(self, target: Callable[..., None], args: tuple) -> None:
        if self._event_delay_s:
            time.sleep(self._event_delay_s)
        if self._stopped.is_set():
            return
        target(*args)

    def _emit_loaded(self) -> None:
        if self._device is None or self._identity is None:
            return
        self._callbacks.on_parameters_loaded(copy.deepcopy(self._device), self._identity)

    def _run_download(self, parameters: LoggerParameters) -> None:
        rows = _simulated_readings(parameters)
        total = len(rows)
        for current in range(1, total + 1):
            if self._stopped.is_set():
                return
            self._callbacks.on_download_progress(current, total, "Downloading")
        self._callbacks.on_download_complete(replace(parameters, readings=rows))

    def _run_set_parameters(self, parameters: LoggerParameters, mode: int) -> None:
        if mode == MODE_QUICK_RESET:
            parameters.records_actual = 0
            parameters.readings = []
            parameters.started_at = datetime.now().replace(microsecond=0)
        self._device = parameters
        self._emit_loaded()


def _load_sdk_factory(module_name: Optional[str]) -> Callable[[TransportKind, TransportCallbacks], Transport]:
    if not module_name:
        raise LoggerError("device.sdk_module must name the device SDK bridge module when transport is 'sdk'")
    try:
        module = importlib.import_module(module_name)
    except ImportError as exc:
        raise LoggerError(f"Could not import device SDK module '{module_name}': {exc}") from exc
    factory = getattr(module, "create_transport", None)
    if not callable(factory):
        raise LoggerError(f"SDK module '{module_name}' does not provide create_transport(kind, callbacks)")
    return factory


def create_transports(config: DeviceConfig, callbacks_for: CallbacksFactory) -> Dict[TransportKind, Transport]:
    """Create one adapter per transport kind based on *config.transport*."""

    transports: Dict[TransportKind, Transport] = {}
    if config.transport == "sim":
        device = simulated_parameters(
            TransportKind.COM,
            config.sim_serial,
            config.sim_readings,
            config.sim_interval_s,
        )
        transports[TransportKind.COM] = SimulatedTransport(TransportKind.COM, callbacks_for(TransportKind.COM), device)
        transports[TransportKind.USB] = SimulatedTransport(TransportKind.USB, callbacks_for(TransportKind.USB))
        return transports
    if config.transport == "sdk":
        factory = _load_sdk_factory(config.sdk_module)
        for kind in TransportKind:
            transports[kind] = factory(kind, callbacks_for(kind))
        return transports
    raise ValueError(f"Unsupported transport '{config.transport}'")
