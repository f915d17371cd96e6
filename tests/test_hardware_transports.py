from __future__ import annotations

import sys
import threading
import types
from typing import List, Tuple

import pytest

from loggerlink.config import DeviceConfig
from loggerlink.constants import MODE_QUICK_RESET
from loggerlink.errors import LoggerError
from loggerlink.hardware import (
    LoggerParameters,
    SimulatedTransport,
    TransportCallbacks,
    TransportKind,
    create_transports,
    simulated_parameters,
)
from loggerlink.session import SessionCoordinator


class Recorder:
    """Collects transport callbacks and signals when a completion event arrives."""

    def __init__(self) -> None:
        self.loaded: List[Tuple[LoggerParameters, str]] = []
        self.progress: List[Tuple[int, int]] = []
        self.completed: List[LoggerParameters] = []
        self.disconnects = 0
        self.event = threading.Event()

    def callbacks(self) -> TransportCallbacks:
        return TransportCallbacks(
            on_parameters_loaded=self._loaded,
            on_download_progress=lambda current, total, message: self.progress.append((current, total)),
            on_download_complete=self._completed,
            on_disconnected=self._disconnected,
            on_notify=lambda is_error, message: None,
        )

    def _loaded(self, params, identity) -> None:
        self.loaded.append((params, identity))
        self.event.set()

    def _completed(self, params) -> None:
        self.completed.append(params)
        self.event.set()

    def _disconnected(self) -> None:
        self.disconnects += 1
        self.event.set()

    def wait(self) -> None:
        assert self.event.wait(2.0)
        self.event.clear()


def test_simulated_transport_emits_loaded_with_identity():
    recorder = Recorder()
    device = simulated_parameters(TransportKind.COM, 'SIM1', readings=4, interval_s=60)
    transport = SimulatedTransport(TransportKind.COM, recorder.callbacks(), device, event_delay_s=0)

    transport.run()
    recorder.wait()

    params, identity = recorder.loaded[0]
    assert identity == 'com:SIM1'
    assert params.serial_number == 'SIM1'
    assert params is not device
    transport.stop()


def test_simulated_download_reports_progress_then_readings():
    recorder = Recorder()
    device = simulated_parameters(TransportKind.USB, 'SIM2', readings=5, interval_s=60)
    transport = SimulatedTransport(TransportKind.USB, recorder.callbacks(), device, event_delay_s=0)

    transport.download(device)
    recorder.wait()

    assert recorder.progress == [(index, 5) for index in range(1, 6)]
    readings = recorder.completed[0].readings
    assert len(readings) == 5
    assert (readings[1].timestamp - readings[0].timestamp).total_seconds() == 60
    assert set(readings[0].values) == {'value1', 'value2'}


def test_simulated_quick_reset_clears_records():
    recorder = Recorder()
    device = simulated_parameters(TransportKind.COM, 'SIM3', readings=5, interval_s=60)
    transport = SimulatedTransport(TransportKind.COM, recorder.callbacks(), device, event_delay_s=0)

    transport.set_parameters(device, MODE_QUICK_RESET)
    recorder.wait()

    params, identity = recorder.loaded[0]
    assert identity == 'com:SIM3'
    assert params.records_actual == 0


def test_simulated_disconnect():
    recorder = Recorder()
    device = simulated_parameters(TransportKind.COM, 'SIM4', readings=1, interval_s=60)
    transport = SimulatedTransport(TransportKind.COM, recorder.callbacks(), device, event_delay_s=0)

    transport.disconnect()
    recorder.wait()

    assert recorder.disconnects == 1
    assert transport.device is None


def test_create_transports_sim_builds_both_kinds():
    transports = create_transports(DeviceConfig(transport='sim'), lambda kind: Recorder().callbacks())

    assert set(transports) == {TransportKind.COM, TransportKind.USB}
    assert transports[TransportKind.COM].device.serial_number == 'SIM00001'
    assert transports[TransportKind.USB].device is None


def test_create_transports_sdk_uses_bridge_module(monkeypatch):
    created: List[TransportKind] = []

    def create_transport(kind, callbacks):
        created.append(kind)
        return SimulatedTransport(kind, callbacks)

    module = types.ModuleType('fake_logger_sdk')
    module.create_transport = create_transport
    monkeypatch.setitem(sys.modules, 'fake_logger_sdk', module)

    transports = create_transports(
        DeviceConfig(transport='sdk', sdk_module='fake_logger_sdk'),
        lambda kind: Recorder().callbacks(),
    )

    assert created == [TransportKind.COM, TransportKind.USB]
    assert set(transports) == set(created)


def test_create_transports_sdk_requires_module():
    with pytest.raises(LoggerError):
        create_transports(DeviceConfig(transport='sdk'), lambda kind: Recorder().callbacks())
    with pytest.raises(LoggerError):
        create_transports(
            DeviceConfig(transport='sdk', sdk_module='loggerlink_missing_sdk_bridge'),
            lambda kind: Recorder().callbacks(),
        )


def test_coordinator_pulls_from_simulated_device():
    coordinator = SessionCoordinator(DeviceConfig(transport='sim', sim_readings=6))
    downloaded: List[LoggerParameters] = []

    @coordinator.on_connected
    def _connected(params):
        coordinator.download()

    @coordinator.on_downloaded
    def _downloaded(params):
        downloaded.append(params)
        coordinator.stop()

    coordinator.run()

    assert len(downloaded) == 1
    assert len(downloaded[0].readings) == 6
    assert coordinator.owner is TransportKind.COM
