"""Single-device session arbitration across the COM and USB transports."""
from __future__ import annotations

import logging
import threading
from typing import Callable, Dict, List, Optional

from ..config import DeviceConfig
from ..constants import MODE_CONFIGURE, MODE_QUICK_RESET
from ..errors import TransportFault
from ..hardware.parameters import LoggerParameters, TransportKind
from ..hardware.transports import CallbacksFactory, Transport, TransportCallbacks, create_transports

logger = logging.getLogger(__name__)

# Longest single wait on the stop event; SIGINT is only serviced between waits on Windows.
STOP_POLL_S = 0.5

TransportFactory = Callable[[CallbacksFactory], Dict[TransportKind, Transport]]

ConnectedListener = Callable[[LoggerParameters], None]
DownloadingListener = Callable[[int, int], None]
DownloadedListener = Callable[[LoggerParameters], None]
SimpleListener = Callable[[], None]


class SessionCoordinator:
    """Present one logical device session backed by two transport adapters.

    Transport callbacks arrive on SDK-owned threads. All session state is read
    and written under ``self._lock``; listener failures are captured as the
    terminating error and re-raised from :meth:`run`.
    """

    def __init__(
        self,
        config: Optional[DeviceConfig] = None,
        transport_factory: Optional[TransportFactory] = None,
    ) -> None:
        device_config = config or DeviceConfig()
        factory = transport_factory or (lambda callbacks_for: create_transports(device_config, callbacks_for))
        self._lock = threading.RLock()
        self._stop = threading.Event()
        self._parameters: Optional[LoggerParameters] = None
        self._identity: Optional[str] = None
        self._owner: Optional[TransportKind] = None
        self._error: Optional[BaseException] = None
        self._connected: List[ConnectedListener] = []
        self._updated: List[SimpleListener] = []
        self._downloading: List[DownloadingListener] = []
        self._downloaded: List[DownloadedListener] = []
        self._disconnected: List[SimpleListener] = []
        self._transports = factory(self._callbacks_for)

    # -- listener registration -------------------------------------------------

    def on_connected(self, listener: ConnectedListener) -> ConnectedListener:
        self._connected.append(listener)
        return listener

    def on_updated(self, listener: SimpleListener) -> SimpleListener:
        self._updated.append(listener)
        return listener

    def on_downloading(self, listener: DownloadingListener) -> DownloadingListener:
        self._downloading.append(listener)
        return listener

    def on_downloaded(self, listener: DownloadedListener) -> DownloadedListener:
        self._downloaded.append(listener)
        return listener

    def on_disconnected(self, listener: SimpleListener) -> SimpleListener:
        self._disconnected.append(listener)
        return listener

    # -- state snapshot --------------------------------------------------------

    @property
    def transports(self) -> Dict[TransportKind, Transport]:
        return dict(self._transports)

    @property
    def parameters(self) -> Optional[LoggerParameters]:
        with self._lock:
            return self._parameters

    @property
    def identity(self) -> Optional[str]:
        with self._lock:
            return self._identity

    @property
    def owner(self) -> Optional[TransportKind]:
        with self._lock:
            return self._owner

    @property
    def error(self) -> Optional[BaseException]:
        with self._lock:
            return self._error

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    # -- run loop --------------------------------------------------------------

    def run(self) -> None:
        """Start both adapters and block until :meth:`stop` or a captured error."""

        try:
            for transport in self._transports.values():
                transport.run()
            while not self._stop.wait(STOP_POLL_S):
                pass
        finally:
            for transport in self._transports.values():
                stop = getattr(transport, "stop", None)
                if callable(stop):
                    stop()
        error = self.error
        if error is not None:
            raise error

    def stop(self) -> None:
        self._stop.set()

    def __enter__(self) -> "SessionCoordinator":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[override]
        self.stop()

    # -- commands --------------------------------------------------------------

    def download(self) -> None:
        with self._lock:
            transport = self._bound_transport()
            if transport is None:
                return
            transport.download(self._parameters)

    def update_parameters(self) -> None:
        with self._lock:
            transport = self._bound_transport()
            if transport is None:
                return
            transport.set_parameters(self._parameters, MODE_CONFIGURE)

    def quick_reset(self) -> None:
        with self._lock:
            transport = self._bound_transport()
            if transport is None:
                return
            transport.set_parameters(self._parameters, MODE_QUICK_RESET)

    def _bound_transport(self) -> Optional[Transport]:
        if self._parameters is None or self._owner is None:
            return None
        return self._transports.get(self._owner)

    # -- transport callbacks ---------------------------------------------------

    def _callbacks_for(self, kind: TransportKind) -> TransportCallbacks:
        return TransportCallbacks(
            on_parameters_loaded=lambda params, identity: self._parameters_loaded(kind, params, identity),
            on_download_progress=self._download_progress,
            on_download_complete=self._download_complete,
            on_disconnected=lambda: self._device_disconnected(kind),
            on_notify=lambda is_error, message: self._notify(kind, is_error, message),
        )

    def _capture(self, exc: BaseException) -> None:
        with self._lock:
            if self._error is None:
                self._error = exc
        self._stop.set()

    def _parameters_loaded(self, kind: TransportKind, params: LoggerParameters, identity: str) -> None:
        with self._lock:
            try:
                if self._identity is not None and self._identity == identity:
                    self._parameters = params
                    for listener in list(self._updated):
                        listener()
                elif self._identity is None:
                    self._parameters = params
                    self._identity = identity
                    self._owner = kind
                    logger.debug("Session bound to %s via %s", identity, kind.value)
                    for listener in list(self._connected):
                        listener(params)
                else:
                    logger.debug(
                        "Ignoring %s from %s while %s is bound",
                        identity,
                        kind.value,
                        self._identity,
                    )
            except Exception as exc:  # pylint: disable=broad-except
                self._capture(exc)

    def _download_progress(self, current: int, total: int, message: str) -> None:
        try:
            for listener in list(self._downloading):
                listener(current, total)
        except Exception as exc:  # pylint: disable=broad-except
            self._capture(exc)

    def _download_complete(self, params: LoggerParameters) -> None:
        try:
            for listener in list(self._downloaded):
                listener(params)
        except Exception as exc:  # pylint: disable=broad-except
            self._capture(exc)

    def _device_disconnected(self, kind: TransportKind) -> None:
        with self._lock:
            try:
                if self._identity is None or self._owner != kind:
                    logger.debug("Ignoring disconnect from unbound %s transport", kind.value)
                    return
                logger.debug("Session %s released by %s", self._identity, kind.value)
                self._parameters = None
                self._identity = None
                self._owner = None
                for listener in list(self._disconnected):
                    listener()
            except Exception as exc:  # pylint: disable=broad-except
                self._capture(exc)

    def _notify(self, kind: TransportKind, is_error: bool, message: str) -> None:
        if is_error:
            self._capture(TransportFault(message, transport=kind.value))
        else:
            logger.info(message)
