"""Logger parameter model and transport adapters."""
from __future__ import annotations

from .parameters import (
    LoggerParameters,
    ParameterChanges,
    Reading,
    TempUnit,
    TransportKind,
    apply_changes,
)
from .transports import (
    SimulatedTransport,
    Transport,
    TransportCallbacks,
    create_transports,
    simulated_parameters,
)

__all__ = [
    "LoggerParameters",
    "ParameterChanges",
    "Reading",
    "SimulatedTransport",
    "TempUnit",
    "Transport",
    "TransportCallbacks",
    "TransportKind",
    "apply_changes",
    "create_transports",
    "simulated_parameters",
]
