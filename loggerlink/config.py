"""Configuration management for loggerlink."""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

from .constants import DEFAULT_BATCH_SIZE
from .errors import ValidationError

SUPPORTED_TRANSPORTS = {"sim", "sdk"}
EXPORT_FORMATS = ("csv", "json")

DEFAULT_DATABASE_PATH = Path("~/.local/share/loggerlink/readings.sqlite")


def _check_range(label: str, value: Optional[int], low: int, high: int) -> None:
    if value is None:
        return
    if value < low or value > high:
        raise ValidationError(f"{label} must be between {low} and {high}")


@dataclass(slots=True)
class DeviceConfig:
    """Transport selection for the session coordinator."""

    transport: str = "sdk"
    sdk_module: Optional[str] = None
    sim_serial: str = "SIM00001"
    sim_readings: int = 48
    sim_interval_s: int = 600

    def __post_init__(self) -> None:
        candidate = (self.transport or "sdk").strip().lower()
        if candidate not in SUPPORTED_TRANSPORTS:
            allowed = ", ".join(sorted(SUPPORTED_TRANSPORTS))
            raise ValueError(f"transport must be one of {allowed}")
        self.transport = candidate
        try:
            readings = int(self.sim_readings)
        except (TypeError, ValueError):
            readings = 48
        self.sim_readings = max(readings, 0)
        try:
            interval = int(self.sim_interval_s)
        except (TypeError, ValueError):
            interval = 600
        self.sim_interval_s = max(interval, 1)


@dataclass(slots=True)
class StorageConfig:
    """Database location and write behaviour."""

    database_path: Path = DEFAULT_DATABASE_PATH
    ensure_directories: bool = True
    batch_size: int = DEFAULT_BATCH_SIZE
    vacuum_after_insert: bool = True

    def __post_init__(self) -> None:
        if isinstance(self.database_path, str):
            self.database_path = Path(self.database_path)
        try:
            batch = int(self.batch_size)
        except (TypeError, ValueError):
            batch = DEFAULT_BATCH_SIZE
        self.batch_size = max(batch, 1)


@dataclass(slots=True)
class ChartConfig:
    """Defaults for terminal chart rendering."""

    width: Optional[int] = None
    height: int = 20
    value_index: int = 1

    def __post_init__(self) -> None:
        _check_range("width", self.width, 12, 1000)
        _check_range("height", self.height, 2, 1000)
        _check_range("value_index", self.value_index, 1, 9)


@dataclass(slots=True)
class ExportConfig:
    """Controls for reading exports."""

    default_format: str = "csv"

    def __post_init__(self) -> None:
        self.default_format = (self.default_format or "csv").lower()
        if self.default_format not in EXPORT_FORMATS:
            raise ValueError(f"default_format must be one of {', '.join(EXPORT_FORMATS)}")


@dataclass(slots=True)
class AppConfig:
    """Top-level application configuration bundle."""

    device: DeviceConfig = field(default_factory=DeviceConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    chart: ChartConfig = field(default_factory=ChartConfig)
    export: ExportConfig = field(default_factory=ExportConfig)

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "AppConfig":
        """Create a configuration instance from a nested dictionary."""

        def _section(name: str, factory: Any) -> Any:
            data = payload.get(name, {}) if payload else {}
            if isinstance(data, dict):
                return factory(**data)
            raise TypeError(f"Expected mapping for section '{name}', got {type(data).__name__}")

        return cls(
            device=_section("device", DeviceConfig),
            storage=_section("storage", StorageConfig),
            chart=_section("chart", ChartConfig),
            export=_section("export", ExportConfig),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Return a serialisable representation of the configuration."""

        def _asdict(obj: Any) -> Dict[str, Any]:
            return {field: getattr(obj, field) for field in obj.__dataclass_fields__}  # type: ignore[attr-defined]

        return {
            "device": _asdict(self.device),
            "storage": {**_asdict(self.storage), "database_path": str(self.storage.database_path)},
            "chart": _asdict(self.chart),
            "export": _asdict(self.export),
        }


def load_config(path: Optional[Path]) -> AppConfig:
    """Load configuration from *path* if provided, otherwise return defaults."""

    if path is None:
        return AppConfig()
    resolved = path.expanduser()
    if not resolved.exists():
        return AppConfig()
    payload: Dict[str, Any]
    suffix = resolved.suffix.lower()
    if suffix in {".json", ".jsn"}:
        payload = _load_json(resolved)
    elif suffix in {".toml", ".tml"}:
        payload = _load_toml(resolved)
    elif suffix in {".yaml", ".yml"}:
        payload = _load_yaml(resolved)
    else:
        raise ValueError(f"Unsupported configuration format: {resolved.suffix}")
    return AppConfig.from_dict(payload)


def _load_json(path: Path) -> Dict[str, Any]:
    import json

    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _load_toml(path: Path) -> Dict[str, Any]:
    import tomllib

    with path.open("rb") as handle:
        return tomllib.load(handle)


def _load_yaml(path: Path) -> Dict[str, Any]:
    import yaml

    with path.open("r", encoding="utf-8") as handle:
        return yaml.safe_load(handle) or {}
