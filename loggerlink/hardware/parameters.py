"""Logger parameter snapshots and validated configuration changes."""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from ..constants import COM_FLAG_OFF, COM_FLAG_ON, SENSOR_TYPE_TEMPERATURE
from ..errors import ValidationError


class TransportKind(str, enum.Enum):
    """Identifies which transport adapter produced (and owns) a snapshot."""

    COM = "com"
    USB = "usb"


class TempUnit(str, enum.Enum):
    C = "C"
    F = "F"


@dataclass(slots=True)
class Reading:
    """One logged sample: a timestamp plus named measurement values."""

    timestamp: datetime
    values: Dict[str, Any] = field(default_factory=dict)


@dataclass(slots=True)
class LoggerParameters:
    """Snapshot of a logger's identity, configuration and downloaded readings.

    The ``transport`` tag selects which adapter commands are routed to; both
    variants share the same fields and capabilities.
    """

    transport: TransportKind
    serial_number: Optional[str] = None
    model: Optional[str] = None
    data_name: Optional[str] = None
    travel_number: Optional[str] = None
    travel_desc: Optional[str] = None
    device_state: Optional[str] = None
    battery: Optional[str] = None
    records_actual: int = 0
    capacity_max: int = 0
    expected_stop_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    work_mode: int = 0
    alarm_status: int = 0
    max_value1: Optional[float] = None
    min_value1: Optional[float] = None
    max_value2: Optional[float] = None
    min_value2: Optional[float] = None
    sensor2_available: bool = False
    sensor_type_value: int = 0
    temp_unit: TempUnit = TempUnit.C
    interval_s: int = 0
    delay_time_value: int = 0
    device_address: Optional[int] = None
    button_stop_allow_value: int = 0
    key_tone_allow_value: int = 0
    alarm_tone_beeps: int = 0
    alarm_tone_interval_min: int = 0
    storage_model_value: int = 0
    display_time_s: int = 0
    interval_shortened_value: int = 0
    storage_model_available: bool = True
    interval_shortened_available: bool = True
    display_time_available: bool = True
    alarm_tone_interval_available: bool = True
    lower_limit_temp: float = 0.0
    upper_limit_temp: float = 0.0
    regulate_temp: float = 0.0
    lower_limit_humi: float = 0.0
    upper_limit_humi: float = 0.0
    regulate_humi: float = 0.0
    alarm_range_min_temp: float = -273.0
    alarm_range_max_temp: float = 1000.0
    alarm_range_min_humi: float = 0.0
    alarm_range_max_humi: float = 100.0
    readings: List[Reading] = field(default_factory=list)

    @property
    def identity(self) -> Optional[str]:
        """Serial number, falling back to the model description."""

        return self.serial_number or self.model

    @property
    def sensor2_type(self) -> Optional[str]:
        if not self.sensor2_available:
            return None
        return "Temp" if self.sensor_type_value == SENSOR_TYPE_TEMPERATURE else "Humi"

    @property
    def storage_used(self) -> Optional[float]:
        if self.capacity_max <= 0:
            return None
        return self.records_actual / self.capacity_max

    def apply_changes(self, changes: "ParameterChanges") -> None:
        apply_changes(self, changes)

    def snapshot(self) -> Dict[str, Any]:
        """Return a plain mapping of the configuration fields, readings excluded."""

        payload: Dict[str, Any] = {}
        for name in self.__dataclass_fields__:  # type: ignore[attr-defined]
            if name == "readings":
                continue
            value = getattr(self, name)
            if isinstance(value, enum.Enum):
                value = value.value
            payload[name] = value
        return payload


def _range_error(label: str, low: Any, high: Any) -> ValidationError:
    return ValidationError(f"{label} must be between {low} and {high}")


@dataclass(slots=True)
class ParameterChanges:
    """Requested configuration edits; ``None`` leaves a field untouched."""

    travel_desc: Optional[str] = None
    temp_unit: Optional[TempUnit] = None
    interval: Optional[timedelta] = None
    delay_time: Optional[timedelta] = None
    interval_shortened: Optional[timedelta] = None
    display_time: Optional[timedelta] = None
    alarm_tone_interval: Optional[timedelta] = None
    alarm_tone_beeps: Optional[int] = None
    button_stop_allow: Optional[bool] = None
    key_tone_allow: Optional[bool] = None
    storage_model: Optional[bool] = None
    device_address: Optional[int] = None
    lower_limit_temp: Optional[float] = None
    upper_limit_temp: Optional[float] = None
    regulate_temp: Optional[float] = None
    lower_limit_humi: Optional[float] = None
    upper_limit_humi: Optional[float] = None
    regulate_humi: Optional[float] = None

    def __post_init__(self) -> None:
        if self.interval is not None and not (timedelta(seconds=10) <= self.interval <= timedelta(days=1)):
            raise _range_error("interval", "10 seconds", "1 day")
        if self.delay_time is not None and not (timedelta(0) <= self.delay_time < timedelta(hours=16)):
            raise ValidationError("delay_time must be between 0 and 16 hours exclusive")
        if self.interval_shortened is not None and not (
            timedelta(0) <= self.interval_shortened <= timedelta(minutes=5)
        ):
            raise _range_error("interval_shortened", "0", "5 minutes")
        if self.travel_desc is not None and len(self.travel_desc) > 100:
            raise ValidationError("travel_desc must be 100 characters at most")
        for label, value, low, high in (
            ("alarm_tone_beeps", self.alarm_tone_beeps, 0, 255),
            ("device_address", self.device_address, 0, 255),
            ("lower_limit_temp", self.lower_limit_temp, -273, 1000),
            ("upper_limit_temp", self.upper_limit_temp, -273, 1000),
            ("regulate_temp", self.regulate_temp, -10, 10),
            ("lower_limit_humi", self.lower_limit_humi, 0, 100),
            ("upper_limit_humi", self.upper_limit_humi, 0, 100),
            ("regulate_humi", self.regulate_humi, -20, 20),
        ):
            if value is not None and not (low <= value <= high):
                raise _range_error(label, low, high)

    def is_empty(self) -> bool:
        return all(getattr(self, name) is None for name in self.__dataclass_fields__)  # type: ignore[attr-defined]


def fahrenheit_to_celsius(value: float, unit: TempUnit) -> float:
    """Convert an operator-entered temperature into the device's Celsius storage."""

    if unit == TempUnit.F:
        return round((value - 32.0) * 5.0 / 9.0, 1)
    return value


def _validate_against_device(params: LoggerParameters, changes: ParameterChanges) -> None:
    if changes.storage_model is not None and not params.storage_model_available:
        raise ValidationError("Storage model not available")
    if changes.interval_shortened is not None and not params.interval_shortened_available:
        raise ValidationError("Interval shortened not available")
    if changes.display_time is not None and not params.display_time_available:
        raise ValidationError("Display time not available")
    if changes.alarm_tone_interval is not None and not params.alarm_tone_interval_available:
        raise ValidationError("Alarm tone interval not available")

    lower = changes.lower_limit_temp if changes.lower_limit_temp is not None else params.lower_limit_temp
    upper = changes.upper_limit_temp if changes.upper_limit_temp is not None else params.upper_limit_temp
    if changes.upper_limit_temp is not None and upper - lower < 0.5:
        raise ValidationError("Upper limit temp must be greater than lower limit temp")
    if changes.lower_limit_temp is not None and upper - lower < 0.5:
        raise ValidationError("Lower limit temp must be less than upper limit temp")
    if changes.upper_limit_temp is not None and upper > params.alarm_range_max_temp:
        raise ValidationError("Upper limit temp must be less than alarm range max temp")
    if changes.lower_limit_temp is not None and lower < params.alarm_range_min_temp:
        raise ValidationError("Lower limit temp must be greater than alarm range min temp")

    if params.sensor2_available:
        lower = changes.lower_limit_humi if changes.lower_limit_humi is not None else params.lower_limit_humi
        upper = changes.upper_limit_humi if changes.upper_limit_humi is not None else params.upper_limit_humi
        if changes.upper_limit_humi is not None and upper - lower < 0.5:
            raise ValidationError("Upper limit humi must be greater than lower limit humi")
        if changes.lower_limit_humi is not None and upper - lower < 0.5:
            raise ValidationError("Lower limit humi must be less than upper limit humi")
        if changes.upper_limit_humi is not None and upper > params.alarm_range_max_humi:
            raise ValidationError("Upper limit humi must be less than alarm range max humi")
        if changes.lower_limit_humi is not None and lower < params.alarm_range_min_humi:
            raise ValidationError("Lower limit humi must be greater than alarm range min humi")
    else:
        if changes.lower_limit_humi is not None:
            raise ValidationError("Lower limit humi not available")
        if changes.upper_limit_humi is not None:
            raise ValidationError("Upper limit humi not available")
        if changes.regulate_humi is not None:
            raise ValidationError("Regulate humi not available")


def _flag(value: bool) -> int:
    return COM_FLAG_ON if value else COM_FLAG_OFF


def apply_changes(params: LoggerParameters, changes: ParameterChanges) -> None:
    """Validate *changes* against the connected device and write them into *params*.

    Nothing is modified when validation fails.
    """

    _validate_against_device(params, changes)
    is_com = params.transport == TransportKind.COM

    if changes.travel_desc is not None:
        params.travel_desc = changes.travel_desc.strip()
    if changes.temp_unit is not None:
        params.temp_unit = TempUnit(changes.temp_unit)
    if changes.interval is not None:
        params.interval_s = int(changes.interval.total_seconds())
    if changes.delay_time is not None:
        total_minutes = int(changes.delay_time.total_seconds()) // 60
        params.delay_time_value = (total_minutes // 60) * 16 + (total_minutes % 60) // 30
    if changes.button_stop_allow is not None:
        params.button_stop_allow_value = _flag(changes.button_stop_allow)
    if changes.device_address is not None:
        params.device_address = changes.device_address
    if changes.key_tone_allow is not None:
        if is_com:
            params.key_tone_allow_value = _flag(changes.key_tone_allow)
        else:
            params.key_tone_allow_value = 1 if changes.key_tone_allow else 0
    if changes.alarm_tone_beeps is not None:
        params.alarm_tone_beeps = changes.alarm_tone_beeps
    if changes.alarm_tone_interval is not None:
        params.alarm_tone_interval_min = int(changes.alarm_tone_interval.total_seconds()) // 60
    if changes.storage_model is not None:
        params.storage_model_value = _flag(changes.storage_model)

    if changes.display_time is not None:
        if not changes.display_time:
            params.display_time_s = 0 if is_com else 15
        else:
            params.display_time_s = int(changes.display_time.total_seconds())

    if changes.interval_shortened is not None:
        if is_com:
            params.interval_shortened_value = _flag(bool(changes.interval_shortened))
        else:
            params.interval_shortened_value = int(changes.interval_shortened.total_seconds()) // 60

    if changes.upper_limit_temp is not None:
        params.upper_limit_temp = fahrenheit_to_celsius(changes.upper_limit_temp, params.temp_unit)
    if changes.lower_limit_temp is not None:
        params.lower_limit_temp = fahrenheit_to_celsius(changes.lower_limit_temp, params.temp_unit)
    if changes.regulate_temp is not None:
        params.regulate_temp = changes.regulate_temp

    if params.sensor2_available:
        if changes.upper_limit_humi is not None:
            params.upper_limit_humi = changes.upper_limit_humi
        if changes.lower_limit_humi is not None:
            params.lower_limit_humi = changes.lower_limit_humi
        if changes.regulate_humi is not None:
            params.regulate_humi = changes.regulate_humi
