"""Shared constants used across the loggerlink package."""
from __future__ import annotations

from datetime import datetime

TICK_EPOCH = datetime(1, 1, 1)

DEFAULT_BATCH_SIZE = 1000
DATA_NAME_TIME_FORMAT = "%Y%m%d%H%M%S"

# set_parameters modes understood by the device SDK
MODE_CONFIGURE = 0
MODE_QUICK_RESET = 1

RESETTABLE_WORK_MODE = 2
SENSOR_TYPE_TEMPERATURE = 21

# device flag values used by COM loggers for on/off switches
COM_FLAG_ON = 19
COM_FLAG_OFF = 49
