#
# Copyright 2025 The NestSync and AmpScm contributors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#    http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
#

"""Outbound sink: turns reconciled values into registry rows.

Values are stored the way home-automation hosts store sensor state: an integer
`n_value` (switch state) and a string `s_value` (setpoint, "temp;hum;status").
The reconciliation engine compares against the same encoding, so a value is
only emitted when its stored form would change.
"""

import enum
import logging
from typing import Any, Tuple

from .registry import DeviceRegistry

logger = logging.getLogger(__name__)


class SensorKind(enum.Enum):
    BINARY_SWITCH = "binary_switch"
    SETPOINT = "setpoint"
    TEMP_HUM = "temp_hum"


# Humidity status codes stored as the third field of a temp+hum value
HUMIDITY_NORMAL = 0
HUMIDITY_COMFORTABLE = 1
HUMIDITY_DRY = 2
HUMIDITY_WET = 3


def humidity_status(humidity: int) -> int:
    if humidity < 30:
        return HUMIDITY_DRY
    if humidity > 70:
        return HUMIDITY_WET
    if 40 <= humidity <= 60:
        return HUMIDITY_COMFORTABLE
    return HUMIDITY_NORMAL


def encode_value(kind: SensorKind, value: Any) -> Tuple[int, str]:
    """
    Encode a reconciled value as (n_value, s_value).

    Args:
        kind: Sensor kind
        value: bool for switches, float for setpoints, (temperature, humidity) for temp+hum
    """
    if kind == SensorKind.BINARY_SWITCH:
        return (1, "On") if value else (0, "Off")
    if kind == SensorKind.SETPOINT:
        return 0, f"{float(value):.2f}"
    if kind == SensorKind.TEMP_HUM:
        temperature, humidity = value
        humidity = int(humidity)
        return 0, f"{float(temperature):.1f};{humidity};{humidity_status(humidity)}"
    raise ValueError(f"Unknown sensor kind: {kind}")


class RegistrySink:
    """Sink that writes emitted values into the device registry."""

    def __init__(self, registry: DeviceRegistry):
        self.registry = registry

    def emit(self, kind: SensorKind, device_id: str, value: Any, label: str):
        n_value, s_value = encode_value(kind, value)
        self.registry.upsert(kind.value, device_id, label, n_value, s_value)
        logger.debug(f"Emitted {kind.value}/{device_id} {label!r}: n={n_value} s={s_value!r}")
