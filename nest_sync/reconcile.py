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

"""Reconcile fetched Nest state into emitted sensor values.

Synthetic node ids:
===================

Every emitted signal is keyed by a node id derived from the structure or
thermostat index, so the same physical entity keeps the same key across polls
(as long as Nest keeps its ordering):

- Structure s:   away switch                = 3 + 3*s
- Thermostat t:  setpoint                   = 1 + 3*t
                 temperature + humidity     = 2 + 3*t
                 manual eco mode switch     = 4 + 3*t
                 heating active switch      = 113 + 3*t
                 cooling active switch      = 114 + 3*t
- Smoke/CO unit n: smoke alarm = 1 + 2*n, CO alarm = 2 + 2*n (separate id family)

The away and eco switch ids are what the command router decodes, see
commands.CommandDispatcher.route_switch().

Known limitations: cooling switch ids (114 + 3*t) fall in the same residue
class as away switches, so the cooling switch of thermostat t shares its
registry key with the away switch of structure 37 + t, and a switch command
for id 114 + 3*t is routed to that structure's away mode (NOT_READY unless
the site has that many structures). Indices also follow the order of the
API response, see index.py.
"""

import logging
from typing import Any, Dict, Optional

from .index import IdentifierIndex, Thermostat
from .registry import DeviceRegistry
from .sink import SensorKind, encode_value

logger = logging.getLogger(__name__)

SMOKE_DETECTOR = "smoke_detector"

HEATING_SWITCH_BASE = 113
COOLING_SWITCH_BASE = 114


def node_device_id(node_id: int) -> str:
    """Registry device id for switch, setpoint and temp+hum nodes."""
    return "%X%02X%02X%02X" % (0, 0, 0, node_id)


def smoke_device_id(switch_index: int) -> str:
    """Registry device id for smoke/CO alarm sensors."""
    return "%X%02X%02X%02X" % (0, 0, switch_index, 0)


def away_node_id(structure_index: int) -> int:
    return structure_index * 3 + 3


def setpoint_node_id(thermostat_index: int) -> int:
    return thermostat_index * 3 + 1


def temp_hum_node_id(thermostat_index: int) -> int:
    return thermostat_index * 3 + 2


def eco_node_id(thermostat_index: int) -> int:
    return thermostat_index * 3 + 4


def alarm_is_active(state: Optional[str]) -> bool:
    """Only an explicit "ok" clears an alarm; unknown or missing state counts as hazardous."""
    return state != "ok"


class Reconciler:
    """Walks fetched structures/devices and emits changed values."""

    def __init__(self, index: IdentifierIndex, registry: DeviceRegistry, sink):
        self.index = index
        self.registry = registry
        self.sink = sink

    def _update(self, kind: SensorKind, device_id: str, value: Any, label: str,
                category: Optional[str] = None) -> bool:
        """
        Emit a value unless it matches what the registry already holds.

        Returns:
            True if the value was emitted
        """
        n_value, s_value = encode_value(kind, value)
        entry = self.registry.lookup(kind.value, device_id)
        if entry is not None and entry.n_value == n_value and entry.s_value == s_value:
            self.registry.touch(kind.value, device_id)
            return False

        self.sink.emit(kind, device_id, value, label)
        if entry is None and category:
            self.registry.set_category(kind.value, device_id, category)
        return True

    def reconcile(self, structures: Dict[str, Any], devices: Dict[str, Any]) -> int:
        """
        Run one reconciliation pass over a fetched payload pair.

        Rebuilds the identifier index and emits every value that changed.

        Returns:
            Number of emitted values
        """
        emitted = self._reconcile_smoke_alarms(devices.get('smoke_co_alarms') or {})

        self.index.rebuild(structures, devices)

        structure_payloads = [s for s in structures.values() if isinstance(s, dict)]
        for structure, nstructure in zip(self.index.structures, structure_payloads):
            # Away is determined for a structure, not for a thermostat
            away = nstructure.get('away')
            if away is None:
                continue
            is_away = away in ("away", "auto-away")
            if self._update(SensorKind.BINARY_SWITCH, node_device_id(away_node_id(structure.index)),
                            is_away, f"{structure.name} Away"):
                emitted += 1

        thermostat_data = devices.get('thermostats') or {}
        for thermostat in self.index.thermostats:
            emitted += self._reconcile_thermostat(thermostat, thermostat_data.get(thermostat.remote_serial) or {})

        logger.info(f"Reconciled {len(self.index.structures)} structures, {len(self.index.thermostats)} thermostats: "
                    f"{emitted} changed value(s)")
        return emitted

    def _reconcile_thermostat(self, thermostat: Thermostat, ndevice: Dict[str, Any]) -> int:
        emitted = 0
        name = thermostat.name
        scale = str(ndevice.get('temperature_scale') or "").lower()
        hvac_mode = ndevice.get('hvac_mode') or ""
        hvac_state = ndevice.get('hvac_state') or ""

        setpoint = ndevice.get(f"target_temperature_{scale}")
        if setpoint is not None:
            try:
                if self._update(SensorKind.SETPOINT, node_device_id(setpoint_node_id(thermostat.index)),
                                float(setpoint), f"{name} Setpoint"):
                    emitted += 1
            except (TypeError, ValueError):
                logger.warning(f"Ignoring non-numeric setpoint {setpoint!r} for {name}")

        ambient = ndevice.get(f"ambient_temperature_{scale}")
        if ambient is not None:
            try:
                value = (float(ambient), int(ndevice.get('humidity') or 0))
                if self._update(SensorKind.TEMP_HUM, node_device_id(temp_hum_node_id(thermostat.index)),
                                value, f"{name} TempHum"):
                    emitted += 1
            except (TypeError, ValueError):
                logger.warning(f"Ignoring non-numeric temperature {ambient!r} for {name}")

        if thermostat.can_heat and hvac_state:
            if self._update(SensorKind.BINARY_SWITCH,
                            node_device_id(HEATING_SWITCH_BASE + thermostat.index * 3),
                            hvac_state == "heating", f"{name} HeatingOn"):
                emitted += 1

        if thermostat.can_cool and hvac_state:
            if self._update(SensorKind.BINARY_SWITCH,
                            node_device_id(COOLING_SWITCH_BASE + thermostat.index * 3),
                            hvac_state == "cooling", f"{name} CoolingOn"):
                emitted += 1

        # Nest reports manual eco mode as hvac_mode "off"
        if self._update(SensorKind.BINARY_SWITCH, node_device_id(eco_node_id(thermostat.index)),
                        hvac_mode == "off", f"{name} Manual Eco Mode"):
            emitted += 1

        return emitted

    def _reconcile_smoke_alarms(self, alarms: Dict[str, Any]) -> int:
        emitted = 0
        switch_index = 1
        for device in alarms.values():
            if not isinstance(device, dict):
                continue
            where_name = device.get('where_name') or ""
            if not where_name:
                continue

            smoke_alarm = alarm_is_active(device.get('smoke_alarm_state'))
            co_alarm = alarm_is_active(device.get('co_alarm_state'))

            if self._update(SensorKind.BINARY_SWITCH, smoke_device_id(switch_index), smoke_alarm,
                            f"{where_name} Smoke Alarm", category=SMOKE_DETECTOR):
                emitted += 1
            if self._update(SensorKind.BINARY_SWITCH, smoke_device_id(switch_index + 1), co_alarm,
                            f"{where_name} CO Alarm", category=SMOKE_DETECTOR):
                emitted += 1

            switch_index += 2
        return emitted
