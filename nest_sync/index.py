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

"""Mapping of opaque Nest identifiers to small local indices.

Indices are handed out in the order entities appear in the API response and
the whole table is rebuilt on every successful poll. If Nest returns
structures or thermostats in a different order, an index can point at a
different entity after the next poll; commands always act on the most recent
rebuild.
"""

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class Structure:
    """One physical site (a Nest "structure")."""

    def __init__(self, index: int, name: str, remote_id: str):
        self.index = index
        self.name = name
        self.remote_id = remote_id

    def to_dict(self) -> Dict[str, Any]:
        return {'index': self.index, 'name': self.name, 'structure_id': self.remote_id}

    def __repr__(self) -> str:
        return f"<Structure {self.index}: {self.name}>"


class Thermostat:
    """One thermostat, referencing the structure it was listed under."""

    def __init__(self, index: int, name: str, structure_id: str, remote_serial: str,
                 can_heat: bool, can_cool: bool):
        self.index = index
        self.name = name
        self.structure_id = structure_id
        self.remote_serial = remote_serial
        self.can_heat = can_heat
        self.can_cool = can_cool

    def to_dict(self) -> Dict[str, Any]:
        return {
            'index': self.index,
            'name': self.name,
            'structure_id': self.structure_id,
            'device_id': self.remote_serial,
            'can_heat': self.can_heat,
            'can_cool': self.can_cool,
        }

    def __repr__(self) -> str:
        return f"<Thermostat {self.index}: {self.name}>"


class IdentifierIndex:
    """Structure and thermostat tables produced by the latest poll."""

    def __init__(self):
        self.structures: List[Structure] = []
        self.thermostats: List[Thermostat] = []
        self.generation = 0

    def rebuild(self, structures_payload: Dict[str, Any], devices_payload: Dict[str, Any]) -> int:
        """
        Replace both tables from a structures/devices payload pair.

        Args:
            structures_payload: structures.json, keyed by structure id
            devices_payload: devices.json, with a 'thermostats' map keyed by device id

        Returns:
            The new generation number
        """
        thermostat_data = devices_payload.get('thermostats') or {}
        structures: List[Structure] = []
        thermostats: List[Thermostat] = []

        for nstructure in structures_payload.values():
            if not isinstance(nstructure, dict):
                continue

            structure = Structure(
                index=len(structures),
                name=str(nstructure.get('name') or ""),
                remote_id=str(nstructure.get('structure_id') or "")
            )
            structures.append(structure)

            device_ids = nstructure.get('thermostats') or []
            if not isinstance(device_ids, list):
                logger.warning(f"Structure {structure.name!r} has a malformed thermostat list, ignoring it")
                device_ids = []

            for device_id in device_ids:
                if not isinstance(device_id, str):
                    logger.warning(f"Structure {structure.name!r} referenced a non-string thermostat id {device_id!r}")
                    continue
                ndevice = thermostat_data.get(device_id) if isinstance(thermostat_data, dict) else None
                if not isinstance(ndevice, dict):
                    logger.warning(f"Structure {structure.name!r} referenced thermostat {device_id} but it was not found")
                    continue

                where_name = ndevice.get('where_name') or ""
                name = f"{structure.name} {where_name}" if where_name else "Thermostat"

                thermostats.append(Thermostat(
                    index=len(thermostats),
                    name=name,
                    structure_id=structure.remote_id,
                    remote_serial=str(device_id),
                    can_heat=bool(ndevice.get('can_heat')),
                    can_cool=bool(ndevice.get('can_cool'))
                ))

        self.structures = structures
        self.thermostats = thermostats
        self.generation += 1
        logger.debug(f"Index generation {self.generation}: {len(structures)} structures, {len(thermostats)} thermostats")
        return self.generation

    def resolve_structure(self, index: int) -> Optional[Structure]:
        """Return the structure at index, or None if it is not initialized yet."""
        if index < 0 or index >= len(self.structures):
            return None
        structure = self.structures[index]
        return structure if structure.remote_id else None

    def resolve_thermostat(self, index: int) -> Optional[Thermostat]:
        """Return the thermostat at index, or None if it is not initialized yet."""
        if index < 0 or index >= len(self.thermostats):
            return None
        thermostat = self.thermostats[index]
        return thermostat if thermostat.remote_serial else None
