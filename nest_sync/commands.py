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

"""Translate local commands into Nest API writes."""

import logging
from typing import Awaitable, Callable, Optional

from .cloud import NestCloudAPI
from .errors import ErrorKind, Result
from .index import IdentifierIndex

logger = logging.getLogger(__name__)


def restore_hvac_mode(can_heat: bool, can_cool: bool) -> str:
    """HVAC mode to return to when leaving manual eco mode.

    heat-cool is only accepted by units that can do both.
    """
    if can_heat and can_cool:
        return "heat-cool"
    if can_cool:
        return "cool"
    if can_heat:
        return "heat"
    return ""


class CommandDispatcher:
    """Away, manual eco and setpoint commands against indexed entities."""

    def __init__(
        self,
        cloud: NestCloudAPI,
        index: IdentifierIndex,
        temp_scale: str = "C",
        refresh: Optional[Callable[[], Awaitable[Result]]] = None
    ):
        self.cloud = cloud
        self.index = index
        self.temp_scale = (temp_scale or "C")[0].lower()
        self.refresh = refresh

    async def set_away(self, index: int, is_away: bool) -> Result:
        structure = self.index.resolve_structure(index)
        if structure is None:
            logger.info(f"Structure {index} has not been initialized yet. Try again later.")
            return Result.failure(ErrorKind.NOT_READY, f"Structure {index} has not been initialized yet")

        logger.info(f"Setting {structure.name} to {'away' if is_away else 'home'}")
        pushed = await self.cloud.push(f"structures/{structure.remote_id}", {'away': "away" if is_away else "home"})
        if not pushed.ok:
            logger.error(f"Error setting away mode: {pushed.message}")
            return Result.failure(ErrorKind.REMOTE, pushed.message)
        return Result.success()

    async def set_manual_eco_mode(self, index: int, enable: bool) -> Result:
        thermostat = self.index.resolve_thermostat(index)
        if thermostat is None:
            logger.info(f"Thermostat {index} has not been initialized yet. Try again later.")
            return Result.failure(ErrorKind.NOT_READY, f"Thermostat {index} has not been initialized yet")

        hvac_mode = "off" if enable else restore_hvac_mode(thermostat.can_heat, thermostat.can_cool)
        if not hvac_mode:
            logger.error(f"{thermostat.name} can neither heat nor cool, no HVAC mode to restore")
            return Result.failure(ErrorKind.UNRECOGNIZED, f"No HVAC mode to restore for {thermostat.name}")

        logger.info(f"Setting manual eco mode of {thermostat.name} to {enable} (hvac_mode={hvac_mode!r})")
        pushed = await self.cloud.push(f"devices/thermostats/{thermostat.remote_serial}", {'hvac_mode': hvac_mode})
        if not pushed.ok:
            logger.error(f"Error setting manual eco mode: {pushed.message}")
            return Result.failure(ErrorKind.REMOTE, pushed.message)
        return Result.success()

    async def set_setpoint(self, index: int, temperature: float) -> Result:
        """Change the target temperature, then reconcile right away."""
        thermostat = self.index.resolve_thermostat(index)
        if thermostat is None:
            logger.info(f"Thermostat {index} has not been initialized yet. Try again later.")
            return Result.failure(ErrorKind.NOT_READY, f"Thermostat {index} has not been initialized yet")

        field = f"target_temperature_{self.temp_scale}"
        logger.info(f"Setting {thermostat.name} setpoint to {temperature}°{self.temp_scale.upper()}")
        pushed = await self.cloud.push(f"devices/thermostats/{thermostat.remote_serial}", {field: temperature})
        if not pushed.ok:
            logger.error(f"Error setting setpoint: {pushed.message}")
            return Result.failure(ErrorKind.REMOTE, pushed.message)

        if self.refresh is not None:
            await self.refresh()
        return Result.success()

    async def route_switch(self, node_id: int, is_on: bool) -> Result:
        """
        Dispatch an on/off command addressed by synthetic node id.

        Away switches sit at 3, 6, 9, ... and manual eco switches at 4, 7, 10, ...
        (see reconcile.py); anything else is rejected.
        """
        if (node_id - 3) % 3 == 0:
            return await self.set_away((node_id - 3) // 3, is_on)

        if (node_id - 4) % 3 == 0:
            return await self.set_manual_eco_mode((node_id - 4) // 3, is_on)

        logger.warning(f"Ignoring switch command for unrecognized node {node_id}")
        return Result.failure(ErrorKind.UNRECOGNIZED, f"Node {node_id} is not a controllable switch")

    async def route_setpoint(self, node_id: int, temperature: float) -> Result:
        """Dispatch a setpoint command addressed by setpoint node id (1, 4, 7, ...)."""
        if (node_id - 1) % 3 != 0:
            logger.warning(f"Ignoring setpoint command for unrecognized node {node_id}")
            return Result.failure(ErrorKind.UNRECOGNIZED, f"Node {node_id} is not a setpoint")
        return await self.set_setpoint((node_id - 1) // 3, temperature)
