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

"""Nest cloud API reads and writes.

API Call Strategy:
==================

Reads:
------
- structures.json and devices.json, token passed as the `auth` query parameter
- One pair of reads per poll cycle (every 60 seconds), no retries here; the
  worker simply tries again on the next cycle

Writes:
-------
- Single-field PUTs to structures/<id> or devices/thermostats/<serial>
- Bearer token in the Authorization header, JSON body

Failure policy:
---------------
- Every failed read or write invalidates the session, so the next cycle logs in
  again before touching protected endpoints
"""

import json
import logging
from typing import Any, Dict

from .auth import NEST_API_BASE_URL, TokenManager, parse_json_object
from .errors import ErrorKind, Result

logger = logging.getLogger(__name__)


class NestCloudAPI:
    """Authenticated access to the Nest developer API."""

    def __init__(self, token_manager: TokenManager, transport):
        self.token_manager = token_manager
        self.transport = transport

    async def _fetch(self, endpoint: str) -> Result:
        url = f"{NEST_API_BASE_URL}{endpoint}?auth={self.token_manager.access_token}"
        logger.debug(f"Fetching {NEST_API_BASE_URL}{endpoint}")

        body, status, error = await self.transport.get(url, [])
        if error:
            self.token_manager.invalidate(f"GET {endpoint} failed")
            return Result.failure(ErrorKind.NETWORK, f"Error getting {endpoint} (status {status}): {error}")

        data = parse_json_object(body)
        if data is None:
            self.token_manager.invalidate(f"invalid {endpoint} data")
            return Result.failure(ErrorKind.DATA, f"Invalid {endpoint} data received")

        return Result.success(data)

    async def fetch_structures(self) -> Result:
        """Fetch structures keyed by structure id."""
        return await self._fetch("structures.json")

    async def fetch_devices(self) -> Result:
        """Fetch devices grouped by type (thermostats, smoke_co_alarms, ...)."""
        return await self._fetch("devices.json")

    async def fetch_all(self) -> Result:
        """
        Fetch structures and devices for one reconciliation pass.

        Returns:
            Result carrying (structures, devices); DATA failure when the devices
            payload holds neither thermostats nor smoke/CO alarms
        """
        structures = await self.fetch_structures()
        if not structures.ok:
            return structures

        devices = await self.fetch_devices()
        if not devices.ok:
            return devices

        for group in ('thermostats', 'smoke_co_alarms'):
            if devices.value.get(group) is not None and not isinstance(devices.value[group], dict):
                self.token_manager.invalidate(f"malformed {group} data")
                return Result.failure(ErrorKind.DATA, f"Invalid {group} data received")

        have_thermostats = bool(devices.value.get('thermostats'))
        have_smoke_alarms = bool(devices.value.get('smoke_co_alarms'))
        if not have_thermostats and not have_smoke_alarms:
            self.token_manager.invalidate("no thermostats or smoke/CO alarms received")
            return Result.failure(ErrorKind.DATA, "No thermostat or smoke/CO alarm was received")

        return Result.success((structures.value, devices.value))

    async def push(self, path: str, payload: Dict[str, Any]) -> Result:
        """
        PUT a small JSON update to the API.

        Args:
            path: Path below the API base, e.g. 'structures/<id>'
            payload: Single-field update

        Returns:
            Success, or a REMOTE failure (session invalidated)
        """
        if not self.token_manager.access_token:
            return Result.failure(ErrorKind.REMOTE, "Failed to push to Nest API: no access token supplied")

        session = await self.token_manager.ensure_session()
        if not session.ok:
            self.token_manager.invalidate(f"login failed before PUT {path}")
            return Result.failure(ErrorKind.REMOTE, f"Failed to push to Nest API: {session.message}")

        headers = [
            f"Authorization:Bearer {self.token_manager.access_token}",
            "Content-Type:application/json",
        ]
        logger.debug(f"PUT {path}: {payload}")
        body, error = await self.transport.put(f"{NEST_API_BASE_URL}{path}", json.dumps(payload), headers)
        if error:
            self.token_manager.invalidate(f"PUT {path} failed")
            return Result.failure(ErrorKind.REMOTE, f"Error pushing to Nest API: {error}")

        return Result.success(body)
