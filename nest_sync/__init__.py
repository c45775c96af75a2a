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
"""Nest Sync - mirror Nest thermostats and smoke/CO alarms into a local device registry."""

from .__version__ import __version__

__author__ = "Nest Sync Contributors"
__description__ = "Mirror Nest thermostats and smoke/CO alarms into a local device registry"

from .errors import ErrorKind, Result
from .database import DB_SCHEMA, CLOUD_SCHEMA
from .session import Session, SessionState, CredentialStore
from .auth import TokenManager
from .transport import HttpTransport
from .cloud import NestCloudAPI
from .index import IdentifierIndex, Structure, Thermostat
from .registry import DeviceRegistry, RegistryEntry
from .sink import SensorKind, RegistrySink
from .reconcile import Reconciler
from .commands import CommandDispatcher
from .worker import SyncWorker

__all__ = [
    "__version__",
    "ErrorKind",
    "Result",
    "DB_SCHEMA",
    "CLOUD_SCHEMA",
    "Session",
    "SessionState",
    "CredentialStore",
    "TokenManager",
    "HttpTransport",
    "NestCloudAPI",
    "IdentifierIndex",
    "Structure",
    "Thermostat",
    "DeviceRegistry",
    "RegistryEntry",
    "SensorKind",
    "RegistrySink",
    "Reconciler",
    "CommandDispatcher",
    "SyncWorker",
]
