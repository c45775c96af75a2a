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

"""SQLite device registry: named entities keyed by (kind, device_id)."""

import logging
import sqlite3
from typing import Any, Dict, List, Optional

from .database import ensure_schema_and_migrate

logger = logging.getLogger(__name__)


class RegistryEntry:
    """One row of the device registry."""

    def __init__(self, kind: str, device_id: str, name: str, n_value: int, s_value: str,
                 switch_type: Optional[str] = None, last_update: Optional[str] = None):
        self.kind = kind
        self.device_id = device_id
        self.name = name
        self.n_value = n_value
        self.s_value = s_value
        self.switch_type = switch_type
        self.last_update = last_update

    def to_dict(self) -> Dict[str, Any]:
        return {
            'kind': self.kind,
            'device_id': self.device_id,
            'name': self.name,
            'n_value': self.n_value,
            's_value': self.s_value,
            'switch_type': self.switch_type,
            'last_update': self.last_update,
        }

    def __repr__(self) -> str:
        return f"<RegistryEntry {self.kind}/{self.device_id} {self.name!r} n={self.n_value} s={self.s_value!r}>"


class DeviceRegistry:
    """Lookup, insert and update of registry entries."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        ensure_schema_and_migrate(self.db_path)

    def lookup(self, kind: str, device_id: str) -> Optional[RegistryEntry]:
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute("""
                SELECT kind, device_id, name, n_value, s_value, switch_type, last_update
                FROM device_status
                WHERE kind = ? AND device_id = ?
            """, (kind, device_id)).fetchone()
        finally:
            conn.close()
        return RegistryEntry(*row) if row else None

    def upsert(self, kind: str, device_id: str, name: str, n_value: int, s_value: str) -> bool:
        """
        Store a value, creating the entry on first sight.

        The name is only applied when the entry is created; later updates keep
        whatever name the entry has by then.

        Returns:
            True if a new entry was created
        """
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute("""
                UPDATE device_status
                SET n_value = ?, s_value = ?, last_update = CURRENT_TIMESTAMP
                WHERE kind = ? AND device_id = ?
            """, (n_value, s_value, kind, device_id))
            created = cursor.rowcount == 0
            if created:
                conn.execute("""
                    INSERT INTO device_status
                    (kind, device_id, name, n_value, s_value, created_at, last_update)
                    VALUES (?, ?, ?, ?, ?, CURRENT_TIMESTAMP, CURRENT_TIMESTAMP)
                """, (kind, device_id, name, n_value, s_value))
            conn.commit()
        finally:
            conn.close()

        if created:
            logger.info(f"Created device {name!r} ({kind}/{device_id})")
        return created

    def touch(self, kind: str, device_id: str):
        """Refresh the last-seen timestamp without changing the value."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                UPDATE device_status SET last_update = CURRENT_TIMESTAMP
                WHERE kind = ? AND device_id = ?
            """, (kind, device_id))
            conn.commit()
        finally:
            conn.close()

    def set_category(self, kind: str, device_id: str, switch_type: str):
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                UPDATE device_status SET switch_type = ?
                WHERE kind = ? AND device_id = ?
            """, (switch_type, kind, device_id))
            conn.commit()
        finally:
            conn.close()

    def all_entries(self) -> List[RegistryEntry]:
        conn = sqlite3.connect(self.db_path)
        try:
            rows = conn.execute("""
                SELECT kind, device_id, name, n_value, s_value, switch_type, last_update
                FROM device_status
                ORDER BY kind, device_id
            """).fetchall()
        finally:
            conn.close()
        return [RegistryEntry(*row) for row in rows]
