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

"""Database schema for Nest Sync."""

import logging
import sqlite3

logger = logging.getLogger(__name__)

# Schema version understood by this codebase (stored in PRAGMA user_version).
SUPPORTED_SCHEMA_VERSION = 1

DB_SCHEMA = """
CREATE TABLE IF NOT EXISTS device_status (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    kind TEXT NOT NULL,
    device_id TEXT NOT NULL,
    name TEXT NOT NULL,
    n_value INTEGER DEFAULT 0,
    s_value TEXT DEFAULT '',
    switch_type TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    last_update TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    UNIQUE(kind, device_id)
);

CREATE INDEX IF NOT EXISTS idx_device_status_key ON device_status(kind, device_id);
"""

CLOUD_SCHEMA = """
CREATE TABLE IF NOT EXISTS nest_credentials (
    id INTEGER PRIMARY KEY CHECK (id = 1),
    access_token TEXT,
    product_id TEXT,
    product_secret TEXT,
    pin_code TEXT,
    created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP,
    updated_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
);
"""


def ensure_schema_and_migrate(db_path: str):
    """Ensure all schemas exist and stamp the schema version.

    Refuses to touch a database written by a newer release (higher
    user_version) to avoid silent data loss.
    """
    conn = sqlite3.connect(db_path)
    try:
        row = conn.execute("PRAGMA user_version").fetchone()
        current_version = row[0] if row else 0
        if current_version > SUPPORTED_SCHEMA_VERSION:
            raise RuntimeError(
                f"Database schema version ({current_version}) is newer than supported ({SUPPORTED_SCHEMA_VERSION})"
            )

        conn.executescript(DB_SCHEMA)
        conn.executescript(CLOUD_SCHEMA)

        if current_version < SUPPORTED_SCHEMA_VERSION:
            conn.execute(f"PRAGMA user_version = {SUPPORTED_SCHEMA_VERSION}")
            logger.debug(f"Database {db_path} stamped with schema version {SUPPORTED_SCHEMA_VERSION}")
        conn.commit()
    finally:
        conn.close()
