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

"""Session state and durable credential storage.

A session starts either from a stored/configured access token or from the
one-time provisioning triple (product id, product secret, PIN) that is
exchanged for a token on first login. Once a token has been obtained it
replaces the provisioning secrets, both in memory and in the database.
"""

import base64
import binascii
import enum
import logging
import sqlite3
from typing import Optional, Tuple

from .database import ensure_schema_and_migrate

logger = logging.getLogger(__name__)


def mask_secret(value: Optional[str]) -> str:
    """Return a loggable form of a token or secret (last 4 characters only)."""
    if not value:
        return "<empty>"
    if len(value) <= 4:
        return "****"
    return f"****{value[-4:]}"


def parse_provisioning(blob: str) -> Tuple[str, str, str]:
    """
    Decode a provisioning blob into (product_id, product_secret, pin_code).

    The blob holds three base64 encoded fields separated by '|'. Anything
    else yields three empty strings, so a malformed blob behaves like no
    provisioning at all.
    """
    parts = (blob or "").split("|")
    if len(parts) != 3:
        return "", "", ""

    decoded = []
    for part in parts:
        try:
            decoded.append(base64.b64decode(part.strip(), validate=True).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, ValueError):
            logger.warning("Provisioning data is not valid base64, ignoring it")
            return "", "", ""
    return decoded[0], decoded[1], decoded[2]


class SessionState(enum.Enum):
    NO_TOKEN = "no_token"
    NEEDS_VALIDATION = "needs_validation"
    VALID = "valid"
    INVALID = "invalid"


class Session:
    """Access token plus the provisioning secrets used to obtain a first token."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        product_id: str = "",
        product_secret: str = "",
        pin_code: str = ""
    ):
        self.access_token: Optional[str] = access_token or None
        self.product_id = product_id or ""
        self.product_secret = product_secret or ""
        self.pin_code = pin_code or ""
        self.state = SessionState.NEEDS_VALIDATION if self.access_token else SessionState.NO_TOKEN

    @property
    def needs_login(self) -> bool:
        return self.state != SessionState.VALID

    @property
    def has_secrets(self) -> bool:
        return bool(self.product_id and self.product_secret and self.pin_code)

    def set_token(self, token: str):
        """Adopt a freshly fetched token; it has to be validated before use."""
        self.access_token = token
        self.state = SessionState.NEEDS_VALIDATION
        self.clear_secrets()

    def clear_secrets(self):
        self.product_id = ""
        self.product_secret = ""
        self.pin_code = ""

    def mark_valid(self):
        self.state = SessionState.VALID

    def invalidate(self):
        """Force a login on the next opportunity."""
        self.state = SessionState.INVALID if self.access_token else SessionState.NO_TOKEN

    def to_dict(self) -> dict:
        """Convert to dict for status reporting (secrets masked)."""
        return {
            'state': self.state.value,
            'needs_login': self.needs_login,
            'access_token': mask_secret(self.access_token),
            'has_provisioning_secrets': self.has_secrets,
        }

    def __repr__(self) -> str:
        return f"<Session {self.state.value} token={mask_secret(self.access_token)}>"


class CredentialStore:
    """SQLite storage for the access token and the write-once provisioning secrets."""

    def __init__(self, db_path: str):
        self.db_path = db_path
        ensure_schema_and_migrate(self.db_path)

    def load(self) -> Optional[dict]:
        """Load stored credentials, or None when nothing was stored yet."""
        conn = sqlite3.connect(self.db_path)
        try:
            row = conn.execute("""
                SELECT access_token, product_id, product_secret, pin_code
                FROM nest_credentials
                WHERE id = 1
            """).fetchone()
        finally:
            conn.close()

        if not row:
            return None
        access_token, product_id, product_secret, pin_code = row
        return {
            'access_token': access_token or None,
            'product_id': product_id or "",
            'product_secret': product_secret or "",
            'pin_code': pin_code or "",
        }

    def save_provisioning(self, product_id: str, product_secret: str, pin_code: str) -> bool:
        """
        Store provisioning secrets unless credentials already exist.

        A row whose secrets were cleared after a rejected exchange (and that
        holds no token) accepts a new set.

        Returns:
            True if the secrets were written
        """
        conn = sqlite3.connect(self.db_path)
        try:
            cursor = conn.execute("""
                INSERT OR IGNORE INTO nest_credentials
                (id, access_token, product_id, product_secret, pin_code, updated_at)
                VALUES (1, NULL, ?, ?, ?, CURRENT_TIMESTAMP)
            """, (product_id, product_secret, pin_code))
            written = cursor.rowcount > 0
            if not written:
                cursor = conn.execute("""
                    UPDATE nest_credentials
                    SET product_id = ?, product_secret = ?, pin_code = ?, updated_at = CURRENT_TIMESTAMP
                    WHERE id = 1 AND access_token IS NULL AND product_id IS NULL
                """, (product_id, product_secret, pin_code))
                written = cursor.rowcount > 0
            conn.commit()
        finally:
            conn.close()

        if written:
            logger.info("Stored Nest provisioning data (product id, secret, PIN)")
        return written

    def clear_provisioning(self):
        """Forget stored provisioning secrets; they have to be configured again."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                UPDATE nest_credentials
                SET product_id = NULL, product_secret = NULL, pin_code = NULL, updated_at = CURRENT_TIMESTAMP
                WHERE id = 1
            """)
            conn.commit()
        finally:
            conn.close()

        logger.info("Cleared stored Nest provisioning data")

    def save_token(self, token: str):
        """Store a new access token; it replaces any provisioning secrets."""
        conn = sqlite3.connect(self.db_path)
        try:
            conn.execute("""
                INSERT OR REPLACE INTO nest_credentials
                (id, access_token, product_id, product_secret, pin_code, updated_at)
                VALUES (1, ?, NULL, NULL, NULL, CURRENT_TIMESTAMP)
            """, (token,))
            conn.commit()
        finally:
            conn.close()

        logger.info(f"Stored Nest access token {mask_secret(token)} and cleared provisioning data")

    def load_session(
        self,
        access_token: Optional[str] = None,
        product_id: str = "",
        product_secret: str = "",
        pin_code: str = ""
    ) -> Session:
        """
        Build the session from configuration and stored credentials.

        A token passed in explicitly wins and is persisted. Otherwise a stored
        token is used, then stored provisioning secrets, then the configured ones.
        """
        if access_token:
            self.save_token(access_token)
            return Session(access_token=access_token)

        stored = self.load()
        if stored and stored['access_token']:
            logger.info(f"Loaded Nest access token {mask_secret(stored['access_token'])} from database")
            return Session(access_token=stored['access_token'])

        if product_id and product_secret and pin_code:
            self.save_provisioning(product_id, product_secret, pin_code)
            return Session(product_id=product_id, product_secret=product_secret, pin_code=pin_code)

        if stored:
            return Session(
                product_id=stored['product_id'],
                product_secret=stored['product_secret'],
                pin_code=stored['pin_code']
            )

        return Session()
