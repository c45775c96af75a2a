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

"""Nest OAuth token lifecycle.

Session states:
---------------
- NO_TOKEN:          nothing to authenticate with (maybe provisioning secrets)
- NEEDS_VALIDATION:  token present but not yet proven to work this session
- VALID:             token validated, protected endpoints may be called
- INVALID:           a remote call failed, token has to be re-validated

Login strategy:
---------------
- Tokens issued by Nest do not expire, so there is no refresh flow. A token is
  obtained once from the provisioning triple (product id, secret, PIN code)
  and then stored in place of those secrets.
- A failed token exchange discards the provisioning secrets, in memory and in
  the database, so a wrong PIN is neither retried every poll cycle nor after
  a restart. New secrets have to be configured.
- Validation is a cheap structures read. It runs once per login, after which
  ensure_session() is a no-op until something invalidates the session.
"""

import json
import logging
from typing import Any, Optional
from urllib.parse import urlencode

from .errors import ErrorKind, Result
from .session import CredentialStore, Session, SessionState, mask_secret

logger = logging.getLogger(__name__)

# Base URL of the API including trailing slash
NEST_API_BASE_URL = "https://developer-api.nest.com/"
NEST_OAUTH_TOKEN_URL = "https://api.home.nest.com/oauth2/access_token"


def parse_json_object(text: Optional[str]) -> Optional[dict]:
    """Parse a response body, returning it only if it is a JSON object."""
    if not text:
        return None
    try:
        data: Any = json.loads(text)
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None


class TokenManager:
    """Decides when the Nest session has to be (re)established and does it."""

    def __init__(self, session: Session, transport, credential_store: Optional[CredentialStore] = None):
        self.session = session
        self.transport = transport
        self.credential_store = credential_store
        self.validation_count = 0

    @property
    def access_token(self) -> Optional[str]:
        return self.session.access_token

    @property
    def needs_login(self) -> bool:
        return self.session.needs_login

    def invalidate(self, reason: str = ""):
        """Force a login before the next protected call."""
        if reason:
            logger.debug(f"Session invalidated: {reason}")
        self.session.invalidate()

    def logout(self):
        if self.session.needs_login:
            return  # not logged in
        self.session.invalidate()
        logger.debug("Logged out of Nest session")

    async def ensure_session(self) -> Result:
        """
        Make sure the session holds a validated token.

        Returns:
            Success once the token has been validated, an AUTH failure otherwise
        """
        if self.session.state == SessionState.VALID:
            return Result.success(self.session.access_token)

        if not self.session.access_token:
            logger.info("No Nest access token available")
            if self.session.has_secrets:
                logger.info("Requesting an access token using product id, product secret and PIN code")
                fetched = await self.fetch_token(
                    self.session.product_id,
                    self.session.product_secret,
                    self.session.pin_code
                )
                if not fetched.ok:
                    logger.error(f"Error retrieving access token: {fetched.message}")
                    # Do not keep hammering the token endpoint with secrets that failed
                    self.session.clear_secrets()
                    if self.credential_store is not None:
                        self.credential_store.clear_provisioning()
                    return Result.failure(ErrorKind.AUTH, f"Token exchange failed: {fetched.message}")

                self.session.set_token(fetched.value)
                if self.credential_store is not None:
                    self.credential_store.save_token(fetched.value)
                logger.info(f"Received access token {mask_secret(fetched.value)} for future requests")
            else:
                logger.info("Not requesting an access token: product id, product secret or PIN code is empty")

        if not self.session.access_token:
            logger.error("Cannot login: access token was not supplied and failed to fetch one")
            self.session.clear_secrets()
            self.session.invalidate()
            return Result.failure(ErrorKind.AUTH, "No access token available")

        if await self._validate_token():
            self.session.mark_valid()
            logger.info("Login success. Token successfully validated")
            return Result.success(self.session.access_token)

        self.session.invalidate()
        logger.error("Login failed: token did not validate")
        return Result.failure(ErrorKind.AUTH, "Access token did not validate")

    async def _validate_token(self) -> bool:
        """Read the structures list to see whether the token works."""
        self.validation_count += 1
        url = f"{NEST_API_BASE_URL}structures.json?auth={self.session.access_token}"
        logger.info(f"Validating access token against {NEST_API_BASE_URL}structures.json")

        body, status, error = await self.transport.get(url, [])
        if error or not body:
            logger.error(f"Got empty or failed response while getting structures (status {status}): {error}")
            return False

        root = parse_json_object(body)
        if root is None:
            logger.error("Failed to parse received structures JSON data")
            return False
        if not root:
            logger.error("Structures JSON data parsed but resulted in no nodes")
            return False

        first_structure = next(iter(root.values()))
        if not isinstance(first_structure, dict) or not first_structure.get('name'):
            logger.error("Did not get a name for the first structure")
            return False

        logger.debug(f"First structure name: {first_structure['name']}")
        return True

    async def fetch_token(self, product_id: str, secret: str, pin: str) -> Result:
        """
        Exchange the provisioning triple for an access token.

        The session is not modified; the caller stores the token.

        Returns:
            Result carrying the token string, CONFIG for unusable input,
            AUTH when the exchange fails
        """
        if self.session.access_token:
            return Result.failure(ErrorKind.CONFIG, "An access token is already configured, not fetching a new one")

        product_id = (product_id or "").strip()
        secret = (secret or "").strip()
        pin = (pin or "").strip()
        if not product_id or not secret or not pin:
            return Result.failure(ErrorKind.CONFIG, "Product id, product secret and PIN code are all required")

        post_data = urlencode({
            'code': pin,
            'client_id': product_id,
            'client_secret': secret,
            'grant_type': 'authorization_code',
        })
        headers = ["Content-Type:application/x-www-form-urlencoded"]

        logger.info(f"Requesting access token from {NEST_OAUTH_TOKEN_URL}")
        body, response_headers, error = await self.transport.post(NEST_OAUTH_TOKEN_URL, post_data, headers, True)
        if error:
            status_line = response_headers[0] if response_headers else "no response"
            return Result.failure(ErrorKind.AUTH, f"Failed to fetch token ({status_line}): {error}")

        if not body:
            return Result.failure(ErrorKind.AUTH, "Received empty response from token endpoint")

        root = parse_json_object(body)
        if root is None:
            return Result.failure(ErrorKind.AUTH, "Failed to parse token response JSON")
        if not root:
            return Result.failure(ErrorKind.AUTH, "Token response JSON contains no elements")

        token = root.get('access_token')
        if not token or not isinstance(token, str):
            return Result.failure(ErrorKind.AUTH, "Received an empty access token")

        return Result.success(token)
