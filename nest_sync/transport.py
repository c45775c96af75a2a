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

"""Default HTTP transport for the Nest cloud API, built on aiohttp.

The sync core only depends on the three coroutine methods below, so tests and
embedding hosts can inject any object with the same shape. Headers are passed
as "Key:Value" strings. Transport problems never raise: they come back as the
error element of the returned tuple.
"""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

import aiohttp

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 30


def parse_header_lines(headers: Optional[List[str]]) -> Dict[str, str]:
    """Turn ["Key:Value", ...] into a header dict."""
    parsed = {}
    for line in headers or []:
        if ':' not in line:
            logger.debug(f"Ignoring malformed header line: {line!r}")
            continue
        key, value = line.split(':', 1)
        parsed[key.strip()] = value.strip()
    return parsed


class HttpTransport:
    """aiohttp implementation of the GET/POST/PUT transport capability."""

    def __init__(self, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = aiohttp.ClientTimeout(total=timeout)

    async def get(self, url: str, headers: Optional[List[str]] = None) -> Tuple[str, int, Optional[str]]:
        """
        Issue a GET request.

        Returns:
            (body, status, error) - error is None on a 2xx response
        """
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.get(url, headers=parse_header_lines(headers)) as resp:
                    body = await resp.text()
                    if resp.status >= 300:
                        return body, resp.status, f"HTTP {resp.status}"
                    return body, resp.status, None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return "", 0, f"{type(e).__name__}: {e}"

    async def post(
        self,
        url: str,
        body: str,
        headers: Optional[List[str]] = None,
        follow_redirects: bool = True
    ) -> Tuple[str, List[str], Optional[str]]:
        """
        Issue a POST request.

        Returns:
            (body, response header lines, error) - the first header line is the status line
        """
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.post(
                    url,
                    data=body,
                    headers=parse_header_lines(headers),
                    allow_redirects=follow_redirects
                ) as resp:
                    text = await resp.text()
                    header_lines = [f"HTTP {resp.status} {resp.reason or ''}".strip()]
                    header_lines.extend(f"{key}: {value}" for key, value in resp.headers.items())
                    if resp.status >= 300:
                        return text, header_lines, f"HTTP {resp.status}"
                    return text, header_lines, None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return "", [], f"{type(e).__name__}: {e}"

    async def put(self, url: str, body: str, headers: Optional[List[str]] = None) -> Tuple[str, Optional[str]]:
        """
        Issue a PUT request.

        Redirects are followed with method and body preserved (the Nest API
        answers writes with a 307 to the node that owns the data).

        Returns:
            (body, error)
        """
        try:
            async with aiohttp.ClientSession(timeout=self.timeout) as session:
                async with session.put(url, data=body, headers=parse_header_lines(headers)) as resp:
                    text = await resp.text()
                    if resp.status >= 300:
                        return text, f"HTTP {resp.status}"
                    return text, None
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            return "", f"{type(e).__name__}: {e}"
