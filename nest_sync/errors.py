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

"""Error kinds and the result value returned by sync and command operations.

Remote failures are expected on a long-running poller (expired tokens, flaky
networks, empty payloads), so operations report them as a `Result` carrying an
`ErrorKind` instead of raising. Callers log the message and decide whether the
session has to be re-established.
"""

import enum
from typing import Any, Optional


class ErrorKind(enum.Enum):
    """Failure taxonomy for the session, fetch and command paths."""

    CONFIG = "config"              # bad or missing provisioning input, not retried
    AUTH = "auth"                  # token missing or rejected
    NETWORK = "network"            # transport failure
    DATA = "data"                  # unparseable or structurally empty response
    NOT_READY = "not_ready"        # index not populated by a poll yet
    REMOTE = "remote"              # write call failed
    UNRECOGNIZED = "unrecognized"  # command id maps to no known action


class Result:
    """Outcome of an operation: a value on success, an error kind otherwise."""

    __slots__ = ("value", "error", "message")

    def __init__(self, value: Any = None, error: Optional[ErrorKind] = None, message: str = ""):
        self.value = value
        self.error = error
        self.message = message

    @classmethod
    def success(cls, value: Any = None) -> 'Result':
        return cls(value=value)

    @classmethod
    def failure(cls, error: ErrorKind, message: str = "") -> 'Result':
        return cls(error=error, message=message)

    @property
    def ok(self) -> bool:
        return self.error is None

    def __bool__(self) -> bool:
        return self.ok

    def to_dict(self) -> dict:
        """Convert to dict for status reporting."""
        return {
            'ok': self.ok,
            'error': self.error.value if self.error else None,
            'message': self.message,
        }

    def __repr__(self) -> str:
        if self.ok:
            return f"<Result ok value={self.value!r}>"
        return f"<Result {self.error.value}: {self.message}>"
