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

"""Background worker: poll scheduling and command serialization.

One asyncio task owns the session, the identifier index and the reconciled
state. It ticks once per second, polls Nest every 60 ticks (the first poll
fires 5 ticks after start) and runs queued commands between ticks. Commands
submitted from route handlers or other tasks therefore never overlap with a
poll cycle.

Stopping sets a flag that prevents the next cycle. A cycle that is already
running finishes first, nothing is cancelled mid-call.
"""

import asyncio
import logging
import time
from typing import Any, Optional

from .auth import TokenManager
from .cloud import NestCloudAPI
from .commands import CommandDispatcher
from .errors import ErrorKind, Result
from .index import IdentifierIndex
from .reconcile import Reconciler
from .registry import DeviceRegistry
from .session import CredentialStore
from .sink import RegistrySink
from .transport import HttpTransport

logger = logging.getLogger(__name__)

POLL_INTERVAL = 60        # ticks between polls
HEARTBEAT_INTERVAL = 12   # ticks between heartbeat timestamps
FIRST_POLL_DELAY = 5      # ticks before the first poll

_STOP = object()

# Command actions accepted by submit()
ACTION_REFRESH = "refresh"
ACTION_AWAY = "away"
ACTION_ECO = "eco"
ACTION_SETPOINT = "setpoint"
ACTION_NODE_SWITCH = "node_switch"
ACTION_NODE_SETPOINT = "node_setpoint"


class SyncWorker:
    """Runs poll cycles and commands for one Nest account."""

    def __init__(
        self,
        token_manager: TokenManager,
        cloud: NestCloudAPI,
        index: IdentifierIndex,
        reconciler: Reconciler,
        registry: Optional[DeviceRegistry] = None,
        temp_scale: str = "C",
        tick_seconds: float = 1.0,
        poll_interval: int = POLL_INTERVAL
    ):
        self.token_manager = token_manager
        self.cloud = cloud
        self.index = index
        self.reconciler = reconciler
        self.registry = registry
        self.dispatcher = CommandDispatcher(cloud, index, temp_scale, refresh=self._follow_up_poll)
        self.tick_seconds = tick_seconds
        self.poll_interval = poll_interval

        self.last_heartbeat: Optional[float] = None
        self.last_poll: Optional[float] = None
        self.last_poll_result: Optional[Result] = None
        self.poll_count = 0

        self._commands: Optional[asyncio.Queue] = None
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_config(
        cls,
        db_path: str,
        access_token: Optional[str] = None,
        product_id: str = "",
        product_secret: str = "",
        pin_code: str = "",
        temp_scale: str = "C",
        transport=None
    ) -> 'SyncWorker':
        """Wire up all components for one account backed by a SQLite database."""
        transport = transport or HttpTransport()
        credential_store = CredentialStore(db_path)
        session = credential_store.load_session(access_token, product_id, product_secret, pin_code)
        token_manager = TokenManager(session, transport, credential_store)
        cloud = NestCloudAPI(token_manager, transport)
        index = IdentifierIndex()
        registry = DeviceRegistry(db_path)
        reconciler = Reconciler(index, registry, RegistrySink(registry))
        return cls(token_manager, cloud, index, reconciler, registry=registry, temp_scale=temp_scale)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def poll(self) -> Result:
        """Run one reconciliation pass: login if needed, fetch, reconcile."""
        self.last_poll = time.time()
        self.poll_count += 1

        session = await self.token_manager.ensure_session()
        if not session.ok:
            logger.warning(f"Skipping poll - not logged in: {session.message}")
            self.last_poll_result = session
            return session

        fetched = await self.cloud.fetch_all()
        if not fetched.ok:
            logger.error(f"Poll failed, will login again next cycle: {fetched.message}")
            self.last_poll_result = fetched
            return fetched

        structures, devices = fetched.value
        emitted = self.reconciler.reconcile(structures, devices)
        self.last_poll_result = Result.success(emitted)
        return self.last_poll_result

    async def _follow_up_poll(self) -> Result:
        """Poll after an applied write. Errors are logged, the write result stands."""
        try:
            return await self.poll()
        except Exception as e:
            logger.error(f"Error in poll after command: {e}", exc_info=True)
            return Result.failure(ErrorKind.DATA, str(e))

    async def execute(self, action: str, target: Optional[int] = None, value: Any = None) -> Result:
        """Run a command directly. Only call this from the worker task (or when it is not running)."""
        if action == ACTION_REFRESH:
            return await self.poll()

        if action == ACTION_SETPOINT:
            return await self.dispatcher.set_setpoint(target, float(value))
        if action == ACTION_NODE_SETPOINT:
            return await self.dispatcher.route_setpoint(target, float(value))

        if action == ACTION_AWAY:
            result = await self.dispatcher.set_away(target, bool(value))
        elif action == ACTION_ECO:
            result = await self.dispatcher.set_manual_eco_mode(target, bool(value))
        elif action == ACTION_NODE_SWITCH:
            result = await self.dispatcher.route_switch(target, bool(value))
        else:
            return Result.failure(ErrorKind.UNRECOGNIZED, f"Unknown command {action!r}")

        if result.ok:
            await self._follow_up_poll()
        return result

    async def submit(self, action: str, target: Optional[int] = None, value: Any = None) -> Result:
        """
        Queue a command for the worker and wait for its result.

        Returns:
            The command result; NOT_READY if the worker is not running
        """
        if not self.is_running or self._stop_event.is_set():
            return Result.failure(ErrorKind.NOT_READY, "Worker is not running")

        future = asyncio.get_running_loop().create_future()
        await self._commands.put((action, target, value, future))
        return await future

    def start(self):
        """Start the worker task on the running event loop."""
        if self.is_running:
            logger.debug("Worker already running")
            return

        self._commands = asyncio.Queue()
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run())

    async def stop(self):
        """Stop after the in-flight cycle or command completes."""
        if not self.is_running:
            return
        self._stop_event.set()
        await self._commands.put(_STOP)
        await self._task

    async def _handle(self, item):
        action, target, value, future = item
        try:
            result = await self.execute(action, target, value)
        except Exception as e:
            logger.error(f"Error running command {action}: {e}", exc_info=True)
            if not future.done():
                future.set_exception(e)
            return
        if not future.done():
            future.set_result(result)

    async def _run(self):
        logger.info("Worker started...")
        loop = asyncio.get_running_loop()
        sec_counter = self.poll_interval - FIRST_POLL_DELAY
        next_tick = loop.time() + self.tick_seconds

        try:
            while not self._stop_event.is_set():
                timeout = max(0.0, next_tick - loop.time())
                try:
                    item = await asyncio.wait_for(self._commands.get(), timeout)
                except asyncio.TimeoutError:
                    item = None

                if item is _STOP:
                    break
                if item is not None:
                    await self._handle(item)
                    continue

                sec_counter += 1
                if sec_counter % HEARTBEAT_INTERVAL == 0:
                    self.last_heartbeat = time.time()

                if sec_counter % self.poll_interval == 0:
                    try:
                        await self.poll()
                    except Exception as e:
                        logger.error(f"Error in poll cycle: {e}", exc_info=True)

                next_tick = loop.time() + self.tick_seconds
        finally:
            self._fail_pending()
            self.token_manager.logout()
            logger.info("Worker stopped...")

    def _fail_pending(self):
        while not self._commands.empty():
            item = self._commands.get_nowait()
            if item is _STOP:
                continue
            future = item[3]
            if not future.done():
                future.set_result(Result.failure(ErrorKind.NOT_READY, "Worker stopped"))

    def to_dict(self) -> dict:
        """Convert to dict for status reporting."""
        return {
            'running': self.is_running,
            'session': self.token_manager.session.to_dict(),
            'index_generation': self.index.generation,
            'structures': len(self.index.structures),
            'thermostats': len(self.index.thermostats),
            'poll_count': self.poll_count,
            'last_poll': self.last_poll,
            'last_poll_result': self.last_poll_result.to_dict() if self.last_poll_result else None,
            'last_heartbeat': self.last_heartbeat,
        }
