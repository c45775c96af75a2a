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

"""FastAPI route handlers for Nest Sync."""

import logging
import os
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from .__version__ import __version__
from .errors import ErrorKind, Result
from .worker import (
    ACTION_AWAY, ACTION_ECO, ACTION_NODE_SETPOINT, ACTION_NODE_SWITCH, ACTION_REFRESH, ACTION_SETPOINT,
)

logger = logging.getLogger(__name__)

# Security
security = HTTPBearer(auto_error=False)

# API key configuration (from environment variable)
# Multiple keys can be specified, space-separated
API_KEYS_RAW = os.environ.get('NEST_API_KEYS', '').strip()
API_KEYS = set(key.strip() for key in API_KEYS_RAW.split() if key.strip()) if API_KEYS_RAW else set()

ERROR_STATUS = {
    ErrorKind.CONFIG: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_READY: status.HTTP_409_CONFLICT,
    ErrorKind.UNRECOGNIZED: status.HTTP_404_NOT_FOUND,
    ErrorKind.AUTH: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.NETWORK: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.DATA: status.HTTP_502_BAD_GATEWAY,
    ErrorKind.REMOTE: status.HTTP_502_BAD_GATEWAY,
}


def get_api_key(credentials: Optional[HTTPAuthorizationCredentials] = Depends(security)) -> Optional[str]:
    """
    Validate API key from Authorization header.

    If API keys are configured (NEST_API_KEYS environment variable), checks Bearer token.
    If no API keys are configured, authentication is disabled.

    Raises:
        HTTPException 401 if authentication fails
    """
    if not API_KEYS:
        return None

    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if credentials.credentials not in API_KEYS:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return credentials.credentials


def result_response(result: Result) -> dict:
    """Turn a command result into a response body, raising for failures."""
    if not result.ok:
        raise HTTPException(status_code=ERROR_STATUS.get(result.error, 500), detail=result.to_dict())
    return result.to_dict()


def create_app():
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Nest Sync",
        description="Local REST API for Nest thermostats and smoke/CO alarms",
        version=__version__
    )

    if API_KEYS:
        logger.info(f"API authentication enabled ({len(API_KEYS)} key(s) configured)")
    else:
        logger.info("API authentication disabled (no NEST_API_KEYS configured)")

    return app


def register_routes(app: FastAPI, get_worker):
    """Register all API routes.

    Args:
        app: FastAPI application instance
        get_worker: Callable that returns the current SyncWorker instance
    """

    def worker_or_503():
        worker = get_worker()
        if worker is None:
            raise HTTPException(status_code=503, detail="Worker not initialized")
        return worker

    @app.get("/")
    async def root():
        return {
            "service": "Nest Sync",
            "version": __version__,
            "documentation": "/docs",
        }

    @app.get("/status")
    async def get_status(api_key: Optional[str] = Depends(get_api_key)):
        return worker_or_503().to_dict()

    @app.get("/structures")
    async def get_structures(api_key: Optional[str] = Depends(get_api_key)):
        worker = worker_or_503()
        return {
            "generation": worker.index.generation,
            "structures": [s.to_dict() for s in worker.index.structures],
        }

    @app.get("/thermostats")
    async def get_thermostats(api_key: Optional[str] = Depends(get_api_key)):
        worker = worker_or_503()
        return {
            "generation": worker.index.generation,
            "thermostats": [t.to_dict() for t in worker.index.thermostats],
        }

    @app.get("/devices")
    async def get_devices(api_key: Optional[str] = Depends(get_api_key)):
        worker = worker_or_503()
        if worker.registry is None:
            return {"devices": []}
        return {"devices": [entry.to_dict() for entry in worker.registry.all_entries()]}

    @app.post("/refresh")
    async def refresh(api_key: Optional[str] = Depends(get_api_key)):
        return result_response(await worker_or_503().submit(ACTION_REFRESH))

    @app.post("/structures/{index}/away")
    async def set_away(index: int, away: bool, api_key: Optional[str] = Depends(get_api_key)):
        return result_response(await worker_or_503().submit(ACTION_AWAY, index, away))

    @app.post("/thermostats/{index}/eco")
    async def set_eco(index: int, enabled: bool, api_key: Optional[str] = Depends(get_api_key)):
        return result_response(await worker_or_503().submit(ACTION_ECO, index, enabled))

    @app.post("/thermostats/{index}/setpoint")
    async def set_setpoint(index: int, temperature: float, api_key: Optional[str] = Depends(get_api_key)):
        return result_response(await worker_or_503().submit(ACTION_SETPOINT, index, temperature))

    @app.post("/nodes/{node_id}/switch")
    async def switch_node(node_id: int, on: bool, api_key: Optional[str] = Depends(get_api_key)):
        return result_response(await worker_or_503().submit(ACTION_NODE_SWITCH, node_id, on))

    @app.post("/nodes/{node_id}/setpoint")
    async def setpoint_node(node_id: int, temperature: float, api_key: Optional[str] = Depends(get_api_key)):
        return result_response(await worker_or_503().submit(ACTION_NODE_SETPOINT, node_id, temperature))
