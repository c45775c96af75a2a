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

"""Command-line interface for Nest Sync."""

import asyncio
import argparse
import logging
import logging.handlers
import os
import signal
import sys
from pathlib import Path
from typing import Optional

import uvicorn

from .database import ensure_schema_and_migrate
from .routes import create_app, register_routes
from .session import SessionState, mask_secret, parse_provisioning
from .worker import SyncWorker

# Logger will be configured in main() based on daemon/console mode
logger = logging.getLogger(__name__)

# Global variables
worker: Optional[SyncWorker] = None
server: Optional[uvicorn.Server] = None
shutdown_event: Optional[asyncio.Event] = None


def uvicorn_log_config(args) -> dict:
    """Uvicorn logging that matches the format chosen for our own loggers."""
    if args.syslog:
        # Syslog mode: no uvicorn handlers, everything propagates to the root logger
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "loggers": {
                "uvicorn": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.error": {"handlers": [], "level": "INFO", "propagate": True},
                "uvicorn.access": {"handlers": [], "level": "WARNING", "propagate": True},
            },
        }

    if args.daemon:
        formatter = {"format": "%(levelname)-8s %(message)s"}
    else:
        formatter = {"format": "%(asctime)s %(levelname)s %(message)s", "datefmt": "%Y-%m-%d %H:%M:%S"}

    return {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {"default": formatter},
        "handlers": {
            "default": {
                "formatter": "default",
                "class": "logging.StreamHandler",
                "stream": "ext://sys.stdout",
            },
        },
        "loggers": {
            "uvicorn": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.error": {"handlers": ["default"], "level": "INFO", "propagate": False},
            "uvicorn.access": {"handlers": ["default"], "level": "WARNING", "propagate": False},
        },
    }


def resolve_credentials(args):
    """
    Merge --provisioning with the individual credential flags.

    Explicit --product-id/--product-secret/--pin win over the blob.

    Returns:
        Tuple of (access_token, product_id, product_secret, pin_code)
    """
    product_id, product_secret, pin_code = "", "", ""
    if args.provisioning:
        product_id, product_secret, pin_code = parse_provisioning(args.provisioning)
        if not product_id:
            logger.error("Ignoring malformed --provisioning value")

    return (
        args.token or None,
        args.product_id or product_id,
        args.product_secret or product_secret,
        args.pin or pin_code,
    )


async def run_server(args):
    """Run the Nest Sync worker and (optionally) the REST API."""
    global worker, server, shutdown_event

    shutdown_event = asyncio.Event()

    def handle_signal(signum, frame):
        """Handle shutdown signals gracefully."""
        logger.info(f"Received signal {signum}, shutting down...")
        shutdown_event.set()
        if server:
            server.should_exit = True

    # Register signal handlers
    signal.signal(signal.SIGINT, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)

    try:
        db_path = Path(os.path.expanduser(args.state))
        # Ensure DB schema and run migrations before anything else touches the DB.
        try:
            ensure_schema_and_migrate(str(db_path))
        except Exception as e:
            logger.error(f"Database migration check failed: {e}")
            raise

        access_token, product_id, product_secret, pin_code = resolve_credentials(args)
        if access_token:
            logger.info(f"Using access token from configuration ({mask_secret(access_token)})")

        worker = SyncWorker.from_config(
            str(db_path),
            access_token=access_token,
            product_id=product_id,
            product_secret=product_secret,
            pin_code=pin_code,
            temp_scale=args.temp_scale,
        )
        if worker.token_manager.session.state == SessionState.NO_TOKEN and not worker.token_manager.session.has_secrets:
            logger.warning("No access token or provisioning secrets configured, polls will fail until one is set")

        worker.start()

        logger.info("*** Nest Sync ready! ***")
        logger.info(f"State database: {db_path}")

        if args.no_api:
            await shutdown_event.wait()
            return

        # Create the FastAPI app
        app = create_app()
        register_routes(app, lambda: worker)

        logger.info(f"API Server: http://0.0.0.0:{args.port}")
        logger.info(f"Documentation: http://0.0.0.0:{args.port}/docs")
        logger.info(f"Status: http://0.0.0.0:{args.port}/status")

        config = uvicorn.Config(
            app,
            host="0.0.0.0",
            port=args.port,
            log_config=uvicorn_log_config(args),
            access_log=True
        )
        server = uvicorn.Server(config)
        await server.serve()

    except KeyboardInterrupt:
        logger.info("Keyboard interrupt received, shutting down gracefully...")
    except Exception as e:
        logger.error(f"ERROR: Failed to start Nest Sync: {e}")
        raise
    finally:
        if worker:
            logger.info("Stopping worker...")
            await worker.stop()

        # Clean up PID file
        if args.pid_file:
            pid_path = Path(args.pid_file)
            try:
                if pid_path.exists():
                    pid_path.unlink()
                    logger.info(f"PID file removed: {pid_path}")
            except OSError as e:
                logger.warning(f"Failed to remove PID file: {e}")


def configure_logging(args):
    """Configure the root logger for console, daemon or syslog mode."""
    if args.syslog:
        # Parse syslog address
        syslog_address = args.syslog
        if ':' in syslog_address and not syslog_address.startswith('/'):
            # Network address (host:port)
            host, port = syslog_address.rsplit(':', 1)
            syslog_address = (host, int(port))
        # else: Unix socket path (e.g., /dev/log)

        try:
            syslog_handler = logging.handlers.SysLogHandler(
                address=syslog_address,
                facility=logging.handlers.SysLogHandler.LOG_DAEMON
            )
            syslog_handler.setFormatter(logging.Formatter(
                'nest-sync[%(process)d]: %(levelname)s %(message)s'
            ))

            root_logger = logging.getLogger()
            root_logger.setLevel(logging.INFO)
            # Silence console output in syslog mode
            root_logger.handlers = [syslog_handler]

            logger.info("Logging to syslog: %s", args.syslog)
        except OSError as e:
            # Fall back to console if syslog fails
            logging.basicConfig(
                level=logging.INFO,
                format='%(asctime)s %(levelname)s %(message)s',
                datefmt='%Y-%m-%d %H:%M:%S',
                stream=sys.stdout,
                force=True
            )
            logger.error(f"Failed to connect to syslog ({args.syslog}): {e}")
            logger.info("Falling back to console logging")
    elif args.daemon:
        # Daemon mode: no timestamp, syslog adds it
        logging.basicConfig(
            level=logging.INFO,
            format='%(levelname)s %(message)s',
            stream=sys.stdout,
            force=True
        )
    else:
        logging.basicConfig(
            level=logging.INFO,
            format='%(asctime)s %(levelname)s %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
            stream=sys.stdout,
            force=True
        )

    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
        logger.info("Verbose logging enabled")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Nest Sync - mirror Nest thermostats and smoke/CO alarms into a local registry",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # First start with Works-with-Nest product credentials and PIN
  nest-sync --product-id ID --product-secret SECRET --pin ABCD1234

  # Same, using a provisioning string (base64 fields separated by '|')
  nest-sync --provisioning 'aWQ=|c2VjcmV0|QUJDRDEyMzQ='

  # Use an access token obtained elsewhere
  NEST_ACCESS_TOKEN=c.abc123 nest-sync

  # Run as system daemon with Fahrenheit setpoints
  nest-sync --daemon --temp-scale F --pid-file /var/run/nest-sync.pid

  # Worker only, no REST API
  nest-sync --no-api --syslog /dev/log

API Endpoints:
  GET  /status                          - Worker and session status
  GET  /structures                      - Indexed structures
  GET  /thermostats                     - Indexed thermostats
  GET  /devices                         - Device registry
  POST /refresh                         - Poll now
  POST /structures/{index}/away         - Set away/home
  POST /thermostats/{index}/eco         - Manual eco mode on/off
  POST /thermostats/{index}/setpoint    - Set target temperature
  POST /nodes/{node_id}/switch          - Switch by node id
  POST /nodes/{node_id}/setpoint        - Setpoint by node id
        """
    )
    parser.add_argument("--state", default="~/.nest-sync.db",
                       help="Path to state database (default: ~/.nest-sync.db)")
    parser.add_argument("--token", default=os.environ.get("NEST_ACCESS_TOKEN", ""),
                       help="Nest access token (env: NEST_ACCESS_TOKEN). Replaces any stored token.")
    parser.add_argument("--product-id", default=os.environ.get("NEST_PRODUCT_ID", ""),
                       help="Works-with-Nest product id (env: NEST_PRODUCT_ID)")
    parser.add_argument("--product-secret", default=os.environ.get("NEST_PRODUCT_SECRET", ""),
                       help="Works-with-Nest product secret (env: NEST_PRODUCT_SECRET)")
    parser.add_argument("--pin", default=os.environ.get("NEST_PIN", ""),
                       help="Authorization PIN from the Nest consent page (env: NEST_PIN)")
    parser.add_argument("--provisioning",
                       help="Product id, secret and PIN as base64 fields separated by '|'")
    parser.add_argument("--temp-scale", choices=["C", "F"], default="C", type=str.upper,
                       help="Temperature scale used for setpoint commands (default: C)")
    parser.add_argument("--port", type=int, default=4408,
                       help="Port for REST API server (default: 4408)")
    parser.add_argument("--no-api", action="store_true",
                       help="Run the sync worker without the REST API")
    parser.add_argument("--verbose", action="store_true",
                       help="Enable verbose logging (DEBUG level)")
    parser.add_argument("--daemon", action="store_true",
                       help="Run in daemon mode (structured logging for syslog, auto-enables --pid-file)")
    parser.add_argument("--syslog",
                       help="Send logs to syslog instead of stdout (e.g., /dev/log, localhost:514, or remote.server:514)")
    parser.add_argument("--pid-file",
                       help="Write process ID to specified file (useful for daemon mode)")
    return parser


def main(argv=None):
    """Main entry point for the CLI."""
    args = build_parser().parse_args(argv)

    # Daemon mode implies PID file if not specified
    if args.daemon and not args.pid_file:
        args.pid_file = "/var/run/nest-sync.pid" if sys.platform != "win32" else "nest-sync.pid"

    configure_logging(args)

    # Write PID file if requested
    if args.pid_file:
        pid_path = Path(args.pid_file)
        try:
            pid_path.write_text(str(os.getpid()))
            logger.info(f"PID file written: {pid_path}")
        except OSError as e:
            logger.error(f"Failed to write PID file: {e}")
            sys.exit(1)

    try:
        asyncio.run(run_server(args))
    except KeyboardInterrupt:
        logger.info("*** Shutdown complete ***")
    except Exception as e:
        logger.error(f"ERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
