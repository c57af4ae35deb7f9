# etcd_wrapper/app/main.py
from __future__ import annotations

import argparse
import asyncio
import logging
import re
import sys
from typing import List, Optional

from .api.server import create_server
from .bootstrap.cancellation import CancellationToken
from .bootstrap.crash_marker import CrashMarkerStore
from .bootstrap.initializer import InitializationCoordinator
from .config import (
    DEFAULT_ETCD_CLIENT_PORT,
    DEFAULT_ETCD_CONFIG_FILE_PATH,
    DEFAULT_EXIT_CODE_FILE_PATH,
    DEFAULT_SIDECAR_HOST_PORT,
    DEFAULT_WRAPPER_PORT,
    WrapperConfig,
)
from .errors import ConfigurationError, OperationCancelledError, WrapperError
from .logging_config import setup_logging
from .runtime.application import Application
from .runtime.etcd import EtcdProcess
from .runtime.readiness import EtcdProbe
from .runtime.shutdown import ShutdownCoordinator
from .sidecar.client import HttpSidecarClient

logger = logging.getLogger("etcd_wrapper.main")

START_ETCD = "start-etcd"
SUPPORTED_COMMANDS = (START_ETCD,)

START_ETCD_DESCRIPTION = """\
Initializes the etcd data directory by coordinating with a backup-restore
sidecar container and starts etcd.

The sidecar is polled until it reports a successful initialization. When it
reports a new member, initialization is triggered in sanity mode if the
previous run was stopped by SIGINT/SIGTERM and in full mode otherwise.
"""

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0, None: 1.0}


def parse_duration(value: str) -> float:
    """Parse '30', '30s', '500ms', '5m' or '1h' into seconds."""
    match = _DURATION_RE.match(value)
    if match is None:
        raise argparse.ArgumentTypeError(f"invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit]


def parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ("1", "t", "true", "yes", "on"):
        return True
    if lowered in ("0", "f", "false", "no", "off"):
        return False
    raise argparse.ArgumentTypeError(f"invalid boolean: {value!r}")


def add_etcd_flags(parser: argparse.ArgumentParser) -> None:
    # ---- backup-restore sidecar ----
    parser.add_argument(
        "--backup-restore-tls-enabled",
        type=parse_bool,
        nargs="?",
        const=True,
        default=False,
        help="Enables TLS for communicating with the backup-restore container",
    )
    parser.add_argument(
        "--backup-restore-host-port",
        default=DEFAULT_SIDECAR_HOST_PORT,
        help="<host>:<port> of the backup-restore container, without a scheme",
    )
    parser.add_argument(
        "--backup-restore-ca-cert-bundle-path",
        default=None,
        help="CA bundle used to verify the backup-restore server when TLS is enabled",
    )
    parser.add_argument("--backup-restore-client-cert-path", default=None, help="Client certificate for mutual TLS")
    parser.add_argument("--backup-restore-client-key-path", default=None, help="Client key for mutual TLS")

    # ---- etcd client ----
    parser.add_argument("--etcd-server-name", default=None, help="TLS server name of the etcd member")
    parser.add_argument("--etcd-client-cert-path", default=None, help="Client certificate for etcd")
    parser.add_argument("--etcd-client-key-path", default=None, help="Client key for etcd")
    parser.add_argument("--etcd-client-ca-cert-path", default=None, help="CA certificate for etcd")
    parser.add_argument("--etcd-client-port", type=int, default=DEFAULT_ETCD_CLIENT_PORT, help="etcd client port")

    # ---- wrapper ----
    parser.add_argument("--wrapper-port", type=int, default=DEFAULT_WRAPPER_PORT, help="Port of the readiness server")
    parser.add_argument(
        "--etcd-wait-ready-timeout",
        type=parse_duration,
        default=0.0,
        help="How long to wait for etcd to become ready; 0 waits forever",
    )
    parser.add_argument("--exit-code-file-path", default=DEFAULT_EXIT_CODE_FILE_PATH, help="Crash marker file")
    parser.add_argument(
        "--etcd-config-file-path",
        default=DEFAULT_ETCD_CONFIG_FILE_PATH,
        help="Where the etcd config fetched from backup-restore is written",
    )
    parser.add_argument("--etcd-binary", default="etcd", help="etcd executable")
    parser.add_argument("--log-level", default="INFO", help="DEBUG, INFO, WARNING or ERROR")
    parser.add_argument("--log-dir", default=None, help="Also write logs to <log-dir>/wrapper.log")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="etcd-wrapper")
    commands = parser.add_subparsers(dest="command", metavar="COMMAND")
    start = commands.add_parser(
        START_ETCD,
        help="Starts the etcd-wrapper by initializing and starting etcd",
        description=START_ETCD_DESCRIPTION,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    add_etcd_flags(start)
    return parser


def format_flags(args: argparse.Namespace) -> str:
    return ", ".join(f"{name}: {value}" for name, value in sorted(vars(args).items()) if name != "command")


def build_application(config: WrapperConfig, token: CancellationToken, crash_markers: CrashMarkerStore) -> Application:
    client = HttpSidecarClient(config.sidecar, config.etcd_config_file_path)
    probe = EtcdProbe(config.etcd_client)

    def engine_factory(_etcd_config) -> EtcdProcess:
        # own probe: a requests.Session is not shared between worker threads
        return EtcdProcess(config.etcd_binary, config.etcd_config_file_path, EtcdProbe(config.etcd_client))

    return Application(
        config=config,
        token=token,
        initializer=InitializationCoordinator(client, crash_markers),
        crash_markers=crash_markers,
        engine_factory=engine_factory,
        probe=probe,
        server_factory=lambda app: create_server(config, app),
    )


async def run(config: WrapperConfig) -> None:
    token = CancellationToken()
    crash_markers = CrashMarkerStore(config.exit_code_file_path)

    # armed before anything else so an early signal still leaves a marker
    shutdown = ShutdownCoordinator(token, crash_markers.write)
    shutdown.install()
    try:
        application = build_application(config, token, crash_markers)
        await application.setup()
        await application.start()
    finally:
        shutdown.uninstall()


def main(argv: Optional[List[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else list(argv)
    parser = build_parser()

    if not argv or argv[0] not in SUPPORTED_COMMANDS:
        parser.print_help(sys.stderr)
        return 1

    args = parser.parse_args(argv)
    setup_logging(args.log_level, args.log_dir)
    logger.info(f"Running with flags: {format_flags(args)}")

    try:
        config = WrapperConfig.from_args(args)
    except ConfigurationError as exc:
        logger.critical(f"{exc}")
        return 1

    try:
        asyncio.run(run(config))
    except OperationCancelledError:
        logger.info("etcd-wrapper stopped")
        return 0
    except WrapperError as exc:
        logger.critical(f"error during start or run of etcd: {exc}")
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
