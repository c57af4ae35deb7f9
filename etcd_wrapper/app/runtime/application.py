# etcd_wrapper/app/runtime/application.py
from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional, Protocol

from fastapi import FastAPI

from ..api.router import create_app
from ..bootstrap.cancellation import CancellationToken
from ..bootstrap.crash_marker import CrashMarkerStore
from ..bootstrap.etcd_config import EtcdConfig
from ..bootstrap.initializer import InitializationCoordinator
from ..config import WrapperConfig
from ..errors import OperationCancelledError, WrapperError
from .etcd import StoreEngine
from .readiness import PROBE_INTERVAL, Probe, ReadinessMonitor, ReadinessState

logger = logging.getLogger("etcd_wrapper.runtime.application")


class Server(Protocol):
    should_exit: bool

    async def serve(self) -> None:
        ...


EngineFactory = Callable[[EtcdConfig], StoreEngine]
ServerFactory = Callable[[FastAPI], Server]


class Application:
    """
    Owns the configuration and sequences every component of one run.

    setup(): sidecar handshake, returns the parsed etcd config.
    start(): readiness monitor + HTTP server, then etcd, then block until
    cancellation, a clean etcd exit or an etcd failure.
    """

    def __init__(
        self,
        config: WrapperConfig,
        token: CancellationToken,
        initializer: InitializationCoordinator,
        crash_markers: CrashMarkerStore,
        engine_factory: EngineFactory,
        probe: Probe,
        server_factory: ServerFactory,
        readiness: Optional[ReadinessState] = None,
        probe_interval: float = PROBE_INTERVAL,
    ):
        self.config = config
        self.token = token
        self.initializer = initializer
        self.crash_markers = crash_markers
        self.engine_factory = engine_factory
        self.probe = probe
        self.server_factory = server_factory
        self.readiness = readiness if readiness is not None else ReadinessState()
        self.probe_interval = probe_interval
        self.etcd_config: Optional[EtcdConfig] = None
        self.server_error: Optional[WrapperError] = None

    @property
    def wait_ready_timeout(self) -> Optional[float]:
        return self.config.wait_ready_timeout or None

    async def setup(self) -> EtcdConfig:
        self.etcd_config = await self.initializer.run(self.token)
        return self.etcd_config

    async def start(self) -> None:
        if self.etcd_config is None:
            raise WrapperError("setup() must complete before start()")

        monitor = ReadinessMonitor(self.probe, self.readiness, self.token, interval=self.probe_interval)
        server = self.server_factory(create_app(self.readiness, self.token))
        monitor_task = asyncio.create_task(monitor.run(), name="readiness-monitor")
        server_task = asyncio.create_task(self._serve(server), name="readiness-server")
        engine = self.engine_factory(self.etcd_config)

        try:
            await engine.start()
            await self.token.guard(engine.wait_ready(self.wait_ready_timeout), "wait for etcd readiness")
            self._cleanup_crash_marker()
            await self._wait_for_exit(engine)
        except OperationCancelledError:
            if self.server_error is not None:
                raise self.server_error
            raise
        finally:
            self.token.cancel()
            server.should_exit = True
            results = await asyncio.gather(monitor_task, server_task, return_exceptions=True)
            for name, result in zip(("readiness monitor", "readiness server"), results):
                if isinstance(result, BaseException):
                    logger.error(f"{name} ended with error: {result}")
            await engine.stop()
            logger.info("Application stopped")

    async def _serve(self, server: Server) -> None:
        try:
            await server.serve()
        except WrapperError as exc:
            logger.error(f"Readiness server stopped: {exc}")
            self.server_error = exc
            self.token.cancel()

    def _cleanup_crash_marker(self) -> None:
        try:
            self.crash_markers.cleanup()
        except OSError as exc:
            logger.warning(f"Failed to remove crash marker {self.crash_markers.path}: {exc}")

    async def _wait_for_exit(self, engine: StoreEngine) -> None:
        cancelled = asyncio.create_task(self.token.wait())
        aborted = asyncio.create_task(engine.wait_aborted())
        failed = asyncio.create_task(engine.wait_fatal_error())
        waiters = (cancelled, aborted, failed)
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for task in waiters:
                if not task.done():
                    task.cancel()

        if failed.done() and not failed.cancelled():
            error = failed.result()
            logger.error(f"etcd reported a fatal error: {error}")
            raise error
        if aborted.done() and not aborted.cancelled():
            logger.error("etcd has been aborted")
            return
        logger.info("Cancellation requested, shutting down")
        raise OperationCancelledError("etcd wrapper")
