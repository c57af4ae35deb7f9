# etcd_wrapper/app/runtime/etcd.py
from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import List, Optional, Protocol, Union

from ..errors import EtcdStartError
from .readiness import Probe

logger = logging.getLogger("etcd_wrapper.runtime.etcd")

READY_POLL_INTERVAL = 1.0
STOP_GRACE_PERIOD = 10.0


class StoreEngine(Protocol):
    """
    The store process as seen by the Application.

    After `start()` three outcomes are observable: ready, aborted (a clean
    exit) and fatal error (an unexpected exit).
    """

    async def start(self) -> None:
        ...

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        ...

    async def wait_aborted(self) -> None:
        ...

    async def wait_fatal_error(self) -> EtcdStartError:
        ...

    async def stop(self) -> None:
        ...


class EtcdProcess:
    """Runs `<binary> --config-file <path>` as a child process."""

    def __init__(
        self,
        binary: str,
        config_path: Union[str, Path],
        probe: Probe,
        ready_poll_interval: float = READY_POLL_INTERVAL,
        stop_grace_period: float = STOP_GRACE_PERIOD,
    ):
        self.binary = binary
        self.config_path = Path(config_path)
        self.probe = probe
        self.ready_poll_interval = ready_poll_interval
        self.stop_grace_period = stop_grace_period

        self._proc: Optional[asyncio.subprocess.Process] = None
        self._watcher: Optional[asyncio.Task] = None
        self._exited = asyncio.Event()
        self._aborted = asyncio.Event()
        self._failed = asyncio.Event()
        self._fatal_error: Optional[EtcdStartError] = None

    @property
    def command(self) -> List[str]:
        return [self.binary, "--config-file", str(self.config_path)]

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.returncode if self._proc is not None else None

    async def start(self) -> None:
        logger.info(f"Starting etcd: {' '.join(self.command)}")
        try:
            self._proc = await asyncio.create_subprocess_exec(*self.command)
        except OSError as exc:
            self._fail(EtcdStartError(f"unable to start etcd: {exc}"))
            raise self._fatal_error from exc
        self._watcher = asyncio.create_task(self._watch())
        logger.info(f"etcd started with pid {self._proc.pid}")

    async def _watch(self) -> None:
        code = await self._proc.wait()
        self._exited.set()
        if code == 0:
            logger.info("etcd exited cleanly")
            self._aborted.set()
        else:
            logger.error(f"etcd exited with status {code}")
            self._fail(EtcdStartError(f"etcd exited with status {code}", exit_code=code))

    def _fail(self, error: EtcdStartError) -> None:
        self._fatal_error = error
        self._exited.set()
        self._failed.set()

    async def _poll_ready(self) -> None:
        while True:
            if self._exited.is_set():
                raise EtcdStartError("etcd exited before becoming ready", exit_code=self.returncode)
            try:
                await asyncio.to_thread(self.probe.check)
            except Exception as exc:
                logger.debug(f"etcd not ready yet: {exc}")
            else:
                logger.info("etcd is ready")
                return
            await asyncio.sleep(self.ready_poll_interval)

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        if self._proc is None:
            raise EtcdStartError("etcd has not been started")
        if not timeout:
            await self._poll_ready()
            return
        try:
            await asyncio.wait_for(self._poll_ready(), timeout=timeout)
        except asyncio.TimeoutError as exc:
            raise EtcdStartError(f"etcd did not become ready within {timeout}s") from exc

    async def wait_aborted(self) -> None:
        await self._aborted.wait()

    async def wait_fatal_error(self) -> EtcdStartError:
        await self._failed.wait()
        return self._fatal_error

    async def stop(self) -> None:
        if self._proc is None or self._proc.returncode is not None:
            return

        logger.info("Stopping etcd")
        try:
            self._proc.terminate()
        except ProcessLookupError:
            return

        try:
            await asyncio.wait_for(self._proc.wait(), timeout=self.stop_grace_period)
        except asyncio.TimeoutError:
            logger.warning(f"etcd did not exit within {self.stop_grace_period}s, killing it")
            self._proc.kill()
            await self._proc.wait()

        if self._watcher is not None:
            await self._watcher
