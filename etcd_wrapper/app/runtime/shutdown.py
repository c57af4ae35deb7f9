# etcd_wrapper/app/runtime/shutdown.py
from __future__ import annotations

import asyncio
import functools
import logging
import os
import signal
from typing import Callable, Optional

from ..bootstrap.cancellation import CancellationToken

logger = logging.getLogger("etcd_wrapper.runtime.shutdown")

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)

_DISPLAY_NAMES = {
    signal.SIGINT: "interrupt",
    signal.SIGTERM: "terminated",
}


def signal_display_name(signum: int) -> str:
    try:
        sig = signal.Signals(signum)
    except ValueError:
        return f"signal {signum}"
    name = _DISPLAY_NAMES.get(sig)
    if name:
        return name
    description = signal.strsignal(sig)
    return description.lower() if description else sig.name.lower()


class ShutdownCoordinator:
    """
    Sole owner of SIGINT/SIGTERM for the process.

    Rules:
    - First signal: run `on_shutdown(<signal name>)`, then cancel the token.
    - Any later signal: exit immediately with status 1, skipping cleanup.
    """

    def __init__(
        self,
        token: CancellationToken,
        on_shutdown: Callable[[str], None],
        exit_fn: Callable[[int], None] = os._exit,
    ):
        self.token = token
        self.on_shutdown = on_shutdown
        self.exit_fn = exit_fn
        self.signals_received = 0
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def install(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        self._loop = loop
        for sig in HANDLED_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.handle, sig)
            except NotImplementedError:
                # event loops without signal support (e.g. Windows)
                signal.signal(sig, functools.partial(self._from_signal_module, loop))
        logger.info("Shutdown signal handlers installed")

    def uninstall(self) -> None:
        if self._loop is None:
            return
        for sig in HANDLED_SIGNALS:
            try:
                self._loop.remove_signal_handler(sig)
            except NotImplementedError:
                signal.signal(sig, signal.SIG_DFL)
        self._loop = None

    def _from_signal_module(self, loop: asyncio.AbstractEventLoop, signum, _frame) -> None:
        loop.call_soon_threadsafe(self.handle, signum)

    def handle(self, signum: int) -> None:
        name = signal_display_name(signum)
        self.signals_received += 1

        if self.signals_received > 1:
            logger.critical(f"Received '{name}' while shutting down, forcing exit")
            self.exit_fn(1)
            return

        logger.info(f"Received '{name}', shutting down")
        try:
            self.on_shutdown(name)
        except Exception as exc:
            logger.error(f"Shutdown callback failed: {exc}")
        self.token.cancel()
