# etcd_wrapper/app/runtime/readiness.py
from __future__ import annotations

import asyncio
import base64
import logging
import threading
from typing import Optional, Protocol

import requests
from requests.adapters import HTTPAdapter

from ..bootstrap.cancellation import CancellationToken
from ..config import EtcdClientConfig
from ..errors import OperationCancelledError

logger = logging.getLogger("etcd_wrapper.runtime.readiness")

PROBE_KEY = "foo"
PROBE_TIMEOUT = 5.0
PROBE_INTERVAL = 2.0


class Probe(Protocol):
    def check(self) -> None:
        """Return when the store answered, raise otherwise."""
        ...


class ReadinessState:
    """Readiness flag written by the monitor and read by the HTTP handler."""

    def __init__(self, ready: bool = False):
        self._lock = threading.Lock()
        self._ready = ready

    def set(self, ready: bool) -> None:
        with self._lock:
            self._ready = ready

    @property
    def is_ready(self) -> bool:
        with self._lock:
            return self._ready


class _ServerNameAdapter(HTTPAdapter):
    """Verify the etcd certificate against `server_name` instead of 127.0.0.1."""

    def __init__(self, server_name: str, **kwargs):
        self.server_name = server_name
        super().__init__(**kwargs)

    def init_poolmanager(self, *args, **kwargs):
        kwargs["server_hostname"] = self.server_name
        kwargs["assert_hostname"] = self.server_name
        super().init_poolmanager(*args, **kwargs)


def create_etcd_session(config: EtcdClientConfig) -> requests.Session:
    session = requests.Session()
    if config.tls_enabled:
        session.verify = config.ca_cert_path
        session.cert = (config.cert_path, config.key_path)
        if config.server_name:
            session.mount("https://", _ServerNameAdapter(config.server_name))
    return session


class EtcdProbe:
    """
    Serializable range read of a fixed key through etcd's JSON gateway.

    A serializable read is answered by the local member alone, so it tells
    whether this member is serving without involving the rest of the cluster.
    """

    def __init__(
        self,
        config: EtcdClientConfig,
        session: Optional[requests.Session] = None,
        timeout: float = PROBE_TIMEOUT,
    ):
        self.url = f"{config.endpoint}/v3/kv/range"
        self.session = session if session is not None else create_etcd_session(config)
        self.timeout = timeout

    def check(self) -> None:
        payload = {
            "key": base64.b64encode(PROBE_KEY.encode("utf-8")).decode("ascii"),
            "serializable": True,
        }
        resp = self.session.post(self.url, json=payload, timeout=self.timeout)
        resp.raise_for_status()


class ReadinessMonitor:
    """Periodically probes etcd and records the outcome in ReadinessState."""

    def __init__(
        self,
        probe: Probe,
        state: ReadinessState,
        token: CancellationToken,
        interval: float = PROBE_INTERVAL,
        probe_timeout: float = PROBE_TIMEOUT,
    ):
        self.probe = probe
        self.state = state
        self.token = token
        self.interval = interval
        self.probe_timeout = probe_timeout

    async def probe_once(self) -> bool:
        check = asyncio.wait_for(asyncio.to_thread(self.probe.check), timeout=self.probe_timeout)
        try:
            await self.token.guard(check, "readiness probe")
        except OperationCancelledError:
            raise
        except asyncio.TimeoutError:
            logger.warning(f"Readiness probe timed out after {self.probe_timeout}s")
            return False
        except Exception as exc:
            logger.warning(f"Readiness probe failed: {exc}")
            return False
        return True

    async def run(self) -> None:
        logger.info(f"Readiness monitor started (interval={self.interval}s)")
        try:
            while True:
                self.state.set(await self.probe_once())
                if await self.token.sleep(self.interval):
                    break
        except OperationCancelledError:
            pass
        finally:
            self.state.set(False)
        logger.info("Readiness monitor stopped: cancellation requested")
