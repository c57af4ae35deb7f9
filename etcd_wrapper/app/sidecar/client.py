# etcd_wrapper/app/sidecar/client.py
from __future__ import annotations

import asyncio
import logging
import os
from pathlib import Path
from typing import Optional, Protocol, Union

import requests

from ..bootstrap.cancellation import CancellationToken
from ..config import SidecarConfig
from ..errors import ConfigurationError, SidecarError, SidecarResponseError
from .models import InitStatus, ValidationType, parse_init_status

logger = logging.getLogger("etcd_wrapper.sidecar.client")

OK_RESPONSE_CODES = frozenset({200, 201, 202})

REQUEST_TIMEOUT = 10.0

STATUS_PATH = "/initialization/status"
START_PATH = "/initialization/start"
CONFIG_PATH = "/config"


class SidecarClient(Protocol):
    """The three calls of the initialization handshake."""

    async def get_initialization_status(self, token: CancellationToken) -> InitStatus:
        ...

    async def trigger_initialization(self, token: CancellationToken, mode: ValidationType) -> None:
        ...

    async def get_etcd_config(self, token: CancellationToken) -> Path:
        ...


def create_session(config: SidecarConfig) -> requests.Session:
    """
    Build the keep-alive session used for every sidecar call.

    Rules:
    - TLS enabled: trust only the configured CA bundle.
    - TLS disabled: skip server certificate verification.
    - Client certificate + key are presented when both are configured.
    """
    session = requests.Session()

    if config.tls_enabled:
        ca_path = Path(config.ca_cert_bundle_path or "")
        if not ca_path.is_file():
            raise ConfigurationError(f"CA bundle not readable: {ca_path}")
        session.verify = str(ca_path)
    else:
        session.verify = False

    cert = config.client_cert
    if cert is not None:
        for item in cert:
            if not Path(item).is_file():
                raise ConfigurationError(f"client TLS material not readable: {item}")
        session.cert = cert

    return session


class HttpSidecarClient:
    """SidecarClient backed by `requests`, one HTTP round trip per call."""

    def __init__(
        self,
        config: SidecarConfig,
        config_file_path: Union[str, Path],
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.config = config
        self.config_file_path = Path(config_file_path)
        self.session = session if session is not None else create_session(config)
        self.timeout = timeout

    @property
    def base_address(self) -> str:
        return self.config.base_address

    # ---- blocking halves (run in worker threads) ----

    def _get(self, path: str, operation: str) -> requests.Response:
        url = f"{self.base_address}{path}"
        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as exc:
            raise SidecarError(f"failed to {operation}: {exc}") from exc

        if resp.status_code not in OK_RESPONSE_CODES:
            raise SidecarResponseError(operation, resp.status_code, resp.text)
        return resp

    def _fetch_status(self) -> InitStatus:
        resp = self._get(STATUS_PATH, "get initialization status")
        return parse_init_status(resp.text)

    def _trigger(self, mode: ValidationType) -> None:
        self._get(f"{START_PATH}?mode={mode.value}", "start initialization")

    def _fetch_config(self) -> Path:
        resp = self._get(CONFIG_PATH, "get etcd config")

        p = self.config_file_path
        tmp = p.with_suffix(p.suffix + ".tmp")
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            # created 0600 so the document is never readable by others
            tmp.unlink(missing_ok=True)
            fd = os.open(tmp, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            with os.fdopen(fd, "wb") as fh:
                fh.write(resp.content)
            tmp.replace(p)
        except OSError as exc:
            raise ConfigurationError(f"unable to write etcd config {p}: {exc}") from exc
        return p

    async def _call(self, token: CancellationToken, operation: str, func, *args):
        scope = token.child()
        try:
            return await scope.guard(asyncio.to_thread(func, *args), operation)
        finally:
            scope.cancel()

    # ---- SidecarClient ----

    async def get_initialization_status(self, token: CancellationToken) -> InitStatus:
        status = await self._call(token, "get initialization status", self._fetch_status)
        logger.debug(f"Sidecar initialization status: {status.value}")
        return status

    async def trigger_initialization(self, token: CancellationToken, mode: ValidationType) -> None:
        await self._call(token, "start initialization", self._trigger, mode)
        logger.info(f"Triggered initialization with mode '{mode.value}'")

    async def get_etcd_config(self, token: CancellationToken) -> Path:
        path = await self._call(token, "get etcd config", self._fetch_config)
        logger.info(f"Etcd config written to {path}")
        return path
