# etcd_wrapper/app/api/server.py
from __future__ import annotations

import contextlib
import logging

import uvicorn
from fastapi import FastAPI

from ..config import WrapperConfig
from ..errors import ReadinessServerError

logger = logging.getLogger("etcd_wrapper.api.server")


class WrapperServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the ShutdownCoordinator."""

    def install_signal_handlers(self) -> None:
        return None

    def capture_signals(self):
        return contextlib.nullcontext()

    async def serve(self, sockets=None) -> None:
        # uvicorn calls sys.exit() when startup fails, e.g. port already in use
        try:
            await super().serve(sockets=sockets)
        except SystemExit as exc:
            logger.error(f"Readiness server failed to start on port {self.config.port} (exit {exc.code})")
            raise ReadinessServerError(
                f"readiness server failed to start on port {self.config.port}"
            ) from exc


def create_server(config: WrapperConfig, app: FastAPI) -> WrapperServer:
    options = dict(
        host="0.0.0.0",
        port=config.http_port,
        log_config=None,
        lifespan="off",
    )
    etcd_client = config.etcd_client
    if etcd_client.serving_tls_enabled:
        options["ssl_certfile"] = etcd_client.cert_path
        options["ssl_keyfile"] = etcd_client.key_path
        scheme = "https"
    else:
        scheme = "http"

    logger.info(f"Readiness server configured on {scheme}://0.0.0.0:{config.http_port}")
    return WrapperServer(uvicorn.Config(app, **options))
