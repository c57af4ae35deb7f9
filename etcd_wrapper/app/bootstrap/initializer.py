# etcd_wrapper/app/bootstrap/initializer.py
from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path
from typing import Callable

from ..errors import ConfigurationError, OperationCancelledError, SidecarError
from ..sidecar.client import SidecarClient
from ..sidecar.models import InitStatus
from .cancellation import CancellationToken
from .crash_marker import CrashMarkerStore
from .etcd_config import EtcdConfig, load_etcd_config
from .retry import retry

logger = logging.getLogger("etcd_wrapper.bootstrap.initializer")

DEFAULT_POLL_BACKOFF = 1.0
DEFAULT_CONFIG_FETCH_ATTEMPTS = 5
DEFAULT_CONFIG_FETCH_BACKOFF = 1.0


def retry_unless_configuration_error(exc: BaseException) -> bool:
    """Sidecar failures may clear up; a local configuration problem will not."""
    return not isinstance(exc, ConfigurationError)


class InitPhase(str, Enum):
    POLLING = "polling"
    TRIGGERING = "triggering"
    SUCCEEDED = "succeeded"
    ABORTED = "aborted"


class InitializationCoordinator:
    """
    Drives the sidecar handshake until etcd may be started.

    Rules:
    - Status is polled until the sidecar reports Successful. Query and
      trigger failures are logged and the loop carries on; there is no
      ceiling on the number of polls.
    - A New status triggers initialization with the mode derived from the
      crash marker.
    - One backoff wait follows every non-successful poll. Cancellation
      during that wait aborts the handshake.
    - Once Successful, the etcd config is fetched with a bounded retry and
      parsed. Exhausting the retry aborts with the last error; a local
      ConfigurationError (e.g. the config file cannot be written) aborts at once.
    """

    def __init__(
        self,
        client: SidecarClient,
        crash_markers: CrashMarkerStore,
        poll_backoff: float = DEFAULT_POLL_BACKOFF,
        config_fetch_attempts: int = DEFAULT_CONFIG_FETCH_ATTEMPTS,
        config_fetch_backoff: float = DEFAULT_CONFIG_FETCH_BACKOFF,
        config_loader: Callable[[Path], EtcdConfig] = load_etcd_config,
    ):
        self.client = client
        self.crash_markers = crash_markers
        self.poll_backoff = poll_backoff
        self.config_fetch_attempts = config_fetch_attempts
        self.config_fetch_backoff = config_fetch_backoff
        self.config_loader = config_loader
        self.phase = InitPhase.POLLING

    async def run(self, token: CancellationToken) -> EtcdConfig:
        try:
            await self._wait_for_initialization(token)
            config_path = await self._fetch_config(token)
            etcd_config = self.config_loader(config_path)
        except Exception:
            self.phase = InitPhase.ABORTED
            raise

        self.phase = InitPhase.SUCCEEDED
        logger.info("Initialization handshake complete")
        return etcd_config

    async def _query_status(self, token: CancellationToken) -> InitStatus:
        try:
            return await self.client.get_initialization_status(token)
        except SidecarError as exc:
            logger.error(f"Error while fetching initialization status: {exc}")
            return InitStatus.UNKNOWN

    async def _wait_for_initialization(self, token: CancellationToken) -> None:
        while True:
            if token.cancelled:
                raise OperationCancelledError("initialization")

            status = await self._query_status(token)
            logger.info(f"Initialization status: {status.value}")
            if status == InitStatus.SUCCESSFUL:
                return

            if status == InitStatus.NEW:
                self.phase = InitPhase.TRIGGERING
                mode = self.crash_markers.validation_mode()
                try:
                    await self.client.trigger_initialization(token, mode)
                except SidecarError as exc:
                    logger.error(f"Error while triggering initialization: {exc}")
                self.phase = InitPhase.POLLING

            if await token.sleep(self.poll_backoff):
                logger.info("Cancellation requested while waiting for initialization")
                raise OperationCancelledError("initialization")

    async def _fetch_config(self, token: CancellationToken) -> Path:
        result = await retry(
            lambda: self.client.get_etcd_config(token),
            name="get etcd config",
            max_attempts=self.config_fetch_attempts,
            backoff=self.config_fetch_backoff,
            can_retry=retry_unless_configuration_error,
            token=token,
        )
        return result.unwrap()
