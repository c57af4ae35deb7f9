# etcd_wrapper/app/config.py
from __future__ import annotations

import argparse
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import ConfigurationError

DEFAULT_SIDECAR_HOST_PORT = ":8080"
DEFAULT_ETCD_CLIENT_PORT = 2379
DEFAULT_WRAPPER_PORT = 9095
DEFAULT_EXIT_CODE_FILE_PATH = "/var/etcd/data/exit_code"
DEFAULT_ETCD_CONFIG_FILE_PATH = "/etc/etcd.conf.yaml"


def _blank(value: Optional[str]) -> bool:
    return value is None or not value.strip()


class SidecarConfig(BaseModel):
    """Where the backup-restore sidecar listens and how to talk to it."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    host_port: str = DEFAULT_SIDECAR_HOST_PORT
    tls_enabled: bool = False
    ca_cert_bundle_path: Optional[str] = None
    client_cert_path: Optional[str] = None
    client_key_path: Optional[str] = None

    @model_validator(mode="after")
    def _validate(self) -> "SidecarConfig":
        problems: List[str] = []
        if ":" not in self.host_port:
            problems.append(f"host_port '{self.host_port}' must be of the form <host>:<port>")
        if self.host_port.startswith(("http:", "https:")):
            problems.append(f"host_port '{self.host_port}' must not carry a scheme")
        if self.tls_enabled and _blank(self.ca_cert_bundle_path):
            problems.append("ca_cert_bundle_path is required when TLS is enabled")
        if _blank(self.client_cert_path) != _blank(self.client_key_path):
            problems.append("client_cert_path and client_key_path must be set together")
        if problems:
            raise ValueError("; ".join(problems))
        return self

    @property
    def host(self) -> str:
        host = self.host_port.rsplit(":", 1)[0]
        return host or "localhost"

    @property
    def port(self) -> str:
        return self.host_port.rsplit(":", 1)[-1]

    @property
    def scheme(self) -> str:
        return "https" if self.tls_enabled else "http"

    @property
    def base_address(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def client_cert(self) -> Optional[tuple]:
        if _blank(self.client_cert_path):
            return None
        return (self.client_cert_path, self.client_key_path)


class EtcdClientConfig(BaseModel):
    """TLS material and port used to reach the local etcd member."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    server_name: Optional[str] = None
    cert_path: Optional[str] = None
    key_path: Optional[str] = None
    ca_cert_path: Optional[str] = None
    port: int = Field(default=DEFAULT_ETCD_CLIENT_PORT, ge=1, le=65535)

    @property
    def tls_enabled(self) -> bool:
        return not (_blank(self.cert_path) or _blank(self.key_path) or _blank(self.ca_cert_path))

    @property
    def serving_tls_enabled(self) -> bool:
        # the readiness server only needs a certificate and key
        return not (_blank(self.cert_path) or _blank(self.key_path))

    @property
    def endpoint(self) -> str:
        scheme = "https" if self.tls_enabled else "http"
        return f"{scheme}://127.0.0.1:{self.port}"


class WrapperConfig(BaseModel):
    """
    Immutable snapshot of every setting, built once from the command line.

    Components receive the pieces they need; nothing mutates it afterwards.
    """

    model_config = ConfigDict(extra="forbid", frozen=True)

    sidecar: SidecarConfig = Field(default_factory=SidecarConfig)
    etcd_client: EtcdClientConfig = Field(default_factory=EtcdClientConfig)
    http_port: int = Field(default=DEFAULT_WRAPPER_PORT, ge=1, le=65535)
    wait_ready_timeout: float = Field(default=0.0, ge=0.0)
    exit_code_file_path: str = DEFAULT_EXIT_CODE_FILE_PATH
    etcd_config_file_path: str = DEFAULT_ETCD_CONFIG_FILE_PATH
    etcd_binary: str = "etcd"
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @classmethod
    def from_args(cls, args: argparse.Namespace) -> "WrapperConfig":
        try:
            return cls(
                sidecar=SidecarConfig(
                    host_port=args.backup_restore_host_port,
                    tls_enabled=args.backup_restore_tls_enabled,
                    ca_cert_bundle_path=args.backup_restore_ca_cert_bundle_path,
                    client_cert_path=args.backup_restore_client_cert_path,
                    client_key_path=args.backup_restore_client_key_path,
                ),
                etcd_client=EtcdClientConfig(
                    server_name=args.etcd_server_name,
                    cert_path=args.etcd_client_cert_path,
                    key_path=args.etcd_client_key_path,
                    ca_cert_path=args.etcd_client_ca_cert_path,
                    port=args.etcd_client_port,
                ),
                http_port=args.wrapper_port,
                wait_ready_timeout=args.etcd_wait_ready_timeout,
                exit_code_file_path=args.exit_code_file_path,
                etcd_config_file_path=args.etcd_config_file_path,
                etcd_binary=args.etcd_binary,
                log_level=args.log_level,
                log_dir=args.log_dir,
            )
        except ValidationError as exc:
            raise ConfigurationError(f"invalid configuration: {exc}") from exc
