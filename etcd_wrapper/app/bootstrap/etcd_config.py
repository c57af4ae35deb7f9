# etcd_wrapper/app/bootstrap/etcd_config.py
from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from ..errors import ConfigurationError

logger = logging.getLogger("etcd_wrapper.bootstrap.etcd_config")


class ClientTransportSecurity(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    cert_file: Optional[str] = Field(default=None, alias="cert-file")
    key_file: Optional[str] = Field(default=None, alias="key-file")
    trusted_ca_file: Optional[str] = Field(default=None, alias="trusted-ca-file")
    client_cert_auth: Optional[bool] = Field(default=None, alias="client-cert-auth")


class EtcdConfig(BaseModel):
    """
    The etcd configuration document handed out by the sidecar.

    Only the keys the wrapper looks at are typed; the rest are kept as-is.
    """

    model_config = ConfigDict(extra="allow", populate_by_name=True, frozen=True)

    name: Optional[str] = None
    data_dir: Optional[str] = Field(default=None, alias="data-dir")
    listen_client_urls: Optional[str] = Field(default=None, alias="listen-client-urls")
    advertise_client_urls: Optional[str] = Field(default=None, alias="advertise-client-urls")
    client_transport_security: Optional[ClientTransportSecurity] = Field(
        default=None, alias="client-transport-security"
    )


def load_etcd_config(path: Union[str, Path]) -> EtcdConfig:
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigurationError(f"unable to read etcd config {p}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"malformed etcd config {p}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigurationError(f"etcd config {p} is not a mapping")

    try:
        cfg = EtcdConfig.model_validate(raw)
    except ValidationError as exc:
        raise ConfigurationError(f"invalid etcd config {p}: {exc}") from exc

    logger.info(f"Loaded etcd config from {p} (name={cfg.name}, data-dir={cfg.data_dir})")
    return cfg
