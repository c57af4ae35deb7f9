import asyncio
import os
import stat

import pytest
import requests

from etcd_wrapper.app.bootstrap.cancellation import CancellationToken
from etcd_wrapper.app.config import SidecarConfig
from etcd_wrapper.app.errors import (
    ConfigurationError,
    OperationCancelledError,
    SidecarError,
    SidecarResponseError,
)
from etcd_wrapper.app.sidecar.client import HttpSidecarClient, create_session
from etcd_wrapper.app.sidecar.models import InitStatus, ValidationType, parse_init_status
from tests.fakes import FakeSession, make_response


def _client(tmp_path, responses, config=None):
    session = FakeSession(responses)
    client = HttpSidecarClient(
        config or SidecarConfig(host_port=":8080"),
        tmp_path / "etcd.conf.yaml",
        session=session,
    )
    return client, session


def _status(client):
    async def go():
        return await client.get_initialization_status(CancellationToken())

    return asyncio.run(go())


@pytest.mark.parametrize(
    "body, expected",
    [
        ("New", InitStatus.NEW),
        ("Successful", InitStatus.SUCCESSFUL),
        ("InProgress", InitStatus.IN_PROGRESS),
        ("xyz", InitStatus.IN_PROGRESS),
    ],
)
def test_status_body_parsing(tmp_path, body, expected):
    client, session = _client(tmp_path, {"/initialization/status": [make_response(200, body)]})

    assert _status(client) == expected
    assert session.calls[0]["url"] == "http://localhost:8080/initialization/status"
    assert session.calls[0]["timeout"] == 10.0


def test_parse_init_status_is_exact_match():
    assert parse_init_status("new") == InitStatus.IN_PROGRESS
    assert parse_init_status("Successful\n") == InitStatus.IN_PROGRESS


@pytest.mark.parametrize("code", [201, 202])
def test_created_and_accepted_count_as_ok(tmp_path, code):
    client, _ = _client(tmp_path, {"/initialization/status": [make_response(code, "Successful")]})
    assert _status(client) == InitStatus.SUCCESSFUL


def test_status_error_response_raises(tmp_path):
    client, _ = _client(tmp_path, {"/initialization/status": [make_response(400, "bad request")]})

    with pytest.raises(SidecarResponseError) as excinfo:
        _status(client)
    assert excinfo.value.status_code == 400
    assert "400" in str(excinfo.value)


def test_transport_error_raises_sidecar_error(tmp_path):
    client, _ = _client(
        tmp_path, {"/initialization/status": [requests.ConnectionError("connection refused")]}
    )

    with pytest.raises(SidecarError, match="connection refused"):
        _status(client)


@pytest.mark.parametrize("mode", [ValidationType.SANITY, ValidationType.FULL])
def test_trigger_sends_mode_query(tmp_path, mode):
    client, session = _client(tmp_path, {"/initialization/start": [make_response(200)]})

    async def go():
        await client.trigger_initialization(CancellationToken(), mode)

    asyncio.run(go())
    assert session.calls[0]["method"] == "GET"
    assert session.calls[0]["url"] == f"http://localhost:8080/initialization/start?mode={mode.value}"


def test_trigger_error_response_raises(tmp_path):
    client, _ = _client(tmp_path, {"/initialization/start": [make_response(500, "boom")]})

    async def go():
        await client.trigger_initialization(CancellationToken(), ValidationType.FULL)

    with pytest.raises(SidecarResponseError, match="start initialization"):
        asyncio.run(go())


def test_get_etcd_config_writes_body_verbatim(tmp_path):
    body = b"name: etcd-main-0\ndata-dir: /var/etcd/data/new.etcd\n"
    client, _ = _client(tmp_path, {"/config": [make_response(200, body)]})

    async def go():
        return await client.get_etcd_config(CancellationToken())

    path = asyncio.run(go())
    assert path == tmp_path / "etcd.conf.yaml"
    assert path.read_bytes() == body
    assert stat.S_IMODE(path.stat().st_mode) == 0o600


def test_get_etcd_config_not_found_writes_nothing(tmp_path):
    client, _ = _client(tmp_path, {"/config": [make_response(404, "not found")]})

    async def go():
        return await client.get_etcd_config(CancellationToken())

    with pytest.raises(SidecarResponseError):
        asyncio.run(go())
    assert not (tmp_path / "etcd.conf.yaml").exists()


def test_cancelled_token_skips_request(tmp_path):
    client, session = _client(tmp_path, {"/initialization/status": [make_response(200, "New")]})

    async def go():
        token = CancellationToken()
        token.cancel()
        return await client.get_initialization_status(token)

    with pytest.raises(OperationCancelledError):
        asyncio.run(go())
    assert session.calls == []


def test_tls_base_address_uses_https(tmp_path):
    ca = tmp_path / "ca.crt"
    ca.write_text("ca")
    config = SidecarConfig(host_port="backup:8443", tls_enabled=True, ca_cert_bundle_path=str(ca))
    client, session = _client(tmp_path, {"/initialization/status": [make_response(200, "New")]}, config)

    _status(client)
    assert session.calls[0]["url"] == "https://backup:8443/initialization/status"


class TestCreateSession:
    """Session TLS settings follow the sidecar configuration."""

    def test_insecure_when_tls_disabled(self):
        session = create_session(SidecarConfig())
        assert session.verify is False
        assert session.cert is None

    def test_trusts_only_ca_bundle_when_tls_enabled(self, tmp_path):
        ca = tmp_path / "ca.crt"
        ca.write_text("ca")
        session = create_session(SidecarConfig(tls_enabled=True, ca_cert_bundle_path=str(ca)))
        assert session.verify == str(ca)

    def test_missing_ca_bundle_is_configuration_error(self, tmp_path):
        config = SidecarConfig(tls_enabled=True, ca_cert_bundle_path=str(tmp_path / "missing.crt"))
        with pytest.raises(ConfigurationError, match="CA bundle"):
            create_session(config)

    def test_client_certificate_presented(self, tmp_path):
        cert, key = tmp_path / "tls.crt", tmp_path / "tls.key"
        cert.write_text("cert")
        key.write_text("key")
        session = create_session(SidecarConfig(client_cert_path=str(cert), client_key_path=str(key)))
        assert session.cert == (str(cert), str(key))

    def test_unreadable_client_key_is_configuration_error(self, tmp_path):
        cert = tmp_path / "tls.crt"
        cert.write_text("cert")
        config = SidecarConfig(client_cert_path=str(cert), client_key_path=str(tmp_path / "tls.key"))
        with pytest.raises(ConfigurationError, match="tls.key"):
            create_session(config)


def test_config_created_private_even_with_permissive_umask(tmp_path):
    client, _ = _client(tmp_path, {"/config": [make_response(200, "name: etcd-main-0\n")]})
    old_umask = os.umask(0)
    try:
        asyncio.run(client.get_etcd_config(CancellationToken()))
    finally:
        os.umask(old_umask)

    assert stat.S_IMODE((tmp_path / "etcd.conf.yaml").stat().st_mode) == 0o600


def test_unwritable_config_path_is_configuration_error(tmp_path):
    blocker = tmp_path / "etc"
    blocker.write_text("a file, not a directory")
    session = FakeSession({"/config": [make_response(200, "name: etcd-main-0\n")]})
    client = HttpSidecarClient(SidecarConfig(), blocker / "etcd.conf.yaml", session=session)

    with pytest.raises(ConfigurationError, match="unable to write etcd config"):
        asyncio.run(client.get_etcd_config(CancellationToken()))
