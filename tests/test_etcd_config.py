import pytest

from etcd_wrapper.app.bootstrap.etcd_config import load_etcd_config
from etcd_wrapper.app.errors import ConfigurationError

DOCUMENT = """\
name: etcd-main-0
data-dir: /var/etcd/data/new.etcd
listen-client-urls: https://0.0.0.0:2379
advertise-client-urls: https://etcd-main-0.etcd-main-peer:2379
quota-backend-bytes: 8589934592
client-transport-security:
  cert-file: /var/etcd/ssl/server/tls.crt
  key-file: /var/etcd/ssl/server/tls.key
  trusted-ca-file: /var/etcd/ssl/ca/bundle.crt
  client-cert-auth: true
"""


def test_loads_known_and_unknown_keys(tmp_path):
    p = tmp_path / "etcd.conf.yaml"
    p.write_text(DOCUMENT)

    cfg = load_etcd_config(p)

    assert cfg.name == "etcd-main-0"
    assert cfg.data_dir == "/var/etcd/data/new.etcd"
    assert cfg.listen_client_urls == "https://0.0.0.0:2379"
    assert cfg.client_transport_security.trusted_ca_file == "/var/etcd/ssl/ca/bundle.crt"
    assert cfg.client_transport_security.client_cert_auth is True
    assert cfg.model_extra["quota-backend-bytes"] == 8589934592


@pytest.mark.parametrize(
    "content, fragment",
    [
        ("- just\n- a list\n", "not a mapping"),
        ("", "not a mapping"),
        ("name: [unclosed\n", "malformed"),
        ("name:\n  nested: value\n", "invalid"),
    ],
)
def test_bad_documents_are_configuration_errors(tmp_path, content, fragment):
    p = tmp_path / "etcd.conf.yaml"
    p.write_text(content)

    with pytest.raises(ConfigurationError, match=fragment):
        load_etcd_config(p)


def test_missing_file_is_configuration_error(tmp_path):
    with pytest.raises(ConfigurationError, match="unable to read"):
        load_etcd_config(tmp_path / "absent.yaml")
