import pytest

from kubeprov.core.config import (
    ConfigurationError,
    NodeType,
    normalize_endpoint,
    normalize_version,
    resolve_config,
)

HASH = "sha256:" + "0f" * 32


def test_defaults_describe_a_control_plane():
    cfg = resolve_config()
    assert cfg.node_type == NodeType.CONTROL_PLANE
    assert cfg.hostname == "k8s-master-node"
    assert cfg.k8s_version == "1.31"
    assert cfg.pod_cidr == "192.168.0.0/16"
    assert not cfg.is_worker


def test_config_is_immutable():
    cfg = resolve_config(hostname="node-a")
    with pytest.raises(Exception):
        cfg.hostname = "other"


def test_node_type_accepts_plain_strings():
    assert resolve_config(node_type="cp").node_type == NodeType.CONTROL_PLANE


def test_invalid_node_type_is_rejected():
    with pytest.raises(ConfigurationError, match="Invalid node type"):
        resolve_config(node_type="master")


@pytest.mark.parametrize("hostname", ["", "   "])
def test_empty_hostname_is_rejected(hostname):
    with pytest.raises(ConfigurationError, match="Hostname"):
        resolve_config(hostname=hostname)


@pytest.mark.parametrize("raw,expected", [("1.31", "1.31"), ("v1.32", "1.32"), (" 1.30 ", "1.30")])
def test_version_is_normalized(raw, expected):
    assert normalize_version(raw) == expected


@pytest.mark.parametrize("raw", ["", "1", "1.31.2", "latest", "v1.x"])
def test_bad_version_is_a_configuration_error(raw):
    with pytest.raises(ConfigurationError, match="Kubernetes version"):
        resolve_config(k8s_version=raw)


@pytest.mark.parametrize("raw", ["10.244.0.0/99", "10.0.0.1", "fd00::1", "", "not-a-network"])
def test_bad_cidr_is_a_configuration_error(raw):
    with pytest.raises(ConfigurationError, match="pod CIDR"):
        resolve_config(pod_cidr=raw)


def test_ipv6_cidr_is_accepted():
    assert resolve_config(pod_cidr="fd00:10:244::/56").pod_cidr == "fd00:10:244::/56"


@pytest.mark.parametrize("raw,expected", [
    ("10.0.0.1:6443", "10.0.0.1:6443"),
    ("10.0.0.1", "10.0.0.1:6443"),
    ("cp.example.com", "cp.example.com:6443"),
    ("[fd00::1]:8443", "[fd00::1]:8443"),
    ("[fd00::1]", "[fd00::1]:6443"),
    ("", ""),
])
def test_endpoint_gets_default_port(raw, expected):
    assert normalize_endpoint(raw) == expected


def test_worker_with_all_credentials():
    cfg = resolve_config(
        node_type="worker",
        hostname="node-b",
        join_endpoint="10.0.0.1:6443",
        join_token="abc.def",
        discovery_token_hash=HASH,
    )
    assert cfg.is_worker
    assert cfg.join_endpoint == "10.0.0.1:6443"
    assert cfg.join_token == "abc.def"
    assert cfg.discovery_token_hash == HASH
    assert cfg.missing_join_fields() == []


@pytest.mark.parametrize("missing", ["join_endpoint", "join_token", "discovery_token_hash"])
def test_worker_missing_any_credential_is_rejected(missing):
    values = {
        "join_endpoint": "10.0.0.1:6443",
        "join_token": "abc.def",
        "discovery_token_hash": HASH,
    }
    values[missing] = ""
    with pytest.raises(ConfigurationError, match="required to provision a worker"):
        resolve_config(node_type="worker", hostname="node-b", **values)


def test_worker_without_join_lists_every_missing_flag():
    with pytest.raises(ConfigurationError) as exc:
        resolve_config(node_type="worker", hostname="node-b")
    assert "--join, --token, --discovery-token" in str(exc.value)


def test_malformed_discovery_hash_is_rejected():
    with pytest.raises(ConfigurationError, match="discovery token hash"):
        resolve_config(
            node_type="worker",
            hostname="node-b",
            join_endpoint="10.0.0.1:6443",
            join_token="abc.def",
            discovery_token_hash="md5:1234",
        )


def test_control_plane_ignores_absent_join_credentials():
    cfg = resolve_config(node_type="cp", hostname="node-a")
    assert cfg.missing_join_fields() == ["--join", "--token", "--discovery-token"]
