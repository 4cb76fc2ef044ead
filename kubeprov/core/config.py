import ipaddress
import re
from dataclasses import dataclass
from enum import Enum
from typing import List, Optional

DEFAULT_HOSTNAME = "k8s-master-node"
DEFAULT_API_PORT = 6443

_VERSION_RE = re.compile(r"^v?(\d+)\.(\d+)$")
_DISCOVERY_HASH_RE = re.compile(r"^sha256:[0-9a-fA-F]+$")


class ConfigurationError(ValueError):
    """Invalid or incomplete invocation arguments."""


class NodeType(str, Enum):
    CONTROL_PLANE = "cp"
    WORKER = "worker"


@dataclass(frozen=True)
class ProvisioningConfig:
    """
    Validated invocation arguments.
    Built once at startup and only read afterwards.
    """
    node_type: NodeType
    hostname: str
    k8s_version: str
    pod_cidr: str
    join_endpoint: str = ""
    join_token: str = ""
    discovery_token_hash: str = ""

    @property
    def is_worker(self) -> bool:
        return self.node_type == NodeType.WORKER

    def missing_join_fields(self) -> List[str]:
        """Returns the CLI names of join credentials that are still empty."""
        fields = [
            ("--join", self.join_endpoint),
            ("--token", self.join_token),
            ("--discovery-token", self.discovery_token_hash),
        ]
        return [flag for flag, value in fields if not value]


def normalize_version(version: str) -> str:
    """'v1.31' and '1.31' both become '1.31'."""
    match = _VERSION_RE.match(version.strip())
    if not match:
        raise ConfigurationError(
            f"Invalid Kubernetes version '{version}'. Expected MAJOR.MINOR (e.g. 1.31)."
        )
    return f"{match.group(1)}.{match.group(2)}"


def normalize_endpoint(endpoint: str) -> str:
    """Appends the default API server port when the endpoint has none."""
    endpoint = endpoint.strip()
    if not endpoint:
        return endpoint
    host, sep, port = endpoint.rpartition(":")
    if sep and host and port.isdigit() and not host.endswith(":"):
        return endpoint
    # Bare host name, IPv4 address or bracketed IPv6 address
    return f"{endpoint}:{DEFAULT_API_PORT}"


def resolve_config(
        node_type: NodeType = NodeType.CONTROL_PLANE,
        hostname: str = DEFAULT_HOSTNAME,
        k8s_version: str = "1.31",
        pod_cidr: str = "192.168.0.0/16",
        join_endpoint: Optional[str] = None,
        join_token: Optional[str] = None,
        discovery_token_hash: Optional[str] = None,
) -> ProvisioningConfig:
    """
    Validates raw argument values and builds the ProvisioningConfig.

    Raises:
        ConfigurationError: on any invalid or missing value.
    """
    # 1. Node Type
    try:
        node_type = NodeType(node_type)
    except ValueError:
        raise ConfigurationError(
            f"Invalid node type '{node_type}'. Use 'cp' for Control Plane or 'worker' for Worker Node."
        )

    # 2. Hostname
    hostname = (hostname or "").strip()
    if not hostname:
        raise ConfigurationError("Hostname must not be empty.")

    # 3. Version & CIDR
    version = normalize_version(k8s_version or "")
    pod_cidr = (pod_cidr or "").strip()
    try:
        # A bare address would silently become a /32 or /128
        if "/" not in pod_cidr:
            raise ValueError("missing prefix length")
        ipaddress.ip_network(pod_cidr, strict=False)
    except ValueError:
        raise ConfigurationError(f"Invalid pod CIDR '{pod_cidr}'. Expected ADDRESS/PREFIX (e.g. 192.168.0.0/16).")

    config = ProvisioningConfig(
        node_type=node_type,
        hostname=hostname,
        k8s_version=version,
        pod_cidr=pod_cidr,
        join_endpoint=normalize_endpoint(join_endpoint or ""),
        join_token=(join_token or "").strip(),
        discovery_token_hash=(discovery_token_hash or "").strip(),
    )

    # 4. Join Credentials (workers only)
    if config.is_worker:
        missing = config.missing_join_fields()
        if missing:
            raise ConfigurationError(
                f"{', '.join(missing)} required to provision a worker node."
            )
        if not _DISCOVERY_HASH_RE.match(config.discovery_token_hash):
            raise ConfigurationError(
                f"Invalid discovery token hash '{config.discovery_token_hash}'. Expected 'sha256:<hex>'."
            )

    return config
