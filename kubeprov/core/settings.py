import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Dict, List, Union

import yaml
from dotenv import load_dotenv

# Load env vars if present
load_dotenv()

CALICO_MANIFEST_BASE = "https://raw.githubusercontent.com/projectcalico/calico/{version}/manifests"


# --- DATACLASSES (SCHEMA) ---

@dataclass
class CniSettings:
    """Defines the Calico operator manifests applied on control-plane nodes."""
    calico_version: str = "v3.28.0"
    operator_manifest_url: str = ""
    custom_resources_url: str = ""

    def __post_init__(self):
        base = CALICO_MANIFEST_BASE.format(version=self.calico_version)
        if not self.operator_manifest_url:
            self.operator_manifest_url = f"{base}/tigera-operator.yaml"
        if not self.custom_resources_url:
            self.custom_resources_url = f"{base}/custom-resources.yaml"


@dataclass
class ReadinessSettings:
    """Polling policy used while waiting for the API server."""
    max_attempts: int = 150
    interval: float = 2.0
    backoff: float = 1.0


@dataclass
class PathSettings:
    """Every host path the provisioner reads or writes."""
    log_file: str = "/var/log/k8s_provisioning.log"
    os_release: str = "/etc/os-release"
    hosts: str = "/etc/hosts"
    fstab: str = "/etc/fstab"
    modules_load: str = "/etc/modules-load.d/k8s.conf"
    sysctl_conf: str = "/etc/sysctl.d/k8s.conf"
    containerd_config: str = "/etc/containerd/config.toml"
    apt_keyring: str = "/etc/apt/keyrings/kubernetes-apt-keyring.gpg"
    apt_source: str = "/etc/apt/sources.list.d/kubernetes.list"
    admin_conf: str = "/etc/kubernetes/admin.conf"
    kubelet_conf: str = "/etc/kubernetes/kubelet.conf"
    join_descriptor: str = "/etc/kubeprov/join.yaml"
    work_dir: str = "/var/lib/kubeprov"
    backup_dir: str = "/var/backups/kubeprov"


@dataclass
class K8sSettings:
    """Defines Kubernetes node and cluster configuration."""
    version: str = "1.31"
    pod_network_cidr: str = "192.168.0.0/16"
    container_runtime_package: str = "containerd"
    supported_os_versions: List[str] = field(default_factory=lambda: ["20.04", "22.04", "24.04"])
    kernel_modules: List[str] = field(default_factory=lambda: ["overlay", "br_netfilter"])
    sysctl_params: Dict[str, str] = field(default_factory=lambda: {
        "net.bridge.bridge-nf-call-iptables": "1",
        "net.bridge.bridge-nf-call-ip6tables": "1",
        "net.ipv4.ip_forward": "1",
    })
    cni: CniSettings = field(default_factory=CniSettings)
    readiness: ReadinessSettings = field(default_factory=ReadinessSettings)


@dataclass
class AppSettings:
    """Root configuration object."""
    k8s: K8sSettings = field(default_factory=K8sSettings)
    paths: PathSettings = field(default_factory=PathSettings)


# --- LOADER LOGIC ---

class SettingsError(ValueError):
    """Settings file or environment holds a value of the wrong shape or type."""


def _section(data: Dict, key: str, where: str) -> Dict:
    """Returns data[key] as a mapping; an empty section counts as {}."""
    value = data.get(key)
    if value is None:
        return {}
    if not isinstance(value, dict):
        raise SettingsError(f"'{where}{key}' must be a mapping, got {type(value).__name__}")
    return value


def _known(cls, values: Dict) -> Dict:
    """Filters only known keys to avoid init errors."""
    return {k: v for k, v in values.items() if k in cls.__annotations__}


def load_settings(config_path: Optional[str] = "kubeprov.yaml") -> AppSettings:
    """
    Loads configuration merging: Defaults (Schema) < YAML File (Config) < Environment Vars (Overrides).
    A missing file is not an error; an unreadable or malformed one is.

    Raises:
        OSError, yaml.YAMLError: file cannot be read or parsed.
        SettingsError: a section or value has the wrong shape or type.
    """

    # 1. Load YAML Config
    file_config = {}
    if config_path:
        path = Path(config_path)
        if path.exists():
            with open(path, "r") as f:
                file_config = yaml.safe_load(f) or {}
            if not isinstance(file_config, dict):
                raise SettingsError(f"{config_path} must contain a mapping at the top level")

    # 2. Load Environment Variables
    # Only the keys that make sense to override per host
    env_config = {
        "paths": {
            "log_file": os.getenv("KUBEPROV_LOG_FILE"),
        },
        "k8s": {
            "version": os.getenv("K8S_VERSION"),
            "pod_network_cidr": os.getenv("POD_CIDR"),
            "readiness": {
                "max_attempts": os.getenv("KUBEPROV_READINESS_ATTEMPTS"),
                "interval": os.getenv("KUBEPROV_READINESS_INTERVAL"),
            },
        },
    }

    # Cleanup: We remove None/Empty keys from ENV dictionaries
    def clean_none(d: Union[Dict, None]):
        if not isinstance(d, dict): return d
        cleaned = {k: clean_none(v) for k, v in d.items() if v is not None}
        return {k: v for k, v in cleaned.items() if v != {}}

    env_config = clean_none(env_config)

    # 3. Merge Logic

    # --- Paths ---
    paths_final = {**_section(file_config, "paths", ""), **env_config.get("paths", {})}
    paths_obj = PathSettings(**_known(PathSettings, paths_final))

    # --- Kubernetes ---
    k8s_file = dict(_section(file_config, "k8s", ""))
    k8s_env = dict(env_config.get("k8s", {}))

    # Nested sections are built as objects before the final merge
    cni_obj = CniSettings(**_known(CniSettings, _section(k8s_file, "cni", "k8s.")))
    k8s_file.pop("cni", None)

    readiness_final = {**_section(k8s_file, "readiness", "k8s."), **k8s_env.pop("readiness", {})}
    k8s_file.pop("readiness", None)
    readiness_obj = ReadinessSettings(**_known(ReadinessSettings, readiness_final))
    try:
        readiness_obj.max_attempts = int(readiness_obj.max_attempts)
        readiness_obj.interval = float(readiness_obj.interval)
        readiness_obj.backoff = float(readiness_obj.backoff)
    except (TypeError, ValueError) as e:
        raise SettingsError(f"Invalid readiness setting: {e}")
    if readiness_obj.max_attempts < 1:
        raise SettingsError("Readiness max_attempts must be at least 1")

    k8s_final = {**k8s_file, **k8s_env}
    k8s_args = _known(K8sSettings, k8s_final)
    k8s_args["cni"] = cni_obj
    k8s_args["readiness"] = readiness_obj

    if "version" in k8s_args:
        k8s_args["version"] = str(k8s_args["version"])

    return AppSettings(
        k8s=K8sSettings(**k8s_args),
        paths=paths_obj,
    )
