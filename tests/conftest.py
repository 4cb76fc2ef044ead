import io
import re
import subprocess

import pytest
from rich.console import Console

from kubeprov.core.config import resolve_config, NodeType
from kubeprov.core.engine import ProvisionEngine
from kubeprov.core.settings import AppSettings, PathSettings, K8sSettings, ReadinessSettings
from kubeprov.utils.logger import Reporter

JOIN_HASH = "sha256:" + "ab" * 32

CONTAINERD_DEFAULT = """version = 2
[plugins."io.containerd.grpc.v1.cri".containerd.runtimes.runc.options]
  SystemdCgroup = false
"""

JOIN_COMMAND = (
    f"kubeadm join 10.0.0.1:6443 --token abcdef.0123456789abcdef "
    f"--discovery-token-ca-cert-hash {JOIN_HASH} \n"
)


class MemoryReporter(Reporter):
    """Keeps log lines in memory instead of touching the filesystem."""

    def __init__(self):
        super().__init__(console=Console(file=io.StringIO(), width=200), verbose=False)
        self.records = []

    def log(self, level, message):
        self.records.append((level, message))

    def messages(self, level=None):
        return [m for lvl, m in self.records if level is None or lvl == level]


class FakeShell:
    """
    Stands in for subprocess.run in kubeprov.utils.linux.
    Rules are (regex, returncode, stdout, stderr); first match wins, default is success.
    """

    def __init__(self):
        self.commands = []
        self.rules = [
            (r"^hostname$", 0, "old-host\n", ""),
            (r"^dpkg --print-architecture", 0, "amd64\n", ""),
            (r"^containerd config default", 0, CONTAINERD_DEFAULT, ""),
            (r"^kubeadm token create", 0, JOIN_COMMAND, ""),
        ]

    def on(self, pattern, returncode=0, stdout="", stderr=""):
        self.rules.insert(0, (pattern, returncode, stdout, stderr))
        return self

    def __call__(self, args, shell=False, **kwargs):
        cmd = args if isinstance(args, str) else " ".join(args)
        self.commands.append(cmd)
        for pattern, returncode, stdout, stderr in self.rules:
            if re.search(pattern, cmd):
                return subprocess.CompletedProcess(args, returncode, stdout, stderr)
        return subprocess.CompletedProcess(args, 0, "", "")

    def ran(self, pattern):
        return [c for c in self.commands if re.search(pattern, c)]


@pytest.fixture
def shell(monkeypatch):
    fake = FakeShell()
    monkeypatch.setattr("kubeprov.utils.linux.subprocess.run", fake)
    return fake


@pytest.fixture
def reporter():
    return MemoryReporter()


@pytest.fixture
def settings(tmp_path):
    etc = tmp_path / "etc"
    etc.mkdir()
    (etc / "os-release").write_text('NAME="Ubuntu"\nID=ubuntu\nVERSION_ID="22.04"\nVERSION_CODENAME=jammy\n')
    (etc / "hosts").write_text("127.0.0.1 localhost\n127.0.1.1 old-host\n")
    (etc / "fstab").write_text("UUID=abcd / ext4 defaults 0 1\n/swap.img none swap sw 0 0\n")

    paths = PathSettings(
        log_file=str(tmp_path / "log" / "k8s_provisioning.log"),
        os_release=str(etc / "os-release"),
        hosts=str(etc / "hosts"),
        fstab=str(etc / "fstab"),
        modules_load=str(etc / "modules-load.d" / "k8s.conf"),
        sysctl_conf=str(etc / "sysctl.d" / "k8s.conf"),
        containerd_config=str(etc / "containerd" / "config.toml"),
        apt_keyring=str(etc / "apt" / "keyrings" / "kubernetes-apt-keyring.gpg"),
        apt_source=str(etc / "apt" / "sources.list.d" / "kubernetes.list"),
        admin_conf=str(etc / "kubernetes" / "admin.conf"),
        kubelet_conf=str(etc / "kubernetes" / "kubelet.conf"),
        join_descriptor=str(etc / "kubeprov" / "join.yaml"),
        work_dir=str(tmp_path / "work"),
        backup_dir=str(tmp_path / "backups"),
    )
    k8s = K8sSettings(readiness=ReadinessSettings(max_attempts=5, interval=0.0))
    return AppSettings(k8s=k8s, paths=paths)


@pytest.fixture
def cp_config():
    return resolve_config(node_type=NodeType.CONTROL_PLANE, hostname="node-a")


@pytest.fixture
def worker_config():
    return resolve_config(
        node_type=NodeType.WORKER,
        hostname="node-b",
        join_endpoint="10.0.0.1:6443",
        join_token="abc.def",
        discovery_token_hash=JOIN_HASH,
    )


@pytest.fixture
def as_root(monkeypatch):
    monkeypatch.setattr("kubeprov.tasks.preflight.os.geteuid", lambda: 0)


@pytest.fixture
def run_step(settings, reporter):
    """Runs a single step through Nornir and returns its Result."""

    def _run(task_func, config):
        engine = ProvisionEngine(config, settings, reporter)
        agg = engine.nr.run(task=task_func, name=task_func.__name__)
        return agg["localhost"][0]

    return _run
