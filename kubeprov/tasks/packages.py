import re

from nornir.core.task import Task, Result

from kubeprov.core.decorators import automated_step, automated_substep
from kubeprov.core.models import TaskStatus, SubTaskResult
from kubeprov.tasks import fail, done, get_settings, get_provisioning
from kubeprov.utils.linux import (
    apt_update,
    apt_upgrade,
    apt_install,
    apt_hold,
    add_apt_repository,
    run_command,
    write_file,
    read_file,
    file_exists,
    systemctl
)

KUBE_PACKAGES = ["kubelet", "kubeadm", "kubectl"]
REPO_PREREQUISITES = ["apt-transport-https", "ca-certificates", "curl", "gpg"]
K8S_REPO_URL = "https://pkgs.k8s.io/core:/stable:/v{version}/deb/"

SYSTEMD_CGROUP_OFF = re.compile(r"(\bSystemdCgroup\s*=\s*)false\b")
SYSTEMD_CGROUP_ON = re.compile(r"\bSystemdCgroup\s*=\s*true\b")
SYSTEMD_CGROUP_ANY = re.compile(r"^\s*SystemdCgroup\s*=", re.MULTILINE)
# containerd.io from the Docker repository ships with the CRI plugin turned off
CRI_DISABLED = re.compile(r"""^\s*disabled_plugins\s*=\s*\[[^\]]*['"]cri['"]""", re.MULTILINE)


@automated_step("Update System Packages")
def update_system(task: Task) -> Result:
    """apt-get update followed by a full non-interactive upgrade."""
    res_update = apt_update(task)
    if res_update.failed:
        return fail(task, SubTaskResult(success=False, message=f"Failed to update system: {res_update.result.strip()}"))

    res_upgrade = apt_upgrade(task)
    if res_upgrade.failed:
        return fail(task, SubTaskResult(success=False, message=f"Failed to upgrade system: {res_upgrade.result.strip()}"))

    return done(task, TaskStatus.CHANGED, "Package index refreshed and packages upgraded")


# --- CONTAINER RUNTIME ---

@automated_substep("Install Container Runtime Package")
def _install_runtime(task: Task, package: str) -> SubTaskResult:
    res = apt_install(task, package, update=False)
    if res.failed:
        return SubTaskResult(success=False, message=f"apt-get install {package} failed: {res.result.strip()}")
    return SubTaskResult(success=True, message=f"{package} installed")


def _usable_for_kubelet(config: str) -> bool:
    """An existing config is patched in place only if CRI is on and the runc cgroup option is present."""
    return bool(SYSTEMD_CGROUP_ANY.search(config)) and not CRI_DISABLED.search(config)


@automated_substep("Set Containerd Cgroup Driver")
def _enable_systemd_cgroup(task: Task, config_path: str) -> SubTaskResult:
    """
    kubeadm configures the kubelet for the systemd cgroup driver; the runc
    runtime in containerd must use the same one.
    A config that cannot serve the kubelet is replaced by the default one
    (write_file keeps a backup of the old file).
    """
    config = read_file(config_path) if file_exists(config_path) else ""
    if not _usable_for_kubelet(config):
        res_default = run_command(task, "containerd config default")
        if res_default.failed:
            return SubTaskResult(success=False, message=f"containerd config default failed: {res_default.result.strip()}")
        config = res_default.result

    config = SYSTEMD_CGROUP_OFF.sub(r"\1true", config)
    if not SYSTEMD_CGROUP_ON.search(config):
        return SubTaskResult(success=False, message=f"No SystemdCgroup option found in {config_path}")

    res_write = write_file(task, config_path, config)
    if res_write.failed:
        return SubTaskResult(success=False, message=f"Cannot write {config_path}: {res_write.result}")

    return SubTaskResult(
        success=True,
        message="SystemdCgroup enabled" if res_write.changed else "SystemdCgroup already enabled",
    )


@automated_substep("Restart Containerd")
def _restart_containerd(task: Task) -> SubTaskResult:
    res = systemctl(task, "containerd", "restart", enable=True)
    if res.failed:
        return SubTaskResult(success=False, message=f"containerd did not restart: {res.result.strip()}")
    return SubTaskResult(success=True, message="containerd running and enabled")


@automated_step("Install & Configure Container Runtime")
def install_container_runtime(task: Task) -> Result:
    settings = get_settings(task)

    s1 = _install_runtime(task, settings.k8s.container_runtime_package)
    if not s1.success: return fail(task, s1)

    s2 = _enable_systemd_cgroup(task, settings.paths.containerd_config)
    if not s2.success: return fail(task, s2)

    s3 = _restart_containerd(task)
    if not s3.success: return fail(task, s3)

    return done(task, TaskStatus.CHANGED, "containerd installed with the systemd cgroup driver.")


# --- KUBERNETES TOOLS ---

@automated_substep("Install Repository Prerequisites")
def _install_repo_prerequisites(task: Task) -> SubTaskResult:
    res = apt_install(task, REPO_PREREQUISITES, update=False)
    if res.failed:
        return SubTaskResult(success=False, message=f"Cannot install {' '.join(REPO_PREREQUISITES)}")
    return SubTaskResult(success=True, message="Prerequisites present")


@automated_substep("Add Kubernetes Repository")
def _add_k8s_repo(task: Task, version: str) -> SubTaskResult:
    """
    pkgs.k8s.io publishes one repository per minor version, signed by its own key.
    """
    paths = get_settings(task).paths
    repo_url = K8S_REPO_URL.format(version=version)

    # Recorded by the preflight step
    arch = (task.host.get("os_facts") or {}).get("arch")
    options = f"arch={arch} signed-by={paths.apt_keyring}" if arch else f"signed-by={paths.apt_keyring}"

    return add_apt_repository(
        task,
        repo_path=paths.apt_source,
        repo_string=f"deb [{options}] {repo_url} /\n",
        gpg_key_url=f"{repo_url}Release.key",
        gpg_key_path=paths.apt_keyring,
    )


@automated_substep("Install kubelet, kubeadm and kubectl")
def _install_kube_packages(task: Task, version: str) -> SubTaskResult:
    res = apt_install(task, KUBE_PACKAGES)
    if res.failed:
        return SubTaskResult(
            success=False,
            message=f"Kubernetes {version} packages could not be installed: {res.result.strip()}"
        )
    return SubTaskResult(success=True, message=f"Kubernetes {version} packages installed")


@automated_substep("Hold Packages & Enable Kubelet")
def _pin_and_enable(task: Task) -> SubTaskResult:
    """
    Held packages are skipped by apt upgrades; cluster upgrades go through kubeadm.
    kubelet crash-loops until kubeadm writes its config, which is expected.
    """
    if apt_hold(task, KUBE_PACKAGES).failed:
        return SubTaskResult(success=False, message=f"apt-mark hold {' '.join(KUBE_PACKAGES)} failed")

    if run_command(task, "systemctl enable kubelet").failed:
        return SubTaskResult(success=False, message="systemctl enable kubelet failed")

    return SubTaskResult(success=True, message="Held and enabled")


@automated_step("Install Kubernetes Tools")
def install_kubernetes_tools(task: Task) -> Result:
    version = get_provisioning(task).k8s_version

    s1 = _install_repo_prerequisites(task)
    if not s1.success: return fail(task, s1)

    s2 = _add_k8s_repo(task, version)
    if not s2.success: return fail(task, s2)

    s3 = _install_kube_packages(task, version)
    if not s3.success: return fail(task, s3)

    s4 = _pin_and_enable(task)
    if not s4.success: return fail(task, s4)

    return done(task, TaskStatus.CHANGED, f"kubelet, kubeadm and kubectl v{version} installed and held.")
