import os

from nornir.core.task import Task, Result

from kubeprov.core.decorators import automated_step, automated_substep
from kubeprov.core.models import TaskStatus, SubTaskResult
from kubeprov.tasks import fail, done, get_settings
from kubeprov.utils.linux import read_file, run_command


@automated_substep("Check Root Privileges")
def _check_privileges(task: Task) -> SubTaskResult:
    if os.geteuid() != 0:
        return SubTaskResult(success=False, message="Must be run as root (e.g. with sudo)")
    return SubTaskResult(success=True, message="Running as root")


@automated_substep("Read OS Release")
def _get_os_release(task: Task, path: str) -> SubTaskResult:
    """Parses os-release into a dictionary."""
    content = read_file(path)
    if not content:
        return SubTaskResult(success=False, message=f"Could not read {path}")

    data = {}
    for line in content.splitlines():
        if "=" in line:
            key, value = line.split("=", 1)
            # Remove quotes
            data[key.strip()] = value.strip().strip('"')

    return SubTaskResult(success=True, message="OS Release parsed", data=data)


@automated_substep("Check CPU Architecture")
def _get_cpu_arch(task: Task) -> SubTaskResult:
    """Gets architecture (amd64/arm64) via dpkg for accurate deb repo mapping."""
    res = run_command(task, "dpkg --print-architecture")
    if res.failed:
        return SubTaskResult(success=False, message="Could not determine architecture")

    arch = res.result.strip()
    return SubTaskResult(success=True, message=f"Architecture: {arch}", data=arch)


@automated_step("Check Host Compatibility")
def check_host_compatibility(task: Task) -> Result:
    """
    Verifies privileges and the Ubuntu release before anything is changed.
    Fails if the OS version is not in the supported set.
    """
    settings = get_settings(task)
    supported = settings.k8s.supported_os_versions

    # 1. Privileges
    s1 = _check_privileges(task)
    if not s1.success: return fail(task, s1)

    # 2. OS Info
    s2 = _get_os_release(task, settings.paths.os_release)
    if not s2.success: return fail(task, s2)
    os_data = s2.data

    # 3. Compatibility Check (The "Gatekeeper")
    version = os_data.get("VERSION_ID", "unknown")
    if version not in supported:
        return fail(task, SubTaskResult(
            success=False,
            message=f"Unsupported Ubuntu version: {version}. Supported versions: {' '.join(supported)}"
        ))

    # 4. Arch
    s4 = _get_cpu_arch(task)
    if not s4.success: return fail(task, s4)

    # 5. Save Facts to Host Context
    # Later tasks read them via task.host["os_facts"]
    task.host["os_facts"] = {
        "id": os_data.get("ID", "unknown").lower(),
        "codename": os_data.get("VERSION_CODENAME", "unknown"),
        "version_id": version,
        "arch": s4.data,
    }

    return done(task, TaskStatus.OK, f"Detected Ubuntu version: {version} ({s4.data})")
