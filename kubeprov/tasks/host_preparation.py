import re
from typing import Dict, List

from nornir.core.task import Task, Result

from kubeprov.core.decorators import automated_step, automated_substep
from kubeprov.core.models import TaskStatus, SubTaskResult
from kubeprov.tasks import fail, done, get_settings, get_provisioning
from kubeprov.utils.linux import (
    write_file,
    read_file,
    ensure_line_in_file,
    get_hostname,
    set_hostname,
    is_module_loaded,
    load_module,
    reload_sysctl,
    is_swap_active,
    disable_swap
)

# Uncommented fstab entry whose filesystem type is swap
SWAP_LINE = re.compile(r"^\s*[^#\s]\S*\s+\S+\s+swap\b")
FSTAB_MARKER = "# Disabled by kubeprov"
LOOPBACK_HOST_IP = "127.0.1.1"


@automated_substep("Set Node Hostname")
def _apply_hostname(task: Task, node_name: str, hosts_path: str) -> SubTaskResult:
    """
    hostnamectl is only called when the name differs.
    The Debian-style loopback entry keeps the new name resolvable.
    """
    res = get_hostname(task)
    if res.failed:
        return SubTaskResult(success=False, message=f"Cannot read current hostname: {res.result.strip()}")

    previous = res.result.strip()
    renamed = previous != node_name
    if renamed:
        res_set = set_hostname(task, node_name)
        if res_set.failed:
            return SubTaskResult(success=False, message=f"hostnamectl failed: {res_set.result.strip()}")

    res_hosts = ensure_line_in_file(
        task, hosts_path, f"{LOOPBACK_HOST_IP} {node_name}", match_regex=rf"^{re.escape(LOOPBACK_HOST_IP)}\s+"
    )
    if res_hosts.failed:
        return SubTaskResult(success=False, message=f"Cannot update {hosts_path}: {res_hosts.result}")

    msg = f"{previous} -> {node_name}" if renamed else f"already '{node_name}'"
    return SubTaskResult(success=True, message=f"Hostname {msg}", data=renamed or res_hosts.changed)


def _comment_swap_entries(content: str) -> str:
    return "".join(
        f"# {line.rstrip()} {FSTAB_MARKER}\n" if SWAP_LINE.search(line) else line
        for line in content.splitlines(keepends=True)
    )


@automated_substep("Disable Swap")
def _turn_off_swap(task: Task, fstab_path: str) -> SubTaskResult:
    """
    Turns swap off now and comments its fstab entries so it stays off after reboot.
    Reports failures without stopping: the caller treats swap as best effort.
    """
    problems = []
    changed = False

    if is_swap_active(task):
        res_off = disable_swap(task)
        if res_off.failed:
            problems.append(f"swapoff: {res_off.result.strip()}")
        else:
            changed = True

    fstab = read_file(fstab_path)
    patched = _comment_swap_entries(fstab)
    if patched != fstab:
        res_write = write_file(task, fstab_path, patched)
        if res_write.failed:
            problems.append(f"fstab: {res_write.result}")
        else:
            changed = True

    if problems:
        return SubTaskResult(success=False, message="; ".join(problems))
    return SubTaskResult(success=True, message="Swap off" if changed else "No swap configured", data=changed)


@automated_substep("Load Kernel Modules")
def _load_kernel_modules(task: Task, modules: List[str], persist_path: str) -> SubTaskResult:
    """Writes the modules-load.d file and modprobes whatever is not loaded yet."""
    res_persist = write_file(task, persist_path, "".join(f"{mod}\n" for mod in modules))
    if res_persist.failed:
        return SubTaskResult(success=False, message=f"Cannot write {persist_path}: {res_persist.result}")

    loaded = []
    for mod in modules:
        if is_module_loaded(task, mod):
            continue
        if load_module(task, mod).failed:
            return SubTaskResult(success=False, message=f"modprobe {mod} failed")
        loaded.append(mod)

    return SubTaskResult(
        success=True,
        message=f"Loaded: {', '.join(loaded)}" if loaded else "All modules already loaded",
        data=res_persist.changed or bool(loaded),
    )


@automated_substep("Apply Kernel Network Parameters")
def _configure_sysctl(task: Task, params: Dict[str, str], conf_path: str) -> SubTaskResult:
    res_write = write_file(task, conf_path, "".join(f"{key} = {value}\n" for key, value in params.items()))
    if res_write.failed:
        return SubTaskResult(success=False, message=f"Cannot write {conf_path}: {res_write.result}")

    # Reloaded on every run so a manual change on the host is reverted
    if reload_sysctl(task).failed:
        return SubTaskResult(success=False, message="Failed to apply sysctl settings.")

    return SubTaskResult(success=True, message=f"{len(params)} parameters applied", data=res_write.changed)


@automated_step("Prepare Host")
def prepare_host(task: Task) -> Result:
    """
    Hostname, swap, br_netfilter/overlay and bridged traffic sysctls.
    Swap is best effort; everything else is mandatory.
    """
    settings = get_settings(task)
    paths = settings.paths
    node_name = get_provisioning(task).hostname

    s1 = _apply_hostname(task, node_name, paths.hosts)
    if not s1.success: return fail(task, s1)

    s2 = _turn_off_swap(task, paths.fstab)

    s3 = _load_kernel_modules(task, settings.k8s.kernel_modules, paths.modules_load)
    if not s3.success: return fail(task, s3)

    s4 = _configure_sysctl(task, settings.k8s.sysctl_params, paths.sysctl_conf)
    if not s4.success: return fail(task, s4)

    if not s2.success:
        return done(task, TaskStatus.WARNING, f"Host prepared, swap not fully disabled: {s2.message}")

    changed = any(step.data for step in (s1, s2, s3, s4))
    return done(
        task,
        TaskStatus.CHANGED if changed else TaskStatus.OK,
        f"Host '{node_name}' prepared: swap off, modules loaded, sysctl applied."
    )
