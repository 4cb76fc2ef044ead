import datetime
import hashlib
import os
import re
import shlex
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, Optional, Union

from nornir.core.task import Task, Result

from kubeprov.core.models import SubTaskResult

SHELL_OPERATORS = ("|", "&&", "||", ">")


# --- CORE EXECUTION ---

def run_command(task: Task, cmd: str, env: Optional[Dict[str, str]] = None) -> Result:
    """
    Runs a command on the local host.
    Use shell=True only if pipes or redirections are involved.

    Returns:
        Result: A single Nornir Result object with stdout/stderr attributes.
    """
    use_shell = any(op in cmd for op in SHELL_OPERATORS)
    proc_env = {**os.environ, **env} if env else None

    try:
        proc = subprocess.run(
            cmd if use_shell else shlex.split(cmd),
            shell=use_shell,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            universal_newlines=True,
            env=proc_env,
        )
    except OSError as e:
        return Result(
            host=task.host,
            failed=True,
            result=f"Local execution exception: {str(e)}",
            stdout="",
            stderr=str(e),
        )

    # Combine stdout and stderr for a complete picture on failure
    output = proc.stdout
    if proc.returncode != 0:
        output += f"\nError: {proc.stderr}"

    return Result(
        host=task.host,
        result=output,
        failed=proc.returncode != 0,
        stdout=proc.stdout,
        stderr=proc.stderr,
    )


# --- FILE OPERATIONS ---

def file_exists(path: str) -> bool:
    return Path(path).is_file()


def read_file(path: str) -> str:
    """Returns the file content, or an empty string if it does not exist."""
    if not file_exists(path):
        return ""
    with open(path, "r") as f:
        return f.read()


def _backup_file(task: Task, path: str) -> str:
    """Copies path into the configured backup dir with a timestamped name."""
    backup_dir = Path(task.host.get("app_config").paths.backup_dir)
    backup_dir.mkdir(parents=True, exist_ok=True)

    # /etc/hosts -> _etc_hosts
    safe_filename = path.replace("/", "_")
    timestamp = datetime.datetime.now().strftime("%Y%m%d_%H%M%S_%f")
    backup_path = backup_dir / f"{safe_filename}.{timestamp}.bak"

    shutil.copy2(path, backup_path)
    return str(backup_path)


def write_file(task: Task, path: str, content: str, mode: int = 0o644) -> Result:
    """
    Writes content to a file idempotently.
    Includes automatic versioned backup of the existing file before overwriting.
    """
    # 1. Idempotency Check
    new_hash = hashlib.md5(content.encode('utf-8')).hexdigest()
    current_exists = file_exists(path)
    current_hash = hashlib.md5(read_file(path).encode('utf-8')).hexdigest()

    if current_exists and new_hash == current_hash:
        return Result(host=task.host, changed=False, result="File is up to date")

    try:
        # 2. Backup
        if current_exists:
            _backup_file(task, path)

        # 3. Write via temp file + rename
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        temp_path = target.with_name(f".{target.name}.kubeprov.tmp")
        with open(temp_path, "w") as f:
            f.write(content)
        os.chmod(temp_path, mode)
        os.replace(temp_path, target)
    except OSError as e:
        return Result(host=task.host, failed=True, result=f"Write failed for {path}: {e}")

    return Result(host=task.host, changed=True, result="File updated (Backup saved)")


def ensure_line_in_file(task: Task, path: str, line: str, match_regex: str = None) -> Result:
    """Ensures a line exists in a file, optionally replacing via regex."""
    content = read_file(path)
    lines = content.splitlines()
    new_lines = []
    found = False

    if match_regex:
        regex = re.compile(match_regex)
        for l in lines:
            if regex.search(l):
                new_lines.append(line)
                found = True
            else:
                new_lines.append(l)
        if not found:
            new_lines.append(line)
    else:
        if line in lines:
            return Result(host=task.host, changed=False, result="Line already exists")
        new_lines = lines + [line]

    final_content = "\n".join(new_lines) + "\n"
    return write_file(task, path, final_content)


def copy_file(task: Task, src: str, dest: str, uid: int = None, gid: int = None) -> Result:
    """Copies a file and optionally hands it over to uid:gid."""
    try:
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        shutil.copyfile(src, dest)
        if uid is not None and gid is not None:
            os.chown(dest, uid, gid)
    except OSError as e:
        return Result(host=task.host, failed=True, result=f"Copy {src} -> {dest} failed: {e}")
    return Result(host=task.host, changed=True, result=f"Copied {src} -> {dest}")


# --- PACKAGE MANAGEMENT (APT) ---

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def apt_update(task: Task) -> Result:
    return run_command(task, "apt-get update", env=APT_ENV)


def apt_upgrade(task: Task) -> Result:
    return run_command(task, "apt-get upgrade -y", env=APT_ENV)


def apt_install(task: Task, packages: Union[str, List[str]], update: bool = True) -> Result:
    """Installs packages via apt-get."""
    if isinstance(packages, list):
        pkg_str = " ".join(packages)
    else:
        pkg_str = packages

    if update:
        res_up = apt_update(task)
        if res_up.failed:
            return Result(host=task.host, failed=True, result=f"Apt update failed: {res_up.result}")

    return run_command(task, f"apt-get install -y {pkg_str}", env=APT_ENV)


def apt_hold(task: Task, packages: List[str]) -> Result:
    return run_command(task, f"apt-mark hold {' '.join(packages)}")


def add_apt_repository(
        task: Task,
        repo_path: str,
        repo_string: str,
        gpg_key_url: str,
        gpg_key_path: str,
) -> SubTaskResult:
    """Adds an APT repository and its dearmored GPG key idempotently."""
    # 1. Download & Dearmor Key
    if not file_exists(gpg_key_path):
        Path(gpg_key_path).parent.mkdir(parents=True, exist_ok=True)
        res_key = run_command(task, f"curl -fsSL {gpg_key_url} | gpg --batch --yes --dearmor -o {gpg_key_path}")
        if res_key.failed:
            return SubTaskResult(success=False, message=f"Failed to download GPG key from {gpg_key_url}")

    # 2. Write Repo File
    res_write = write_file(task, repo_path, repo_string)
    if res_write.failed:
        return SubTaskResult(success=False, message=f"Failed to write repo file: {res_write.result}")

    return SubTaskResult(success=True, message=f"APT repository '{repo_path}' configured.")


# --- SYSTEM SERVICES ---

def systemctl(task: Task, service: str, action: str, enable: bool = False) -> Result:
    """
    Manages systemd services.
    Actions: start, stop, restart, reload, status
    """
    cmd = f"systemctl {action} {service}"
    if enable:
        cmd += f" && systemctl enable {service}"

    return run_command(task, cmd)


# --- KERNEL & SYSTEM ---

def get_hostname(task: Task) -> Result:
    return run_command(task, "hostname")


def set_hostname(task: Task, hostname: str) -> Result:
    return run_command(task, f"hostnamectl set-hostname {shlex.quote(hostname)}")


def is_module_loaded(task: Task, module: str) -> bool:
    res = run_command(task, "lsmod")
    if res.failed:
        return False
    return any(line.split()[0] == module for line in res.result.splitlines() if line.strip())


def load_module(task: Task, module: str) -> Result:
    return run_command(task, f"modprobe {module}")


def reload_sysctl(task: Task) -> Result:
    """--system loads settings from all system configuration files."""
    return run_command(task, "sysctl --system")


def is_swap_active(task: Task) -> bool:
    res = run_command(task, "swapon --show --noheadings")
    return not res.failed and bool(res.result.strip())


def disable_swap(task: Task) -> Result:
    return run_command(task, "swapoff -a")


# --- KUBERNETES TOOLS ---

def kubeadm_init(task: Task, pod_cidr: str) -> Result:
    return run_command(task, f"kubeadm init --pod-network-cidr={pod_cidr}")


def kubeadm_join(task: Task, endpoint: str, token: str, ca_hash: str) -> Result:
    cmd = (
        f"kubeadm join {shlex.quote(endpoint)} --token {shlex.quote(token)} "
        f"--discovery-token-ca-cert-hash {shlex.quote(ca_hash)}"
    )
    return run_command(task, cmd)


def kubeadm_print_join_command(task: Task) -> Result:
    return run_command(task, "kubeadm token create --print-join-command")


def kubectl(task: Task, args: str, kubeconfig: str) -> Result:
    return run_command(task, f"kubectl --kubeconfig {kubeconfig} {args}")


def kubectl_create(task: Task, manifest: str, kubeconfig: str) -> Result:
    """
    'kubectl create' a manifest (file path or URL).
    Objects that already exist are not an error.
    """
    res = kubectl(task, f"create -f {manifest}", kubeconfig)
    if res.failed and _only_already_exists(res.stderr):
        return Result(host=task.host, changed=False, result="Resources already exist",
                      stdout=res.stdout, stderr=res.stderr)
    if not res.failed:
        res.changed = True
    return res


def _only_already_exists(stderr: str) -> bool:
    lines = [l for l in (stderr or "").splitlines() if l.strip()]
    return bool(lines) and all("AlreadyExists" in l or "already exists" in l for l in lines)
