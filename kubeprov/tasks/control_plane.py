import getpass
import os
import pwd
from pathlib import Path

from nornir.core.task import Task, Result

from kubeprov.core.decorators import automated_step, automated_substep, get_reporter
from kubeprov.core.join import parse_join_command, save_join_descriptor, JoinDescriptorError
from kubeprov.core.models import TaskStatus, SubTaskResult
from kubeprov.tasks import fail, done, get_settings, get_provisioning
from kubeprov.utils.linux import (
    file_exists,
    copy_file,
    write_file,
    ensure_line_in_file,
    kubeadm_init,
    kubeadm_print_join_command,
    kubectl,
    kubectl_create
)
from kubeprov.utils.manifests import (
    ManifestError,
    fetch_manifest,
    load_documents,
    dump_documents,
    set_calico_pod_cidr
)
from kubeprov.utils.retry import RetryPolicy, RetryError, wait_until

# Probe progress is logged every N failed attempts
PROGRESS_EVERY = 15


# --- BOOTSTRAP ---

@automated_step("Initialize Control Plane")
def init_control_plane(task: Task) -> Result:
    """
    Runs 'kubeadm init' with the configured pod CIDR.
    The full output goes to the log so the printed join command can be recovered there.
    """
    reporter = get_reporter(task)
    paths = get_settings(task).paths
    pod_cidr = get_provisioning(task).pod_cidr

    if file_exists(paths.admin_conf):
        return done(task, TaskStatus.SKIPPED, f"Cluster already initialized ({paths.admin_conf} present)")

    reporter.info(f"Initializing Kubernetes control plane with CIDR: {pod_cidr}...")
    res = kubeadm_init(task, pod_cidr)

    for line in (res.stdout or "").splitlines() + (res.stderr or "").splitlines():
        if line.strip():
            reporter.info(f"kubeadm: {line}")

    if res.failed:
        return fail(task, SubTaskResult(success=False, message="Control plane initialization failed."))

    reporter.info("NOTE: Save the 'kubeadm join' command above to add new worker nodes.")
    return done(task, TaskStatus.CHANGED, "Kubernetes control plane initialized successfully.")


# --- ADMIN CREDENTIALS ---

def _invoking_user() -> str:
    """The user behind sudo, or the current user."""
    return os.environ.get("SUDO_USER") or getpass.getuser()


@automated_substep("Export KUBECONFIG for root")
def _export_root_kubeconfig(task: Task, admin_conf: str) -> SubTaskResult:
    home = pwd.getpwnam("root").pw_dir
    export_line = f"export KUBECONFIG={admin_conf}"
    os.environ["KUBECONFIG"] = admin_conf

    for rc_file in (".bashrc", ".profile"):
        res = ensure_line_in_file(task, os.path.join(home, rc_file), export_line)
        if res.failed:
            return SubTaskResult(success=False, message=f"Failed to update {rc_file}: {res.result}")

    return SubTaskResult(success=True, message=f"KUBECONFIG exported in {home}/.bashrc and {home}/.profile")


@automated_substep("Setup User Kubeconfig")
def _setup_user_kubeconfig(task: Task, user: str, admin_conf: str) -> SubTaskResult:
    """
    Copies admin.conf to ~user/.kube/config owned by that user.
    """
    try:
        entry = pwd.getpwnam(user)
    except KeyError:
        return SubTaskResult(success=False, message=f"Home directory for user {user} not found!")

    home = Path(entry.pw_dir)
    if not entry.pw_dir or not home.is_dir():
        return SubTaskResult(success=False, message=f"Home directory for user {user} not found!")

    kube_dir = home / ".kube"
    kube_dir.mkdir(exist_ok=True)
    os.chown(kube_dir, entry.pw_uid, entry.pw_gid)

    res = copy_file(task, admin_conf, str(kube_dir / "config"), uid=entry.pw_uid, gid=entry.pw_gid)
    if res.failed:
        return SubTaskResult(success=False, message=res.result)

    return SubTaskResult(success=True, message=f"Kubernetes configuration set up for {user}.")


@automated_step("Configure Cluster Admin Access")
def configure_admin_access(task: Task) -> Result:
    """
    Makes admin.conf usable by the invoking user.
    """
    reporter = get_reporter(task)
    admin_conf = get_settings(task).paths.admin_conf
    user = _invoking_user()

    reporter.info(f"Configuring Kubernetes access for user: {user}")

    if user == "root":
        s1 = _export_root_kubeconfig(task, admin_conf)
    else:
        s1 = _setup_user_kubeconfig(task, user, admin_conf)

    if not s1.success: return fail(task, s1)

    return done(task, TaskStatus.CHANGED, s1.message)


# --- READINESS ---

@automated_step("Wait for API Server")
def wait_for_api_server(task: Task) -> Result:
    """
    Polls 'kubectl version' until the API server answers.
    """
    reporter = get_reporter(task)
    settings = get_settings(task)
    readiness = settings.k8s.readiness
    admin_conf = settings.paths.admin_conf

    policy = RetryPolicy(
        max_attempts=readiness.max_attempts,
        interval=readiness.interval,
        backoff=readiness.backoff,
    )

    def probe() -> bool:
        return not kubectl(task, "version", admin_conf).failed

    def on_retry(attempt: int) -> None:
        if attempt % PROGRESS_EVERY == 0:
            reporter.info(f"API server not ready yet ({attempt}/{policy.max_attempts} attempts)")

    reporter.info("Waiting for Kubernetes API server to become available...")
    try:
        attempts = wait_until(probe, policy, on_retry=on_retry)
    except RetryError:
        return fail(task, SubTaskResult(
            success=False,
            message=f"Kubernetes API server did not become ready after {policy.max_attempts} attempts."
        ))

    return done(task, TaskStatus.OK, f"Kubernetes API server is responsive (attempt {attempts}).")


# --- CNI ---

@automated_substep("Apply Calico Operator")
def _apply_operator(task: Task, manifest_url: str, admin_conf: str) -> SubTaskResult:
    res = kubectl_create(task, manifest_url, admin_conf)
    if res.failed:
        return SubTaskResult(success=False, message=f"Failed to apply Calico operator manifest: {res.stderr}")
    return SubTaskResult(success=True, message="Tigera operator applied" if res.changed else "Tigera operator present")


@automated_substep("Render Calico Custom Resources")
def _render_custom_resources(task: Task, manifest_url: str, pod_cidr: str, work_dir: str) -> SubTaskResult:
    """
    Downloads custom-resources.yaml and sets the pod CIDR on the Installation's IP pools.
    """
    try:
        documents = load_documents(fetch_manifest(manifest_url))
        pools = set_calico_pod_cidr(documents, pod_cidr)
    except ManifestError as e:
        return SubTaskResult(success=False, message=str(e))

    target = os.path.join(work_dir, "custom-resources.yaml")
    res = write_file(task, target, dump_documents(documents))
    if res.failed:
        return SubTaskResult(success=False, message=f"Failed to write {target}: {res.result}")

    return SubTaskResult(success=True, message=f"{pools} IP pool(s) set to {pod_cidr}", data=target)


@automated_substep("Apply Calico Custom Resources")
def _apply_custom_resources(task: Task, manifest_path: str, admin_conf: str) -> SubTaskResult:
    res = kubectl_create(task, manifest_path, admin_conf)
    if res.failed:
        return SubTaskResult(success=False, message=f"Failed to apply Calico custom resources: {res.stderr}")
    return SubTaskResult(success=True, message="Custom resources applied" if res.changed else "Custom resources present")


@automated_step("Install Calico Network Plugin")
def install_cni_plugin(task: Task) -> Result:
    """
    Installs Calico through the Tigera operator.
    Any failure aborts: no partially applied network layer is left to continue on.
    """
    settings = get_settings(task)
    cni = settings.k8s.cni
    admin_conf = settings.paths.admin_conf

    s1 = _apply_operator(task, cni.operator_manifest_url, admin_conf)
    if not s1.success: return fail(task, s1)

    s2 = _render_custom_resources(task, cni.custom_resources_url, get_provisioning(task).pod_cidr,
                                  settings.paths.work_dir)
    if not s2.success: return fail(task, s2)

    s3 = _apply_custom_resources(task, s2.data, admin_conf)
    if not s3.success: return fail(task, s3)

    return done(task, TaskStatus.CHANGED, f"Calico {cni.calico_version} network plugin installed successfully.")


# --- JOIN HAND-OFF ---

@automated_step("Publish Join Descriptor")
def publish_join_descriptor(task: Task) -> Result:
    """
    Writes the worker join credentials to a YAML file for --join-file.
    Failure only warns: the cluster is up and the join command is in the log.
    """
    reporter = get_reporter(task)
    path = get_settings(task).paths.join_descriptor

    res = kubeadm_print_join_command(task)
    if res.failed:
        return done(task, TaskStatus.WARNING, f"Could not create join token: {res.result.strip()}")

    try:
        descriptor = parse_join_command(res.stdout)
        save_join_descriptor(descriptor, path)
    except (JoinDescriptorError, OSError) as e:
        return done(task, TaskStatus.WARNING, f"Join descriptor not written: {e}")

    reporter.info(f"Worker join command: {descriptor.as_command()}")
    return done(task, TaskStatus.CHANGED, f"Join descriptor written to {path}", data=descriptor)
