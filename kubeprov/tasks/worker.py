from nornir.core.task import Task, Result

from kubeprov.core.decorators import automated_step, get_reporter
from kubeprov.core.models import TaskStatus, SubTaskResult
from kubeprov.tasks import fail, done, get_settings, get_provisioning
from kubeprov.utils.linux import file_exists, kubeadm_join


@automated_step("Join Cluster")
def join_cluster(task: Task) -> Result:
    """
    Joins this node to an existing control plane with 'kubeadm join'.
    No readiness wait: an unreachable control plane makes join fail fast.
    """
    reporter = get_reporter(task)
    config = get_provisioning(task)
    kubelet_conf = get_settings(task).paths.kubelet_conf

    # 1. Credentials must be complete before anything touches the cluster
    missing = config.missing_join_fields()
    if missing:
        return fail(task, SubTaskResult(success=False, message=f"{', '.join(missing)} required."))

    # 2. Already a member?
    if file_exists(kubelet_conf):
        return done(task, TaskStatus.SKIPPED, f"Node already joined ({kubelet_conf} present)")

    # 3. Join
    reporter.info(f"Joining control plane at {config.join_endpoint}...")
    res = kubeadm_join(task, config.join_endpoint, config.join_token, config.discovery_token_hash)

    for line in (res.stdout or "").splitlines() + (res.stderr or "").splitlines():
        if line.strip():
            reporter.info(f"kubeadm: {line}")

    if res.failed:
        return fail(task, SubTaskResult(success=False, message=f"Failed to join control plane at {config.join_endpoint}."))

    return done(task, TaskStatus.CHANGED, f"Successfully joined control plane at {config.join_endpoint}.")
