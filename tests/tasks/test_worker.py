import dataclasses
import os

from kubeprov.core.models import TaskStatus
from kubeprov.tasks.worker import join_cluster


def test_join_uses_exactly_the_given_credentials(run_step, worker_config, shell):
    res = run_step(join_cluster, worker_config)

    assert not res.failed
    assert res.result.status == TaskStatus.CHANGED
    assert shell.commands == [
        f"kubeadm join 10.0.0.1:6443 --token abc.def --discovery-token-ca-cert-hash {worker_config.discovery_token_hash}"
    ]


def test_missing_credential_fails_before_any_join(run_step, worker_config, shell):
    incomplete = dataclasses.replace(worker_config, join_token="")

    res = run_step(join_cluster, incomplete)

    assert res.failed
    assert "--token" in res.result.message
    assert shell.commands == []


def test_join_failure_is_fatal(run_step, worker_config, shell, reporter):
    shell.on(r"^kubeadm join", returncode=1, stderr="couldn't validate the identity of the API Server")

    res = run_step(join_cluster, worker_config)

    assert res.failed
    assert any("couldn't validate" in m for m in reporter.messages("INFO"))


def test_already_joined_node_is_left_alone(run_step, worker_config, settings, shell):

    os.makedirs(os.path.dirname(settings.paths.kubelet_conf))
    open(settings.paths.kubelet_conf, "w").close()

    res = run_step(join_cluster, worker_config)

    assert not res.failed
    assert res.result.status == TaskStatus.SKIPPED
    assert shell.commands == []
