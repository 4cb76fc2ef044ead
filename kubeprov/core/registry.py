from typing import Dict, List, Callable, Any

from kubeprov.core.config import NodeType
from kubeprov.tasks.control_plane import (
    init_control_plane,
    configure_admin_access,
    wait_for_api_server,
    install_cni_plugin,
    publish_join_descriptor
)
from kubeprov.tasks.host_preparation import prepare_host
from kubeprov.tasks.packages import update_system, install_container_runtime, install_kubernetes_tools
from kubeprov.tasks.preflight import check_host_compatibility
from kubeprov.tasks.worker import join_cluster

TaskChain = List[Callable[..., Any]]

# Steps shared by every node, in execution order
COMMON_CHAIN: TaskChain = [
    check_host_compatibility,
    prepare_host,
    update_system,
    install_container_runtime,
    install_kubernetes_tools,
]

TASK_REGISTRY: Dict[NodeType, TaskChain] = {

    # --- ROLE: CONTROL PLANE ---
    NodeType.CONTROL_PLANE: [
        init_control_plane,
        configure_admin_access,
        wait_for_api_server,
        install_cni_plugin,
        publish_join_descriptor,
    ],

    # --- ROLE: WORKER ---
    NodeType.WORKER: [
        join_cluster,
    ],
}


def build_chain(node_type: NodeType) -> TaskChain:
    """Full ordered step list for a node role."""
    return COMMON_CHAIN + TASK_REGISTRY[node_type]
