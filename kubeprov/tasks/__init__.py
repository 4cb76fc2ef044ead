from nornir.core.task import Task, Result

from kubeprov.core.config import ProvisioningConfig
from kubeprov.core.models import TaskStatus, StandardResult, SubTaskResult
from kubeprov.core.settings import AppSettings


def fail(task: Task, sub_res: SubTaskResult) -> Result:
    """
    Helper to return a failed Result from a SubTaskResult.
    """
    return Result(
        host=task.host,
        failed=True,
        result=StandardResult(TaskStatus.FAILED, sub_res.message)
    )


def done(task: Task, status: TaskStatus, message: str, data=None) -> Result:
    return Result(
        host=task.host,
        changed=status == TaskStatus.CHANGED,
        result=StandardResult(status=status, message=message, data=data)
    )


def get_settings(task: Task) -> AppSettings:
    return task.host.get("app_config")


def get_provisioning(task: Task) -> ProvisioningConfig:
    return task.host.get("provisioning")


__all__ = [
    "fail",
    "done",
    "get_settings",
    "get_provisioning",
]
