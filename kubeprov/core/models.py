from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional


class TaskStatus(str, Enum):
    """Outcome of one provisioning step, as rendered by the engine."""
    OK = "OK"  # host already in the desired state
    CHANGED = "CHANGED"  # host was modified
    WARNING = "WARNING"  # done, but a best-effort part (swap, join descriptor) did not succeed
    FAILED = "FAILED"  # halts the chain
    SKIPPED = "SKIPPED"  # node role already established (admin.conf / kubelet.conf present)


@dataclass
class StandardResult:
    """Payload a step puts in nornir's Result.result."""
    status: TaskStatus
    message: str
    data: Optional[Any] = None


@dataclass
class SubTaskResult:
    """Returned by sub-steps to the step that composes them."""
    success: bool
    message: str
    exception: Optional[Exception] = None
    data: Optional[Any] = None  # change flag or parsed value handed back to the step
