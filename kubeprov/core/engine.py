from typing import Optional

from nornir.core import Nornir
from nornir.core.inventory import Inventory, Host, Hosts, Groups, Defaults
from nornir.core.task import AggregatedResult
from nornir.plugins.runners import SerialRunner
from rich.panel import Panel

from kubeprov.core.config import ProvisioningConfig
from kubeprov.core.models import TaskStatus, StandardResult
from kubeprov.core.registry import TaskChain, build_chain
from kubeprov.core.settings import AppSettings
from kubeprov.utils.logger import Reporter

LOCAL_HOST = "localhost"


class ProvisionEngine:
    """
    Runs the step chain for one node role against the local host, in order,
    and halts on the first failed step.
    """

    def __init__(self, config: ProvisioningConfig, settings: AppSettings, reporter: Reporter):
        self.config = config
        self.settings = settings
        self.reporter = reporter
        self.nr = self._initialize()

    def _initialize(self) -> Nornir:
        """Builds a single-host Nornir inventory and injects configuration."""
        host = Host(
            name=LOCAL_HOST,
            hostname=LOCAL_HOST,
            platform="linux_local",
            data={
                "app_config": self.settings,
                "provisioning": self.config,
                "reporter": self.reporter,
            },
        )
        inventory = Inventory(hosts=Hosts({LOCAL_HOST: host}), groups=Groups(), defaults=Defaults())
        return Nornir(inventory=inventory, runner=SerialRunner())

    def run(self, chain: Optional[TaskChain] = None) -> bool:
        """
        Executes the chain for the configured node type.
        Returns False as soon as a step fails; later steps never start.
        """
        chain = chain if chain is not None else build_chain(self.config.node_type)
        console = self.reporter.console

        role = "Control Plane" if not self.config.is_worker else "Worker"
        self.reporter.info(f"Provisioning a {role} Node.")
        if self.reporter.verbose:
            console.print(Panel.fit(f"[bold blue]🚀 Provisioning {role} Node: {self.config.hostname}[/bold blue]",
                                    border_style="blue"))

        for task_func in chain:
            task_name = task_func.__name__

            agg_result = self.nr.run(task=task_func, name=task_name)

            if self._handle_results(agg_result):
                self.reporter.error(f"Execution halted due to critical failure in '{task_name}'.")
                return False

        self.reporter.info(f"{role} node '{self.config.hostname}' provisioned successfully.")
        return True

    def _handle_results(self, agg_result: AggregatedResult) -> bool:
        """
        Analyzes results, prints status (OK/WARN/FAIL) and decides whether to stop the engine.
        Returns True if execution should stop (Critical Failure).
        """
        has_critical_failure = False

        for host, multi_res in agg_result.items():
            task_result = multi_res[0]
            payload = task_result.result

            # Fallback if the task did not return a StandardResult (e.g. unexpected error)
            if not isinstance(payload, StandardResult):
                status = TaskStatus.FAILED if task_result.failed else TaskStatus.OK
                msg = str(payload)
            else:
                status = payload.status
                msg = payload.message

            # --- UI RENDERING + LOG ---
            if status == TaskStatus.OK:
                self.reporter.log_step("success", f"{task_result.name}: {msg}")
                self.reporter.info(msg)

            elif status == TaskStatus.CHANGED:
                self.reporter.log_step("success", f"{task_result.name}: {msg}")
                self.reporter.info(msg)

            elif status == TaskStatus.SKIPPED:
                self.reporter.log_step("skip", f"{task_result.name}: {msg}")
                self.reporter.info(msg)

            elif status == TaskStatus.WARNING:
                self.reporter.log_step("warning", f"{task_result.name}: {msg}")
                self.reporter.info(f"WARNING: {msg}")

            elif status == TaskStatus.FAILED:
                self.reporter.log_step("error", f"{task_result.name}: {msg} (Host: {host})")
                self.reporter.error(msg)
                has_critical_failure = True

        return has_critical_failure
