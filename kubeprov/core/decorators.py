from functools import wraps

from nornir.core.task import Task, Result
from rich.markup import escape

from kubeprov.core.models import TaskStatus, StandardResult, SubTaskResult
from kubeprov.utils.logger import Reporter


def get_reporter(task: Task) -> Reporter:
    """Returns the Reporter injected into the host data by the engine."""
    return task.host.get("reporter")


def automated_step(step_name: str):
    """
    Wraps a provisioning step.
    START/END lines go to the reporter, and an exception inside the step
    becomes a FAILED StandardResult so the engine can halt cleanly.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(task: Task, *args, **kwargs) -> Result:
            reporter = get_reporter(task)
            reporter.info(f"START task='{step_name}'")

            try:
                result = func(task, *args, **kwargs)

                status = "UNKNOWN"
                if isinstance(result.result, StandardResult):
                    status = result.result.status.value

                if result.failed:
                    reporter.error(f"END task='{step_name}' status='{status}'")
                else:
                    reporter.info(f"END task='{step_name}' status='{status}'")
                return result

            except Exception as e:
                error_msg = f"CRITICAL EXCEPTION in '{step_name}': {str(e)}"
                reporter.error(error_msg, exc_info=e)

                return Result(
                    host=task.host,
                    failed=True,
                    result=StandardResult(
                        status=TaskStatus.FAILED,
                        message=f"System Error: {str(e)}"
                    )
                )

        return wrapper

    return decorator


def automated_substep(step_name: str):
    """
    Wraps a sub-step returning SubTaskResult.
    Verbose runs show a spinner that is replaced by a one-line outcome.
    """

    def decorator(func):
        @wraps(func)
        def wrapper(task: Task, *args, **kwargs) -> SubTaskResult:
            reporter = get_reporter(task)
            console = reporter.console

            reporter.info(f"[SUB-START] '{step_name}'")

            result = None
            error_to_raise = None

            try:
                if reporter.verbose:
                    with console.status(f"    [dim]🔹 {escape(step_name)}...[/dim]", spinner="dots"):
                        result = func(task, *args, **kwargs)
                else:
                    result = func(task, *args, **kwargs)

            except Exception as e:
                error_to_raise = e

            # Crash
            if error_to_raise:
                error_msg = f"Exception in '{step_name}': {str(error_to_raise)}"
                reporter.error(f"[SUB-CRASH] {error_msg}", exc_info=error_to_raise)

                if reporter.verbose:
                    console.print(f"    [bold red]💥 CRASH {escape(step_name)}[/bold red]: {escape(str(error_to_raise))}")

                return SubTaskResult(success=False, message=error_msg, exception=error_to_raise)

            # Completed, successfully or not
            status_log = "OK" if result.success else "FAIL"
            log_msg = f"[SUB-END] '{step_name}' -> {status_log} ({result.message})"

            if result.success:
                reporter.info(log_msg)
                if reporter.verbose:
                    console.print(f"    [green]✔[/green] [dim]{escape(step_name)}[/dim]")
            else:
                reporter.error(log_msg)
                if reporter.verbose:
                    console.print(f"    [red]✖ {escape(step_name)}[/red]: [dim]{escape(result.message)}[/dim]")

            return result

        return wrapper

    return decorator
