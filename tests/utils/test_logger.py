import io
import re

import pytest
from nornir.core.task import Task, Result
from rich.console import Console

from kubeprov.core.config import resolve_config
from kubeprov.core.decorators import automated_step, automated_substep
from kubeprov.core.engine import ProvisionEngine
from kubeprov.core.models import TaskStatus
from kubeprov.core.settings import AppSettings
from kubeprov.tasks import fail, done
from kubeprov.utils.logger import FileReporter, Reporter

LINE = re.compile(r"^\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2} \[(INFO|ERROR)\] (.*)$")


def _console():
    return Console(file=io.StringIO(), width=200)


def test_lines_are_timestamped_and_leveled(tmp_path):
    log = tmp_path / "var" / "k8s_provisioning.log"
    reporter = FileReporter(str(log), console=_console())
    reporter.info("Setting hostname to node-a")
    reporter.error("Failed to apply sysctl settings.")
    reporter.close()

    lines = log.read_text().splitlines()
    assert [LINE.match(l).groups() for l in lines] == [
        ("INFO", "Setting hostname to node-a"),
        ("ERROR", "Failed to apply sysctl settings."),
    ]


def test_log_file_is_appended_across_runs(tmp_path):
    log = tmp_path / "k8s_provisioning.log"
    for message in ("first run", "second run"):
        reporter = FileReporter(str(log), console=_console())
        reporter.info(message)
        reporter.close()

    assert [LINE.match(l).group(2) for l in log.read_text().splitlines()] == ["first run", "second run"]


def test_every_line_is_mirrored_to_the_console(tmp_path):
    console = _console()
    reporter = FileReporter(str(tmp_path / "p.log"), console=console)
    reporter.info("Detected Ubuntu version: 22.04")
    reporter.error("Unsupported [thing]")
    reporter.close()

    out = console.file.getvalue()
    assert "[INFO] Detected Ubuntu version: 22.04" in out
    assert "[ERROR] Unsupported [thing]" in out


def test_quiet_mode_only_mirrors_errors(tmp_path):
    console = _console()
    log = tmp_path / "p.log"
    reporter = FileReporter(str(log), console=console, verbose=False)
    reporter.info("hidden")
    reporter.error("shown")
    reporter.close()

    out = console.file.getvalue()
    assert "hidden" not in out
    assert "shown" in out
    assert "hidden" in log.read_text()


def test_exception_traceback_goes_to_file_only(tmp_path):
    console = _console()
    log = tmp_path / "p.log"
    reporter = FileReporter(str(log), console=console)
    try:
        raise RuntimeError("boom")
    except RuntimeError:
        reporter.error("step crashed", exc_info=True)
    reporter.close()

    assert "Traceback" in log.read_text()
    assert "Traceback" not in console.file.getvalue()


def test_reporter_requires_a_log_implementation():
    with pytest.raises(TypeError):
        Reporter(console=_console())


@automated_substep("Read Broken Config")
def _crashing_substep(task: Task):
    raise RuntimeError("config.toml is not valid TOML")


@automated_step("Configure Runtime")
def _step_with_crashing_substep(task: Task) -> Result:
    sub = _crashing_substep(task)
    if not sub.success:
        return fail(task, sub)
    return done(task, TaskStatus.OK, "unreachable")


@automated_step("Broken Step")
def _crashing_step(task: Task) -> Result:
    raise KeyError("admin_conf")


def _run_with_file_reporter(tmp_path, step):
    log = tmp_path / "p.log"
    console = _console()
    reporter = FileReporter(str(log), console=console, verbose=False)
    engine = ProvisionEngine(resolve_config(hostname="node-a"), AppSettings(), reporter)
    ok = engine.run(chain=[step])
    reporter.close()
    return ok, log.read_text(), console.file.getvalue()


def test_substep_crash_traceback_reaches_log_file(tmp_path):
    ok, content, out = _run_with_file_reporter(tmp_path, _step_with_crashing_substep)

    assert ok is False
    assert "[SUB-CRASH] Exception in 'Read Broken Config': config.toml is not valid TOML" in content
    assert "Traceback (most recent call last)" in content
    assert "_crashing_substep" in content
    assert "NoneType: None" not in content
    assert "Traceback" not in out


def test_step_crash_traceback_reaches_log_file(tmp_path):
    ok, content, _ = _run_with_file_reporter(tmp_path, _crashing_step)

    assert ok is False
    assert "CRITICAL EXCEPTION in 'Broken Step'" in content
    assert "Traceback (most recent call last)" in content
    assert "KeyError: 'admin_conf'" in content
