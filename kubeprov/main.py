import sys
from pathlib import Path
from typing import Optional

import click
import typer
import yaml
from rich import print as rprint
from rich.panel import Panel

from kubeprov import __version__
from kubeprov.core.config import ConfigurationError, NodeType, DEFAULT_HOSTNAME, resolve_config
from kubeprov.core.engine import ProvisionEngine
from kubeprov.core.join import JoinDescriptorError, load_join_descriptor
from kubeprov.core.settings import SettingsError, load_settings
from kubeprov.utils.logger import FileReporter

EXIT_FAILURE = 1

EPILOG = """
Examples:

  sudo kubeprov --node_type cp --hostname my-k8s-cp-node

  sudo kubeprov --node_type cp --hostname my-k8s-cp-node --k8s_version 1.32 --pod_cidr 10.244.0.0/16

  sudo kubeprov --node_type worker --hostname k8s-worker-node-1 --join 172.16.0.10:6443
  --token 294iru.f3m1vbsxc9wve8q --discovery-token sha256:48edadccfc47...f8

  sudo kubeprov --node_type worker --hostname k8s-worker-node-1 --join-file join.yaml
"""

app = typer.Typer(
    help="Provisions a Kubernetes control plane or worker node on Ubuntu.",
    add_completion=False,
    context_settings={"help_option_names": ["-h", "--help"]},
)


@app.command(epilog=EPILOG)
def provision(
        node_type: NodeType = typer.Option(
            NodeType.CONTROL_PLANE, "--node_type",
            help="Type of node to provision: 'cp' for Control Plane or 'worker' for Worker Node."
        ),
        hostname: str = typer.Option(
            DEFAULT_HOSTNAME, "--hostname",
            help="Desired hostname for the node."
        ),
        k8s_version: Optional[str] = typer.Option(
            None, "--k8s_version",
            help="Kubernetes version to install (default: 1.31)."
        ),
        pod_cidr: Optional[str] = typer.Option(
            None, "--pod_cidr",
            help="Pod network CIDR (default: 192.168.0.0/16)."
        ),
        join: Optional[str] = typer.Option(
            None, "--join",
            help="Control plane endpoint host:port, found in the control plane's provisioning log."
        ),
        token: Optional[str] = typer.Option(
            None, "--token",
            help="Bootstrap token, found in the control plane's provisioning log."
        ),
        discovery_token: Optional[str] = typer.Option(
            None, "--discovery-token",
            help="CA cert hash (sha256:<hex>), found in the control plane's provisioning log."
        ),
        join_file: Optional[Path] = typer.Option(
            None, "--join-file",
            help="Join descriptor written by the control plane. Explicit --join/--token/--discovery-token win.",
            dir_okay=False
        ),
        config_file: Path = typer.Option(
            "kubeprov.yaml", "--config", "-c",
            help="Optional settings YAML file.",
            dir_okay=False
        ),
        quiet: bool = typer.Option(
            False, "--quiet", "-q",
            help="Only print errors and step results to the terminal."
        ),
):
    """
    Provisions this host as a Kubernetes node.
    Must run as root on Ubuntu 20.04, 22.04 or 24.04.
    """
    ctx = click.get_current_context()

    # 1. Settings
    try:
        settings = load_settings(str(config_file))
    except (OSError, yaml.YAMLError, SettingsError) as e:
        raise click.UsageError(f"Cannot load settings from {config_file}: {e}", ctx=ctx)

    # 2. Join credentials from descriptor (flags win)
    if join_file is not None:
        try:
            descriptor = load_join_descriptor(str(join_file))
        except (JoinDescriptorError, OSError, yaml.YAMLError) as e:
            raise click.UsageError(str(e), ctx=ctx)
        join = join or descriptor.endpoint
        token = token or descriptor.token
        discovery_token = discovery_token or descriptor.discovery_token_hash

    try:
        reporter = FileReporter(settings.paths.log_file, verbose=not quiet)
    except OSError as e:
        raise click.ClickException(f"Cannot open log file {settings.paths.log_file}: {e}")

    try:
        # 3. Provisioning Configuration
        try:
            config = resolve_config(
                node_type=node_type,
                hostname=hostname,
                k8s_version=k8s_version or settings.k8s.version,
                pod_cidr=pod_cidr or settings.k8s.pod_network_cidr,
                join_endpoint=join,
                join_token=token,
                discovery_token_hash=discovery_token,
            )
        except ConfigurationError as e:
            reporter.error(str(e))
            raise click.UsageError(str(e), ctx=ctx)

        if not quiet:
            rprint(Panel.fit(
                "[bold white]kubeprov - Kubernetes Node Provisioner[/bold white]",
                border_style="blue",
                subtitle=f"v{__version__} - Kubernetes {config.k8s_version}"
            ))

        # 4. Run
        engine = ProvisionEngine(config, settings, reporter)
        if not engine.run():
            raise typer.Exit(code=EXIT_FAILURE)
    finally:
        reporter.close()


def run():
    """
    Console entry point.
    Every fatal condition, usage errors included, exits with status 1.
    """
    try:
        code = app(standalone_mode=False)
    except click.ClickException as e:
        e.show()
        sys.exit(EXIT_FAILURE)
    except click.exceptions.Abort:
        sys.exit(EXIT_FAILURE)
    sys.exit(code if isinstance(code, int) else 0)


if __name__ == "__main__":
    run()
