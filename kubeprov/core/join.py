import os
import shlex
from dataclasses import dataclass, asdict
from pathlib import Path

import yaml


class JoinDescriptorError(ValueError):
    """Join command or descriptor file could not be understood."""


@dataclass(frozen=True)
class JoinDescriptor:
    """
    Credentials a worker needs to join the cluster.
    Written by the control plane, read back by workers through --join-file.
    """
    endpoint: str
    token: str
    discovery_token_hash: str

    def as_command(self) -> str:
        return (
            f"kubeadm join {self.endpoint} --token {self.token} "
            f"--discovery-token-ca-cert-hash {self.discovery_token_hash}"
        )


def parse_join_command(output: str) -> JoinDescriptor:
    """
    Parses the output of 'kubeadm token create --print-join-command'.
    Line continuations are tolerated, extra flags are ignored.
    """
    text = output.replace("\\\n", " ")
    start = text.find("kubeadm join")
    if start < 0:
        raise JoinDescriptorError("Output does not contain a 'kubeadm join' command")

    try:
        tokens = shlex.split(text[start:].splitlines()[0])
    except ValueError as e:
        raise JoinDescriptorError(f"Unparsable join command: {e}")

    args = tokens[2:]
    endpoint = ""
    values = {}
    i = 0
    while i < len(args):
        arg = args[i]
        if arg.startswith("--"):
            key, sep, value = arg.partition("=")
            if not sep and i + 1 < len(args) and not args[i + 1].startswith("--"):
                value = args[i + 1]
                i += 1
            values[key] = value
        elif not endpoint:
            endpoint = arg
        i += 1

    token = values.get("--token", "")
    ca_hash = values.get("--discovery-token-ca-cert-hash", "")
    if not (endpoint and token and ca_hash):
        raise JoinDescriptorError("Join command is missing endpoint, token or CA cert hash")

    return JoinDescriptor(endpoint=endpoint, token=token, discovery_token_hash=ca_hash)


def save_join_descriptor(descriptor: JoinDescriptor, path: str) -> None:
    """Writes the descriptor as YAML, readable by root only."""
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w") as f:
        yaml.safe_dump(asdict(descriptor), f, default_flow_style=False)
    os.chmod(target, 0o600)


def load_join_descriptor(path: str) -> JoinDescriptor:
    target = Path(path)
    if not target.exists():
        raise JoinDescriptorError(f"Join descriptor not found: {path}")

    with open(target, "r") as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise JoinDescriptorError(f"Join descriptor {path} is not a mapping")

    try:
        return JoinDescriptor(
            endpoint=str(data["endpoint"]),
            token=str(data["token"]),
            discovery_token_hash=str(data["discovery_token_hash"]),
        )
    except KeyError as e:
        raise JoinDescriptorError(f"Join descriptor {path} is missing {e}")
