"""Fetching and patching of multi-document Kubernetes YAML manifests."""
from typing import Any, Dict, List

import requests
import yaml

FETCH_TIMEOUT = 30


class ManifestError(RuntimeError):
    pass


def fetch_manifest(url: str, timeout: int = FETCH_TIMEOUT) -> str:
    """Downloads a manifest and returns its raw text."""
    try:
        response = requests.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ManifestError(f"Failed to download {url}: {e}")
    return response.text


def load_documents(text: str) -> List[Dict[str, Any]]:
    """Parses a multi-document manifest, dropping empty documents."""
    try:
        return [doc for doc in yaml.safe_load_all(text) if doc]
    except yaml.YAMLError as e:
        raise ManifestError(f"Invalid manifest YAML: {e}")


def dump_documents(documents: List[Dict[str, Any]]) -> str:
    return yaml.safe_dump_all(documents, default_flow_style=False, sort_keys=False)


def set_calico_pod_cidr(documents: List[Dict[str, Any]], cidr: str) -> int:
    """
    Sets spec.calicoNetwork.ipPools[*].cidr on every Installation document.

    Returns the number of pools updated.
    Raises ManifestError if no pool was found, so an upstream layout change
    fails loudly instead of leaving the default CIDR in place.
    """
    updated = 0
    for doc in documents:
        if doc.get("kind") != "Installation":
            continue
        network = (doc.get("spec") or {}).get("calicoNetwork") or {}
        for pool in network.get("ipPools") or []:
            if isinstance(pool, dict) and "cidr" in pool:
                pool["cidr"] = cidr
                updated += 1

    if not updated:
        raise ManifestError("No Installation spec.calicoNetwork.ipPools[].cidr found in manifest")
    return updated
