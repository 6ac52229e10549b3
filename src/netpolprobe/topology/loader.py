"""Load a Topology snapshot from YAML.

Expected layout::

    namespaces:
      x:
        labels: {ns: x}
    workloads:
      - namespace: x
        name: a
        ip: 10.0.0.1
        labels: {pod: a}
        ports:
          - {name: serve-80-tcp, port: 80, protocol: TCP}
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

from netpolprobe.errors import ValidationError
from netpolprobe.topology.models import (
    ContainerPort,
    Namespace,
    Protocol,
    Topology,
    Workload,
)


def load_topology(path: str | Path) -> Topology:
    """Load a topology from a YAML file path."""
    text = Path(path).read_text(encoding="utf-8")
    return load_topology_from_string(text)


def load_topology_from_string(text: str) -> Topology:
    """Parse a YAML string into a Topology."""
    data = yaml.safe_load(text)
    if not isinstance(data, dict):
        raise ValidationError("Topology YAML must be a mapping")
    return _build_topology(data)


def _build_topology(data: dict) -> Topology:
    namespaces = [
        Namespace(name=str(name), labels=_labels((spec or {}).get("labels")))
        for name, spec in (data.get("namespaces") or {}).items()
    ]
    workloads = [_parse_workload(w) for w in data.get("workloads") or []]
    return Topology(workloads, namespaces)


def _parse_workload(data: Any) -> Workload:
    if not isinstance(data, dict):
        raise ValidationError("Workload entries must be mappings")
    for key in ("namespace", "name", "ip"):
        if not data.get(key):
            raise ValidationError(f"Workload {data.get('name', '?')}: missing {key}")

    ports = []
    for p in data.get("ports") or []:
        if not isinstance(p, dict) or "port" not in p:
            raise ValidationError(f"Workload {data['name']}: port entries need a port")
        ports.append(
            ContainerPort(
                port=int(p["port"]),
                protocol=Protocol.parse(p.get("protocol", "TCP")),
                name=str(p.get("name", "")),
            )
        )

    return Workload(
        namespace=str(data["namespace"]),
        name=str(data["name"]),
        ip=str(data["ip"]),
        labels=_labels(data.get("labels")),
        ports=tuple(ports),
        service_ip=str(data.get("serviceIP", "")),
    )


def _labels(raw: Any) -> dict[str, str]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("Labels must be a mapping")
    return {str(k): str(v) for k, v in raw.items()}
