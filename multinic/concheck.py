"""Connection check between hosts of a multi-NIC network using iperf3 pods.

The functions here build the Kubernetes manifests and shell commands of the
check, read the network CIDR resources and parse and report the results.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Sequence

CIDR_RESOURCE = "cidrs.v1.multinic.fms.io"

DEFAULT_NAMESPACE = "default"
DEFAULT_LABEL_NAME = "multi-nic-concheck"
DEFAULT_SERVER_LABEL_VALUE = "server"
DEFAULT_CLIENT_LABEL_VALUE = "client"
NETWORK_ANNOTATION = "k8s.v1.cni.cncf.io/networks"
NETWORK_STATUS_ANNOTATION = "k8s.v1.cni.cncf.io/network-status"

IPERF_IMAGE = "networkstatic/iperf3"
MAX_NAME_LENGTH = 60
START_MULTI_STREAM_PORT = 30000
STREAMS_PER_IP = 5

BANDWIDTH_KEY = "bits/sec"
ERROR_KEY = "Bad file descriptor"

PRIMARY_INTERFACE = "eth0"
REPORT_RULE = "###########################################"


def _str(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValueError(f"{key} must be a string")
    return value


def _int(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return value


def _list(data: Mapping[str, Any], key: str) -> list[Any]:
    value = data.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValueError(f"{key} must be a list")
    return value


@dataclass(frozen=True)
class HostInterfaceInfo:
    """The pod CIDR assigned to one interface of one host."""

    host_index: int = 0
    host_name: str = ""
    interface_name: str = ""
    host_ip: str = ""
    pod_cidr: str = ""

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> HostInterfaceInfo:
        """Build the entry from its JSON object form."""
        if not isinstance(data, Mapping):
            raise ValueError(f"invalid host entry: {data!r}")
        return cls(
            host_index=_int(data, "hostIndex"),
            host_name=_str(data, "hostName"),
            interface_name=_str(data, "interfaceName"),
            host_ip=_str(data, "hostIP"),
            pod_cidr=_str(data, "podCIDR"),
        )


@dataclass(frozen=True)
class CIDREntry:
    """The CIDR of one interface index across all hosts."""

    net_address: str = ""
    interface_index: int = 0
    vlan_cidr: str = ""
    hosts: list[HostInterfaceInfo] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CIDREntry:
        """Build the entry from its JSON object form."""
        if not isinstance(data, Mapping):
            raise ValueError(f"invalid CIDR entry: {data!r}")
        return cls(
            net_address=_str(data, "netAddress"),
            interface_index=_int(data, "interfaceIndex"),
            vlan_cidr=_str(data, "vlanCIDR"),
            hosts=[HostInterfaceInfo.from_dict(h) for h in _list(data, "hosts")],
        )


@dataclass(frozen=True)
class CIDRSpec:
    """The spec of a CIDR resource."""

    cidrs: list[CIDREntry] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CIDRSpec:
        """Build the spec from the JSON object of the resource's 'spec'."""
        if not isinstance(data, Mapping):
            raise ValueError(f"invalid CIDR spec: {data!r}")
        return cls(cidrs=[CIDREntry.from_dict(e) for e in _list(data, "cidr")])


def get_pod_cidrs_map(spec: CIDRSpec) -> dict[str, list[str]]:
    """Return the pod CIDRs of each host, in the order of the spec's entries."""
    pod_cidrs: dict[str, list[str]] = {}
    for entry in spec.cidrs:
        for host in entry.hosts:
            pod_cidrs.setdefault(host.host_name, []).append(host.pod_cidr)
    return pod_cidrs


def object_name(cidr_name: str, host_name: str, role: str) -> str:
    """Return the name of a server pod or client job, shortened to fit the limit."""
    name = f"{cidr_name}-{host_name}-{role}"
    over = len(name) - MAX_NAME_LENGTH
    if over > 0:
        name = name[over:len(name) - 1]
        if name.startswith("-"):
            name = name[1:]
    return name


def make_label_value(cidr_name: str, role: str) -> str:
    """Return the value of the label that groups the check's objects by role."""
    return f"{cidr_name}-{role}"


def label_selector(cidr_name: str, role: str) -> str:
    """Return the label selector that lists the check's objects of one role."""
    return f"{DEFAULT_LABEL_NAME}={make_label_value(cidr_name, role)}"


def meta_object(namespace: str, cidr_name: str, host_name: str, role: str) -> dict[str, Any]:
    """Return the metadata of a check object attached to the network."""
    return {
        "name": object_name(cidr_name, host_name, role),
        "namespace": namespace,
        "labels": {DEFAULT_LABEL_NAME: make_label_value(cidr_name, role)},
        "annotations": {NETWORK_ANNOTATION: cidr_name},
    }


def _streams() -> str:
    return "".join(f" {j}" for j in range(1, STREAMS_PER_IP + 1))


def _prefix_port(index: int) -> int:
    return (START_MULTI_STREAM_PORT + index * 10) // 10


def multi_stream_server_command(number_of_interfaces: int) -> str:
    """Return the shell command that runs iperf3 servers for every interface and stream."""
    streams = _streams()
    cmd = "".join(
        f" (for i in {streams}; do iperf3 -s -p {_prefix_port(i)}$i & done) & "
        for i in range(number_of_interfaces)
    )
    return cmd + "(tail -f /dev/null)"


def primary_check_client_command(host_name: str, ip_map: Mapping[str, str]) -> str:
    """Return the shell command that waits until every other host's server answers."""
    prefix_port = START_MULTI_STREAM_PORT // 10
    return "".join(
        f" until iperf3 -c {ip} -p {prefix_port}{STREAMS_PER_IP} -n 1; do sleep 1; done;"
        for target, ip in ip_map.items()
        if target != host_name
    )


def multi_stream_client_command(host_name: str, ip_map: Mapping[str, Sequence[str]]) -> str:
    """Return the shell command that measures bandwidth to every other host's addresses."""
    streams = _streams()
    parts = []
    for target, ips in ip_map.items():
        if target == host_name:
            continue
        for i, ip in enumerate(ips):
            parts.append(
                f" (for i in {streams}; do iperf3 -Z -t 10s -c {ip} -p {_prefix_port(i)}$i"
                f" --connect-timeout 10s & done | grep 'receiver'"
                f" | awk '{{s+=$7}} END{{print \"{ip},\"s$8}}') &"
            )
        parts.append("wait; sleep 1;echo '';")
    return "".join(parts)


def _container(name: str, command: list[str], args: str) -> dict[str, Any]:
    return {
        "name": name,
        "image": IPERF_IMAGE,
        "imagePullPolicy": "IfNotPresent",
        "command": command,
        "args": [args],
    }


def server_pod_manifest(
    namespace: str, cidr_name: str, host_name: str, number_of_streams: int
) -> dict[str, Any]:
    """Return the iperf3 server pod of a host."""
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": meta_object(namespace, cidr_name, host_name, DEFAULT_SERVER_LABEL_VALUE),
        "spec": {
            "containers": [
                _container(
                    DEFAULT_SERVER_LABEL_VALUE,
                    ["/bin/sh", "-c"],
                    multi_stream_server_command(number_of_streams),
                )
            ],
            "nodeName": host_name,
            "terminationGracePeriodSeconds": 0,
        },
    }


def client_job_manifest(
    namespace: str,
    cidr_name: str,
    host_name: str,
    primary_ip_map: Mapping[str, str],
    ip_map: Mapping[str, Sequence[str]],
) -> dict[str, Any]:
    """Return the iperf3 client job of a host."""
    meta = meta_object(namespace, cidr_name, host_name, DEFAULT_CLIENT_LABEL_VALUE)
    return {
        "apiVersion": "batch/v1",
        "kind": "Job",
        "metadata": meta,
        "spec": {
            "template": {
                "metadata": meta_object(
                    namespace, cidr_name, host_name, DEFAULT_CLIENT_LABEL_VALUE
                ),
                "spec": {
                    "initContainers": [
                        _container(
                            "inti" + DEFAULT_CLIENT_LABEL_VALUE,
                            ["timeout", "30s", "/bin/sh", "-c"],
                            primary_check_client_command(host_name, primary_ip_map),
                        )
                    ],
                    "containers": [
                        _container(
                            DEFAULT_CLIENT_LABEL_VALUE,
                            ["/bin/sh", "-c"],
                            multi_stream_client_command(host_name, ip_map),
                        )
                    ],
                    "nodeName": host_name,
                    "terminationGracePeriodSeconds": 0,
                    "restartPolicy": "Never",
                },
            }
        },
    }


def parse_network_status(
    namespace: str, cidr_name: str, annotation: str
) -> tuple[Optional[str], Optional[list[str]]]:
    """Return the primary address and the network's addresses from a network-status annotation.

    Either is None when the annotation has no matching entry.
    """
    try:
        statuses = json.loads(annotation)
    except ValueError as exc:
        raise ValueError(f"cannot unmarshal {annotation}: {exc}") from exc
    if not isinstance(statuses, list):
        raise ValueError(f"cannot unmarshal {annotation}: not a list")
    network_name = f"{namespace}/{cidr_name}"
    primary_ip: Optional[str] = None
    server_ips: Optional[list[str]] = None
    for status in statuses:
        if not isinstance(status, Mapping):
            raise ValueError(f"cannot unmarshal {annotation}: invalid entry")
        ips = [str(ip) for ip in _list(status, "ips")]
        if _str(status, "name") == network_name:
            server_ips = ips
        elif _str(status, "interface") == PRIMARY_INTERFACE:
            if not ips:
                raise ValueError(f"primary interface has no address in {annotation}")
            primary_ip = ips[0]
    return primary_ip, server_ips


def parse_client_log(lines: Iterable[str]) -> dict[str, str]:
    """Return the bandwidth reported for each address in a client's log."""
    result: dict[str, str] = {}
    for line in lines:
        values = line.split(",")
        result[values[0]] = values[1] if len(values) > 1 else ERROR_KEY
    return result


def _align(rows: Sequence[Sequence[str]]) -> str:
    """Left-align tab-separated cells; the last cell of each row is not aligned."""
    widths: dict[int, int] = {}
    for row in rows:
        for column, cell in enumerate(row[:-1]):
            widths[column] = max(widths.get(column, 1), len(cell) + 1)
    lines = []
    for row in rows:
        cells = [cell.ljust(widths[column]) for column, cell in enumerate(row[:-1])]
        lines.append("".join(cells) + row[-1] + "\n")
    return "".join(lines)


def format_report(
    cidr_name: str,
    results: Mapping[str, Mapping[str, str]],
    ip_map: Mapping[str, Sequence[str]],
) -> str:
    """Return the connection table from each client host to every other host."""
    rows: list[list[str]] = [["FROM", "TO", "", "CONNECTED/TOTAL", "IPs", "BANDWIDTHs"]]
    for host_name, host_result in results.items():
        for target, ips in ip_map.items():
            if target == host_name:
                continue
            fail_count = 0
            bandwidths = []
            for ip in ips:
                if ip not in host_result:
                    continue
                value = host_result[ip]
                if ERROR_KEY in value or value == "":
                    fail_count += 1
                else:
                    bandwidths.append(f" {value}")
            total = len(ips)
            rows.append([
                host_name,
                target,
                "",
                f"{total - fail_count}/{total}",
                "[" + " ".join(ips) + "]",
                "[" + "".join(bandwidths) + "]",
            ])
    header = f"{REPORT_RULE}\n## Connection Check: {cidr_name}\n{REPORT_RULE}\n"
    return header + _align(rows) + f"{REPORT_RULE}\n"