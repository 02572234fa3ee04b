"""IPAM plugin that obtains pod addresses from the node daemon."""

from __future__ import annotations

import ipaddress
import json
import logging
import socket
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

from multinic.daemon_client import DaemonError, IPResponse, deallocate, request_ip
from multinic.netconf import Route, get_pod_info

logger = logging.getLogger(__name__)

IMPLEMENTED_SPEC_VERSION = "1.0.0"

JsonData = Union[bytes, bytearray, str]


class IPAMError(Exception):
    """The IPAM plugin could not complete a command."""


def _int_field(data: Mapping[str, Any], key: str) -> int:
    value = data.get(key)
    if value is None:
        return 0
    if isinstance(value, bool) or not isinstance(value, int):
        raise IPAMError(f"ipam {key} must be an integer")
    return value


def _str_field(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise IPAMError(f"ipam {key} must be a string")
    return value


@dataclass
class IPAMConfig:
    """The 'ipam' section of the network configuration."""

    name: str = ""
    type: str = ""
    daemon_ip: str = ""
    daemon_port: int = 0
    host_block: int = 0
    interface_block: int = 0
    exclude_cidrs: list[str] = field(default_factory=list)
    routes: list[Route] = field(default_factory=list)
    dns: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any], name: str = "") -> IPAMConfig:
        """Build the configuration from the JSON object of the 'ipam' section."""
        excludes = data.get("excludeCIDRs") or []
        if not isinstance(excludes, list) or not all(isinstance(e, str) for e in excludes):
            raise IPAMError("ipam excludeCIDRs must be a list of strings")
        routes = data.get("routes") or []
        if not isinstance(routes, list):
            raise IPAMError("ipam routes must be a list")
        dns = data.get("dns") or {}
        if not isinstance(dns, dict):
            raise IPAMError("ipam dns must be an object")
        try:
            parsed_routes = [Route.from_dict(route) for route in routes]
        except ValueError as exc:
            raise IPAMError(str(exc)) from exc
        return cls(
            name=name,
            type=_str_field(data, "type"),
            daemon_ip=_str_field(data, "daemonIP"),
            daemon_port=_int_field(data, "daemonPort"),
            host_block=_int_field(data, "hostBlock"),
            interface_block=_int_field(data, "interfaceBlock"),
            exclude_cidrs=list(excludes),
            routes=parsed_routes,
            dns=dict(dns),
        )


def _load_net(stdin_data: JsonData) -> dict[str, Any]:
    try:
        obj = json.loads(stdin_data)
    except ValueError as exc:
        raise IPAMError(f"failed to load netconf: {exc}") from exc
    if not isinstance(obj, dict):
        raise IPAMError("failed to load netconf: not a JSON object")
    return obj


def load_ipam_config(data: JsonData) -> tuple[IPAMConfig, str]:
    """Return the IPAM configuration, named after the network, and the CNI version."""
    net = _load_net(data)
    ipam = net.get("ipam")
    if ipam is None:
        raise IPAMError("IPAM config missing 'ipam' key")
    if not isinstance(ipam, dict):
        raise IPAMError("ipam must be a JSON object")
    name = net.get("name") or ""
    return IPAMConfig.from_dict(ipam, name=name), net.get("cniVersion") or ""


def _masters(net: Mapping[str, Any]) -> list[str]:
    masters = net.get("masters") or []
    if not isinstance(masters, list) or not all(isinstance(m, str) for m in masters):
        raise IPAMError("masters must be a list of strings")
    return list(masters)


def _prev_result(net: Mapping[str, Any]) -> Optional[dict[str, Any]]:
    prev = net.get("prevResult")
    if prev is None:
        return None
    if not isinstance(prev, dict):
        raise IPAMError("could not parse prevResult: not a JSON object")
    ips = prev.get("ips") or []
    if not isinstance(ips, list) or not all(isinstance(ip, dict) and "address" in ip for ip in ips):
        raise IPAMError("could not convert result to current version: invalid ips")
    result = dict(prev)
    result["ips"] = [dict(ip) for ip in ips]
    return result


def _ip_configs(masters: Sequence[str], responses: Sequence[IPResponse]) -> list[dict[str, Any]]:
    configs = []
    for index, master in enumerate(masters):
        response = next((r for r in responses if r.interface_name == master), None)
        if response is None:
            continue
        cidr = f"{response.ip_address}/{response.vlan_block_size}"
        try:
            address = ipaddress.ip_interface(cidr)
        except ValueError as exc:
            raise IPAMError(f"failed to parse IP: {response.ip_address}: {exc}") from exc
        configs.append({"address": str(address), "interface": index})
    return configs


def _format_result(result: Mapping[str, Any], conf_version: str) -> dict[str, Any]:
    version = conf_version or IMPLEMENTED_SPEC_VERSION
    out = dict(result)
    out["cniVersion"] = version
    ips = []
    for ip in result.get("ips") or []:
        entry = dict(ip)
        if version.startswith(("0.3.", "0.4.")) and "version" not in entry:
            entry["version"] = str(ipaddress.ip_interface(entry["address"]).version)
        ips.append(entry)
    out["ips"] = ips
    if not out.get("routes"):
        out.pop("routes", None)
    if not out.get("dns"):
        out.pop("dns", None)
    return out


def cmd_add(stdin_data: JsonData, cni_args: str) -> dict[str, Any]:
    """Allocate an address on each selected interface and return the CNI result."""
    net = _load_net(stdin_data)
    conf_version = net.get("cniVersion") or ""
    result = _prev_result(net) or {"ips": []}
    if result["ips"]:
        return _format_result(result, conf_version)

    masters = _masters(net)
    if not masters:
        return _format_result(result, conf_version)

    ipam_conf, _ = load_ipam_config(stdin_data)
    host_name = socket.gethostname()
    pod_name, pod_namespace = get_pod_info(cni_args)
    logger.debug(
        "RequestIP of %s net to %s:%d for %s/%s with %s",
        ipam_conf.name, ipam_conf.daemon_ip, ipam_conf.daemon_port,
        pod_namespace, pod_name, masters,
    )
    try:
        responses = request_ip(
            ipam_conf.daemon_ip, ipam_conf.daemon_port, pod_name, pod_namespace,
            host_name, ipam_conf.name, masters,
        )
    except DaemonError as exc:
        raise IPAMError(f"failed to request ip {exc}") from exc

    result["ips"] = result["ips"] + _ip_configs(masters, responses)
    result["dns"] = ipam_conf.dns
    result["routes"] = [route.to_dict() for route in ipam_conf.routes]
    logger.debug("Result: %s", result)
    return _format_result(result, conf_version)


def cmd_check(stdin_data: JsonData) -> None:
    """Check that the previous result holds addresses inside the designated subnet."""
    net = _load_net(stdin_data)
    if net.get("prevResult") is None:
        raise IPAMError("required prevResult missing")
    result = _prev_result(net)
    ips = result["ips"] if result else []
    if not ips:
        raise IPAMError("no ip allocated")
    subnet = net.get("subnet") or ""
    if not subnet:
        return
    try:
        network = ipaddress.ip_network(subnet, strict=False)
    except ValueError as exc:
        raise IPAMError(f"cannot parse subnet {subnet}") from exc
    for ip in ips:
        address = ipaddress.ip_interface(ip["address"]).ip
        if address not in network:
            raise IPAMError(f"allocated ip {address} is not in designated subnet {subnet}")


def cmd_del(stdin_data: JsonData, cni_args: str, netns: str) -> Optional[dict[str, Any]]:
    """Release the pod's addresses; return the released addresses as a CNI result."""
    net = _load_net(stdin_data)
    conf_version = net.get("cniVersion") or ""
    result = _prev_result(net) or {"ips": []}
    if not netns:
        return None
    try:
        ipam_conf, _ = load_ipam_config(stdin_data)
    except IPAMError as exc:
        raise IPAMError("fail to load ipam conf") from exc
    host_name = socket.gethostname()
    pod_name, pod_namespace = get_pod_info(cni_args)
    logger.debug(
        "RequestDeallocateIP of %s/%s in %s net from %s:%d",
        pod_namespace, pod_name, ipam_conf.name, ipam_conf.daemon_ip, ipam_conf.daemon_port,
    )
    try:
        responses = deallocate(
            ipam_conf.daemon_port, pod_name, pod_namespace, host_name, ipam_conf.name
        )
    except DaemonError as exc:
        logger.debug("deallocate failed: %s", exc)
        responses = []
    logger.debug("ResponseDeallocateIP: %s", responses)

    result["ips"] = result["ips"] + _ip_configs(_masters(net), responses)
    result["dns"] = ipam_conf.dns
    result["routes"] = [route.to_dict() for route in ipam_conf.routes]
    return _format_result(result, conf_version)