"""CNI argument parsing, IPAM injection into single-NIC configs and multipath routes."""

from __future__ import annotations

import ipaddress
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Sequence, Union

logger = logging.getLogger(__name__)

MULTI_CONFIG_IPAM_TYPE = "multi-config"
WHEREABOUTS_IPAM_TYPE = "whereabouts"
HOST_DEVICE_IPAM_TYPE = "host-device-ipam"
STATIC_IPAM_TYPE = "static"

IPNetwork = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]
IPAddress = Union[ipaddress.IPv4Address, ipaddress.IPv6Address]
IPInterface = Union[ipaddress.IPv4Interface, ipaddress.IPv6Interface]
JsonData = Union[bytes, bytearray, str]
MultiPathRoutes = dict[str, list[Optional[IPAddress]]]


@dataclass(frozen=True)
class Route:
    """A route to a destination network through an optional gateway."""

    dst: IPNetwork
    gw: Optional[IPAddress] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> Route:
        """Build a route from its JSON object form."""
        if not isinstance(data, Mapping):
            raise ValueError(f"invalid route: {data!r}")
        dst = data.get("dst")
        if not isinstance(dst, str):
            raise ValueError(f"invalid route destination: {dst!r}")
        gw = data.get("gw")
        if gw is not None and not isinstance(gw, str):
            raise ValueError(f"invalid route gateway: {gw!r}")
        return cls(
            dst=ipaddress.ip_network(dst, strict=False),
            gw=ipaddress.ip_address(gw) if gw else None,
        )

    def to_dict(self) -> dict[str, str]:
        """Return the JSON object form of the route."""
        out = {"dst": str(self.dst)}
        if self.gw is not None:
            out["gw"] = str(self.gw)
        return out


@dataclass
class MultiIPAMConfig:
    """The 'ipam' section of a multi-config IPAM network."""

    name: str = ""
    type: str = ""
    ipam_type: str = ""
    args: Optional[dict[str, Optional[dict[str, Any]]]] = None
    routes: list[Route] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MultiIPAMConfig:
        """Build the configuration from the JSON object of the 'ipam' section."""
        args = data.get("args")
        if args is not None:
            if not isinstance(args, dict) or any(
                value is not None and not isinstance(value, dict) for value in args.values()
            ):
                raise ValueError("ipam args must map interface names to objects")
        routes = data.get("routes") or []
        if not isinstance(routes, list):
            raise ValueError("ipam routes must be a list")
        name = next((value for key, value in data.items() if key.lower() == "name"), "")
        return cls(
            name=name or "",
            type=data.get("type") or "",
            ipam_type=data.get("ipam_type") or "",
            args=args,
            routes=[Route.from_dict(route) for route in routes],
        )


def _as_bytes(data: JsonData) -> bytes:
    return data.encode() if isinstance(data, str) else bytes(data)


def _dump(obj: Any, sort_keys: bool = False) -> bytes:
    return json.dumps(obj, separators=(",", ":"), sort_keys=sort_keys).encode()


def _load_object(data: JsonData) -> dict[str, Any]:
    obj = json.loads(data)
    if not isinstance(obj, dict):
        raise ValueError("network configuration must be a JSON object")
    return obj


def _ipam_of(conf: JsonData) -> Optional[dict[str, Any]]:
    ipam = _load_object(conf).get("ipam")
    if ipam is not None and not isinstance(ipam, dict):
        raise ValueError("ipam must be a JSON object")
    return ipam


def _inject_ipam(single_conf: JsonData, ipam: Any) -> bytes:
    """Put ipam in place of an empty top-level 'ipam' object of a single-NIC config."""
    try:
        conf = json.loads(single_conf)
    except ValueError:
        return _as_bytes(single_conf)
    if isinstance(conf, dict) and conf.get("ipam") == {}:
        conf["ipam"] = ipam
        injected = _dump(conf)
        logger.debug("conf: %s -> injected: %s", _as_bytes(single_conf).decode(), injected.decode())
        return injected
    return _as_bytes(single_conf)


def separate_multipath_routes(
    ipam_routes: Sequence[Route],
) -> tuple[MultiPathRoutes, list[Route]]:
    """Split routes into multipath next-hops (by destination) and ordinary routes."""
    by_dst: dict[str, list[Route]] = {}
    for route in ipam_routes:
        by_dst.setdefault(str(route.dst), []).append(route)
    logger.debug("routes by destination: %s", by_dst)

    multipath: MultiPathRoutes = {}
    single: list[Route] = []
    for dst, routes in by_dst.items():
        if len(routes) == 1:
            single.append(routes[0])
        else:
            multipath[dst] = [route.gw for route in routes]
    return multipath, single


def get_routes_from_ipam(
    ipam: Optional[Mapping[str, Any]],
) -> tuple[Optional[list[Route]], MultiPathRoutes]:
    """Return the ordinary routes and multipath routes of an IPAM section.

    The ordinary routes are None when the section has no 'routes' key.
    """
    if not ipam or "routes" not in ipam:
        return None, {}
    routes: list[Route] = []
    for entry in ipam["routes"] or []:
        if not isinstance(entry, Mapping) or "dst" not in entry or "gw" not in entry:
            continue
        dst = ipaddress.ip_network(entry["dst"], strict=False)
        try:
            gw: Optional[IPAddress] = ipaddress.ip_address(entry["gw"])
        except ValueError:
            gw = None
        routes.append(Route(dst=dst, gw=gw))
    multipath, single = separate_multipath_routes(routes)
    return single, multipath


def get_pod_info(cni_args: str) -> tuple[str, str]:
    """Return the pod name and namespace from a CNI_ARGS string."""
    pod_name = ""
    pod_namespace = ""
    for item in cni_args.split(";"):
        if item.startswith("K8S_POD_NAME="):
            pod_name = item[len("K8S_POD_NAME="):]
        if item.startswith("K8S_POD_NAMESPACE="):
            pod_namespace = item[len("K8S_POD_NAMESPACE="):]
    return pod_name, pod_namespace


def get_static_ips(cni_args: str) -> tuple[list[str], str]:
    """Return the static IPs of the 'IP=' argument and the arguments without it."""
    items = cni_args.split(";")
    for index, item in enumerate(items):
        if item.startswith("IP="):
            ips = item[len("IP="):]
            kept = items[:index]
            if index < len(item) - 1:
                kept += items[index + 1:]
            return ips.split(","), ";".join(kept)
    return [], cni_args


def get_multi_ipam_config(conf_bytes: JsonData) -> MultiIPAMConfig:
    """Parse the 'ipam' section of a network configuration as a multi-config IPAM."""
    ipam = _ipam_of(conf_bytes)
    if ipam is None:
        return MultiIPAMConfig()
    return MultiIPAMConfig.from_dict(ipam)


def get_multi_ipam_config_bytes(conf_bytes: JsonData) -> dict[str, bytes]:
    """Return a single-interface IPAM configuration for each interface of a multi-config IPAM."""
    config = get_multi_ipam_config(conf_bytes)
    result: dict[str, bytes] = {}
    for master, args in (config.args or {}).items():
        if args is None:
            logger.debug("ipam args not defined on %s", master)
            continue
        single: dict[str, Any] = {"type": config.ipam_type}
        if config.ipam_type == WHEREABOUTS_IPAM_TYPE:
            single["network_name"] = master
        single.update(args)
        result[master] = _dump(single, sort_keys=True)
    return result


def inject_multi_nic_ipam(
    single_conf: JsonData,
    multi_conf: JsonData,
    ip_configs: Sequence[IPInterface],
    ip_index: int,
) -> tuple[bytes, MultiPathRoutes]:
    """Give a single-NIC config the static address allocated to its interface index."""
    ip_config = ip_configs[ip_index] if 0 <= ip_index < len(ip_configs) else None
    return replace_multi_nic_ipam(single_conf, multi_conf, ip_config)


def inject_single_nic_ipam(
    single_conf: JsonData, multi_conf: JsonData
) -> tuple[bytes, MultiPathRoutes]:
    """Give a single-NIC config the IPAM section of the multi-NIC config."""
    try:
        ipam = _ipam_of(multi_conf)
    except ValueError:
        return _as_bytes(single_conf), {}
    return replace_single_nic_ipam_with_multi_config(
        single_conf, multi_conf, _dump(ipam, sort_keys=True)
    )


def replace_single_nic_ipam_with_multi_config(
    single_conf: JsonData, multi_conf: JsonData, ipam_bytes: JsonData
) -> tuple[bytes, MultiPathRoutes]:
    """Give a single-NIC config the given IPAM section; multipath routes come from multi_conf."""
    try:
        ipam = _ipam_of(multi_conf)
    except ValueError:
        return _as_bytes(single_conf), {}
    _, multipath = get_routes_from_ipam(ipam)
    return _inject_ipam(single_conf, json.loads(ipam_bytes)), multipath


def replace_multi_nic_ipam(
    single_conf: JsonData, multi_conf: JsonData, ip_config: Optional[IPInterface]
) -> tuple[bytes, MultiPathRoutes]:
    """Give a single-NIC config a static IPAM section holding ip_config and the routes."""
    single_ipam: dict[str, Any] = {
        "type": STATIC_IPAM_TYPE,
        "addresses": [{"address": str(ip_config)}] if ip_config is not None else [],
    }
    multipath: MultiPathRoutes = {}
    try:
        ipam = _ipam_of(multi_conf)
    except ValueError:
        pass
    else:
        single_routes, multipath = get_routes_from_ipam(ipam)
        if single_routes is not None:
            single_ipam["routes"] = [route.to_dict() for route in single_routes]
    ordered = dict(sorted(single_ipam.items()))
    return _inject_ipam(single_conf, ordered), multipath


def inject_master(
    in_data: JsonData,
    net_addrs: Optional[Sequence[str]],
    masters: Optional[Sequence[str]],
    device_ids: Optional[Sequence[str]],
) -> bytes:
    """Replace the interface pool of a configuration with the selected interfaces."""
    obj = _load_object(in_data)
    obj["masterNets"] = list(net_addrs) if net_addrs is not None else None
    obj["masters"] = list(masters) if masters is not None else None
    obj["deviceIDs"] = list(device_ids) if device_ids is not None else None
    return _dump(obj, sort_keys=True)


def is_builtin_ipam(ipam_type: str) -> bool:
    """Return True for IPAM types handled inside the plugin itself."""
    return ipam_type == HOST_DEVICE_IPAM_TYPE