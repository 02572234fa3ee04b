"""HTTP client for the node daemon: NIC selection and IP allocation."""

from __future__ import annotations

import json
import urllib.error
import urllib.request
from dataclasses import dataclass, field
from http import HTTPStatus
from typing import Any, Mapping, Optional, Sequence

ALLOCATE_PATH = "allocate"
DEALLOCATE_PATH = "deallocate"
NIC_SELECT_PATH = "select"

DEFAULT_DAEMON_PORT = 11000
DEFAULT_DAEMON_IP = "localhost"

SELECT_TIMEOUT = 5 * 60.0
IP_TIMEOUT = 2 * 60.0
CONTENT_TYPE = "application/json; charset=utf-8"


class DaemonError(Exception):
    """A request to the daemon failed or returned nothing usable."""


def _str_list(value: Any, what: str) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise DaemonError(f"{what} must be a list of strings")
    return list(value)


def _str_field(data: Mapping[str, Any], key: str) -> str:
    value = data.get(key)
    if value is None:
        return ""
    if not isinstance(value, str):
        raise DaemonError(f"{key} must be a string")
    return value


@dataclass
class NicArgs:
    """User choice of interfaces from the pod annotation."""

    num_of_interfaces: int = 0
    interface_names: list[str] = field(default_factory=list)
    target: str = ""
    dev_class: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> NicArgs:
        """Build the arguments from their JSON object form."""
        if not data:
            return cls()
        nics = data.get("nics") or 0
        if isinstance(nics, bool) or not isinstance(nics, int):
            raise ValueError("nics must be an integer")
        masters = data.get("masters") or []
        if not isinstance(masters, list) or not all(isinstance(m, str) for m in masters):
            raise ValueError("masters must be a list of strings")
        return cls(
            num_of_interfaces=nics,
            interface_names=list(masters),
            target=data.get("target") or "",
            dev_class=data.get("class") or "",
        )

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON object form, leaving out empty fields."""
        out: dict[str, Any] = {}
        if self.num_of_interfaces:
            out["nics"] = self.num_of_interfaces
        if self.interface_names:
            out["masters"] = list(self.interface_names)
        if self.target:
            out["target"] = self.target
        if self.dev_class:
            out["class"] = self.dev_class
        return out


@dataclass(frozen=True)
class NICSelectResponse:
    """Interfaces and devices the daemon selected for a pod."""

    device_ids: list[str] = field(default_factory=list)
    masters: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NICSelectResponse:
        """Build the response from its JSON object form."""
        return cls(
            device_ids=_str_list(data.get("deviceIDs"), "deviceIDs"),
            masters=_str_list(data.get("masters"), "masters"),
        )


@dataclass(frozen=True)
class IPResponse:
    """An address the daemon allocated on one interface."""

    interface_name: str = ""
    ip_address: str = ""
    vlan_block_size: str = ""

    @classmethod
    def from_dict(cls, data: Any) -> IPResponse:
        """Build the response from its JSON object form."""
        if not isinstance(data, Mapping):
            raise DaemonError(f"invalid IP response: {data!r}")
        return cls(
            interface_name=_str_field(data, "interface"),
            ip_address=_str_field(data, "ip"),
            vlan_block_size=_str_field(data, "block"),
        )

    def to_dict(self) -> dict[str, str]:
        """Return the JSON object form."""
        return {
            "interface": self.interface_name,
            "ip": self.ip_address,
            "block": self.vlan_block_size,
        }


def _post_json(address: str, payload: Mapping[str, Any], timeout: float) -> Any:
    request = urllib.request.Request(
        address,
        data=json.dumps(payload).encode(),
        headers={"Content-Type": CONTENT_TYPE},
        method="POST",
    )
    try:
        response = urllib.request.urlopen(request, timeout=timeout)
    except urllib.error.HTTPError as exc:
        raise DaemonError(f"{exc.code} {exc.reason}") from exc
    except (urllib.error.URLError, OSError) as exc:
        raise DaemonError(f"post fail: {exc}") from exc
    with response:
        if response.status != HTTPStatus.OK:
            raise DaemonError(f"{response.status} {response.reason}")
        try:
            body = response.read()
        except OSError as exc:
            raise DaemonError(f"read body: {exc}") from exc
    try:
        return json.loads(body)
    except ValueError as exc:
        raise DaemonError(f"unmarshal response: {exc}") from exc


def _ip_responses(data: Any) -> list[IPResponse]:
    if data is None:
        data = []
    if not isinstance(data, list):
        raise DaemonError(f"unexpected response: {data!r}")
    responses = [IPResponse.from_dict(item) for item in data]
    if not responses:
        raise DaemonError("response nothing")
    return responses


def _optional_list(values: Optional[Sequence[str]]) -> Optional[list[str]]:
    return list(values) if values is not None else None


def select_nics(
    daemon_ip: str,
    daemon_port: int,
    pod_name: str,
    pod_namespace: str,
    host_name: str,
    def_name: str,
    nic_set: NicArgs,
    master_nets: Optional[Sequence[str]],
) -> NICSelectResponse:
    """Ask the daemon which interfaces a pod should use."""
    address = f"http://{daemon_ip or DEFAULT_DAEMON_IP}:{daemon_port or DEFAULT_DAEMON_PORT}/{NIC_SELECT_PATH}"
    payload = {
        "pod": pod_name,
        "namespace": pod_namespace,
        "host": host_name,
        "def": def_name,
        "masterNets": _optional_list(master_nets),
        "args": nic_set.to_dict(),
    }
    data = _post_json(address, payload, SELECT_TIMEOUT)
    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise DaemonError(f"unexpected response: {data!r}")
    response = NICSelectResponse.from_dict(data)
    if not response.masters:
        raise DaemonError("response nothing")
    return response


def request_ip(
    daemon_ip: str,
    daemon_port: int,
    pod_name: str,
    pod_namespace: str,
    host_name: str,
    def_name: str,
    masters: Optional[Sequence[str]],
) -> list[IPResponse]:
    """Ask the daemon to allocate an address on each of the given interfaces."""
    address = f"http://{daemon_ip or DEFAULT_DAEMON_IP}:{daemon_port or DEFAULT_DAEMON_PORT}/{ALLOCATE_PATH}"
    payload = {
        "pod": pod_name,
        "namespace": pod_namespace,
        "host": host_name,
        "def": def_name,
        "masters": _optional_list(masters),
    }
    return _ip_responses(_post_json(address, payload, IP_TIMEOUT))


def deallocate(
    daemon_port: int,
    pod_name: str,
    pod_namespace: str,
    host_name: str,
    def_name: str,
) -> list[IPResponse]:
    """Ask the local daemon to release the addresses of a pod."""
    address = f"http://{DEFAULT_DAEMON_IP}:{daemon_port or DEFAULT_DAEMON_PORT}/{DEALLOCATE_PATH}"
    payload = {
        "pod": pod_name,
        "namespace": pod_namespace,
        "host": host_name,
        "def": def_name,
        "masters": None,
    }
    return _ip_responses(_post_json(address, payload, IP_TIMEOUT))