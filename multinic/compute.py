"""IPv4 CIDR arithmetic for carving interface and host blocks out of a subnet."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Iterable, Sequence

SHIFT_BYTE_VAL = 256
MAX_VALUE_PER_BYTE = 255
BYTE_SIZE = 8

MASKCHECK = (0, 128, 192, 224, 240, 248, 252, 254, 255)


@dataclass(frozen=True)
class IPValue:
    """An address string together with its numeric IPv4 value."""

    address: str
    value: int


def mask_index(b: int) -> int:
    """Return the number of leading one bits of a mask byte, or -1 if it is not a mask byte."""
    try:
        return MASKCHECK.index(b & 0xFF)
    except ValueError:
        return -1


def _addr_to_value(address: str) -> int:
    total = 0
    for part in address.split("."):
        try:
            val = int(part, 10)
        except ValueError:
            val = 0
        total = total * SHIFT_BYTE_VAL + val
    return total


def value_to_addr(value: int) -> bytes:
    """Convert a numeric value into four address bytes."""
    return (value & 0xFFFFFFFF).to_bytes(4, "big")


def _bytes_to_str(ip: Iterable[int]) -> str:
    return ".".join(str(b) for b in ip)


def _value_to_addr_str(value: int) -> str:
    return _bytes_to_str(value_to_addr(value))


def _parse_cidr(cidr: str) -> tuple[ipaddress.IPv4Address, ipaddress.IPv4Network]:
    if "/" not in cidr:
        raise ValueError(f"invalid CIDR address: {cidr}")
    try:
        iface = ipaddress.IPv4Interface(cidr)
    except ValueError as exc:
        raise ValueError(f"invalid CIDR address: {cidr}") from exc
    return iface.ip, iface.network


def _block_of(cidr: str) -> int:
    parts = cidr.split("/")
    if len(parts) < 2:
        raise ValueError(f"invalid CIDR address: {cidr}")
    try:
        return int(parts[1], 10)
    except ValueError:
        return 0


def _apply_mask(address: Sequence[int], mask: Sequence[int]) -> bytes:
    return bytes(a & m for a, m in zip(address, mask))


def get_ip_value(address: str) -> IPValue:
    """Return the numeric value of an address, ignoring any prefix length."""
    ip = address.split("/")[0]
    return IPValue(address=address, value=_addr_to_value(ip))


def sort_address(addresses: Iterable[str]) -> list[IPValue]:
    """Return addresses as IPValues sorted stably by numeric value."""
    return sorted((get_ip_value(a) for a in addresses), key=lambda v: v.value)


def get_min_max_value(subnet: str) -> tuple[int, int]:
    """Return the smallest and largest numeric address inside a subnet."""
    _, network = _parse_cidr(subnet)
    base_ip = network.network_address.packed
    mask = network.netmask.packed
    min_value = 0
    max_value = 0
    for base, m in zip(base_ip, mask):
        if m == 255:
            max_value = max_value * SHIFT_BYTE_VAL + base
            min_value = min_value * SHIFT_BYTE_VAL + base
        elif m == 0:
            max_value = max_value * SHIFT_BYTE_VAL + MAX_VALUE_PER_BYTE
            min_value = min_value * SHIFT_BYTE_VAL
        else:
            fill_up = 255 - MASKCHECK[mask_index(m)]
            max_value = max_value * SHIFT_BYTE_VAL + base + fill_up
            min_value = min_value * SHIFT_BYTE_VAL + base
    return min_value, max_value


def get_previous_address(last_address: str) -> str:
    """Return the address just before the given one."""
    return _value_to_addr_str(get_ip_value(last_address).value - 1)


def get_address_by_index(cidr: str, index: int) -> str:
    """Return the address at an offset from the start address of a CIDR."""
    start_ip = cidr.split("/")[0]
    return _value_to_addr_str(get_ip_value(start_ip).value + index)


def append_mask(base_mask: Sequence[int], block: int) -> bytes:
    """Extend a netmask by a number of additional prefix bits."""
    remain = block
    output = bytearray(4)
    for i, value in enumerate(base_mask):
        if value & 0xFF == 255 or remain == 0:
            output[i] = value
            continue
        m_index = mask_index(value)
        addable = BYTE_SIZE - m_index
        if remain > addable:
            remain -= addable
            output[i] = 255
        else:
            output[i] = MASKCHECK[m_index + remain]
            remain = 0
    return bytes(output)


def add_address(
    base_address: Sequence[int], mask: Sequence[int], block: int, add_value: int
) -> bytes:
    """Place add_value into the block bits that follow the mask of base_address."""
    max_value = 2**block - 1
    if add_value > max_value:
        raise ValueError(f"InvalidRequest: {max_value} > {add_value}")

    bits = format(add_value, "b").rjust(block, "0")
    output = bytearray(4)
    for i, m in enumerate(mask):
        base = base_address[i]
        if m & 0xFF == 255 or not bits:
            output[i] = base
            continue
        m_index = mask_index(m)
        addable = BYTE_SIZE - m_index
        if block > addable:
            block -= addable
            target, bits = bits[:addable], bits[addable:]
        else:
            target, bits = bits, ""
        target = ("0" * m_index + target).ljust(BYTE_SIZE, "0")
        output[i] = (base + int(target, 2)) & 0xFF

    if _apply_mask(output, mask) != _apply_mask(base_address, mask):
        raise ValueError("InvalidRequest: out of mask")
    return bytes(output)


def compute_net(base_cidr: str, index: int, blocksize: int) -> bytes:
    """Return the network address of the index-th block of blocksize bits in base_cidr."""
    start_ip, network = _parse_cidr(base_cidr)
    mask = network.netmask.packed
    interface_mask = append_mask(mask, blocksize)
    base_ip = _apply_mask(start_ip.packed, interface_mask)
    return add_address(base_ip, mask, blocksize, index)


def check_if_tabu_index(
    base_cidr: str, index: int, blocksize: int, excludes: Iterable[str]
) -> bool:
    """Return True if the index-th block falls inside one of the excluded CIDRs."""
    base_block = _block_of(base_cidr)
    for exclude in excludes:
        splits = exclude.split("/")
        if len(splits) < 2:
            continue
        try:
            exclude_block = int(splits[1], 10)
        except ValueError:
            exclude_block = 0
        if exclude_block > base_block + blocksize:
            continue
        try:
            _, exclude_net = _parse_cidr(exclude)
        except ValueError:
            continue
        try:
            net_bytes = compute_net(base_cidr, index, blocksize)
        except ValueError:
            net_bytes = bytes(4)
        if ipaddress.IPv4Address(net_bytes) in exclude_net:
            return True
    return False


def find_available_index(indexes: Sequence[int], left_index: int, start_index: int) -> int:
    """Return the first unused index given a sorted list of used ones, or -1 if none is free."""
    if not indexes:
        return -1
    if indexes[-1] - left_index == len(indexes) - 1 + start_index:
        return -1
    if indexes[0] != left_index + start_index:
        return left_index + start_index
    mid = len(indexes) // 2
    left_result = find_available_index(indexes[:mid], left_index, start_index)
    if left_result != -1:
        return left_result
    return find_available_index(indexes[mid:], left_index + mid, start_index)


def get_ipvlan_subnet(
    interface_node_cidr: Sequence[int], subnet: str, interface_block: int
) -> str:
    """Return the interface-level subnet that contains the given node block."""
    base_block = _block_of(subnet)
    _, network = _parse_cidr(subnet)
    interface_mask = append_mask(network.netmask.packed, interface_block)
    masked = _apply_mask(bytes(interface_node_cidr), interface_mask)
    return f"{_bytes_to_str(masked)}/{base_block + interface_block}"


def get_pod_subnet(
    interface_node_cidr: Sequence[int], subnet: str, interface_block: int, node_block: int
) -> str:
    """Return the pod CIDR of a node block."""
    block_size = _block_of(subnet) + interface_block + node_block
    return f"{_bytes_to_str(interface_node_cidr)}/{block_size}"


def get_cidr_from_bytes(cidr_in_bytes: Sequence[int], subnet: str, blocksize: int) -> str:
    """Format address bytes as a CIDR whose prefix is the subnet's plus blocksize."""
    block_size = _block_of(subnet) + blocksize
    return f"{_bytes_to_str(cidr_in_bytes)}/{block_size}"


def get_index_in_range(pod_cidr: str, pod_ip_address: str) -> tuple[bool, int]:
    """Return whether an address lies in pod_cidr and its offset from the CIDR's start address."""
    start_ip, network = _parse_cidr(pod_cidr)
    try:
        ip = ipaddress.IPv4Address(pod_ip_address)
    except ValueError:
        return False, -1
    if ip not in network:
        return False, -1
    return True, int(ip) - int(start_ip)