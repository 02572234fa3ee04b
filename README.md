# multinic

Building blocks for attaching several network interfaces to a container and
giving each one an address. Everything is plain Python with no dependencies
outside the standard library.

## Modules

- **`multinic.compute`** – IPv4 arithmetic for splitting a subnet into
  per-interface and per-host blocks: `append_mask`, `add_address`,
  `compute_net`, `find_available_index`, `check_if_tabu_index`,
  `get_index_in_range`, `sort_address`, `get_min_max_value` and friends.
- **`multinic.sysctl`** – `sysctl(name, *args, root=...)` reads a kernel
  parameter, or writes one value and reads it back. Names may use dots or
  slashes (`to_normal_name`); `root` defaults to `/proc/sys`.
- **`multinic.iptables`** – idempotent `ensure_chain`, `chain_exists`,
  `delete_rule`, `delete_chain` and `clear_chain` over any object offering
  `list_chains`, `new_chain`, `delete`, `delete_chain` and `clear_chain`,
  which signals failure by raising `IptablesError`.
- **`multinic.netconf`** – CNI argument parsing (`get_pod_info`,
  `get_static_ips`), multi-config IPAM expansion (`get_multi_ipam_config`,
  `get_multi_ipam_config_bytes`), IPAM injection into single-interface
  configurations (`inject_multi_nic_ipam`, `inject_single_nic_ipam`,
  `replace_multi_nic_ipam`, ...), `inject_master`, and multipath route
  separation (`separate_multipath_routes`, `get_routes_from_ipam`).
- **`multinic.daemon_client`** – HTTP client for the node daemon:
  `select_nics`, `request_ip` and `deallocate`. Failures raise `DaemonError`;
  an empty answer is an error too.
- **`multinic.ipam_plugin`** – the add, check and delete logic of the
  multi-NIC IPAM plugin: `load_ipam_config`, `cmd_add`, `cmd_check`,
  `cmd_del`. Results are returned as CNI result dictionaries; failures raise
  `IPAMError`.
- **`multinic.concheck`** – pieces of an iperf3 connection check across hosts:
  parsing CIDR resource specs (`CIDRSpec.from_dict`, `get_pod_cidrs_map`),
  server pod and client job manifests, the shell commands they run, parsing
  network-status annotations and client logs, and the text report
  (`format_report`).
- **`multinic.logsetup`** – `initialize_logger(path)` sends the package's
  debug logging to a rotating file of JSON lines (`JsonFormatter`).

## Examples

Where an address sits inside a pod CIDR:

```python
from multinic.compute import get_index_in_range

get_index_in_range("192.168.0.0/16", "192.168.1.1")
# (True, 257)
get_index_in_range("192.168.0.0/26", "192.168.1.1")[0]
# False
```

Static IPs pulled out of the CNI argument string, the rest left intact:

```python
from multinic.netconf import get_static_ips

ips, rest = get_static_ips("POD_NAME=a;IP=10.244.0.120/24,10.244.1.5/24;SOME_ARG=b")
# ips  -> ['10.244.0.120/24', '10.244.1.5/24']
# rest -> 'POD_NAME=a;SOME_ARG=b'
```

Routes that share a destination become multipath routes:

```python
from multinic.netconf import get_routes_from_ipam

ipam = {
    "routes": [
        {"dst": "192.168.0.0/24", "gw": "10.0.0.254"},
        {"dst": "192.168.0.0/24", "gw": "10.1.0.254"},
    ]
}
single_routes, multipath = get_routes_from_ipam(ipam)
# single_routes -> []
# multipath     -> {'192.168.0.0/24': [IPv4Address('10.0.0.254'), IPv4Address('10.1.0.254')]}
```

Sysctl names may use dots or slashes; the first separator decides:

```python
from multinic.sysctl import to_normal_name

to_normal_name("net.ipv4.conf.eth0.proxy_arp")
# 'net/ipv4/conf/eth0/proxy_arp'
```

Connection-check labels:

```python
from multinic.concheck import label_selector

label_selector("net", "server")
# 'multi-nic-concheck=net-server'
```

## What this package does not do

- It installs no commands and no executable CNI plugin. `cmd_add`,
  `cmd_check` and `cmd_del` take the configuration and arguments as values;
  reading them from a plugin's environment and standard input is left to the
  caller.
- It does not expand one multi-interface network configuration into the
  per-interface configurations of ipvlan, SR-IOV, host-device or AWS ipvlan,
  nor run those plugins, create links or install routes. `multinic.netconf`
  only prepares the IPAM part of each configuration and the multipath route
  table.
- It does not talk to Kubernetes. `multinic.concheck` builds manifests and
  parses what a caller fetches; creating pods and jobs, waiting for them and
  reading their logs is up to the caller.
- It does not run iptables itself; `multinic.iptables` works on a handle the
  caller supplies.

## Running the tests

The tests use pytest, listed under the `test` extra:

```
pip install -e .[test]
pytest
```