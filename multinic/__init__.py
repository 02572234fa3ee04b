"""Multi-NIC container networking: CIDR computation, IPAM and daemon client, CNI config helpers, iptables, sysctl and connection checks."""

__version__ = "1.3.0"