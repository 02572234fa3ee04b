[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "multinic"
version = "1.3.0"
description = "Multi-NIC container networking helpers: CIDR computation, CNI IPAM logic, node daemon client, iptables and sysctl helpers, and connection-check manifests"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "cni",
    "networking",
    "ipam",
    "cidr",
    "iptables",
    "sysctl",
    "kubernetes",
    "multi-nic",
    "iperf3",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
    "Typing :: Typed",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["multinic"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
