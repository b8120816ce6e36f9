[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "aegisfw"
version = "0.1.0"
description = "Host firewall toolkit: rule engine, nftables compiler, packet detection and tamper-evident event store"
requires-python = ">=3.11"
keywords = [
    "firewall",
    "nftables",
    "intrusion-detection",
    "packet-inspection",
    "audit-log",
    "sqlite",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Firewalls",
    "Topic :: Security",
    "Typing :: Typed",
]
dependencies = [
    "cryptography",
    "watchdog",
]

[project.optional-dependencies]
test = [
    "pytest",
    "pytest-asyncio",
]

[tool.hatch.build.targets.wheel]
packages = ["aegisfw"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py311"

[tool.mypy]
python_version = "3.11"
warn_unused_ignores = true
