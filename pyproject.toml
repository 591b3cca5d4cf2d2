[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "proxyseparator"
version = "0.1.0"
description = "Building blocks for splitting traffic between a company route and a personal proxy: rule parsing and matching, upstream probing, system-route dialing, company DNS host routes, traffic counters and a recovery journal."
requires-python = ">=3.10"
dependencies = [
    "dnspython",
]
keywords = ["proxy", "socks5", "http-connect", "routing", "split-tunnel", "dns", "tun"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Internet :: Proxy Servers",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["proxyseparator"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
