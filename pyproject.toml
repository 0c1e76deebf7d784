[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sshdeck"
version = "0.1.0"
description = "SSH toolbox: remote hardware stats, port forwarding, SOCKS proxy, SFTP copy, interactive terminals and a small job scheduler"
requires-python = ">=3.10"
keywords = ["ssh", "sftp", "socks", "proxy", "port-forwarding", "scheduler", "sysadmin"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Systems Administration",
    "Topic :: System :: Networking",
]
dependencies = [
    "paramiko",
    "termcolor",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
sshdeck = "sshdeck.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["sshdeck"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
ignore_missing_imports = true
