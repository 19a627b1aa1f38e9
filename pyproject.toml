[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nsbox"
version = "0.1.0"
description = "Building blocks for Linux namespace sandboxes: id maps, netlink requests, namespace entry, clock offsets and tty options"
requires-python = ">=3.12"
dependencies = []
keywords = [
    "linux",
    "namespaces",
    "containers",
    "sandbox",
    "netlink",
    "user-namespaces",
    "uid_map",
]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Operating System Kernels :: Linux",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["nsbox"]

[tool.hatch.build.targets.sdist]
include = ["nsbox", "tests", "README.md"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py312"

[tool.mypy]
python_version = "3.12"
warn_unused_ignores = true
