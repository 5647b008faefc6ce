[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "kmodtools"
version = "0.1.0"
description = "Kernel module tree tooling: dependency index generation, modinfo formatting and modprobe option handling"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "kernel",
    "modules",
    "depmod",
    "modprobe",
    "modinfo",
    "linux",
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
    "Topic :: System :: Operating System Kernels :: Linux",
    "Topic :: System :: Systems Administration",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["kmodtools"]

[tool.hatch.build.targets.sdist]
include = ["kmodtools", "tests", "README.md", "pyproject.toml"]

[tool.pytest.ini_options]
addopts = "-ra"
testpaths = ["tests"]
