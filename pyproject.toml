[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "advisorydb"
version = "0.1.0"
description = "Load distribution and language security advisories into a nested key-value vulnerability database"
requires-python = ">=3.10"
keywords = ["security", "vulnerability", "advisory", "cve", "database"]
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
    "Topic :: Security",
]
dependencies = [
    "pyyaml",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[tool.hatch.build.targets.wheel]
packages = ["advisorydb"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
