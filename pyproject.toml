[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "efms"
version = "0.1.0"
description = "Edge file management service: archives files to a distributed data store and enforces storage retention policies."
requires-python = ">=3.10"
dependencies = []
keywords = ["archival", "retention", "storage", "backup", "scheduler"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: No Input/Output (Daemon)",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Archiving :: Backup",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
efms = "efms.scheduler:main"

[tool.hatch.build.targets.wheel]
packages = ["efms"]

[tool.pytest.ini_options]
addopts = "-ra"
