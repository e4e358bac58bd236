[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "sysstatsmon"
version = "0.1.0"
description = "Periodic collector of CPU, memory, disk, network, host and OS-feature metrics for a node"
requires-python = ">=3.10"
dependencies = [
    "psutil",
]
keywords = ["monitoring", "metrics", "procfs", "node", "system-stats"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Monitoring",
]

[project.optional-dependencies]
test = [
    "pytest",
]

[project.scripts]
sysstatsmon = "sysstatsmon.monitor:main"

[tool.hatch.build.targets.wheel]
packages = ["sysstatsmon"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
