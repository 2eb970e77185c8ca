[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nodemetrics"
version = "0.1.0"
description = "Collect Linux host metrics (load, memory, interrupts, filesystems, hwmon, IPVS, md RAID, network class, logind sessions) from /proc, /sys and logind"
requires-python = ">=3.10"
dependencies = []
keywords = ["metrics", "monitoring", "procfs", "sysfs", "linux", "hwmon", "ipvs", "mdstat"]
classifiers = [
    "Development Status :: 4 - Beta",
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
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["nodemetrics"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"
