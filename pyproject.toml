[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "winbackup"
version = "0.1.0"
description = "Read and write Win32 backup streams, extended attribute buffers and their PAX tar representation"
requires-python = ">=3.10"
dependencies = []
keywords = ["backup", "backupread", "backupwrite", "tar", "pax", "extended-attributes", "filetime"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Intended Audience :: System Administrators",
    "Operating System :: OS Independent",
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

[tool.hatch.build.targets.wheel]
packages = ["winbackup"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
