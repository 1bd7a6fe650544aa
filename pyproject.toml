[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "lsmdb"
version = "0.1.0"
description = "Storage building blocks for an LSM-tree database: memtables, write-ahead log and SSTables"
requires-python = ">=3.10"
dependencies = []
keywords = ["lsm-tree", "database", "storage", "wal", "sstable", "memtable", "bloom-filter"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["lsmdb"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
strict = true
