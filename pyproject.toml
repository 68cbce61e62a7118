[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "tsstore"
version = "2.2.0a0"
description = "Columnar time-series storage core: SST manifests, snapshot encoding, compaction picking and merge operators."
requires-python = ">=3.11"
dependencies = []
keywords = ["time-series", "storage", "manifest", "compaction", "sst"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Database :: Database Engines/Servers",
]

[project.optional-dependencies]
test = ["pytest"]

[project.scripts]
tsstore-bench = "tsstore.bench:main"

[tool.hatch.build.targets.wheel]
packages = ["tsstore"]

[tool.pytest.ini_options]
addopts = "-ra"
