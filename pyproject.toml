[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "flowcollect"
version = "2.0.0"
description = "Network flow sample collection: UDP reception, NetFlow v5/v9, IPFIX and sFlow conversion, formatting and transport"
requires-python = ">=3.10"
dependencies = []
keywords = [
    "netflow",
    "ipfix",
    "sflow",
    "flow",
    "network",
    "monitoring",
    "collector",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Telecommunications Industry",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking :: Monitoring",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["flowcollect"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.ruff.lint]
select = ["E", "F", "W", "I", "B", "UP"]

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
warn_redundant_casts = true
