[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "memdiff"
version = "0.1.0"
description = "Collect Linux memory usage snapshots and report the differences between two of them"
requires-python = ">=3.10"
dependencies = []
keywords = ["memory", "linux", "procfs", "pss", "rss", "diff", "report"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Environment :: Console",
    "Intended Audience :: System Administrators",
    "Intended Audience :: Developers",
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

[project.scripts]
memdiff = "memdiff.cli:main"

[tool.hatch.build.targets.wheel]
packages = ["memdiff"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
