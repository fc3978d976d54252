[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "nodesetkit"
version = "0.4.0"
description = "NodeSet pod identity, deletion ordering, volume claim retention and Slurm node state control"
requires-python = ">=3.10"
dependencies = []
keywords = ["slurm", "kubernetes", "nodeset", "cluster", "pods", "persistent-volume-claims"]
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
    "Topic :: System :: Clustering",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["nodesetkit"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
