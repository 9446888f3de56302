[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "takumi"
version = "0.1.0"
description = "Dependency-aware phase runner for multi-package workspaces, with caching, logs and metrics."
requires-python = ">=3.10"
dependencies = []
keywords = ["build", "monorepo", "workspace", "dependency-graph", "cache", "task-runner"]
classifiers = [
    "Development Status :: 3 - Alpha",
    "Intended Audience :: Developers",
    "Operating System :: POSIX",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: Software Development :: Build Tools",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["takumi"]

[tool.pytest.ini_options]
testpaths = ["tests"]
addopts = "-ra"
