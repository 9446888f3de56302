# takumi

A small library for running build, test and custom phases across a
multi-package workspace. Packages are ordered by their dependencies, can run
in parallel within a dependency level, and are skipped when nothing they
depend on has changed since their last successful run.

## Installation

```
pip install .
```

To run the test suite:

```
pip install ".[test]"
pytest
```

## Modules

- `takumi.graph`: `Graph` is a dependency graph with `add_node`, `nodes`,
  `deps_of`, `dependents`, `transitive_dependents`, `sort` and `flatten`.
  `sort` uses Kahn's algorithm and returns `Level` groups whose packages can
  run in parallel. It ignores dependencies that are not nodes of the graph.
  A cycle raises `CycleError`, which lists the nodes involved.
- `takumi.executor`: `run(workspace, options)` runs one phase across a
  `Workspace` of `PackageSpec`s in dependency order.
  - Each package's `Phase` has `pre`, `commands` and `post` shell commands,
    run in that order with `sh -c` in the package directory. A failing
    command stops the package.
  - Each package's output goes to `.takumi/logs/<package>.<phase>.log`. It is
    also printed to the terminal with a `[package]` prefix, unless
    `RunOptions.quiet` is set.
  - `PackageSpec.env` adds environment variables. In their values,
    `{{env_dir}}` is replaced with `.takumi/envs/<package>`.
  - `PhaseCache` stores entries under `.takumi/cache/`. Its key hashes the
    phase name, the package's `takumi-pkg.yaml`, the package's source files
    and the keys of its dependencies. A package whose key matches its last
    successful run is skipped and comes back with `cache_hit=True`;
    `RunOptions.no_cache` turns this off. If the key cannot be computed, for
    example because `takumi-pkg.yaml` is missing, the package runs without
    caching.
  - If any package fails, execution stops after its level and `run` raises
    `PhaseFailedError`, which carries the results collected so far.
  - `record_metrics` appends results to `.takumi/metrics.json` and
    `load_metrics` reads them back. A corrupt metrics file is treated as
    empty.
- `takumi.reports`: plain-text reports.
  - `summarize_phase`, `render_graph`, `render_affected` and
    `render_recent_builds` produce the reports.
  - `affected_packages`, `parse_package_list`, `capitalize` and `sorted_keys`
    are helpers.
- `takumi.styles`: terminal styling in the Takumi palette.
  - `Style.render` applies a style.
  - The helpers are `check`, `cross`, `warn`, `bullet`, `file_path`,
    `command`, `header`, `step_done`, `step_info`, `summary`, `divider` and
    `format_count`.
  - Colour is emitted only on a terminal. `NO_COLOR` turns it off and
    `FORCE_COLOR` turns it on.

## Example

```python
from takumi.graph import Graph

g = Graph()
g.add_node("shared-utils", [])
g.add_node("api-service", ["shared-utils"])
g.add_node("integration-tests", ["api-service"])

for level in g.sort():
    print(level.index, sorted(level.packages))
# 0 ['shared-utils']
# 1 ['api-service']
# 2 ['integration-tests']

print(g.transitive_dependents("shared-utils"))
# ['api-service', 'integration-tests']
```

Running a phase:

```python
from takumi.executor import Phase, PackageSpec, RunOptions, Workspace, run

ws = Workspace(
    root="/path/to/workspace",
    packages={
        "lib": PackageSpec("lib", "/path/to/workspace/lib",
                           phases={"build": Phase(commands=["make"])}),
        "app": PackageSpec("app", "/path/to/workspace/app", dependencies=["lib"],
                           phases={"build": Phase(commands=["make"])}),
    },
)
for result in run(ws, RunOptions(phase="build", parallel=True)):
    print(result.package, result.exit_code, result.cache_hit)
```

## What it does not do

This is a library only. It has no command-line program and no
agent-facing tool server. It does not read workspace or package
configuration files: you build the `Workspace` and `PackageSpec` objects
yourself. It does not ask version control which files changed. To find
affected packages, pass the changed files and the packages they belong to
into `render_affected` and `affected_packages`.