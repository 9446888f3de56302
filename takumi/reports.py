"""Plain-text reports for workspace phases, dependency graphs and change impact."""

from __future__ import annotations

from collections.abc import Iterable, Mapping, Sequence
from datetime import timedelta

from takumi.executor import MetricsEntry, Result
from takumi.graph import Graph

RECENT_BUILD_LIMIT = 5


def capitalize(text: str) -> str:
    """Upper-case the first character of ``text``."""
    return text[:1].upper() + text[1:]


def sorted_keys(mapping: Mapping[str, object] | Iterable[str]) -> list[str]:
    """Return the keys of ``mapping`` in sorted order."""
    return sorted(mapping)


def parse_package_list(text: str | None) -> list[str]:
    """Split a comma-separated package list, dropping blanks and whitespace."""
    if not text:
        return []
    return [name for name in (part.strip() for part in text.split(",")) if name]


def affected_packages(graph: Graph, direct: Iterable[str]) -> list[str]:
    """Return the directly changed packages plus everything downstream of them."""
    affected: set[str] = set()
    for name in direct:
        affected.add(name)
        affected.update(graph.transitive_dependents(name))
    return sorted(affected)


def _format_duration(duration: timedelta) -> str:
    total_ms = round(duration / timedelta(milliseconds=1))
    if total_ms == 0:
        return "0s"
    sign = "-" if total_ms < 0 else ""
    total_ms = abs(total_ms)
    if total_ms < 1000:
        return f"{sign}{total_ms}ms"
    hours, rest = divmod(total_ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    secs = str(seconds)
    if millis:
        secs += f".{millis:03d}".rstrip("0")
    if hours:
        return f"{sign}{hours}h{minutes}m{secs}s"
    if minutes:
        return f"{sign}{minutes}m{secs}s"
    return f"{sign}{secs}s"


def _log_text(result: Result) -> str:
    return "" if result.log_file is None else str(result.log_file)


def summarize_phase(phase: str, results: Sequence[Result], failed: bool = False) -> str:
    """Summarise the results of running ``phase``.

    ``failed`` marks the run as failed even if no individual result did.
    """
    passed = cached = failures = 0
    failed_logs: list[str] = []
    for r in results:
        if r.cache_hit:
            cached += 1
        elif not r.ok:
            failures += 1
            if r.log_file is not None:
                failed_logs.append(str(r.log_file))
        else:
            passed += 1

    label = capitalize(phase)
    if failures > 0 or failed:
        head = f"{label} failed: {passed} passed, {failures} failed"
    else:
        head = f"{label} completed: {passed} passed"
    if cached > 0:
        head += f", {cached} cached"

    lines = [head, "", "Results:"]
    for r in results:
        if r.cache_hit:
            lines.append(f"  ✓ {r.package} — cached")
        elif not r.ok:
            lines.append(f"  ✗ {r.package} — exit code {r.exit_code} (log: {_log_text(r)})")
        else:
            line = f"  ✓ {r.package} — {_format_duration(r.duration)}"
            if r.log_file is not None:
                line += f" (log: {r.log_file})"
            lines.append(line)

    if failed_logs:
        lines += ["", "Failed package logs:"]
        lines += [f"  {path}" for path in failed_logs]
    return "\n".join(lines) + "\n"


def render_graph(graph: Graph, package_count: int) -> str:
    """Render the dependency graph by level. Raises CycleError on cycles."""
    levels = graph.sort()
    lines = [f"Dependency Graph ({package_count} packages, {len(levels)} levels):", ""]
    for level in levels:
        if level.index == 0:
            lines.append(f"Level {level.index} (no dependencies):")
        else:
            lines.append(f"Level {level.index}:")
        for name in sorted(level.packages):
            deps = sorted(graph.deps_of(name))
            lines.append(f"  {name} → {', '.join(deps)}" if deps else f"  {name}")
        lines.append("")
    return "\n".join(lines) + "\n"


def render_affected(
    since: str, changed_files: Sequence[str], direct: Iterable[str], graph: Graph
) -> str:
    """Describe which packages a set of changed files affects."""
    if not changed_files:
        return f"No changed files since {since}."

    direct_set = set(direct)
    transitive = {
        dep
        for name in direct_set
        for dep in graph.transitive_dependents(name)
        if dep not in direct_set
    }

    lines = [f"Since: {since}", f"Changed files: {len(changed_files)}", ""]
    if direct_set:
        lines.append("Directly affected:")
        lines += [f"  {name}" for name in sorted(direct_set)]
    if transitive:
        lines += ["", "Transitively affected:"]
        lines += [f"  {name}" for name in sorted(transitive)]
    lines += ["", f"Total affected: {len(direct_set) + len(transitive)} packages"]
    return "\n".join(lines) + "\n"


def render_recent_builds(runs: Sequence[MetricsEntry]) -> str:
    """Render the most recent recorded runs, or an empty string if there are none."""
    if not runs:
        return ""
    lines = ["Recent Builds:"]
    for run in runs[-RECENT_BUILD_LIMIT:]:
        status = "✓" if run.exit_code == 0 else "✗"
        lines.append(f"  {status} {run.package} {run.phase} {run.duration_ms}ms")
    return "\n".join(lines) + "\n"