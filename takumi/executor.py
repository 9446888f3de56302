"""Runs package phases in dependency order, with caching, logs and metrics."""

from __future__ import annotations

import codecs
import fnmatch
import hashlib
import json
import os
import subprocess
import sys
import threading
import time
from collections.abc import Iterator, Mapping
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timedelta
from pathlib import Path
from typing import IO, Protocol

from takumi import styles
from takumi.graph import Graph

MARKER_DIR = ".takumi"
PACKAGE_FILE = "takumi-pkg.yaml"
ENV_DIR_PLACEHOLDER = "{{env_dir}}"

_SKIPPED_DIRS = {".git", MARKER_DIR}


@dataclass
class Phase:
    """Commands making up one phase: pre-commands, main commands, post-commands."""

    commands: list[str] = field(default_factory=list)
    pre: list[str] = field(default_factory=list)
    post: list[str] = field(default_factory=list)

    def all_commands(self) -> list[str]:
        """Return the commands in execution order: pre, main, post."""
        return [*self.pre, *self.commands, *self.post]


@dataclass
class PackageSpec:
    """A package discovered in a workspace."""

    name: str
    dir: Path
    dependencies: list[str] = field(default_factory=list)
    phases: dict[str, Phase] = field(default_factory=dict)
    env: dict[str, str] | None = None
    version: str = ""

    def __post_init__(self) -> None:
        self.dir = Path(self.dir)

    @property
    def config_path(self) -> Path:
        """Path of the package configuration file."""
        return self.dir / PACKAGE_FILE


@dataclass
class Workspace:
    """A workspace root with its packages and cache ignore patterns."""

    root: Path
    packages: dict[str, PackageSpec] = field(default_factory=dict)
    ignore: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.root = Path(self.root)


@dataclass
class RunOptions:
    """Controls which phase runs, for which packages, and how."""

    phase: str
    packages: list[str] | None = None
    parallel: bool = False
    no_cache: bool = False
    quiet: bool = False


@dataclass
class Result:
    """Outcome of running a phase for one package."""

    package: str
    phase: str
    exit_code: int = 0
    duration: timedelta = field(default_factory=timedelta)
    error: str | None = None
    log_file: Path | None = None
    cache_hit: bool = False

    @property
    def ok(self) -> bool:
        """True when the phase finished without error and with exit code 0."""
        return self.error is None and self.exit_code == 0

    @property
    def duration_ms(self) -> int:
        """Duration in whole milliseconds."""
        return self.duration // timedelta(milliseconds=1)


@dataclass
class CacheEntry:
    """A record of a successful phase run for a given cache key."""

    key: str
    package: str
    phase: str
    timestamp: str
    duration_ms: int = 0
    file_count: int = 0


class PhaseFailedError(RuntimeError):
    """Raised when a phase fails for some package; carries all results so far."""

    def __init__(self, phase: str, package: str, results: list[Result]) -> None:
        self.phase = phase
        self.package = package
        self.results = list(results)
        super().__init__(f'phase "{phase}" failed for package "{package}"')


class PhaseCache:
    """Content-addressed cache of successful phase runs under the marker directory."""

    def __init__(self, root: str | os.PathLike[str], ignore: list[str] | tuple[str, ...] = ()) -> None:
        self.root = Path(root)
        self.ignore = list(ignore)
        self.directory = self.root / MARKER_DIR / "cache"

    def compute_key(
        self, package: PackageSpec, phase: str, dep_keys: Mapping[str, str]
    ) -> tuple[str, int]:
        """Hash the package sources, config, phase and dependency keys.

        Returns the key and the number of source files hashed. Raises OSError
        when the package configuration cannot be read.
        """
        digest = hashlib.sha256()
        digest.update(f"phase:{phase}\n".encode())
        digest.update(b"config:")
        digest.update(package.config_path.read_bytes())
        digest.update(b"\n")
        for dep in sorted(dep_keys):
            digest.update(f"dep:{dep}={dep_keys[dep]}\n".encode())

        count = 0
        for rel, path in self._source_files(package.dir, package.config_path):
            digest.update(f"file:{rel}\n".encode())
            digest.update(hashlib.sha256(path.read_bytes()).digest())
            count += 1
        return digest.hexdigest(), count

    def lookup(self, package: str, phase: str) -> CacheEntry | None:
        """Return the stored entry for a package and phase, or None."""
        try:
            data = json.loads(self._entry_path(package, phase).read_text("utf-8"))
            names = {f.name for f in fields(CacheEntry)}
            return CacheEntry(**{k: v for k, v in data.items() if k in names})
        except (OSError, ValueError, TypeError, AttributeError):
            return None

    def write(self, entry: CacheEntry) -> None:
        """Store an entry, replacing any previous one for its package and phase."""
        self.directory.mkdir(parents=True, exist_ok=True)
        path = self._entry_path(entry.package, entry.phase)
        path.write_text(json.dumps(asdict(entry), indent=2), "utf-8")

    def _entry_path(self, package: str, phase: str) -> Path:
        return self.directory / f"{package}.{phase}.json"

    def _ignored(self, rel: str) -> bool:
        parts = rel.split("/")
        return any(
            fnmatch.fnmatch(rel, pattern) or any(fnmatch.fnmatch(p, pattern) for p in parts)
            for pattern in self.ignore
        )

    def _source_files(self, top: Path, config_path: Path) -> Iterator[tuple[str, Path]]:
        for current, dirnames, filenames in os.walk(top):
            base = Path(current)
            dirnames[:] = sorted(
                d
                for d in dirnames
                if d not in _SKIPPED_DIRS
                and not self._ignored((base / d).relative_to(top).as_posix())
            )
            for filename in sorted(filenames):
                path = base / filename
                if path == config_path:
                    continue
                rel = path.relative_to(top).as_posix()
                if not self._ignored(rel):
                    yield rel, path


class _Sink(Protocol):
    def write(self, data: bytes) -> object: ...


class PrefixWriter:
    """Writes bytes to a sink, putting a prefix at the start of every line."""

    def __init__(self, prefix: str | bytes, sink: _Sink, at_line_start: bool = True) -> None:
        self.prefix = prefix.encode() if isinstance(prefix, str) else prefix
        self._sink = sink
        self._at_line_start = at_line_start

    def write(self, data: bytes) -> int:
        """Write ``data`` with prefixes and return the number of input bytes consumed."""
        pos = 0
        while pos < len(data):
            end = data.find(b"\n", pos)
            chunk = data[pos:] if end == -1 else data[pos : end + 1]
            if self._at_line_start:
                self._sink.write(self.prefix)
                self._at_line_start = False
            self._sink.write(chunk)
            self._at_line_start = chunk.endswith(b"\n")
            pos += len(chunk)
        return len(data)


class _DiscardSink:
    def write(self, data: bytes) -> int:
        return len(data)


class _TextSink:
    """Decodes bytes incrementally and writes them to a text stream."""

    def __init__(self, stream: IO[str]) -> None:
        self._stream = stream
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")

    def write(self, data: bytes) -> int:
        text = self._decoder.decode(data)
        if text:
            self._stream.write(text)
            self._stream.flush()
        return len(data)


def run(
    workspace: Workspace, options: RunOptions, cache: PhaseCache | None = None
) -> list[Result]:
    """Run a phase across workspace packages in dependency order.

    Packages whose sources, config and dependencies are unchanged since their
    last successful run are skipped unless ``options.no_cache`` is set.
    Raises CycleError for cyclic dependencies and PhaseFailedError when a
    package fails; execution stops after the level containing the failure.
    """
    graph = Graph()
    for name, pkg in workspace.packages.items():
        graph.add_node(name, pkg.dependencies)
    levels = graph.sort()

    targets = set(options.packages or ())
    if cache is None:
        cache = PhaseCache(workspace.root, workspace.ignore)
    cache_keys: dict[str, str] = {}
    results: list[Result] = []

    for level in levels:
        names = [
            name
            for name in level.packages
            if (not targets or name in targets) and name in workspace.packages
        ]
        if not names:
            continue

        if options.parallel and len(names) > 1:
            results.extend(_run_level_parallel(workspace, names, options, cache, cache_keys))
        else:
            for name in names:
                result, key = _run_cached(workspace, name, options, cache, cache_keys)
                if key:
                    cache_keys[name] = key
                results.append(result)

        failed = next((r for r in results if not r.ok), None)
        if failed is not None:
            raise PhaseFailedError(options.phase, failed.package, results)

    return results


def _run_level_parallel(
    workspace: Workspace,
    names: list[str],
    options: RunOptions,
    cache: PhaseCache,
    cache_keys: dict[str, str],
) -> list[Result]:
    snapshot = dict(cache_keys)
    with ThreadPoolExecutor(max_workers=len(names)) as pool:
        outcomes = list(
            pool.map(lambda n: _run_cached(workspace, n, options, cache, snapshot), names)
        )
    for name, (_, key) in zip(names, outcomes):
        if key:
            cache_keys[name] = key
    return [result for result, _ in outcomes]


def _run_cached(
    workspace: Workspace,
    name: str,
    options: RunOptions,
    cache: PhaseCache,
    known_keys: Mapping[str, str],
) -> tuple[Result, str | None]:
    pkg = workspace.packages[name]
    if pkg.phases.get(options.phase) is None:
        return run_phase(workspace, name, options), None

    dep_keys = {d: known_keys[d] for d in pkg.dependencies if d in known_keys}
    try:
        key, file_count = cache.compute_key(pkg, options.phase, dep_keys)
    except OSError:
        return run_phase(workspace, name, options), None

    if not options.no_cache:
        entry = cache.lookup(name, options.phase)
        if entry is not None and entry.key == key:
            return Result(package=name, phase=options.phase, cache_hit=True), key

    result = run_phase(workspace, name, options)
    if result.ok:
        try:
            cache.write(
                CacheEntry(
                    key=key,
                    package=name,
                    phase=options.phase,
                    timestamp=_now_rfc3339(),
                    duration_ms=result.duration_ms,
                    file_count=file_count,
                )
            )
        except OSError:
            pass
    return result, key


def run_phase(workspace: Workspace, name: str, options: RunOptions) -> Result:
    """Run every command of one phase for one package, logging to a file."""
    pkg = workspace.packages[name]
    phase = options.phase
    started = datetime.now().astimezone()
    clock = time.monotonic()

    def elapsed() -> timedelta:
        return timedelta(seconds=time.monotonic() - clock)

    result = Result(package=name, phase=phase)
    phase_config = pkg.phases.get(phase)
    if phase_config is None:
        result.duration = elapsed()
        return result

    log_dir = workspace.root / MARKER_DIR / "logs"
    try:
        log_dir.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass
    log_path = log_dir / f"{name}.{phase}.log"
    try:
        log = open(log_path, "wb")
    except OSError as exc:
        result.error = f"creating log file: {exc}"
        result.duration = elapsed()
        return result

    with log:
        result.log_file = log_path
        log.write(
            f"# takumi {phase} {name}\n"
            f"# started: {started.isoformat(timespec='seconds')}\n"
            f"# cwd: {pkg.dir}\n\n".encode()
        )
        env = _phase_env(workspace, name, pkg)
        prefix = styles.MUTED.render(f"[{name}] ")

        for cmd in phase_config.all_commands():
            log.write(f"$ {cmd}\n".encode())
            log.flush()
            exit_code, error = _run_command(cmd, pkg.dir, env, log, prefix, options.quiet)
            if error is not None:
                result.exit_code = exit_code
                result.error = error
                result.duration = elapsed()
                log.write(
                    f"\n# exit code: {exit_code}\n"
                    f"# duration: {_format_duration(result.duration)}\n".encode()
                )
                return result
            log.write(b"\n")

        result.duration = elapsed()
        log.write(
            f"# exit code: 0\n# duration: {_format_duration(result.duration)}\n".encode()
        )
    return result


def _phase_env(workspace: Workspace, name: str, pkg: PackageSpec) -> dict[str, str]:
    env = dict(os.environ)
    if pkg.env is not None:
        env_dir = str(workspace.root / MARKER_DIR / "envs" / name)
        for key, value in pkg.env.items():
            env[key] = value.replace(ENV_DIR_PLACEHOLDER, env_dir)
    return env


def _run_command(
    cmd: str,
    cwd: Path,
    env: dict[str, str],
    log: IO[bytes],
    prefix: str,
    quiet: bool,
) -> tuple[int, str | None]:
    try:
        proc = subprocess.Popen(
            ["sh", "-c", cmd],
            cwd=cwd,
            env=env,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        return -1, str(exc)

    lock = threading.Lock()
    pumps = []
    for pipe, stream in ((proc.stdout, sys.stdout), (proc.stderr, sys.stderr)):
        sink: _Sink = _DiscardSink() if quiet else _TextSink(stream)
        pumps.append(
            threading.Thread(
                target=_pump, args=(pipe, log, lock, PrefixWriter(prefix, sink)), daemon=True
            )
        )
    for pump in pumps:
        pump.start()
    for pump in pumps:
        pump.join()
    code = proc.wait()

    if code == 0:
        return 0, None
    if code > 0:
        return code, f"exit status {code}"
    return -1, f"signal: {-code}"


def _pump(pipe: IO[bytes], log: IO[bytes], lock: threading.Lock, terminal: PrefixWriter) -> None:
    with pipe:
        for chunk in iter(lambda: pipe.read1(65536), b""):
            with lock:
                log.write(chunk)
                log.flush()
            try:
                terminal.write(chunk)
            except (OSError, ValueError):
                pass


def _format_duration(duration: timedelta) -> str:
    return f"{duration.total_seconds():.3f}s"


def _now_rfc3339() -> str:
    return datetime.now().astimezone().isoformat(timespec="seconds")


@dataclass
class MetricsEntry:
    """A single build telemetry record."""

    timestamp: str
    phase: str
    package: str
    duration_ms: int
    exit_code: int

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> MetricsEntry:
        return cls(
            timestamp=str(data.get("timestamp", "")),
            phase=str(data.get("phase", "")),
            package=str(data.get("package", "")),
            duration_ms=int(data.get("duration_ms", 0)),  # type: ignore[arg-type]
            exit_code=int(data.get("exit_code", 0)),  # type: ignore[arg-type]
        )


def _metrics_path(ws_root: str | os.PathLike[str]) -> Path:
    return Path(ws_root) / MARKER_DIR / "metrics.json"


def load_metrics(ws_root: str | os.PathLike[str]) -> list[MetricsEntry]:
    """Read recorded runs; a missing or corrupt metrics file yields no runs."""
    try:
        data = json.loads(_metrics_path(ws_root).read_text("utf-8"))
    except (OSError, ValueError):
        return []
    if not isinstance(data, dict):
        return []
    runs = data.get("runs") or []
    if not isinstance(runs, list):
        return []
    try:
        return [MetricsEntry.from_dict(run) for run in runs]
    except (TypeError, ValueError, AttributeError):
        return []


def record_metrics(ws_root: str | os.PathLike[str], results: list[Result]) -> None:
    """Append results to the workspace metrics file. Raises OSError on write failure."""
    runs = load_metrics(ws_root)
    timestamp = _now_rfc3339()
    runs.extend(
        MetricsEntry(
            timestamp=timestamp,
            phase=r.phase,
            package=r.package,
            duration_ms=r.duration_ms,
            exit_code=r.exit_code,
        )
        for r in results
    )
    payload = json.dumps({"runs": [asdict(run) for run in runs]}, indent=2)
    _metrics_path(ws_root).write_text(payload, "utf-8")