"""Call-attribution engine.

Design by Contract (P1 - MANDATORY):
- Elapsed time MUST be non-negative (crash if negative)
- Metrics are only ever recorded against registered identities (crash otherwise)
- Exceptions from wrapped callables propagate unchanged
- Fail-fast on violations

Attribution is flattened to two tiers. The first instrumented call to start
while no primary call is in flight becomes the primary call; every
instrumented call made before it returns is a subcall of it. A primary that
re-enters its own wrapper stays a single primary context and only the
outermost return clears it.

Threads: the active primary is one slot per profiler. Call trees driven from
several threads at once will attribute subcalls to whichever primary happens
to be active. Use one profiler per thread when that matters.

All classes use beartype for runtime type enforcement.
"""

import enum
import functools
import json
import time
from collections.abc import Callable
from pathlib import Path
from typing import Any, NamedTuple

import psutil
from beartype import beartype
from loguru import logger

from blkarbs_callprof._identity import callable_identity, callable_name
from blkarbs_callprof._metrics import MetricsSnapshot, MetricsStore
from blkarbs_callprof._report import render_report, snapshot_to_results


class CallRole(enum.Enum):
    PRIMARY = "primary"
    REENTRY = "reentry"
    SUBCALL = "subcall"


class _Frame(NamedTuple):
    identity: int
    role: CallRole
    primary: int


class TimeProfiler:
    """Wraps callables and attributes their timings to the primary call in flight.

    Args:
        realtime: Print the report each time a primary call completes
        track_memory: Sample process memory via psutil around primary calls

    Example:
        profiler = TimeProfiler(realtime=False)

        @profiler.wrap
        def inner(x):
            return x * 2

        @profiler.wrap
        def outer(n):
            return sum(inner(i) for i in range(n))

        outer(5)
        profiler.print_report()
    """

    @beartype
    def __init__(self, realtime: bool = False, track_memory: bool = False) -> None:
        self.realtime = realtime
        self.track_memory = track_memory
        self._store = MetricsStore()
        self._active_primary: int | None = None
        self._primary_depth: int = 0

    @property
    def active_primary(self) -> int | None:
        """Identity of the primary call in flight, or None when idle."""
        with self._store.locked():
            return self._active_primary

    @property
    def store(self) -> MetricsStore:
        return self._store

    @beartype
    def wrap(self, func: Callable[..., Any]) -> Callable[..., Any]:
        """Return an instrumented callable with the same call contract as ``func``.

        Usable as a decorator. Wrapping two callables with the same static
        shape yields wrappers that share one record.
        """
        identity = callable_identity(func)
        name, module = callable_name(func)
        self._store.register(identity, name=name, module=module)
        logger.debug(f"Registered {module}.{name} as {identity:#018x}")

        @functools.wraps(func)
        def instrumented(*args: Any, **kwargs: Any) -> Any:
            frame = self._enter(identity)
            memory_before = self._sample_memory() if frame.role is CallRole.PRIMARY else 0.0
            start = time.perf_counter_ns()
            try:
                result = func(*args, **kwargs)
            except BaseException:
                self._abandon(frame)
                raise
            elapsed_ns = time.perf_counter_ns() - start
            self._complete(frame, elapsed_ns, memory_before)
            return result

        instrumented.__profiler_identity__ = identity
        return instrumented

    def _enter(self, identity: int) -> _Frame:
        with self._store.locked() as store:
            if self._active_primary is None:
                self._active_primary = identity
                self._primary_depth = 1
                store.ensure_primary(identity)
                return _Frame(identity, CallRole.PRIMARY, identity)

            primary = self._active_primary
            if identity == primary:
                self._primary_depth += 1
                return _Frame(identity, CallRole.REENTRY, primary)

            store.enter_as_subcall(primary, identity)
            return _Frame(identity, CallRole.SUBCALL, primary)

    def _complete(self, frame: _Frame, elapsed_ns: int, memory_before: float) -> None:
        assert elapsed_ns >= 0, (
            f"Elapsed time cannot be negative: {elapsed_ns}ns. Timing bug."
        )
        with self._store.locked() as store:
            store.record(frame.identity, elapsed_ns)
            if frame.role is CallRole.SUBCALL:
                store.record_subcall(frame.primary, frame.identity, elapsed_ns)
            elif frame.role is CallRole.PRIMARY:
                store.record_subcall(frame.identity, frame.identity, elapsed_ns)
                if self.track_memory:
                    memory_after = self._sample_memory()
                    store.record_memory(frame.identity, memory_after - memory_before, memory_after)
            finished_primary = self._release(frame)

        if finished_primary and self.realtime:
            self.print_report()

    def _abandon(self, frame: _Frame) -> None:
        logger.debug(
            f"Call to {frame.identity:#018x} raised; its timing is not recorded"
        )
        with self._store.locked():
            self._release(frame)

    def _release(self, frame: _Frame) -> bool:
        """Pop one level of the active primary. Caller holds the store lock."""
        if frame.role is CallRole.SUBCALL:
            return False
        if frame.role is CallRole.REENTRY:
            # Another thread may already have closed (or replaced) this primary.
            if self._active_primary == frame.primary and self._primary_depth > 1:
                self._primary_depth -= 1
            return False
        self._active_primary = None
        self._primary_depth = 0
        return True

    def _sample_memory(self) -> float:
        if not self.track_memory:
            return 0.0
        return psutil.Process().memory_info().rss / 1024**3  # GB

    def snapshot(self) -> MetricsSnapshot:
        return self._store.snapshot()

    @beartype
    def render_report(self, title: str = "PROFILING REPORT") -> list[str]:
        """Report lines for the current snapshot, without emitting them."""
        return render_report(self._store.snapshot(), title)

    @beartype
    def print_report(self, title: str = "PROFILING REPORT") -> None:
        """Log the hierarchical report via loguru.

        Does not modify stored metrics; calling it repeatedly yields the same
        totals until another instrumented call completes.
        """
        for line in self.render_report(title):
            logger.info(line)

    @beartype
    def get_results(self) -> dict[str, dict[str, Any]]:
        """Aggregated metrics per primary call (see snapshot_to_results)."""
        return snapshot_to_results(self._store.snapshot())

    @beartype
    def flush_to_file(self, path: Path) -> None:
        """Write current results to a JSON checkpoint file.

        Args:
            path: Output file path (will be created/overwritten)
        """
        results = self.get_results()
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            json.dump(results, f, indent=2, default=str)

    @beartype
    def reset(self) -> None:
        """Discard all accumulated metrics; wrapped callables stay usable."""
        with self._store.locked() as store:
            assert self._active_primary is None, (
                "Cannot reset the profiler while a primary call is in flight"
            )
            store.clear()
