"""Metrics store shared by every instrumented callable of one profiler.

Two tables live here:
- callables: identity -> CallMetrics, one record per instrumented callable,
  accumulating every invocation regardless of nesting.
- primaries: primary identity -> {subcall identity -> CallMetrics}, the
  contribution of each subcall while that primary was in flight. A primary is
  always present in its own subcall set (the self-entry) and that entry holds
  the primary-level totals used by reports.

Design by Contract:
- Recording against an unregistered identity is a programming error (crash)
- Elapsed time MUST be non-negative
- ncalls == 0 <=> time_ns == 0 for every record

All mutations and snapshots go through a single re-entrant lock, so readers
never observe a record with one field updated and the other stale.
"""

import threading
from collections.abc import Generator, Mapping
from contextlib import contextmanager
from types import MappingProxyType

from beartype import beartype


class CallMetrics:
    """Accumulated wall-clock time and call count for one callable identity.

    Attributes:
        identity: Aggregation key (see callable_identity)
        name: Display name (qualified name of the callable)
        module: Display module of the callable
        ncalls: Number of completed invocations
        time_ns: Accumulated elapsed time in nanoseconds
        memory_delta: Accumulated process memory change in GB (primaries only)
        peak_memory: Highest process RSS observed at call exit in GB (primaries only)
    """

    @beartype
    def __init__(
        self,
        identity: int,
        name: str,
        module: str,
        ncalls: int = 0,
        time_ns: int = 0,
    ) -> None:
        assert ncalls >= 0, f"Call count must be non-negative: {ncalls}"
        assert time_ns >= 0, f"Elapsed time must be non-negative: {time_ns}"
        self.identity = identity
        self.name = name
        self.module = module
        self.ncalls = ncalls
        self.time_ns = time_ns
        self.memory_delta: float = 0.0
        self.peak_memory: float = 0.0

    def add(self, elapsed_ns: int) -> None:
        self.time_ns += elapsed_ns
        self.ncalls += 1

    @property
    def per_call_ns(self) -> float:
        if self.ncalls > 0:
            return self.time_ns / self.ncalls
        return 0.0

    def copy(self) -> "CallMetrics":
        clone = CallMetrics(self.identity, self.name, self.module, self.ncalls, self.time_ns)
        clone.memory_delta = self.memory_delta
        clone.peak_memory = self.peak_memory
        return clone

    def zeroed(self) -> "CallMetrics":
        """Same identity and labels, no accumulated calls."""
        return CallMetrics(self.identity, self.name, self.module)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, CallMetrics):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    def __repr__(self) -> str:
        return (
            f"CallMetrics(name={self.name!r}, module={self.module!r}, "
            f"ncalls={self.ncalls}, time_ns={self.time_ns})"
        )


class MetricsSnapshot:
    """Read-only, point-in-time copy of both metric tables.

    Records are copies; mutating the profiler afterwards does not change a
    snapshot already taken.
    """

    def __init__(
        self,
        callables: dict[int, CallMetrics],
        primaries: dict[int, dict[int, CallMetrics]],
    ) -> None:
        self.callables: Mapping[int, CallMetrics] = MappingProxyType(callables)
        self.primaries: Mapping[int, Mapping[int, CallMetrics]] = MappingProxyType(
            {pcall: MappingProxyType(subcalls) for pcall, subcalls in primaries.items()}
        )

    def primary_metrics(self, primary: int) -> CallMetrics:
        """Primary-level totals (the primary's self-entry)."""
        return self.primaries[primary][primary]

    def subcalls(self, primary: int) -> list[CallMetrics]:
        """Subcall records of ``primary`` excluding its self-entry, in insertion order."""
        return [m for ident, m in self.primaries[primary].items() if ident != primary]

    @property
    def total_time_ns(self) -> int:
        """Sum of every primary call's own total."""
        return sum(self.primary_metrics(pcall).time_ns for pcall in self.primaries)

    def __len__(self) -> int:
        return len(self.primaries)


class MetricsStore:
    """Thread-safe tables of per-callable and per-primary call metrics.

    Example:
        store = MetricsStore()
        store.register(ident, name="search", module="algos")
        store.record(ident, elapsed_ns=1_200)
        view = store.snapshot()
    """

    def __init__(self) -> None:
        self._callables: dict[int, CallMetrics] = {}
        self._primaries: dict[int, dict[int, CallMetrics]] = {}
        self._lock = threading.RLock()

    @contextmanager
    def locked(self) -> Generator["MetricsStore", None, None]:
        """Hold the store lock across several operations."""
        with self._lock:
            yield self

    @beartype
    def register(self, identity: int, name: str = "<callable>", module: str = "<unknown>") -> None:
        """Ensure a zeroed record exists for ``identity`` (idempotent)."""
        with self._lock:
            if identity not in self._callables:
                self._callables[identity] = CallMetrics(identity, name, module)

    @beartype
    def is_registered(self, identity: int) -> bool:
        with self._lock:
            return identity in self._callables

    @beartype
    def ensure_primary(self, identity: int) -> None:
        """Create the registry entry and self-entry for a primary call (idempotent)."""
        with self._lock:
            assert identity in self._callables, f"Unregistered callable identity: {identity:#x}"
            subcalls = self._primaries.setdefault(identity, {})
            if identity not in subcalls:
                subcalls[identity] = self._callables[identity].zeroed()

    @beartype
    def enter_as_subcall(self, primary: int, subcall: int) -> None:
        """Ensure ``subcall`` has a slot in ``primary``'s subcall set.

        The slot is zero-initialized on first occurrence and reused afterwards.
        """
        with self._lock:
            assert primary in self._primaries, f"Unknown primary call: {primary:#x}"
            assert subcall in self._callables, f"Unregistered callable identity: {subcall:#x}"
            subcalls = self._primaries[primary]
            if subcall not in subcalls:
                subcalls[subcall] = self._callables[subcall].zeroed()

    @beartype
    def record(self, identity: int, elapsed_ns: int) -> None:
        """Add one call of ``elapsed_ns`` to the callable's own record (atomic)."""
        assert elapsed_ns >= 0, f"Elapsed time must be non-negative: {elapsed_ns}"
        with self._lock:
            assert identity in self._callables, f"Unregistered callable identity: {identity:#x}"
            self._callables[identity].add(elapsed_ns)

    @beartype
    def record_subcall(self, primary: int, subcall: int, elapsed_ns: int) -> None:
        """Add one call of ``elapsed_ns`` to ``subcall``'s slot under ``primary``."""
        assert elapsed_ns >= 0, f"Elapsed time must be non-negative: {elapsed_ns}"
        with self._lock:
            slot = self._primaries.get(primary, {}).get(subcall)
            assert slot is not None, (
                f"Subcall {subcall:#x} was never entered under primary {primary:#x}"
            )
            slot.add(elapsed_ns)

    @beartype
    def record_memory(self, primary: int, memory_delta: float, peak_memory: float) -> None:
        """Accumulate process memory observed around one primary call."""
        assert peak_memory >= 0, f"Peak memory cannot be negative: {peak_memory:.2f}GB"
        with self._lock:
            slot = self._primaries.get(primary, {}).get(primary)
            assert slot is not None, f"Unknown primary call: {primary:#x}"
            slot.memory_delta += memory_delta
            slot.peak_memory = max(slot.peak_memory, peak_memory)

    def snapshot(self) -> MetricsSnapshot:
        """Consistent copy of both tables."""
        with self._lock:
            callables = {ident: m.copy() for ident, m in self._callables.items()}
            primaries = {
                pcall: {ident: m.copy() for ident, m in subcalls.items()}
                for pcall, subcalls in self._primaries.items()
            }
        return MetricsSnapshot(callables, primaries)

    def clear(self) -> None:
        """Zero every record and forget every primary call.

        Registrations survive, so instrumented callables stay usable.
        """
        with self._lock:
            self._callables = {ident: m.zeroed() for ident, m in self._callables.items()}
            self._primaries.clear()
