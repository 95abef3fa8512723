"""Elapsed-time phase resolution.

Maps the run's elapsed time to a named behavioural phase (e.g. normal, spike,
recovery). Resolution is a pure function of elapsed time and the configured
phase table, so callers never keep phase flags of their own.
"""

from __future__ import annotations

from bisect import bisect_right

from cacheload.models.plan import DEFAULT_PHASE, PhaseTable


class PhaseResolver:
    """Resolves phase names from a PhaseTable.

    Lookup returns the first boundary whose upper bound exceeds ``elapsed``;
    past the last bound, the table's open-ended phase. Because bounds are
    strictly increasing, a growing elapsed value never maps back to an
    earlier phase.
    """

    def __init__(self, table: PhaseTable | None = None) -> None:
        self._table = table
        self._bounds: list[float] = []
        self._names: list[str] = []
        if table is not None:
            self._bounds = [b.upper_bound_seconds for b in table.boundaries]
            self._names = [b.name for b in table.boundaries]

    @property
    def phases(self) -> list[str]:
        """All phase names in visiting order."""
        if self._table is None:
            return [DEFAULT_PHASE]
        return list(self._names) + [self._table.open_phase]

    def resolve(self, elapsed: float) -> str:
        if self._table is None:
            return DEFAULT_PHASE
        idx = bisect_right(self._bounds, float(elapsed))
        if idx < len(self._names):
            return self._names[idx]
        return self._table.open_phase


def resolve_phase(table: PhaseTable | None, elapsed: float) -> str:
    """Functional shortcut for one-off lookups."""
    return PhaseResolver(table).resolve(elapsed)
