"""Order-stable parallel map for per-gene and per-group work."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from typing import Any, TypeVar

from joblib import Parallel, delayed

from celltraj.errors import ParameterError, WorkerFailure

T = TypeVar("T")
R = TypeVar("R")

_BACKENDS = {"loky", "multiprocessing", "threading"}


def _logger() -> logging.Logger:
    return logging.getLogger("celltraj.parallel")


def _unit_of(item: Any, unit_label: Callable[[Any], Any] | None) -> Any:
    return item if unit_label is None else unit_label(item)


def _call_indexed(
    func: Callable[[T], R],
    indexed: tuple[int, T],
    unit_label: Callable[[T], Any] | None,
) -> tuple[int, R]:
    idx, item = indexed
    try:
        return idx, func(item)
    except WorkerFailure:
        raise
    except Exception as exc:
        raise WorkerFailure(
            _unit_of(item, unit_label), f"{type(exc).__name__}: {exc}"
        ) from exc


def parallel_map(
    func: Callable[[T], R],
    items: Iterable[T],
    *,
    n_jobs: int = 1,
    backend: str = "loky",
    unit_label: Callable[[T], Any] | None = None,
) -> list[R]:
    """Apply `func` to items with deterministic, order-stable aggregation.

    Notes:
    - Output order is always aligned to input order, independent of scheduling.
    - The first failing unit raises `WorkerFailure`; no partial list is returned.
    - `func` must treat shared inputs as read-only.
    """
    seq = list(items)
    if not seq:
        return []
    jobs = int(n_jobs)
    if jobs == 0 or jobs < -1:
        raise ParameterError("n_jobs", n_jobs, "use a positive worker count or -1 for all cores.")
    if backend not in _BACKENDS:
        raise ParameterError("backend", backend, f"expected one of {sorted(_BACKENDS)}.")

    indexed = list(enumerate(seq))
    if jobs == 1 or len(seq) == 1:
        _logger().debug("parallel_map serial execution: n_items=%d", len(seq))
        return [_call_indexed(func, pair, unit_label)[1] for pair in indexed]

    _logger().debug(
        "parallel_map n_items=%d n_jobs=%d backend=%s", len(seq), jobs, backend
    )
    rows = Parallel(n_jobs=jobs, backend=backend)(
        delayed(_call_indexed)(func, pair, unit_label) for pair in indexed
    )
    rows.sort(key=lambda x: x[0])
    return [row for _, row in rows]
