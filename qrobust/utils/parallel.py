"""Worker-pool execution with cooperative cancellation.

Walk-forward windows, Monte Carlo trials and optimisation grid cells are
independent of one another.  :func:`map_ordered` runs them on a thread pool
and always hands results back in input order, so downstream reductions never
depend on completion order.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Iterable, TypeVar

from qrobust.utils.validation import RunCancelledError

T = TypeVar("T")
R = TypeVar("R")


class CancellationToken:
    """Cancellation flag with an optional deadline.

    Parameters
    ----------
    timeout : float, optional
        Seconds from construction after which the token reports itself
        as cancelled.
    """

    def __init__(self, timeout: float | None = None) -> None:
        self._event = threading.Event()
        self._deadline = None if timeout is None else time.monotonic() + timeout

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self._event.set()
            return True
        return False

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError("Run cancelled before completion.")


def map_ordered(
    func: Callable[[T], R],
    items: Iterable[T],
    max_workers: int = 1,
    token: CancellationToken | None = None,
) -> list[R]:
    """Apply *func* to every item and return the results in input order.

    Parameters
    ----------
    func : callable
        Unit of work.  Exceptions it raises propagate to the caller; units
        that must not abort the run should catch their own failures.
    items : iterable
        Inputs, one per unit.
    max_workers : int
        ``<= 1`` runs sequentially in the calling thread; otherwise a
        :class:`~concurrent.futures.ThreadPoolExecutor` of that size is used.
    token : CancellationToken, optional
        Checked before each unit starts.

    Raises
    ------
    RunCancelledError
        If *token* is cancelled before every unit has run.
    """
    items = list(items)

    def _run(item: T) -> R:
        if token is not None:
            token.raise_if_cancelled()
        return func(item)

    if max_workers <= 1 or len(items) <= 1:
        return [_run(item) for item in items]

    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(_run, item) for item in items]
        try:
            return [f.result() for f in futures]
        except RunCancelledError:
            for f in futures:
                f.cancel()
            raise
