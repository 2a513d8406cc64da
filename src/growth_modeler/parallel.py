from __future__ import annotations

from concurrent.futures import ProcessPoolExecutor, ThreadPoolExecutor
import logging
from typing import Any, Callable, List, Optional, Sequence

from .util import default_workers

logger = logging.getLogger(__name__)


def map_groups(
    func: Callable[[Any], Any],
    tasks: Sequence[Any],
    *,
    parallel: bool = False,
    workers: Optional[int] = None,
    executor: str = "process",
) -> List[Any]:
    """Apply ``func`` to every task, returning results in task order.

    With ``parallel=True`` tasks run in a process or thread pool; ``func``
    and the tasks must then be picklable for the process pool.
    """
    tasks = list(tasks)
    if not parallel or len(tasks) <= 1:
        return [func(t) for t in tasks]

    n_workers = min(int(workers or default_workers()), len(tasks))
    pool_cls = ProcessPoolExecutor if executor == "process" else ThreadPoolExecutor
    logger.debug("Dispatching %d tasks to %s(%d)", len(tasks), pool_cls.__name__, n_workers)
    with pool_cls(max_workers=n_workers) as pool:
        return list(pool.map(func, tasks))
