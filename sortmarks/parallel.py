from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, List, Optional, Tuple, TypeVar

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class TaskFailure(Generic[T]):
    item: T
    error: Exception


def run_tasks(
    *,
    label: str,
    items: Iterable[T],
    run: Callable[[T], R],
    jobs: int,
    logger: logging.Logger,
    on_result: Optional[Callable[[T, R], None]] = None,
) -> Tuple[List[R], List[TaskFailure[T]]]:
    """Run ``run`` over every item on a thread pool and wait for all of them.

    ``items`` may be a lazy iterator; tasks are submitted as it yields. A
    failing task is logged and collected, it never cancels its siblings.
    """
    results: List[R] = []
    failures: List[TaskFailure[T]] = []
    workers = max(1, int(jobs))

    with ThreadPoolExecutor(max_workers=workers, thread_name_prefix=label) as ex:
        futures = {ex.submit(run, item): item for item in items}
        for fut in as_completed(futures):
            item = futures[fut]
            try:
                res = fut.result()
            except Exception as e:
                logger.warning("%s task for %r failed: %s", label, item, e)
                failures.append(TaskFailure(item=item, error=e))
                continue
            results.append(res)
            if on_result is not None:
                on_result(item, res)

    if failures:
        logger.warning("%s: %d/%d tasks failed", label, len(failures), len(futures))
    return results, failures
