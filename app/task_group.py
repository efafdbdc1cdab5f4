"""Explicit fan-out helper returning a result-or-error per task."""
from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from app.errors import InputValidationError
from utils.logging_utils import get_tagged_logger

logger = get_tagged_logger(__name__, tag="task_group")


@dataclass
class TaskOutcome:
    """Outcome of one task: exactly one of value/error is meaningful."""
    name: str
    value: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def unwrap_or(self, default: Any) -> Any:
        """Return the value, or ``default`` when the task failed."""
        return self.value if self.ok else default


class TaskGroup:
    """Run named callables concurrently; sibling failures never cancel each other.

    Usage::

        with TaskGroup() as group:
            group.submit("weather", fetch_weather, lat, lon)
            group.submit("catalog", catalog.get)
        outcomes = group.results()
    """

    def __init__(self, max_workers: int = 6) -> None:
        self._executor = ThreadPoolExecutor(max_workers=max_workers)
        self._futures: Dict[str, Future] = {}
        self._outcomes: Dict[str, TaskOutcome] = {}

    def __enter__(self) -> "TaskGroup":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.results()
        self._executor.shutdown(wait=True)

    def submit(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> None:
        """Schedule ``fn`` under ``name``."""
        if name in self._futures:
            raise ValueError(f"Duplicate task name: {name}")
        self._futures[name] = self._executor.submit(fn, *args, **kwargs)

    def results(self) -> Dict[str, TaskOutcome]:
        """Wait for every task and return outcomes keyed by task name."""
        for name, future in self._futures.items():
            if name in self._outcomes:
                continue
            try:
                self._outcomes[name] = TaskOutcome(name=name, value=future.result())
            except Exception as exc:
                logger.warning("Task failed", extra={"task": name, "error": repr(exc)})
                self._outcomes[name] = TaskOutcome(name=name, error=exc)
        return dict(self._outcomes)

    def raise_terminal(self) -> None:
        """Re-raise the first input-validation failure, if any task hit one."""
        for outcome in self.results().values():
            if isinstance(outcome.error, InputValidationError):
                raise outcome.error
