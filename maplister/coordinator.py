"""Bounded worker pool that runs independent crawl branches."""

from __future__ import annotations

import threading
from collections import Counter
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Callable

from maplister.logging_config import get_logger

LOGGER = get_logger(__name__)

ProgressCallback = Callable[[int, int], None]


@dataclass
class CrawlSummary:
    """Run counters; every mutation goes through :meth:`add` under one lock."""

    total_estimate: int = 0
    categories: int = 0
    categories_completed: int = 0
    maps_seen: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    downloads_updated: int = 0
    deleted: int = 0
    failed_branches: int = 0
    failures: Counter[str] = field(default_factory=Counter)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False, compare=False)

    def add(self, **increments: int) -> None:
        with self._lock:
            for name, value in increments.items():
                setattr(self, name, getattr(self, name) + value)

    def add_failure(self, branch: str) -> None:
        with self._lock:
            self.failed_branches += 1
            self.failures[branch.split(":", 1)[0]] += 1

    @property
    def mutations(self) -> int:
        return self.inserted + self.updated + self.downloads_updated + self.deleted

    def as_log_line(self) -> str:
        return (
            f"categories={self.categories} completed={self.categories_completed} "
            f"maps_seen={self.maps_seen} inserted={self.inserted} updated={self.updated} "
            f"unchanged={self.unchanged} downloads_updated={self.downloads_updated} "
            f"deleted={self.deleted} failed_branches={self.failed_branches}"
        )


class LogProgress:
    """Default progress observer: logs every *every* finished units."""

    def __init__(self, every: int = 25) -> None:
        self._every = max(1, every)

    def __call__(self, processed: int, remaining: int) -> None:
        if remaining == 0 or processed % self._every == 0:
            LOGGER.info("Progress | processed=%d | remaining=%d", processed, remaining)


class CrawlCoordinator:
    """Dispatch branches onto a fixed-size pool and wait for all of them.

    Branch failures raised inside the pool are logged and counted in
    :attr:`summary`; they never reach sibling branches.
    """

    def __init__(
        self,
        workers: int,
        *,
        progress: ProgressCallback | None = None,
        abort_event: threading.Event | None = None,
        summary: CrawlSummary | None = None,
    ) -> None:
        if workers <= 0:
            raise ValueError("workers must be positive")
        self._executor = ThreadPoolExecutor(max_workers=workers, thread_name_prefix="maplister")
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)
        self._pending = 0
        self._processed = 0
        self._progress = progress
        self.abort_event = abort_event or threading.Event()
        self.summary = summary if summary is not None else CrawlSummary()

    @property
    def aborted(self) -> bool:
        return self.abort_event.is_set()

    def abort(self) -> None:
        """Stop scheduling; queued branches are dropped, running ones finish."""

        self.abort_event.set()

    def record_failure(self, branch: str, exc: BaseException) -> None:
        self.summary.add_failure(branch)
        LOGGER.error("Branch failed | branch=%s | error=%s", branch, exc)

    def submit(self, branch: str, fn: Callable[..., Any], *args: Any) -> bool:
        if self.aborted:
            LOGGER.debug("Abort requested; dropping branch %s", branch)
            return False
        with self._lock:
            self._pending += 1
        try:
            self._executor.submit(self._run, branch, fn, args)
        except RuntimeError:
            self._finish(counted=False)
            raise
        return True

    def _run(self, branch: str, fn: Callable[..., Any], args: tuple[Any, ...]) -> None:
        try:
            if not self.aborted:
                fn(*args)
        except Exception as exc:
            self.record_failure(branch, exc)
        finally:
            self._finish()

    def _finish(self, counted: bool = True) -> None:
        with self._lock:
            self._pending -= 1
            if counted:
                self._processed += 1
            processed, remaining = self._processed, self._pending
            if self._pending == 0:
                self._idle.notify_all()
        if counted and self._progress is not None:
            try:
                self._progress(processed, remaining)
            except Exception as exc:  # pragma: no cover
                LOGGER.warning("Progress callback failed: %s", exc)

    def wait(self) -> None:
        """Block until no branch is queued or running."""

        with self._idle:
            while self._pending:
                self._idle.wait()

    def shutdown(self) -> None:
        self._executor.shutdown(wait=True, cancel_futures=True)

    def __enter__(self) -> "CrawlCoordinator":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.shutdown()
