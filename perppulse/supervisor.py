"""Supervisor — owns the lifecycle of the feed and strategy engine tasks.

Each child is described by a ``ChildSpec`` and runs as its own ``asyncio``
task.  When a child exits, its restart policy decides whether it comes back:

- ``permanent``: always restarted.
- ``transient``: restarted only if it raised.
- ``temporary``: never restarted.

With ``one_for_one`` only the exited child is restarted.  With
``rest_for_one`` every child started after it is stopped and restarted too,
in start order, so consumers come back after their producer.

Too many restarts inside ``max_seconds`` stop everything and raise
``SupervisorGaveUp``.
"""

import asyncio
import inspect
import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger("perppulse.supervisor")

RESTART_POLICIES = ("permanent", "transient", "temporary")
STRATEGIES = ("one_for_one", "rest_for_one")


class SupervisorGaveUp(Exception):
    """Raised when children restart more often than the configured limit."""


@dataclass(frozen=True)
class ChildSpec:
    """How to start, stop and restart one child.

    Args:
        name: Unique child name.
        run: Zero-argument callable returning a fresh coroutine per start.
        stop: Optional graceful-stop callable (sync or async).  Children
              without one are cancelled.
        restart: One of ``permanent``, ``transient``, ``temporary``.
    """

    name: str
    run: Callable[[], Awaitable[Any]]
    stop: Optional[Callable[[], Any]] = None
    restart: str = "permanent"

    def __post_init__(self) -> None:
        if self.restart not in RESTART_POLICIES:
            raise ValueError(
                f"Invalid restart policy '{self.restart}' for child '{self.name}'. "
                f"Expected one of {', '.join(RESTART_POLICIES)}"
            )


class Supervisor:
    """Starts children in order and restarts them per policy.

    Args:
        children: Child specs, in start order.
        strategy: ``one_for_one`` or ``rest_for_one``.
        max_restarts: Restarts allowed within ``max_seconds``.
        max_seconds: Width of the restart-intensity window.
        restart_delay: Seconds to wait before restarting.
        stop_timeout: Seconds a child gets to stop before it is cancelled.
    """

    def __init__(
        self,
        children: list[ChildSpec],
        strategy: str = "one_for_one",
        max_restarts: int = 3,
        max_seconds: float = 5.0,
        restart_delay: float = 1.0,
        stop_timeout: float = 5.0,
    ) -> None:
        if strategy not in STRATEGIES:
            raise ValueError(
                f"Invalid strategy '{strategy}'. Expected one of {', '.join(STRATEGIES)}"
            )
        names = [c.name for c in children]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate child names: {names}")

        self._children = list(children)
        self._order = names
        self._strategy = strategy
        self._max_restarts = max_restarts
        self._max_seconds = max_seconds
        self._restart_delay = restart_delay
        self._stop_timeout = stop_timeout

        self._tasks: dict[str, asyncio.Task] = {}
        self._restart_times: deque[float] = deque()
        self._restart_counts: dict[str, int] = {n: 0 for n in names}
        self._last_errors: dict[str, Optional[str]] = {n: None for n in names}
        self._pending_stops: set[asyncio.Future] = set()
        self._stopping = False

    # ── Public API ───────────────────────────────────────────────────────

    @property
    def child_names(self) -> list[str]:
        return list(self._order)

    @property
    def running(self) -> bool:
        return any(not t.done() for t in self._tasks.values())

    async def run(self) -> None:
        """Start every child and supervise until all have finished.

        Raises:
            SupervisorGaveUp: restart intensity exceeded.
        """
        self._stopping = False
        for name in self._order:
            self._start_child(name)

        while self._tasks:
            await asyncio.wait(list(self._tasks.values()), return_when=asyncio.FIRST_COMPLETED)

            for name in list(self._order):
                task = self._tasks.get(name)
                if task is None or not task.done():
                    continue
                del self._tasks[name]
                await self._handle_exit(name, task)

        logger.info("All children finished.")

    def stop_all(self) -> None:
        """Ask every child to stop.  Stopped children are not restarted."""
        self._stopping = True
        for name in reversed(self._order):
            task = self._tasks.get(name)
            if task is None or task.done():
                continue
            if not self._request_stop(name):
                task.cancel()
            logger.info("Stop signal sent to '%s'.", name)

    async def shutdown(self) -> None:
        """Stop every child and wait for them to finish."""
        self._stopping = True
        for name in reversed(self._order):
            await self._terminate(name)

    def get_status(self, name: Optional[str] = None) -> dict:
        """Return per-child status, or one child's status when *name* is given."""
        if name is not None:
            if name not in self._restart_counts:
                return {"error": f"Unknown child: {name}"}
            return self._child_status(name)
        return {
            "strategy": self._strategy,
            "stopping": self._stopping,
            "children": {n: self._child_status(n) for n in self._order},
        }

    # ── Internals ────────────────────────────────────────────────────────

    def _spec(self, name: str) -> ChildSpec:
        return self._children[self._order.index(name)]

    def _child_status(self, name: str) -> dict:
        task = self._tasks.get(name)
        return {
            "restart": self._spec(name).restart,
            "running": task is not None and not task.done(),
            "restarts": self._restart_counts[name],
            "last_error": self._last_errors[name],
        }

    def _start_child(self, name: str) -> None:
        spec = self._spec(name)
        self._tasks[name] = asyncio.create_task(spec.run(), name=name)
        logger.info("Started child '%s'.", name)

    async def _handle_exit(self, name: str, task: asyncio.Task) -> None:
        spec = self._spec(name)
        failed = False
        if task.cancelled():
            logger.info("Child '%s' was cancelled.", name)
        elif task.exception() is not None:
            failed = True
            exc = task.exception()
            self._last_errors[name] = f"{type(exc).__name__}: {exc}"
            logger.error("Child '%s' crashed: %s", name, self._last_errors[name])
        else:
            logger.info("Child '%s' exited normally.", name)

        if self._stopping or task.cancelled():
            return
        if spec.restart == "temporary" or (spec.restart == "transient" and not failed):
            return

        await self._register_restart(name)

        to_restart = [name]
        if self._strategy == "rest_for_one":
            later = self._order[self._order.index(name) + 1:]
            for other in reversed(later):
                if other in self._tasks:
                    await self._terminate(other)
            to_restart.extend(
                o for o in later
                if self._spec(o).restart != "temporary"
            )

        if self._restart_delay > 0:
            await asyncio.sleep(self._restart_delay)
        if self._stopping:
            return
        for child in to_restart:
            self._restart_counts[child] += 1
            logger.warning("Restarting child '%s' (restart #%d).", child, self._restart_counts[child])
            self._start_child(child)

    async def _register_restart(self, name: str) -> None:
        now = time.monotonic()
        self._restart_times.append(now)
        while self._restart_times and now - self._restart_times[0] > self._max_seconds:
            self._restart_times.popleft()
        if len(self._restart_times) > self._max_restarts:
            logger.critical(
                "Child '%s' exceeded %d restarts in %.1fs, giving up.",
                name, self._max_restarts, self._max_seconds,
            )
            await self.shutdown()
            raise SupervisorGaveUp(
                f"more than {self._max_restarts} restarts in {self._max_seconds}s "
                f"(last: '{name}')"
            )

    def _request_stop(self, name: str) -> bool:
        """Call the child's stop hook.  Returns False if it has none."""
        spec = self._spec(name)
        if spec.stop is None:
            return False
        try:
            result = spec.stop()
        except Exception as exc:
            logger.error("Stop hook for '%s' failed: %s", name, exc)
            return False
        if inspect.isawaitable(result):
            future = asyncio.ensure_future(result)
            self._pending_stops.add(future)
            future.add_done_callback(self._pending_stops.discard)
        return True

    async def _terminate(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is None:
            return
        if not task.done():
            if self._request_stop(name):
                await asyncio.wait([task], timeout=self._stop_timeout)
            if not task.done():
                task.cancel()
        await asyncio.gather(task, return_exceptions=True)
        logger.info("Child '%s' terminated.", name)
