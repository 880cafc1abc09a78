"""
The Future (promise) engine and the scheduler that feeds it.

A PawxFuture's state and continuation list are guarded by one lock, so worker
threads may settle it while the main loop registers continuations. Every
continuation is delivered on the main asyncio loop through
`Scheduler.call_soon`, never on the thread that settled the Future.
"""
import asyncio
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Set

from pawx.pawx_errors import PawxError, PromiseRejection

PENDING = "pending"
FULFILLED = "fulfilled"
REJECTED = "rejected"


class Scheduler:
    """Owns the worker pool, main-loop delivery and outstanding-work tracking."""

    def __init__(self, loop: asyncio.AbstractEventLoop, max_workers: Optional[int] = None,
                 invoke: Optional[Callable] = None, debug: Optional[Callable] = None):
        self.loop = loop
        if max_workers is None:
            max_workers = int(os.environ.get("PAWX_WORKERS", "4"))
        self.executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="pawx-worker")
        # invoke(fn, args) -> awaitable result; the evaluator installs its call helper here.
        self.invoke = invoke or _invoke_python
        self._debug = debug
        self._lock = threading.Lock()
        self._outstanding = 0
        self._tasks: Set[asyncio.Task] = set()
        self._unhandled: List['PawxFuture'] = []
        self.failures: List[BaseException] = []
        self.poll_interval = 0.005

    def dbg(self, *parts):
        if self._debug:
            self._debug(*parts)

    # --- outstanding-work accounting ---

    def _acquire(self):
        with self._lock:
            self._outstanding += 1

    def _release(self):
        with self._lock:
            self._outstanding -= 1

    def call_soon(self, fn: Callable, *args):
        """Schedules fn(*args) on the main loop; safe from any thread."""
        self._acquire()

        def _run():
            try:
                fn(*args)
            finally:
                self._release()
        self.loop.call_soon_threadsafe(_run)

    def spawn(self, coro) -> asyncio.Task:
        """Starts a tracked task on the main loop (main-loop thread only)."""
        task = self.loop.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: asyncio.Task):
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self.failures.append(exc)

    def run_in_worker(self, fn: Callable[[], Any], label: Optional[str] = None) -> 'PawxFuture':
        """Runs fn on the worker pool and returns a Future for its result."""
        future = PawxFuture(self, label=label)
        self._acquire()

        def job():
            try:
                value = fn()
            except PawxError as e:
                future.reject(e.to_value())
            except Exception as e:
                from pawx.pawx_datatypes import ErrorValue
                future.reject(ErrorValue("RuntimeError", describe_host_error(e)))
            else:
                future.fulfill(value)
            finally:
                self._release()
        self.executor.submit(job)
        return future

    # --- unhandled rejection registry ---

    def _track_rejection(self, future: 'PawxFuture'):
        with self._lock:
            self._unhandled.append(future)

    def _untrack_rejection(self, future: 'PawxFuture'):
        with self._lock:
            self._unhandled = [f for f in self._unhandled if f is not future]

    def unhandled_rejections(self, clear: bool = False) -> List['PawxFuture']:
        with self._lock:
            pending = list(self._unhandled)
            if clear:
                self._unhandled = []
            return pending

    def busy(self) -> bool:
        with self._lock:
            return self._outstanding > 0

    async def drain(self):
        """Waits until no tasks, deliveries or worker jobs remain."""
        while True:
            if self.failures:
                raise self.failures.pop(0)
            tasks = [t for t in self._tasks if not t.done()]
            if tasks:
                await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
                continue
            if not self.busy():
                if self.failures:
                    raise self.failures.pop(0)
                return
            await asyncio.sleep(self.poll_interval)

    def cancel_all(self):
        for task in list(self._tasks):
            task.cancel()

    def shutdown(self):
        self.cancel_all()
        self.executor.shutdown(wait=False, cancel_futures=True)


async def _invoke_python(fn, args):
    result = fn(*args)
    if asyncio.iscoroutine(result) or isinstance(result, asyncio.Future):
        result = await result
    return result


def describe_host_error(e: BaseException) -> str:
    if isinstance(e, OSError) and e.strerror:
        target = f": {e.filename}" if e.filename else ""
        return f"{e.strerror}{target}"
    return str(e) or type(e).__name__


class PawxFuture:
    """A deferred result: Pending, then Fulfilled(value) or Rejected(reason) exactly once."""

    def __init__(self, scheduler: Scheduler, label: Optional[str] = None):
        self._scheduler = scheduler
        self._lock = threading.Lock()
        self._state = PENDING
        self._value: Any = None
        self._continuations: List[Callable[[str, Any], None]] = []
        self._handled = False
        self.label = label

    def __repr__(self):
        return f"<future {self._state}{' ' + self.label if self.label else ''}>"

    @property
    def state(self) -> str:
        with self._lock:
            return self._state

    @property
    def value(self) -> Any:
        with self._lock:
            return self._value

    # --- settlement ---

    def fulfill(self, value: Any) -> bool:
        if isinstance(value, PawxFuture):
            return self._adopt(value)
        return self._settle(FULFILLED, value)

    def reject(self, reason: Any) -> bool:
        return self._settle(REJECTED, reason)

    def _adopt(self, other: 'PawxFuture') -> bool:
        if other is self:
            from pawx.pawx_datatypes import ErrorValue
            return self._settle(REJECTED, ErrorValue("TypeError", "a future cannot resolve to itself"))
        other._subscribe(lambda state, value: self._settle(state, value))
        return True

    def _settle(self, state: str, value: Any) -> bool:
        with self._lock:
            if self._state != PENDING:
                current = self._state
                pending = None
            else:
                self._state = state
                self._value = value
                pending = self._continuations
                self._continuations = []
                if state == REJECTED and not self._handled:
                    self._scheduler._track_rejection(self)
        if pending is None:
            # Settling twice is a programmer error: the first outcome stands.
            self._scheduler.dbg("Future.settle ignored", repr(self), "already", current, "attempted", state)
            return False
        for cont in pending:
            self._scheduler.call_soon(cont, state, value)
        return True

    def _subscribe(self, cont: Callable[[str, Any], None]):
        with self._lock:
            if not self._handled:
                self._handled = True
                if self._state == REJECTED:
                    self._scheduler._untrack_rejection(self)
            if self._state == PENDING:
                self._continuations.append(cont)
                return
            state, value = self._state, self._value
        self._scheduler.call_soon(cont, state, value)

    # --- combinators ---

    def then(self, on_fulfilled=None, on_rejected=None) -> 'PawxFuture':
        derived = PawxFuture(self._scheduler)

        def cont(state, value):
            handler = on_fulfilled if state == FULFILLED else on_rejected
            if handler is None:
                derived._settle(state, value)
                return
            self._scheduler.spawn(self._run_handler(handler, (value,), derived))
        self._subscribe(cont)
        return derived

    def catch(self, on_rejected) -> 'PawxFuture':
        return self.then(None, on_rejected)

    def finally_(self, on_settled) -> 'PawxFuture':
        derived = PawxFuture(self._scheduler)

        async def run(state, value):
            try:
                result = await self._scheduler.invoke(on_settled, ())
                if isinstance(result, PawxFuture):
                    await result.wait()
            except PawxError as e:
                derived.reject(e.to_value())
                return
            derived._settle(state, value)

        def cont(state, value):
            self._scheduler.spawn(run(state, value))
        self._subscribe(cont)
        return derived

    async def _run_handler(self, handler, args, derived: 'PawxFuture'):
        try:
            result = await self._scheduler.invoke(handler, args)
        except PawxError as e:
            derived.reject(e.to_value())
        else:
            derived.fulfill(result)

    async def wait(self) -> Any:
        """Suspends the current task until settled (the `nap` operator)."""
        waiter = self._scheduler.loop.create_future()

        def cont(state, value):
            if not waiter.done():
                waiter.set_result((state, value))
        self._subscribe(cont)
        state, value = await waiter
        if state == REJECTED:
            raise PromiseRejection(value)
        return value


def resolved(scheduler: Scheduler, value: Any) -> PawxFuture:
    f = PawxFuture(scheduler)
    f.fulfill(value)
    return f


def rejected(scheduler: Scheduler, reason: Any) -> PawxFuture:
    f = PawxFuture(scheduler)
    f.reject(reason)
    return f


def gather(scheduler: Scheduler, futures: list) -> PawxFuture:
    """Fulfils with every value in order, or rejects with the first rejection."""
    result = PawxFuture(scheduler, label="all")
    items = list(futures)
    values: List[Any] = [None] * len(items)
    remaining = [len(items)]
    if not items:
        result.fulfill([])
        return result

    def make_cont(i):
        def cont(state, value):
            if state == REJECTED:
                result._settle(REJECTED, value)
                return
            values[i] = value
            remaining[0] -= 1
            if remaining[0] == 0:
                result._settle(FULFILLED, values)
        return cont

    for i, item in enumerate(items):
        if not isinstance(item, PawxFuture):
            item = resolved(scheduler, item)
        item._subscribe(make_cont(i))
    return result


__all__ = [
    "PawxFuture", "Scheduler", "PENDING", "FULFILLED", "REJECTED",
    "resolved", "rejected", "gather", "describe_host_error",
]
