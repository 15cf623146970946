"""
Step callback bridge.

The engine calls the step callback from its own worker threads, once per
generated token, in its scheduling order. ``StepCallback`` adapts a Python
callable to that contract for the duration of one native call:

- Invocations are serialized with a lock unless ``reentrant=True``.
- Returning True stops decoding for that (batch_id, hypothesis_id); other
  hypotheses continue. Returning False or None continues.
- An exception raised by the callable cannot unwind through native frames.
  It is recorded, decoding is stopped, and the exception is re-raised when
  the ``with`` block exits.
- Without a callable, the native call receives a no-op function pointer
  and ``has_callback`` is False.

``iter_steps`` turns a callback-driven call into an iterator, running the
call on a background thread.
"""

from __future__ import annotations

import queue
import threading
from collections.abc import Callable, Iterator
from typing import Any

from ._logging import scoped_logger
from ._native import CStepCallback
from .results import GenerationStepResult

logger = scoped_logger("callback")

__all__ = ["StepCallback", "StepCallbackFn", "iter_steps", "in_step_callback"]

StepCallbackFn = Callable[[GenerationStepResult], "bool | None"]

# Per-thread stack of owners whose callback is currently running
_state = threading.local()


def _owners() -> list[Any]:
    owners = getattr(_state, "owners", None)
    if owners is None:
        owners = _state.owners = []
    return owners


def in_step_callback(owner: Any = None) -> bool:
    """True when the current thread is running a step callback (of ``owner``)."""
    owners = _owners()
    if owner is None:
        return bool(owners)
    return any(item is owner for item in owners)


def _noop_step(step: Any, user_data: Any) -> bool:
    return False


# Module-level so the function pointer outlives every call
NOOP_CALLBACK = CStepCallback(_noop_step)


class StepCallback:
    """
    Scoped adapter from a Python callable to ``CStepCallback``.

    Args:
        fn: Called with a ``GenerationStepResult`` per step, or None.
        reentrant: Skip the serializing lock. Only for callables that are
            safe to run concurrently from several native threads.
        owner: Model runner issuing the call, used to reject ``close()``
            from inside its own callback.

    Usage::

        with StepCallback(on_step) as callback:
            code = lib.ct2_generator_generate_batch(
                ..., callback.has_callback, callback.c_callback, None, ...
            )
    """

    def __init__(
        self,
        fn: StepCallbackFn | None,
        *,
        reentrant: bool = False,
        owner: Any = None,
    ):
        if fn is not None and not callable(fn):
            raise TypeError(f"callback must be callable, got {type(fn).__name__}")
        self._fn = fn
        self._owner = owner
        self._lock = None if reentrant else threading.Lock()
        self._error: BaseException | None = None
        self._error_lock = threading.Lock()
        self._active = False
        # Keep a reference: ctypes frees the thunk with this object
        self._c_callback = CStepCallback(self._invoke) if fn is not None else NOOP_CALLBACK

    @property
    def has_callback(self) -> bool:
        return self._fn is not None

    @property
    def reentrant(self) -> bool:
        return self._lock is None

    @property
    def c_callback(self) -> Any:
        return self._c_callback

    def __enter__(self) -> StepCallback:
        self._active = True
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self._active = False
        error, self._error = self._error, None
        if error is not None:
            raise error

    def _record(self, error: BaseException) -> None:
        with self._error_lock:
            if self._error is None:
                self._error = error

    def _invoke(self, step_ptr: Any, user_data: Any) -> bool:
        # Late calls after the scope closed, or after a failure, stop decoding
        if not self._active or self._error is not None:
            return True

        owners = _owners()
        owners.append(self._owner)
        try:
            step = GenerationStepResult._from_c(step_ptr.contents)
            if self._lock is None:
                stop = self._fn(step)  # type: ignore[misc]
            else:
                with self._lock:
                    stop = self._fn(step)  # type: ignore[misc]
        except BaseException as e:
            # BaseException intentional: nothing may propagate into native
            # frames; the error is re-raised by __exit__ on the calling thread
            self._record(e)
            logger.debug("Step callback raised, stopping decoding", extra={"error": repr(e)})
            return True
        finally:
            owners.pop()
        return bool(stop)


_DONE = object()


def iter_steps(run: Callable[[StepCallbackFn], Any]) -> Iterator[GenerationStepResult]:
    """
    Stream the steps of a callback-driven call.

    ``run`` receives a step callback and performs the blocking native call.
    It runs on a background thread; steps are yielded as they arrive. Closing
    the iterator early makes the callback return True so decoding stops, and
    waits for the call to finish before returning. Exceptions raised by
    ``run`` are re-raised in the consumer.
    """
    steps: queue.Queue[Any] = queue.Queue()
    stop = threading.Event()

    def on_step(step: GenerationStepResult) -> bool:
        steps.put(step)
        return stop.is_set()

    def run_call() -> None:
        try:
            run(on_step)
        except BaseException as e:
            # BaseException intentional: forward everything to the consumer
            steps.put(e)
        finally:
            steps.put(_DONE)

    thread = threading.Thread(target=run_call, name="ct2bind-steps", daemon=True)
    thread.start()
    try:
        while True:
            item = steps.get()
            if item is _DONE:
                break
            if isinstance(item, BaseException):
                raise item
            yield item
    finally:
        stop.set()
        thread.join()
