"""
Tests for the step callback bridge.

The adapter is driven directly through its C function pointer, the way the
engine calls it.
"""

import ctypes
import threading
import time

import pytest

from ct2bind._native import CGenerationStepResult, COptionalFloat, CStringView
from ct2bind.callback import NOOP_CALLBACK, StepCallback, in_step_callback, iter_steps
from ct2bind.results import GenerationStepResult


def make_step(token="▁Hi", step=0, batch_id=0, hypothesis_id=0, score=None, is_last=False):
    """Build a native step record and keep its token buffer alive."""
    raw = token.encode("utf-8")
    buffer = ctypes.create_string_buffer(raw)
    c_step = CGenerationStepResult(
        step=step,
        batch_id=batch_id,
        token_id=42,
        hypothesis_id=hypothesis_id,
        token=CStringView(ctypes.cast(buffer, ctypes.POINTER(ctypes.c_char)), len(raw)),
        score=COptionalFloat(score is not None, score or 0.0),
        is_last=is_last,
    )
    c_step._buffer = buffer
    return c_step


def fire(callback, c_step):
    """Invoke the callback as the engine would."""
    return callback.c_callback(ctypes.pointer(c_step), None)


class TestNoCallback:
    """Without a callable the engine gets a no-op pointer."""

    def test_has_callback_false(self):
        """has_callback is False and the shared no-op pointer is used."""
        callback = StepCallback(None)

        assert not callback.has_callback
        assert callback.c_callback is NOOP_CALLBACK

    def test_noop_never_stops(self):
        """The no-op pointer returns False when called."""
        assert NOOP_CALLBACK(ctypes.pointer(make_step()), None) is False

    def test_not_callable_rejected(self):
        """Non-callables are rejected up front."""
        with pytest.raises(TypeError):
            StepCallback("not callable")


class TestInvocation:
    """Tests for invocation and the stop signal."""

    def test_step_fields_decoded(self):
        """The callable receives a GenerationStepResult."""
        seen = []
        with StepCallback(seen.append) as callback:
            fire(callback, make_step("wörld", step=3, batch_id=1, hypothesis_id=2, score=-0.5, is_last=True))

        assert seen == [
            GenerationStepResult(
                step=3,
                batch_id=1,
                token_id=42,
                hypothesis_id=2,
                token="wörld",
                score=-0.5,
                is_last=True,
            )
        ]

    def test_absent_score_is_none(self):
        """A step without a score reports None, not 0.0."""
        seen = []
        with StepCallback(seen.append) as callback:
            fire(callback, make_step(score=None))

        assert seen[0].score is None

    @pytest.mark.parametrize(("returned", "expected"), [(True, True), (False, False), (None, False)])
    def test_return_value_is_stop_signal(self, returned, expected):
        """True stops; False and None continue."""
        with StepCallback(lambda step: returned) as callback:
            assert fire(callback, make_step()) is expected

    def test_not_invoked_before_native_call(self):
        """Constructing and entering the adapter never calls the callable."""
        calls = []
        with StepCallback(calls.append):
            pass

        assert calls == []

    def test_calls_outside_scope_stop(self):
        """A late call after the scope closed stops without invoking the callable."""
        calls = []
        callback = StepCallback(calls.append)

        assert fire(callback, make_step()) is True
        assert calls == []


class TestExceptions:
    """Exceptions never cross into native frames."""

    def test_exception_stops_and_reraises(self):
        """The error stops decoding and is re-raised on exit."""

        def boom(step):
            raise KeyError("bad step")

        with pytest.raises(KeyError, match="bad step"):
            with StepCallback(boom) as callback:
                assert fire(callback, make_step()) is True

    def test_later_steps_skipped_after_error(self):
        """After a failure the callable is not invoked again."""
        calls = []

        def fail_once(step):
            calls.append(step)
            raise RuntimeError("first")

        with pytest.raises(RuntimeError):
            with StepCallback(fail_once) as callback:
                fire(callback, make_step())
                assert fire(callback, make_step(step=1)) is True

        assert len(calls) == 1

    def test_keyboard_interrupt_captured(self):
        """BaseException subclasses are captured too."""

        def interrupt(step):
            raise KeyboardInterrupt

        with pytest.raises(KeyboardInterrupt):
            with StepCallback(interrupt) as callback:
                fire(callback, make_step())


class TestSerialization:
    """Invocations are serialized unless reentrant."""

    def _run_concurrently(self, callback, threads=4):
        barrier = threading.Barrier(threads)

        def worker(index):
            barrier.wait()
            for step in range(20):
                fire(callback, make_step(step=step, batch_id=index))

        workers = [threading.Thread(target=worker, args=(i,)) for i in range(threads)]
        for thread in workers:
            thread.start()
        for thread in workers:
            thread.join()

    def test_default_is_serialized(self):
        """No two invocations overlap by default."""
        active = 0
        peak = 0
        guard = threading.Lock()

        def on_step(step):
            nonlocal active, peak
            with guard:
                active += 1
                peak = max(peak, active)
            time.sleep(0.001)
            with guard:
                active -= 1

        with StepCallback(on_step) as callback:
            self._run_concurrently(callback)

        assert not callback.reentrant
        assert peak == 1

    def test_reentrant_allows_overlap(self):
        """reentrant=True lets two invocations run at the same time."""
        rendezvous = threading.Barrier(2, timeout=5)

        def on_step(step):
            if step.step == 0:
                rendezvous.wait()

        with StepCallback(on_step, reentrant=True) as callback:
            self._run_concurrently(callback, threads=2)

        assert callback.reentrant


class TestOwnership:
    """in_step_callback() tracks the runner whose callback is running."""

    def test_owner_visible_inside_callback(self):
        """The owner is reported only while its callback runs."""
        owner = object()
        other = object()
        seen = []

        def on_step(step):
            seen.append((in_step_callback(owner), in_step_callback(other), in_step_callback()))

        with StepCallback(on_step, owner=owner) as callback:
            fire(callback, make_step())

        assert seen == [(True, False, True)]
        assert not in_step_callback(owner)


class TestIterSteps:
    """Tests for iter_steps()."""

    def test_yields_steps_in_order(self):
        """Steps are yielded as the call emits them."""

        def run(on_step):
            for index in range(3):
                on_step(index)
            return "done"

        assert list(iter_steps(run)) == [0, 1, 2]

    def test_early_close_signals_stop(self):
        """Closing the iterator makes the callback return True."""
        returned = []

        def run(on_step):
            for index in range(100):
                stop = on_step(index)
                returned.append(stop)
                if stop:
                    break
                time.sleep(0.01)

        steps = iter_steps(run)
        assert next(steps) == 0
        steps.close()

        assert returned[-1] is True
        assert len(returned) < 100

    def test_errors_reraised_in_consumer(self):
        """An exception raised by the call reaches the consumer."""

        def run(on_step):
            on_step("first")
            raise ValueError("engine failed")

        steps = iter_steps(run)
        assert next(steps) == "first"
        with pytest.raises(ValueError, match="engine failed"):
            next(steps)
