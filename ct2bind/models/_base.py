"""
Shared lifecycle for the model runners.

A model runner owns exactly one native engine instance. Batch calls borrow
the handle through ``_borrow()``, which counts in-flight calls; ``close()``
marks the runner closed, waits until the count drops to zero and then
releases the native instance exactly once. No lock is held while a native
call runs, so concurrent calls on one runner reach the engine's own queue
unserialized.
"""

from __future__ import annotations

import os
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any, ClassVar

from ..callback import in_step_callback
from ..config import Config
from ..exceptions import StateError, ValidationError
from ..memory_reader import ModelMemoryReader
from . import _bindings as _c


class ModelRunner:
    """Base class of Translator, Generator and Whisper."""

    # Entry point prefix: ct2_<_kind>_create, ct2_<_kind>_free, ...
    _kind: ClassVar[str] = ""
    _log: ClassVar[Any]

    def __init__(
        self,
        model: str | os.PathLike | ModelMemoryReader,
        config: Config | None = None,
    ):
        self._handle: int | None = None
        self._closed = False
        self._in_flight = 0
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)

        if config is None:
            config = Config()
        elif not isinstance(config, Config):
            raise ValidationError(
                f"config must be a Config, got {type(config).__name__}",
                details={"value": repr(config)},
            )
        self._config = config
        c_config = config._to_c()

        if isinstance(model, ModelMemoryReader):
            self._model_path = None
            self._log.debug(
                f"Creating {self._kind} from memory",
                extra={"device": config.device.name.lower(), "files": len(model.files)},
            )
            with model._borrow() as reader:
                handle = _c.call_create_from_memory(self._kind, reader, c_config)
        else:
            self._model_path = os.fspath(model)
            self._log.debug(
                f"Creating {self._kind}",
                extra={
                    "model_path": self._model_path,
                    "device": config.device.name.lower(),
                    "compute_type": config.compute_type.name.lower(),
                },
            )
            handle = _c.call_create(self._kind, self._model_path.encode("utf-8"), c_config)

        self._handle = handle

    # =========================================================================
    # Handle access
    # =========================================================================

    @contextmanager
    def _borrow(self) -> Iterator[int]:
        """Yield the native handle, counting the caller as in flight."""
        with self._lock:
            if self._closed or self._handle is None:
                raise StateError(
                    f"{type(self).__name__} has been closed. Create a new instance.",
                    code="STATE_CLOSED",
                )
            self._in_flight += 1
            handle = self._handle
        try:
            yield handle
        finally:
            with self._lock:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._idle.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def model_path(self) -> str | None:
        """Model directory, or None for a model built from memory."""
        return self._model_path

    @property
    def config(self) -> Config:
        return self._config.override()

    # =========================================================================
    # Introspection
    # =========================================================================

    def num_queued_batches(self) -> int:
        """Batches waiting in the replica pool queue (point-in-time)."""
        with self._borrow() as handle:
            return _c.call_counter(self._kind, "num_queued_batches", handle)

    def num_active_batches(self) -> int:
        """Batches queued or being processed (point-in-time)."""
        with self._borrow() as handle:
            return _c.call_counter(self._kind, "num_active_batches", handle)

    def num_replicas(self) -> int:
        with self._borrow() as handle:
            return _c.call_counter(self._kind, "num_replicas", handle)

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def close(self) -> None:
        """
        Release the native engine instance.

        Blocks until calls already running on this instance have returned.
        New calls fail with ``StateError``. Safe to call multiple times and
        from several threads; the native instance is released once.

        Raises
        ------
            StateError: If called from inside one of this instance's step
                callbacks, which would wait on itself.
        """
        if in_step_callback(self):
            raise StateError(
                f"{type(self).__name__}.close() cannot be called from its own step callback",
                code="STATE_CLOSE_IN_CALLBACK",
            )

        with self._lock:
            self._closed = True
            while self._in_flight:
                self._idle.wait()
            handle, self._handle = self._handle, None

        if handle is not None:
            _c.call_free(self._kind, handle)
            self._log.debug(f"Released {self._kind}", extra={"model_path": self._model_path})

    def __enter__(self) -> Any:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            if getattr(self, "_handle", None) is not None:
                self._log.debug(f"Releasing unclosed {self._kind} from finalizer")
                self.close()
        except Exception:
            pass  # Suppress all exceptions in destructor

    def __copy__(self) -> Any:
        raise StateError(
            f"{type(self).__name__} owns a native instance and cannot be copied; share it instead",
            code="STATE_NOT_COPYABLE",
        )

    def __deepcopy__(self, memo: dict) -> Any:
        return self.__copy__()

    def __reduce__(self) -> Any:
        return self.__copy__()

    def __repr__(self) -> str:
        status = "closed" if self._closed else "open"
        source = repr(self._model_path) if self._model_path is not None else "<memory>"
        return (
            f"{type(self).__name__}(model={source}, "
            f"device={self._config.device.name.lower()}, status={status})"
        )
