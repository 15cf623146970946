"""
In-memory model registry.

A ``ModelMemoryReader`` holds the files of a converted model (``config.json``,
``model.bin``, vocabularies) as byte buffers so that a model runner can be
built without touching the filesystem::

    reader = ModelMemoryReader("ende")
    for name in ("config.json", "model.bin", "shared_vocabulary.json"):
        reader.register_file(name, archive.read(name))
    translator = Translator(reader)

File contents are copied into native memory by ``register_file``. The reader
can be closed once the model runner is constructed; the engine keeps what it
needs.
"""

from __future__ import annotations

import ctypes
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from ._bindings import check, consume_text, get_lib
from ._logging import scoped_logger
from .exceptions import StateError, ValidationError

logger = scoped_logger("storage")

__all__ = ["ModelMemoryReader"]


class ModelMemoryReader:
    """
    Named collection of model files held in memory.

    Args:
        model_name: Identifier reported by ``get_model_id()``.
    """

    def __init__(self, model_name: str):
        self._ptr: int | None = None
        self._lock = threading.Lock()
        if not isinstance(model_name, str):
            raise ValidationError(
                f"model_name must be str, got {type(model_name).__name__}",
                details={"value": repr(model_name)},
            )

        out_reader = ctypes.c_void_p()
        check(
            get_lib().ct2_memory_reader_create(
                model_name.encode("utf-8"), ctypes.byref(out_reader)
            ),
            details={"model_name": model_name},
        )
        self._ptr = out_reader.value
        self._files: list[str] = []
        logger.debug("Created memory reader", extra={"model_name": model_name})

    @contextmanager
    def _borrow(self) -> Iterator[int]:
        with self._lock:
            if not self._ptr:
                raise StateError("ModelMemoryReader has been closed", code="STATE_CLOSED")
            yield self._ptr

    def register_file(self, filename: str, content: bytes | bytearray | memoryview) -> None:
        """
        Add a model file.

        Args:
            filename: File name relative to the model directory (e.g. ``"model.bin"``).
            content: File bytes; copied before this call returns.
        """
        if not isinstance(filename, str):
            raise ValidationError(
                f"filename must be str, got {type(filename).__name__}",
                details={"value": repr(filename)},
            )
        data = bytes(content)
        with self._borrow() as handle:
            check(
                get_lib().ct2_memory_reader_register_file(
                    handle, filename.encode("utf-8"), data, len(data)
                ),
                details={"filename": filename},
            )
        self._files.append(filename)

    def get_model_id(self) -> str:
        """Identifier of the in-memory model."""
        out_text = ctypes.c_void_p()
        with self._borrow() as handle:
            check(get_lib().ct2_memory_reader_get_model_id(handle, ctypes.byref(out_text)))
        return consume_text(out_text)

    @property
    def files(self) -> list[str]:
        """Names registered so far, in registration order."""
        return list(self._files)

    def close(self) -> None:
        """Release the native reader. Safe to call multiple times."""
        with self._lock:
            ptr, self._ptr = self._ptr, None
        if ptr:
            get_lib().ct2_memory_reader_free(ptr)

    def __enter__(self) -> ModelMemoryReader:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass

    def __repr__(self) -> str:
        status = "closed" if not self._ptr else "open"
        return f"ModelMemoryReader(files={len(self._files)}, status={status})"
