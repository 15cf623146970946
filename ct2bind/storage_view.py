"""
StorageView: a native multi-dimensional numeric buffer.

Construction copies the Python data into native memory before returning, so
the source buffer may be mutated or released afterwards. Views returned by
the engine (``Whisper.encode``, vocabulary logits) are adopted: the Python
object becomes their single owner.
"""

from __future__ import annotations

import ctypes
import math
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from enum import IntEnum
from typing import Any

from ._bindings import check, consume_text, get_lib
from ._logging import scoped_logger
from ._native import CStorageViewInfo
from .config import Device
from .exceptions import ConversionError, StateError

logger = scoped_logger("storage")

__all__ = ["DType", "StorageView"]


class DType(IntEnum):
    """Element type. Values are the engine's native ordinals."""

    FLOAT32 = 0
    INT8 = 1
    INT16 = 2


# dtype -> (ctypes element type, buffer-protocol format, integer range)
_DTYPE_INFO: dict[DType, tuple[Any, str, tuple[int, int] | None]] = {
    DType.FLOAT32: (ctypes.c_float, "f", None),
    DType.INT8: (ctypes.c_int8, "b", (-(2**7), 2**7 - 1)),
    DType.INT16: (ctypes.c_int16, "h", (-(2**15), 2**15 - 1)),
}


def _infer_shape(data: Any) -> list[int]:
    shape = getattr(data, "shape", None)
    if shape is not None:
        return [int(dim) for dim in shape]
    return [len(data)]


def _copy_to_ctypes(data: Any, dtype: DType, count: int) -> ctypes.Array:
    """Copy ``data`` into a fresh ctypes array of ``count`` elements."""
    ctype, fmt, bounds = _DTYPE_INFO[dtype]

    try:
        view = memoryview(data)
    except TypeError:
        view = None

    if view is not None and view.format == fmt:
        if not view.c_contiguous:
            raise ConversionError(
                "StorageView data must be C-contiguous",
                details={"shape": list(view.shape)},
            )
        if view.nbytes != count * ctypes.sizeof(ctype):
            raise ConversionError(
                f"StorageView data has {view.nbytes // ctypes.sizeof(ctype)} elements "
                f"but the shape holds {count}",
                code="CONVERSION_SHAPE_MISMATCH",
            )
        return (ctype * count).from_buffer_copy(view)

    if view is not None:
        values = view.tolist()
        while values and isinstance(values[0], list):
            values = [item for row in values for item in row]
    else:
        values = list(data)

    if len(values) != count:
        raise ConversionError(
            f"StorageView data has {len(values)} elements but the shape holds {count}",
            code="CONVERSION_SHAPE_MISMATCH",
            details={"elements": len(values), "expected": count},
        )

    if bounds is not None:
        low, high = bounds
        for index, value in enumerate(values):
            if isinstance(value, bool) or not isinstance(value, int) or not low <= value <= high:
                raise ConversionError(
                    f"Element {index} ({value!r}) does not fit {dtype.name.lower()}",
                    code="CONVERSION_OUT_OF_RANGE",
                    details={"index": index},
                )
    else:
        for index, value in enumerate(values):
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                raise ConversionError(
                    f"Element {index} ({value!r}) is not a number",
                    code="CONVERSION_OUT_OF_RANGE",
                    details={"index": index},
                )

    return (ctype * count)(*values)


class StorageView:
    """
    Native tensor with a shape, an element type and a device.

    Args:
        data: Flat sequence of numbers, or any buffer such as ``array.array``
            or a numpy array. Buffers whose format matches ``dtype`` are
            copied directly; others are converted element by element.
        shape: Dimensions. Defaults to ``data.shape`` when present, else 1-D.
        dtype: Element type.
        device: Device that should hold the copy.

    Raises
    ------
        ConversionError: If the element count does not match the shape or an
            integer value does not fit the dtype.

    Example:
        >>> features = StorageView(mel.ravel().tolist(), shape=[1, 80, 3000])
        >>> features.shape
        [1, 80, 3000]
    """

    __slots__ = ("_ptr", "_in_flight", "_lock", "_idle", "__weakref__")

    def __init__(
        self,
        data: Sequence[float] | Any,
        shape: Sequence[int] | None = None,
        dtype: DType = DType.FLOAT32,
        device: Device | str = Device.CPU,
    ):
        self._init_state(None)
        dtype = DType(dtype)
        device = Device.parse(device)
        dims = list(shape) if shape is not None else _infer_shape(data)

        for index, dim in enumerate(dims):
            if isinstance(dim, bool) or not isinstance(dim, int) or dim < 0:
                raise ConversionError(
                    f"shape[{index}] must be a non-negative int, got {dim!r}",
                    code="CONVERSION_INVALID_SHAPE",
                )

        count = math.prod(dims)
        buffer = _copy_to_ctypes(data, dtype, count)
        c_shape = (ctypes.c_size_t * len(dims))(*dims)

        out_view = ctypes.c_void_p()
        check(
            get_lib().ct2_storage_view_create(
                c_shape,
                len(dims),
                ctypes.cast(buffer, ctypes.c_void_p),
                int(dtype),
                int(device),
                ctypes.byref(out_view),
            ),
            details={"shape": dims, "dtype": dtype.name.lower()},
        )
        self._ptr = out_view.value

    @classmethod
    def _adopt(cls, handle: int) -> StorageView:
        """Take ownership of a view allocated by the engine."""
        view = cls.__new__(cls)
        view._init_state(handle)
        return view

    def _init_state(self, ptr: int | None) -> None:
        self._ptr = ptr
        self._in_flight = 0
        self._lock = threading.Lock()
        self._idle = threading.Condition(self._lock)

    @contextmanager
    def _borrow(self) -> Iterator[int]:
        """Yield the native handle, counting the caller as in flight."""
        with self._lock:
            if not self._ptr:
                raise StateError("StorageView has been closed", code="STATE_CLOSED")
            self._in_flight += 1
            handle = self._ptr
        try:
            yield handle
        finally:
            with self._lock:
                self._in_flight -= 1
                if self._in_flight == 0:
                    self._idle.notify_all()

    def _info(self) -> CStorageViewInfo:
        info = CStorageViewInfo()
        with self._borrow() as handle:
            check(get_lib().ct2_storage_view_info(handle, ctypes.byref(info)))
        return info

    @property
    def shape(self) -> list[int]:
        info = self._info()
        if not info.rank:
            return []
        return info.shape[: info.rank]

    @property
    def dtype(self) -> DType:
        return DType(self._info().dtype)

    @property
    def device(self) -> Device:
        return Device(self._info().device)

    def size(self) -> int:
        """Number of elements."""
        return self._info().size

    def rank(self) -> int:
        return self._info().rank

    def empty(self) -> bool:
        return self.size() == 0

    def to_list(self) -> list[float] | list[int]:
        """Copy the elements back to a flat Python list."""
        with self._borrow() as handle:
            info = CStorageViewInfo()
            check(get_lib().ct2_storage_view_info(handle, ctypes.byref(info)))
            ctype = _DTYPE_INFO[DType(info.dtype)][0]
            buffer = (ctype * info.size)()
            check(
                get_lib().ct2_storage_view_copy_to_host(
                    handle, ctypes.cast(buffer, ctypes.c_void_p), ctypes.sizeof(buffer)
                )
            )
        return buffer[:]

    def __str__(self) -> str:
        out_text = ctypes.c_void_p()
        with self._borrow() as handle:
            check(get_lib().ct2_storage_view_to_string(handle, ctypes.byref(out_text)))
        return consume_text(out_text)

    def __repr__(self) -> str:
        if not self._ptr:
            return "StorageView(closed)"
        return f"StorageView(shape={self.shape}, dtype={self.dtype.name.lower()}, device={self.device.name.lower()})"

    def close(self) -> None:
        """
        Release the native buffer.

        Blocks until calls already reading this view (for example a Whisper
        batch) have returned. Safe to call multiple times and from several
        threads; the buffer is released once.
        """
        lock = getattr(self, "_lock", None)
        if lock is None:
            return
        with lock:
            ptr, self._ptr = self._ptr, None
            while self._in_flight:
                self._idle.wait()
        if ptr:
            get_lib().ct2_storage_view_free(ptr)

    def __enter__(self) -> StorageView:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()

    def __del__(self) -> None:
        try:
            self.close()
        except Exception:
            pass
