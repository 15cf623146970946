"""
Native library loading and error translation.

Justification: the C ABI reports failures as integer status codes with the
diagnostic text kept in a thread-local slot on the native side. This module
owns the single library handle and converts those codes into the typed
exception hierarchy, so every ``call_*`` wrapper can stay a thin
``check(lib.ct2_...(...))``.

The library is located lazily on first use:

1. ``CT2BIND_LIBRARY`` environment variable (full path)
2. ``libct2c`` shipped inside the package directory
3. The system loader search path (``ctypes.util.find_library("ct2c")``)

An already loaded library, such as an instrumented test build, can be
installed with ``set_lib()``.
"""

import ctypes
import ctypes.util
import os
import sys
import threading
from pathlib import Path
from typing import Any

from . import _native
from ._logging import scoped_logger
from .exceptions import (
    ConversionError,
    Ct2Error,
    LibraryLoadError,
    ModelLoadError,
    ModelNotFoundError,
    NativeRuntimeError,
    OutOfMemoryError,
    ValidationError,
)

logger = scoped_logger("native")

ENV_LIBRARY = "CT2BIND_LIBRARY"

# Native status code -> (exception class, stable string code)
ERROR_MAP: dict[int, tuple[type[Ct2Error], str]] = {
    # 100-199: model loading
    100: (ModelNotFoundError, "MODEL_NOT_FOUND"),
    101: (ModelLoadError, "MODEL_FORMAT_UNRECOGNIZED"),
    102: (ModelLoadError, "MODEL_UNSUPPORTED_CONFIGURATION"),
    103: (ModelLoadError, "MODEL_LOAD_FAILED"),
    # 200-299: input conversion
    200: (ConversionError, "CONVERSION_FAILED"),
    # 300-399: engine runtime
    300: (NativeRuntimeError, "NATIVE_RUNTIME_ERROR"),
    301: (NativeRuntimeError, "DEVICE_FAILURE"),
    302: (NativeRuntimeError, "INVALID_OPTIONS"),
    # 900-999: system
    900: (OutOfMemoryError, "OUT_OF_MEMORY"),
    901: (ValidationError, "INVALID_ARGUMENT"),
    902: (ValidationError, "INVALID_HANDLE"),
    999: (Ct2Error, "INTERNAL_ERROR"),
}

_lib: Any = None
_lib_lock = threading.Lock()


def _library_filename() -> str:
    if sys.platform == "win32":
        return "ct2c.dll"
    if sys.platform == "darwin":
        return "libct2c.dylib"
    return "libct2c.so"


def _candidate_paths() -> list[str]:
    candidates = []
    env_path = os.environ.get(ENV_LIBRARY)
    if env_path:
        candidates.append(env_path)
    bundled = Path(__file__).parent / _library_filename()
    if bundled.exists():
        candidates.append(str(bundled))
    found = ctypes.util.find_library("ct2c")
    if found:
        candidates.append(found)
    return candidates


def load_library(path: str | os.PathLike | None = None) -> ctypes.CDLL:
    """
    Load libct2c and apply the C signatures.

    Args:
        path: Explicit library path. When omitted the search order described
            in the module docstring is used.

    Raises
    ------
        LibraryLoadError: If no candidate loads or the library lacks an
            expected entry point.
    """
    candidates = [os.fspath(path)] if path is not None else _candidate_paths()
    failures: list[str] = []

    for candidate in candidates:
        try:
            lib = ctypes.CDLL(candidate)
        except OSError as e:
            failures.append(f"{candidate}: {e}")
            continue

        try:
            _native.configure(lib)
        except AttributeError as e:
            raise LibraryLoadError(
                f"{candidate} is not a compatible libct2c build: {e}",
                code="LIBRARY_INCOMPATIBLE",
                details={"path": candidate},
            ) from e

        logger.debug("Loaded native library", extra={"path": candidate})
        return lib

    raise LibraryLoadError(
        f"Could not load libct2c. Set {ENV_LIBRARY} to the full library path.",
        details={"tried": failures or candidates},
    )


def get_lib() -> Any:
    """Return the process-wide native library, loading it on first use."""
    global _lib
    if _lib is None:
        with _lib_lock:
            if _lib is None:
                _lib = load_library()
    return _lib


def set_lib(lib: Any) -> Any:
    """
    Install an already loaded library and return the previous one.

    Signatures are not applied here; use ``load_library()`` for a real
    shared object. Passing None resets to lazy loading.
    """
    global _lib
    with _lib_lock:
        previous, _lib = _lib, lib
    return previous


# =============================================================================
# Error State
# =============================================================================


def get_last_error() -> str | None:
    """Return the native diagnostic text for this thread, or None."""
    message = get_lib().ct2_last_error()
    if not message:
        return None
    return message.decode("utf-8", errors="replace")


def clear_error() -> None:
    """Clear the native error slot for this thread."""
    get_lib().ct2_clear_error()


def take_last_error() -> str | None:
    """Return and clear the native diagnostic text for this thread."""
    message = get_last_error()
    clear_error()
    return message


def check(code: int, details: dict[str, Any] | None = None) -> None:
    """
    Raise the typed exception for a native status code.

    Must be called on the same thread, right after the native call, since
    the diagnostic text is thread-local.

    Args:
        code: Status returned by a ``ct2_*`` entry point (0 = success).
        details: Extra context attached to the raised exception.
    """
    if code == 0:
        return

    message = take_last_error() or f"native call failed with status {code}"
    entry = ERROR_MAP.get(code)
    if entry is None:
        raise Ct2Error(
            message,
            code="UNMAPPED_ERROR",
            details={**(details or {}), "native_code": code},
            original_code=code,
        )

    exc_class, error_code = entry
    raise exc_class(message, code=error_code, details=details, original_code=code)


def consume_text(out_text: ctypes.c_void_p) -> str:
    """Decode a library-allocated string and release it with ct2_text_free."""
    if not out_text.value:
        return ""
    try:
        raw = ctypes.string_at(out_text.value)
    finally:
        get_lib().ct2_text_free(out_text)
    return raw.decode("utf-8", errors="replace")


def native_version() -> str:
    """Version string reported by the native engine."""
    raw = get_lib().ct2_version()
    return raw.decode("utf-8") if raw else "unknown"
