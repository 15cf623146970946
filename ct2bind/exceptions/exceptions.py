"""
ct2bind exceptions.

This module defines the exception hierarchy for ct2bind:

    Ct2Error (base)
    ├── ModelLoadError - Model directory or in-memory model could not be loaded
    │   └── ModelNotFoundError - Model path doesn't exist
    ├── ConversionError - Input shape cannot be marshalled to the engine
    ├── NativeRuntimeError - Failure raised by the engine during a call
    │   └── OutOfMemoryError - Host or device memory exhausted
    ├── LibraryLoadError - Native library could not be located or loaded
    ├── StateError - Invalid object state errors
    └── ValidationError - Value not representable in the native field

Usage:
    try:
        translator = ct2bind.Translator("ende_ctranslate2/")
    except ct2bind.ModelNotFoundError:
        print("Download the model first")
    except ct2bind.ModelLoadError as e:
        print(f"Cannot load model: {e}")
    except ct2bind.Ct2Error as e:
        # Catch any ct2bind error with structured details
        print(f"Error {e.code}: {e}")
        print(f"Details: {e.details}")

Early termination requested by a step callback is not an error: the call
returns normally with the tokens produced so far.
"""

from typing import Any

__all__ = [
    # Base
    "Ct2Error",
    # Model
    "ModelLoadError",
    "ModelNotFoundError",
    # Conversion
    "ConversionError",
    # Runtime
    "NativeRuntimeError",
    "OutOfMemoryError",
    # Library
    "LibraryLoadError",
    # State
    "StateError",
    # Validation
    "ValidationError",
]


class Ct2Error(Exception):
    """
    Base exception for all ct2bind errors.

    All ct2bind-specific exceptions inherit from this class, enabling:
    - Catch-all handling: ``except ct2bind.Ct2Error``
    - Stable string-based error codes for programmatic handling
    - Structured details for debugging and logging

    Attributes
    ----------
    message : str
        Human-readable error description. For errors raised by the engine
        this is the native diagnostic text, verbatim.
    code : str
        Stable, string-based error code (e.g., "MODEL_NOT_FOUND").
        Use this for programmatic error handling.
    details : dict[str, Any]
        Structured context (e.g., {"path": "...", "source_length": 3}).
    original_code : int | None
        The integer status returned by the native library.

    Example
    -------
    >>> try:
    ...     ct2bind.Translator("missing/model")
    ... except ct2bind.Ct2Error as e:
    ...     print(f"Error code: {e.code}")
    Error code: MODEL_NOT_FOUND
    """

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message)
        self.code = code
        self.details = details or {}
        self.original_code = original_code

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.args[0]!r}, code={self.code!r})"


# =============================================================================
# Model Errors
# =============================================================================


class ModelLoadError(Ct2Error, RuntimeError):
    """
    Error loading a model runner.

    Raised by the Translator, Generator and Whisper constructors. Common causes:
    - Unreadable or unrecognized model directory
    - Device or compute type not supported by the compiled engine
    - In-memory model missing required files

    The native diagnostic message is surfaced verbatim.
    """

    def __init__(
        self,
        message: str,
        code: str = "MODEL_LOAD_FAILED",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 101)


class ModelNotFoundError(ModelLoadError, FileNotFoundError):
    """Model path does not exist."""

    def __init__(
        self,
        message: str,
        code: str = "MODEL_NOT_FOUND",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 100)


# =============================================================================
# Conversion Errors
# =============================================================================


class ConversionError(Ct2Error, ValueError):
    """
    Input cannot be converted to the engine's representation.

    Raised before any native call when the shape of a batch is malformed:
    - Target prefix count differs from source count
    - A batch element is a bare string instead of a token sequence
    - A token is not a string, or a token id is not an integer
    - StorageView data does not match its shape or dtype

    Inputs are never truncated or padded to make them fit.
    """

    def __init__(
        self,
        message: str,
        code: str = "CONVERSION_FAILED",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 200)


# =============================================================================
# Runtime Errors
# =============================================================================


class NativeRuntimeError(Ct2Error, RuntimeError):
    """
    Failure raised by the engine during a batch call.

    Covers device failures, invalid option combinations detected natively
    and malformed native results. The message carries the native diagnostic
    text. The model runner stays usable for subsequent calls.
    """

    def __init__(
        self,
        message: str,
        code: str = "NATIVE_RUNTIME_ERROR",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 300)


class OutOfMemoryError(NativeRuntimeError, MemoryError):
    """Host or device memory was exhausted during a native call."""

    def __init__(
        self,
        message: str,
        code: str = "OUT_OF_MEMORY",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 900)


# =============================================================================
# Library Errors
# =============================================================================


class LibraryLoadError(Ct2Error, OSError):
    """
    The native shim library could not be loaded.

    Set ``CT2BIND_LIBRARY`` to the full path of ``libct2c`` when it is not
    installed next to the package or on the system loader path.
    """

    def __init__(
        self,
        message: str,
        code: str = "LIBRARY_NOT_FOUND",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


# =============================================================================
# State Errors
# =============================================================================


class StateError(Ct2Error, RuntimeError):
    """
    Invalid object state.

    Raised when an operation is attempted on an object in the wrong state:
    - Calling a closed Translator, Generator, Whisper or StorageView
    - Closing a model runner from inside one of its own step callbacks
    - Copying or pickling a native handle wrapper
    """

    def __init__(
        self,
        message: str,
        code: str = "STATE_ERROR",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code)


# =============================================================================
# Validation Errors
# =============================================================================


class ValidationError(Ct2Error, ValueError):
    """
    Value cannot be represented in the native field.

    Raised for negative counts passed to unsigned fields, integers outside the
    native range, and unknown enum names. Engine-defined ranges (for example a
    beam size of zero) are not checked here; the engine reports those.
    """

    def __init__(
        self,
        message: str,
        code: str = "INVALID_ARGUMENT",
        details: dict[str, Any] | None = None,
        original_code: int | None = None,
    ):
        super().__init__(message, code, details, original_code or 901)
