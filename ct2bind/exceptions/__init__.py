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
"""

from .exceptions import (
    ConversionError,
    Ct2Error,
    LibraryLoadError,
    ModelLoadError,
    ModelNotFoundError,
    NativeRuntimeError,
    OutOfMemoryError,
    StateError,
    ValidationError,
)

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
