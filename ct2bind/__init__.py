"""
ct2bind - Python bindings for the CTranslate2 inference engine.

ct2bind loads ``libct2c``, a C ABI over CTranslate2, with ctypes. No
dependencies beyond the standard library.

Quick Start
-----------

Translation:

    >>> from ct2bind import Translator, TranslationOptions
    >>>
    >>> with Translator("ende_ctranslate2/") as translator:
    ...     results = translator.translate_batch(
    ...         [["▁Hello", "▁world", "!"]],
    ...         options=TranslationOptions(return_scores=True),
    ...     )
    ...     print(results[0].hypotheses[0], results[0].scores[0])

Streaming tokens:

    >>> for step in generator.generate_tokens(["<s>", "▁Once"]):
    ...     print(step.token, end="")

Stopping early from a step callback:

    >>> def on_step(step):
    ...     return time.monotonic() > deadline   # True stops this hypothesis
    >>> translator.translate_batch(batch, callback=on_step)


Core Classes
------------

Model runners (own one engine instance each, safe to share across threads):
- `Translator` - sequence-to-sequence models
- `Generator` - decoder-only language models
- `Whisper` - speech recognition

Data:
- `StorageView` - native tensor (copied in at construction)
- `ModelMemoryReader` - model files held in memory

Configuration:
- `Config` - device, precision and replica pool settings
- `TranslationOptions`, `GenerationOptions`, `WhisperOptions`, `ScoringOptions`
- `EndToken` - terminator override variants


Native Library
--------------

Set ``CT2BIND_LIBRARY`` to the full path of ``libct2c`` when it is neither
bundled with the package nor on the system loader path. The library is loaded
on first use, so importing ct2bind never fails because of it.
"""

from ct2bind._logging import setup_logging as setup_logging
from ct2bind._version import __version__ as __version__

# Configuration
from ct2bind.config import (
    ComputeType,
    Config,
    Device,
    LogLevel,
    get_device_count,
    get_log_level,
    get_random_seed,
    set_log_level,
    set_random_seed,
)

# Exceptions (commonly-used exceptions at root; all via ct2bind.exceptions)
from ct2bind.exceptions import (
    ConversionError,
    Ct2Error,
    LibraryLoadError,
    ModelLoadError,
    ModelNotFoundError,
    NativeRuntimeError,
    StateError,
    ValidationError,
)
from ct2bind.memory_reader import ModelMemoryReader

# Model runners
from ct2bind.models import Generator, Translator, Whisper

# Options
from ct2bind.options import (
    BatchType,
    EndToken,
    GenerationOptions,
    MultipleEndTokenIds,
    MultipleEndTokens,
    NoEndToken,
    ScoringOptions,
    SingleEndToken,
    TranslationOptions,
    WhisperOptions,
)

# Results
from ct2bind.results import (
    DetectionResult,
    GenerationResult,
    GenerationStepResult,
    Hypothesis,
    ScoringResult,
    TranslationResult,
    WhisperAlignmentResult,
    WhisperGenerationResult,
)
from ct2bind.storage_view import DType, StorageView

__all__ = [
    # Model runners
    "Translator",
    "Generator",
    "Whisper",
    # Data
    "StorageView",
    "DType",
    "ModelMemoryReader",
    # Configuration
    "Config",
    "Device",
    "ComputeType",
    "LogLevel",
    "get_device_count",
    "set_log_level",
    "get_log_level",
    "set_random_seed",
    "get_random_seed",
    "setup_logging",
    # Options
    "TranslationOptions",
    "GenerationOptions",
    "WhisperOptions",
    "ScoringOptions",
    "BatchType",
    "EndToken",
    "NoEndToken",
    "SingleEndToken",
    "MultipleEndTokens",
    "MultipleEndTokenIds",
    # Results
    "TranslationResult",
    "Hypothesis",
    "GenerationResult",
    "ScoringResult",
    "WhisperGenerationResult",
    "DetectionResult",
    "WhisperAlignmentResult",
    "GenerationStepResult",
    # Exceptions
    "Ct2Error",
    "ModelLoadError",
    "ModelNotFoundError",
    "ConversionError",
    "NativeRuntimeError",
    "LibraryLoadError",
    "StateError",
    "ValidationError",
]
