"""Per-call options for the model runners."""

from .common import BatchType
from .end_token import (
    EndToken,
    EndTokenKind,
    MultipleEndTokenIds,
    MultipleEndTokens,
    NoEndToken,
    SingleEndToken,
)
from .generation import GenerationOptions
from .scoring import ScoringOptions
from .translation import TranslationOptions
from .whisper import WhisperOptions

__all__ = [
    "BatchType",
    "EndToken",
    "EndTokenKind",
    "NoEndToken",
    "SingleEndToken",
    "MultipleEndTokens",
    "MultipleEndTokenIds",
    "TranslationOptions",
    "GenerationOptions",
    "WhisperOptions",
    "ScoringOptions",
]
