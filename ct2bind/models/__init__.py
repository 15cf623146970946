"""Model runners: one native engine instance per object."""

from .generator import Generator
from .translator import Translator
from .whisper import Whisper

__all__ = ["Translator", "Generator", "Whisper"]
