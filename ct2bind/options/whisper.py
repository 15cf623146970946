"""Options for Whisper.generate()."""

from __future__ import annotations

from dataclasses import dataclass, field

from .._native import CWhisperOptions
from ..bridge import keepalive, to_native_int32s
from .common import NativeOptions


@dataclass
class WhisperOptions(NativeOptions):
    """
    Decoding options for speech recognition.

    Attributes
    ----------
    return_no_speech_prob : bool
        Return the probability of the no-speech token for each input.
    max_initial_timestamp_index : int
        Maximum index of the first predicted timestamp.
    suppress_blank : bool
        Suppress blank outputs at the start of sampling.
    suppress_tokens : list[int]
        Token ids to suppress. -1 expands to the model's default set of
        non-speech symbols.
    """

    beam_size: int = 5
    patience: float = 1.0
    length_penalty: float = 1.0
    repetition_penalty: float = 1.0
    no_repeat_ngram_size: int = 0
    max_length: int = 448
    sampling_topk: int = 1
    sampling_temperature: float = 1.0
    num_hypotheses: int = 1
    return_scores: bool = False
    return_logits_vocab: bool = False
    return_no_speech_prob: bool = False
    max_initial_timestamp_index: int = 50
    suppress_blank: bool = True
    suppress_tokens: list[int] = field(default_factory=lambda: [-1])

    _size_fields = (
        "beam_size",
        "no_repeat_ngram_size",
        "max_length",
        "sampling_topk",
        "num_hypotheses",
        "max_initial_timestamp_index",
    )
    _float_fields = ("patience", "length_penalty", "repetition_penalty", "sampling_temperature")
    _bool_fields = (
        "return_scores",
        "return_logits_vocab",
        "return_no_speech_prob",
        "suppress_blank",
    )

    def _to_c(self) -> CWhisperOptions:
        c_options = self._fill_scalars(CWhisperOptions())
        suppress_tokens = to_native_int32s(self.suppress_tokens, "suppress_tokens")
        c_options.suppress_tokens = suppress_tokens
        return keepalive(c_options, suppress_tokens)
