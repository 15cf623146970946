"""Options for Generator.generate_batch()."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .._native import CGenerationOptions
from ..bridge import keepalive, to_native_batch, to_native_strings
from .common import BatchType, NativeOptions
from .end_token import EndToken


@dataclass
class GenerationOptions(NativeOptions):
    """
    Decoding options for a generation batch.

    Shares most fields with ``TranslationOptions``; see there for their meaning.

    Attributes
    ----------
    max_length : int
        Maximum generation length, prompt tokens included when
        ``include_prompt_in_result`` is true.
    min_length : int
        Minimum generation length.
    static_prompt : list[str]
        Tokens prepended to every prompt. With ``cache_static_prompt`` the
        engine reuses its decoder state across calls.
    cache_static_prompt : bool
        Cache the model state after the static prompt.
    include_prompt_in_result : bool
        Include the start tokens in the returned sequences.
    """

    beam_size: int = 1
    patience: float = 1.0
    length_penalty: float = 1.0
    repetition_penalty: float = 1.0
    no_repeat_ngram_size: int = 0
    disable_unk: bool = False
    suppress_sequences: list[list[str]] = field(default_factory=list)
    end_token: Any = None
    return_end_token: bool = False
    max_length: int = 512
    min_length: int = 0
    sampling_topk: int = 1
    sampling_topp: float = 1.0
    sampling_temperature: float = 1.0
    num_hypotheses: int = 1
    return_scores: bool = False
    return_logits_vocab: bool = False
    return_alternatives: bool = False
    min_alternative_expansion_prob: float = 0.0
    static_prompt: list[str] = field(default_factory=list)
    cache_static_prompt: bool = True
    include_prompt_in_result: bool = True
    max_batch_size: int = 0
    batch_type: BatchType = BatchType.EXAMPLES

    _size_fields = (
        "beam_size",
        "no_repeat_ngram_size",
        "max_length",
        "min_length",
        "sampling_topk",
        "num_hypotheses",
        "max_batch_size",
    )
    _float_fields = (
        "patience",
        "length_penalty",
        "repetition_penalty",
        "sampling_topp",
        "sampling_temperature",
        "min_alternative_expansion_prob",
    )
    _bool_fields = (
        "disable_unk",
        "return_end_token",
        "return_scores",
        "return_logits_vocab",
        "return_alternatives",
        "cache_static_prompt",
        "include_prompt_in_result",
    )

    def __post_init__(self) -> None:
        self.end_token = EndToken.coerce(self.end_token)
        self.batch_type = BatchType.parse(self.batch_type)

    def _to_c(self) -> CGenerationOptions:
        c_options = self._fill_scalars(CGenerationOptions())
        suppress = to_native_batch(self.suppress_sequences, "suppress_sequences")
        static_prompt = to_native_strings(self.static_prompt, "static_prompt")
        end_token = EndToken.coerce(self.end_token)._to_c()
        c_options.suppress_sequences = suppress
        c_options.static_prompt = static_prompt
        c_options.end_token = end_token
        c_options.batch_type = int(BatchType.parse(self.batch_type))
        return keepalive(c_options, suppress, static_prompt, end_token)
