"""Options for Translator.translate_batch()."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from .._native import CTranslationOptions
from ..bridge import keepalive, to_native_batch
from .common import BatchType, NativeOptions
from .end_token import EndToken


@dataclass
class TranslationOptions(NativeOptions):
    """
    Decoding options for a translation batch.

    Numeric values are passed to the engine unchanged; their valid ranges are
    defined and checked by the engine. Values that cannot be represented in
    the native field (negative sizes) raise ``ValidationError``.

    Attributes
    ----------
    beam_size : int
        Beam width. 1 selects greedy search or sampling.
    patience : float
        Beam search patience factor.
    length_penalty : float
        Exponential penalty applied to the length during beam search.
    coverage_penalty : float
        Coverage penalty weight applied during beam search.
    repetition_penalty : float
        Penalty for repeated tokens (1 disables it).
    no_repeat_ngram_size : int
        Forbid repeating ngrams of this size (0 disables it).
    disable_unk : bool
        Never generate the unknown token.
    suppress_sequences : list[list[str]]
        Token sequences that must not be generated.
    prefix_bias_beta : float
        Bias decoding towards the target prefix instead of forcing it (0 forces).
    end_token : EndToken | str | list[str] | list[int] | None
        Terminator override. None keeps the engine default.
    return_end_token : bool
        Include the end token in the output.
    max_input_length : int
        Truncate inputs after this many tokens (0 disables truncation).
    max_decoding_length : int
        Maximum output length.
    min_decoding_length : int
        Minimum output length.
    sampling_topk : int
        Sample from the k most probable tokens (1 is greedy, 0 is the full vocabulary).
    sampling_topp : float
        Nucleus sampling probability mass.
    sampling_temperature : float
        Sampling temperature.
    use_vmap : bool
        Restrict the output vocabulary with the model's vocabulary map.
    num_hypotheses : int
        Hypotheses returned per input.
    return_scores : bool
        Return one score per hypothesis.
    return_attention : bool
        Return the attention matrix of each hypothesis.
    return_logits_vocab : bool
        Return the vocabulary logits of each hypothesis as StorageViews.
    return_alternatives : bool
        Return alternatives at the first unconstrained position.
    min_alternative_expansion_prob : float
        Minimum probability to expand an alternative.
    replace_unknowns : bool
        Replace unknown targets by the source token with the highest attention.
    max_batch_size : int
        Split the request into sub-batches of this size (0 disables it).
    batch_type : BatchType
        Unit of ``max_batch_size``.
    """

    beam_size: int = 2
    patience: float = 1.0
    length_penalty: float = 1.0
    coverage_penalty: float = 0.0
    repetition_penalty: float = 1.0
    no_repeat_ngram_size: int = 0
    disable_unk: bool = False
    suppress_sequences: list[list[str]] = field(default_factory=list)
    prefix_bias_beta: float = 0.0
    end_token: Any = None
    return_end_token: bool = False
    max_input_length: int = 1024
    max_decoding_length: int = 256
    min_decoding_length: int = 1
    sampling_topk: int = 1
    sampling_topp: float = 1.0
    sampling_temperature: float = 1.0
    use_vmap: bool = False
    num_hypotheses: int = 1
    return_scores: bool = False
    return_attention: bool = False
    return_logits_vocab: bool = False
    return_alternatives: bool = False
    min_alternative_expansion_prob: float = 0.0
    replace_unknowns: bool = False
    max_batch_size: int = 0
    batch_type: BatchType = BatchType.EXAMPLES

    _size_fields = (
        "beam_size",
        "no_repeat_ngram_size",
        "max_input_length",
        "max_decoding_length",
        "min_decoding_length",
        "sampling_topk",
        "num_hypotheses",
        "max_batch_size",
    )
    _float_fields = (
        "patience",
        "length_penalty",
        "coverage_penalty",
        "repetition_penalty",
        "prefix_bias_beta",
        "sampling_topp",
        "sampling_temperature",
        "min_alternative_expansion_prob",
    )
    _bool_fields = (
        "disable_unk",
        "return_end_token",
        "use_vmap",
        "return_scores",
        "return_attention",
        "return_logits_vocab",
        "return_alternatives",
        "replace_unknowns",
    )

    def __post_init__(self) -> None:
        self.end_token = EndToken.coerce(self.end_token)
        self.batch_type = BatchType.parse(self.batch_type)

    def _to_c(self) -> CTranslationOptions:
        c_options = self._fill_scalars(CTranslationOptions())
        suppress = to_native_batch(self.suppress_sequences, "suppress_sequences")
        end_token = EndToken.coerce(self.end_token)._to_c()
        c_options.suppress_sequences = suppress
        c_options.end_token = end_token
        c_options.batch_type = int(BatchType.parse(self.batch_type))
        return keepalive(c_options, suppress, end_token)
