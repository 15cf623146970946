"""
Result types returned by the model runners.

Optional fields follow the options of the call that produced them: a field
is None when it was not requested and always present when it was, even if
its value is 0.0. A native result missing a requested field raises
``NativeRuntimeError``.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from ._native import (
    CDetectionResultArray,
    CFloatArray,
    CGenerationResult,
    CGenerationStepResult,
    CHandleArray,
    CScoringResult,
    CTranslationResult,
    CWhisperAlignmentResult,
    CWhisperGenerationResult,
)
from .bridge import (
    from_native_batch,
    from_native_float_tensor,
    from_native_floats,
    from_native_id_batch,
    from_native_pairs,
    from_native_strings,
    optional_from_native,
    string_from_view,
)
from .exceptions import NativeRuntimeError
from .storage_view import StorageView

if TYPE_CHECKING:
    from .options import GenerationOptions, TranslationOptions, WhisperOptions

__all__ = [
    "Hypothesis",
    "TranslationResult",
    "GenerationResult",
    "ScoringResult",
    "WhisperGenerationResult",
    "DetectionResult",
    "WhisperAlignmentResult",
    "GenerationStepResult",
]


def _requested_floats(
    requested: bool, array: CFloatArray, expected: int, name: str
) -> list[float] | None:
    if not requested:
        return None
    values = from_native_floats(array)
    if len(values) != expected:
        raise NativeRuntimeError(
            f"engine returned {len(values)} {name} for {expected} hypotheses",
            code="NATIVE_RESULT_INCOMPLETE",
            details={"field": name, "expected": expected, "received": len(values)},
        )
    return values


def _adopt_views(handles: CHandleArray, expected: int) -> list[StorageView]:
    """Move StorageView handles out of a native result.

    Each slot is cleared after adoption so that releasing the result does not
    free a view Python now owns.
    """
    if handles.length != expected:
        raise NativeRuntimeError(
            f"engine returned {handles.length} logits for {expected} hypotheses",
            code="NATIVE_RESULT_INCOMPLETE",
            details={"field": "logits", "expected": expected, "received": handles.length},
        )
    views = []
    for index in range(handles.length):
        handle = handles.data[index]
        if not handle:
            raise NativeRuntimeError(
                f"engine returned a null logits view at index {index}",
                code="NATIVE_RESULT_INCOMPLETE",
            )
        handles.data[index] = None
        views.append(StorageView._adopt(handle))
    return views


@dataclass(frozen=True)
class Hypothesis:
    """One ranked hypothesis of a translation."""

    tokens: list[str]
    score: float | None = None


@dataclass
class TranslationResult:
    """
    Hypotheses for one input of a translation batch, best first.

    Attributes
    ----------
    hypotheses : list[list[str]]
        Output tokens of each hypothesis.
    scores : list[float] | None
        One score per hypothesis when ``return_scores`` was set.
    attention : list[list[list[float]]] | None
        Attention matrix (target x source) per hypothesis when
        ``return_attention`` was set.
    logits : list[StorageView] | None
        Vocabulary logits per hypothesis when ``return_logits_vocab`` was set.

    Iterating yields ``Hypothesis`` objects pairing tokens with their score.
    """

    hypotheses: list[list[str]]
    scores: list[float] | None = None
    attention: list[list[list[float]]] | None = None
    logits: list[StorageView] | None = None

    @property
    def has_scores(self) -> bool:
        return self.scores is not None

    def __len__(self) -> int:
        return len(self.hypotheses)

    def __iter__(self) -> Iterator[Hypothesis]:
        for index, tokens in enumerate(self.hypotheses):
            score = self.scores[index] if self.scores is not None else None
            yield Hypothesis(tokens, score)

    @classmethod
    def _from_c(cls, c_result: CTranslationResult, options: TranslationOptions) -> TranslationResult:
        hypotheses = from_native_batch(c_result.hypotheses)
        count = len(hypotheses)
        scores = _requested_floats(options.return_scores, c_result.scores, count, "scores")

        attention = None
        if options.return_attention:
            attention = from_native_float_tensor(c_result.attention)
            if len(attention) != count:
                raise NativeRuntimeError(
                    f"engine returned {len(attention)} attention matrices for {count} hypotheses",
                    code="NATIVE_RESULT_INCOMPLETE",
                )

        logits = _adopt_views(c_result.logits, count) if options.return_logits_vocab else None
        return cls(hypotheses, scores, attention, logits)


@dataclass
class GenerationResult:
    """Sequences generated for one prompt, best first."""

    sequences: list[list[str]]
    sequences_ids: list[list[int]]
    scores: list[float] | None = None
    logits: list[StorageView] | None = None

    @property
    def has_scores(self) -> bool:
        return self.scores is not None

    def __len__(self) -> int:
        return len(self.sequences)

    @classmethod
    def _from_c(cls, c_result: CGenerationResult, options: GenerationOptions) -> GenerationResult:
        sequences = from_native_batch(c_result.sequences)
        sequences_ids = from_native_id_batch(c_result.sequences_ids)
        count = len(sequences)
        if len(sequences_ids) != count:
            raise NativeRuntimeError(
                f"engine returned {len(sequences_ids)} id sequences for {count} sequences",
                code="NATIVE_RESULT_INCOMPLETE",
            )
        scores = _requested_floats(options.return_scores, c_result.scores, count, "scores")
        logits = _adopt_views(c_result.logits, count) if options.return_logits_vocab else None
        return cls(sequences, sequences_ids, scores, logits)


@dataclass
class ScoringResult:
    """Per-token log probabilities of one scored sequence."""

    tokens: list[str]
    tokens_score: list[float]

    def cumulated_score(self) -> float:
        return sum(self.tokens_score)

    def normalized_score(self) -> float:
        """Cumulated score divided by the number of tokens (0 when empty)."""
        if not self.tokens_score:
            return 0.0
        return self.cumulated_score() / len(self.tokens_score)

    @classmethod
    def _from_c(cls, c_result: CScoringResult, options: Any = None) -> ScoringResult:
        return cls(from_native_strings(c_result.tokens), from_native_floats(c_result.tokens_score))


@dataclass
class WhisperGenerationResult:
    sequences: list[list[str]]
    sequences_ids: list[list[int]]
    scores: list[float] | None = None
    no_speech_prob: float | None = None

    @property
    def has_scores(self) -> bool:
        return self.scores is not None

    @classmethod
    def _from_c(
        cls, c_result: CWhisperGenerationResult, options: WhisperOptions
    ) -> WhisperGenerationResult:
        sequences = from_native_batch(c_result.sequences)
        sequences_ids = from_native_id_batch(c_result.sequences_ids)
        scores = _requested_floats(
            options.return_scores, c_result.scores, len(sequences), "scores"
        )

        no_speech_prob = None
        if options.return_no_speech_prob:
            no_speech_prob = optional_from_native(c_result.no_speech_prob)
            if no_speech_prob is None:
                raise NativeRuntimeError(
                    "engine did not return the requested no-speech probability",
                    code="NATIVE_RESULT_INCOMPLETE",
                    details={"field": "no_speech_prob"},
                )
        return cls(sequences, sequences_ids, scores, no_speech_prob)


@dataclass(frozen=True)
class DetectionResult:
    """A language token (e.g. ``"<|en|>"``) with its probability."""

    language: str
    probability: float

    @classmethod
    def _list_from_c(cls, c_array: CDetectionResultArray, options: Any = None) -> list[DetectionResult]:
        results = []
        for index in range(c_array.length):
            item = c_array.data[index]
            results.append(cls(string_from_view(item.language), item.probability))
        return results


@dataclass
class WhisperAlignmentResult:
    """
    Attributes
    ----------
    alignments : list[tuple[int, int]]
        ``(text_token_index, time_index)`` pairs.
    text_token_probs : list[float]
        Probability of each text token.
    """

    alignments: list[tuple[int, int]]
    text_token_probs: list[float]

    @classmethod
    def _from_c(cls, c_result: CWhisperAlignmentResult, options: Any = None) -> WhisperAlignmentResult:
        return cls(from_native_pairs(c_result.alignments), from_native_floats(c_result.text_token_probs))


@dataclass(frozen=True)
class GenerationStepResult:
    """
    One decoding step, as passed to step callbacks.

    Attributes
    ----------
    step : int
        Decoding step index.
    batch_id : int
        Index of the input in the batch.
    token_id : int
        Generated token id.
    hypothesis_id : int
        Hypothesis index within the input.
    token : str
        Generated token.
    score : float | None
        Token log probability, when the engine provides it.
    is_last : bool
        True on the final step of this hypothesis.
    """

    step: int
    batch_id: int
    token_id: int
    hypothesis_id: int
    token: str
    score: float | None
    is_last: bool

    @classmethod
    def _from_c(cls, c_step: CGenerationStepResult) -> GenerationStepResult:
        return cls(
            step=c_step.step,
            batch_id=c_step.batch_id,
            token_id=c_step.token_id,
            hypothesis_id=c_step.hypothesis_id,
            token=string_from_view(c_step.token),
            score=optional_from_native(c_step.score),
            is_last=bool(c_step.is_last),
        )
