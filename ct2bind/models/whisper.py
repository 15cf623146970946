"""Whisper speech recognition runner."""

from __future__ import annotations

from collections.abc import Sequence

from .._logging import scoped_logger
from ..bridge import check_paired_lengths, require_int, to_native_batch, to_native_id_batch, to_native_ids
from ..exceptions import ConversionError
from ..options import WhisperOptions
from ..results import DetectionResult, WhisperAlignmentResult, WhisperGenerationResult
from ..storage_view import StorageView
from . import _bindings as _c
from ._base import ModelRunner
from .translator import _check_options


def _batch_size(features: StorageView) -> int:
    if not isinstance(features, StorageView):
        raise ConversionError(
            f"features must be a StorageView, got {type(features).__name__}",
            code="CONVERSION_INVALID_FEATURES",
        )
    shape = features.shape
    if len(shape) != 3:
        raise ConversionError(
            f"features must have shape [batch, n_mels, frames], got {shape}",
            code="CONVERSION_INVALID_FEATURES",
            details={"shape": shape},
        )
    return shape[0]


class Whisper(ModelRunner):
    """
    Whisper model for transcription, language detection and alignment.

    Features are log-Mel spectrograms passed as a ``StorageView`` of shape
    ``[batch, n_mels, frames]``.

    Example:
        >>> whisper = Whisper("whisper-tiny-ct2/")
        >>> features = StorageView(mel, shape=[1, whisper.n_mels(), 3000])
        >>> language = whisper.detect_language(features)[0][0].language
        >>> prompt = ["<|startoftranscript|>", language, "<|transcribe|>", "<|notimestamps|>"]
        >>> results = whisper.generate(features, [prompt])
    """

    _kind = "whisper"
    _log = scoped_logger("whisper")

    def generate(
        self,
        features: StorageView,
        prompts: Sequence[Sequence[str]],
        options: WhisperOptions | None = None,
    ) -> list[WhisperGenerationResult]:
        """
        Transcribe or translate a batch of audio segments.

        Args:
            features: Mel spectrograms, one per batch item.
            prompts: Prompt tokens per batch item.
            options: Decoding options. Defaults to ``WhisperOptions()``.

        Raises
        ------
            ConversionError: If the prompt count differs from the batch size.
        """
        options = options if options is not None else WhisperOptions()
        _check_options(options, WhisperOptions)

        batch_size = _batch_size(features)
        c_prompts = to_native_batch(prompts, "prompts")
        check_paired_lengths("features", batch_size, "prompts", c_prompts.length)
        c_options = options._to_c()

        self._log.debug("Transcribing batch", extra={"batch_size": batch_size})
        with self._borrow() as handle, features._borrow() as c_features:
            return _c.call_whisper_generate(
                handle,
                c_features,
                c_prompts,
                c_options,
                lambda c_result: WhisperGenerationResult._from_c(c_result, options),
            )

    def detect_language(self, features: StorageView) -> list[list[DetectionResult]]:
        """
        Language probabilities per batch item, most probable first.

        Returns
        -------
            For each batch item, ``DetectionResult`` entries such as
            ``DetectionResult("<|en|>", 0.98)``.
        """
        batch_size = _batch_size(features)
        with self._borrow() as handle, features._borrow() as c_features:
            return _c.call_whisper_detect_language(
                handle, c_features, batch_size, DetectionResult._list_from_c
            )

    def encode(self, features: StorageView, to_cpu: bool = False) -> StorageView:
        """
        Run the encoder only.

        Args:
            features: Mel spectrograms.
            to_cpu: Copy the encoder output to host memory.

        Returns
        -------
            A new StorageView owned by the caller.
        """
        _batch_size(features)
        with self._borrow() as handle, features._borrow() as c_features:
            view = _c.call_whisper_encode(handle, c_features, bool(to_cpu))
        return StorageView._adopt(view)

    def align(
        self,
        features: StorageView,
        start_sequence: Sequence[int],
        text_tokens: Sequence[Sequence[int]],
        num_frames: Sequence[int],
        median_filter_width: int = 7,
    ) -> list[WhisperAlignmentResult]:
        """
        Align text tokens to audio frames.

        Args:
            features: Mel spectrograms.
            start_sequence: Decoder start token ids.
            text_tokens: Token ids to align, per batch item.
            num_frames: Number of non-padding frames, per batch item.
            median_filter_width: Width of the median filter applied to the
                cross-attention weights.

        Raises
        ------
            ConversionError: If ``num_frames`` and ``text_tokens`` lengths differ.
        """
        _batch_size(features)
        c_start = to_native_ids(start_sequence, "start_sequence")
        c_text_tokens = to_native_id_batch(text_tokens, "text_tokens")
        c_num_frames = to_native_ids(num_frames, "num_frames")
        check_paired_lengths("text_tokens", c_text_tokens.length, "num_frames", c_num_frames.length)
        width = require_int("median_filter_width", median_filter_width, 0, 2**63 - 1)

        with self._borrow() as handle, features._borrow() as c_features:
            return _c.call_whisper_align(
                handle,
                c_features,
                c_start,
                c_text_tokens,
                c_num_frames,
                width,
                WhisperAlignmentResult._from_c,
            )

    def is_multilingual(self) -> bool:
        with self._borrow() as handle:
            return _c.call_whisper_is_multilingual(handle)

    def n_mels(self) -> int:
        """Number of Mel bins the model expects."""
        with self._borrow() as handle:
            return _c.call_whisper_size("n_mels", handle)

    def num_languages(self) -> int:
        with self._borrow() as handle:
            return _c.call_whisper_size("num_languages", handle)
