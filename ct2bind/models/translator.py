"""Sequence-to-sequence translation runner."""

from __future__ import annotations

from collections.abc import Iterator, Sequence

from .._logging import scoped_logger
from ..bridge import check_paired_lengths, to_native_batch
from ..callback import StepCallback, StepCallbackFn, iter_steps
from ..exceptions import ValidationError
from ..options import ScoringOptions, TranslationOptions
from ..results import GenerationStepResult, ScoringResult, TranslationResult
from . import _bindings as _c
from ._base import ModelRunner


def _check_options(options: object, expected: type) -> None:
    if not isinstance(options, expected):
        raise ValidationError(
            f"options must be {expected.__name__}, got {type(options).__name__}",
            details={"value": repr(options)},
        )


class Translator(ModelRunner):
    """
    Translator backed by a converted sequence-to-sequence model.

    The engine owns a pool of replicas and a request queue; one Translator
    may be called concurrently from several threads.

    Args:
        model: Model directory, or a ``ModelMemoryReader``.
        config: Device, precision and replica pool settings.

    Raises
    ------
        ModelNotFoundError: If the model directory does not exist.
        ModelLoadError: If the model cannot be loaded with this config.

    Example:
        >>> with Translator("ende_ctranslate2/") as translator:
        ...     results = translator.translate_batch([["▁Hello", "▁world", "!"]])
        ...     print(results[0].hypotheses[0])
    """

    _kind = "translator"
    _log = scoped_logger("translator")

    def translate_batch(
        self,
        source: Sequence[Sequence[str]],
        target_prefix: Sequence[Sequence[str]] | None = None,
        options: TranslationOptions | None = None,
        *,
        callback: StepCallbackFn | None = None,
        reentrant_callback: bool = False,
    ) -> list[TranslationResult]:
        """
        Translate a batch of tokenized sentences.

        Args:
            source: One token list per example.
            target_prefix: Optional forced target prefix per example; must
                have exactly one entry (possibly empty) per source example.
            options: Decoding options. Defaults to ``TranslationOptions()``.
            callback: Called for each generated token with a
                ``GenerationStepResult``. Returning True stops that hypothesis.
            reentrant_callback: Allow concurrent callback invocations instead
                of serializing them.

        Returns
        -------
            One ``TranslationResult`` per example, in input order.

        Raises
        ------
            ConversionError: If ``target_prefix`` and ``source`` lengths differ
                or a token is not a string. Raised before the engine is called.
            NativeRuntimeError: If the engine fails during the batch.
        """
        options = options if options is not None else TranslationOptions()
        _check_options(options, TranslationOptions)

        c_source = to_native_batch(source, "source")
        c_prefix = None
        if target_prefix is not None:
            c_prefix = to_native_batch(target_prefix, "target_prefix")
            check_paired_lengths("source", c_source.length, "target_prefix", c_prefix.length)
        c_options = options._to_c()

        self._log.debug(
            "Translating batch",
            extra={"batch_size": c_source.length, "has_callback": callback is not None},
        )
        with self._borrow() as handle, StepCallback(
            callback, reentrant=reentrant_callback, owner=self
        ) as step_callback:
            return _c.call_translate_batch(
                handle,
                c_source,
                c_prefix,
                c_options,
                step_callback,
                lambda c_result: TranslationResult._from_c(c_result, options),
            )

    def score_batch(
        self,
        source: Sequence[Sequence[str]],
        target: Sequence[Sequence[str]],
        options: ScoringOptions | None = None,
    ) -> list[ScoringResult]:
        """
        Score existing translations.

        Returns
        -------
            One ``ScoringResult`` per pair, with a log probability per target token.

        Raises
        ------
            ConversionError: If ``source`` and ``target`` lengths differ.
        """
        options = options if options is not None else ScoringOptions()
        _check_options(options, ScoringOptions)

        c_source = to_native_batch(source, "source")
        c_target = to_native_batch(target, "target")
        check_paired_lengths("source", c_source.length, "target", c_target.length)
        c_options = options._to_c()

        with self._borrow() as handle:
            return _c.call_translator_score_batch(
                handle, c_source, c_target, c_options, ScoringResult._from_c
            )

    def generate_tokens(
        self,
        source: Sequence[str],
        target_prefix: Sequence[str] | None = None,
        options: TranslationOptions | None = None,
    ) -> Iterator[GenerationStepResult]:
        """
        Yield the tokens of one translation as they are decoded.

        Decoding runs on a background thread. Leaving the loop early stops
        decoding. Requires ``beam_size=1`` (the default here).

        Example:
            >>> for step in translator.generate_tokens(["▁Hello", "▁world"]):
            ...     print(step.token, end=" ")
        """
        options = options if options is not None else TranslationOptions(beam_size=1)
        _check_options(options, TranslationOptions)
        if options.beam_size != 1:
            raise ValidationError(
                "generate_tokens requires beam_size=1",
                details={"beam_size": options.beam_size},
            )

        prefix = [target_prefix] if target_prefix is not None else None
        return iter_steps(
            lambda on_step: self.translate_batch([source], prefix, options, callback=on_step)
        )
