"""Decoder-only language model runner."""

from __future__ import annotations

from collections.abc import Iterator, Sequence

from .._logging import scoped_logger
from ..bridge import to_native_batch
from ..callback import StepCallback, StepCallbackFn, iter_steps
from ..exceptions import ValidationError
from ..options import GenerationOptions, ScoringOptions
from ..results import GenerationResult, GenerationStepResult, ScoringResult
from . import _bindings as _c
from ._base import ModelRunner
from .translator import _check_options


class Generator(ModelRunner):
    """
    Text generator backed by a converted decoder-only model.

    Args:
        model: Model directory, or a ``ModelMemoryReader``.
        config: Device, precision and replica pool settings.

    Example:
        >>> generator = Generator("llama_ct2/", Config(device="cuda"))
        >>> results = generator.generate_batch([["<s>", "▁Hello"]], GenerationOptions(max_length=32))
    """

    _kind = "generator"
    _log = scoped_logger("generator")

    def generate_batch(
        self,
        start_tokens: Sequence[Sequence[str]],
        options: GenerationOptions | None = None,
        *,
        callback: StepCallbackFn | None = None,
        reentrant_callback: bool = False,
    ) -> list[GenerationResult]:
        """
        Continue a batch of prompts.

        Args:
            start_tokens: One prompt token list per example.
            options: Decoding options. Defaults to ``GenerationOptions()``.
            callback: Step callback; see ``Translator.translate_batch``.
            reentrant_callback: Allow concurrent callback invocations.

        Returns
        -------
            One ``GenerationResult`` per prompt, in input order.
        """
        options = options if options is not None else GenerationOptions()
        _check_options(options, GenerationOptions)

        c_start_tokens = to_native_batch(start_tokens, "start_tokens")
        c_options = options._to_c()

        self._log.debug(
            "Generating batch",
            extra={"batch_size": c_start_tokens.length, "has_callback": callback is not None},
        )
        with self._borrow() as handle, StepCallback(
            callback, reentrant=reentrant_callback, owner=self
        ) as step_callback:
            return _c.call_generate_batch(
                handle,
                c_start_tokens,
                c_options,
                step_callback,
                lambda c_result: GenerationResult._from_c(c_result, options),
            )

    def score_batch(
        self,
        tokens: Sequence[Sequence[str]],
        options: ScoringOptions | None = None,
    ) -> list[ScoringResult]:
        """Compute the log probability of each token of each sequence."""
        options = options if options is not None else ScoringOptions()
        _check_options(options, ScoringOptions)

        c_tokens = to_native_batch(tokens, "tokens")
        c_options = options._to_c()

        with self._borrow() as handle:
            return _c.call_generator_score_batch(handle, c_tokens, c_options, ScoringResult._from_c)

    def generate_tokens(
        self,
        prompt: Sequence[str],
        options: GenerationOptions | None = None,
    ) -> Iterator[GenerationStepResult]:
        """
        Yield generated tokens of one prompt as they are decoded.

        Requires ``beam_size=1``. Leaving the loop early stops decoding.
        """
        options = options if options is not None else GenerationOptions()
        _check_options(options, GenerationOptions)
        if options.beam_size != 1:
            raise ValidationError(
                "generate_tokens requires beam_size=1",
                details={"beam_size": options.beam_size},
            )

        return iter_steps(
            lambda on_step: self.generate_batch([prompt], options, callback=on_step)
        )
