"""
FFI call wrappers for the model runners.

Justification: every batch entry point follows the same protocol (status
return, library-allocated result array with an out count, matching free
function). ``_collect`` implements it once so that results are converted and
released exactly once on every path, including failures and conversion
errors.
"""

import ctypes
from collections.abc import Callable
from typing import Any, TypeVar

from .._bindings import check, get_lib
from .._native import (
    CConfig,
    CDetectionResultArray,
    CGenerationOptions,
    CGenerationResult,
    CScoringOptions,
    CScoringResult,
    CSizeArray,
    CSizeMatrix,
    CStringMatrix,
    CTranslationOptions,
    CTranslationResult,
    CWhisperAlignmentResult,
    CWhisperGenerationResult,
    CWhisperOptions,
)
from ..callback import StepCallback
from ..exceptions import ModelLoadError, NativeRuntimeError

T = TypeVar("T")


def _collect(
    code: int,
    out_results: Any,
    out_count: ctypes.c_size_t,
    free: Callable[[Any, int], None],
    convert: Callable[[Any], T],
    expected: int | None,
) -> list[T]:
    """Check ``code``, convert each native result and release the array."""
    try:
        check(code)
        count = out_count.value
        if expected is not None and count != expected:
            raise NativeRuntimeError(
                f"engine returned {count} results for {expected} inputs",
                code="NATIVE_RESULT_COUNT_MISMATCH",
                details={"expected": expected, "received": count},
            )
        return [convert(out_results[i]) for i in range(count)]
    finally:
        if out_results:
            free(out_results, out_count.value)


# =============================================================================
# Lifecycle (shared by translator, generator, whisper)
# =============================================================================


def call_create(kind: str, model_path: bytes, config: CConfig) -> int:
    """Call ct2_<kind>_create and return the new handle."""
    out_handle = ctypes.c_void_p()
    create = getattr(get_lib(), f"ct2_{kind}_create")
    check(
        create(model_path, ctypes.byref(config), ctypes.byref(out_handle)),
        details={"model_path": model_path.decode("utf-8", errors="replace")},
    )
    if not out_handle.value:
        raise ModelLoadError(f"ct2_{kind}_create returned no handle")
    return out_handle.value


def call_create_from_memory(kind: str, reader: int, config: CConfig) -> int:
    out_handle = ctypes.c_void_p()
    create = getattr(get_lib(), f"ct2_{kind}_create_from_memory")
    check(create(reader, ctypes.byref(config), ctypes.byref(out_handle)))
    if not out_handle.value:
        raise ModelLoadError(f"ct2_{kind}_create_from_memory returned no handle")
    return out_handle.value


def call_free(kind: str, handle: int) -> None:
    getattr(get_lib(), f"ct2_{kind}_free")(handle)


def call_counter(kind: str, name: str, handle: int) -> int:
    """Call ct2_<kind>_<name> (num_queued_batches, num_active_batches, num_replicas)."""
    out_value = ctypes.c_size_t()
    check(getattr(get_lib(), f"ct2_{kind}_{name}")(handle, ctypes.byref(out_value)))
    return out_value.value


# =============================================================================
# Translator
# =============================================================================


def call_translate_batch(
    handle: int,
    source: CStringMatrix,
    target_prefix: CStringMatrix | None,
    options: CTranslationOptions,
    callback: StepCallback,
    convert: Callable[[CTranslationResult], T],
) -> list[T]:
    lib = get_lib()
    out_results = ctypes.POINTER(CTranslationResult)()
    out_count = ctypes.c_size_t()
    code = lib.ct2_translator_translate_batch(
        handle,
        ctypes.byref(source),
        ctypes.byref(target_prefix) if target_prefix is not None else None,
        ctypes.byref(options),
        callback.has_callback,
        callback.c_callback,
        None,
        ctypes.byref(out_results),
        ctypes.byref(out_count),
    )
    return _collect(
        code, out_results, out_count, lib.ct2_translation_results_free, convert, source.length
    )


def call_translator_score_batch(
    handle: int,
    source: CStringMatrix,
    target: CStringMatrix,
    options: CScoringOptions,
    convert: Callable[[CScoringResult], T],
) -> list[T]:
    lib = get_lib()
    out_results = ctypes.POINTER(CScoringResult)()
    out_count = ctypes.c_size_t()
    code = lib.ct2_translator_score_batch(
        handle,
        ctypes.byref(source),
        ctypes.byref(target),
        ctypes.byref(options),
        ctypes.byref(out_results),
        ctypes.byref(out_count),
    )
    return _collect(
        code, out_results, out_count, lib.ct2_scoring_results_free, convert, source.length
    )


# =============================================================================
# Generator
# =============================================================================


def call_generate_batch(
    handle: int,
    start_tokens: CStringMatrix,
    options: CGenerationOptions,
    callback: StepCallback,
    convert: Callable[[CGenerationResult], T],
) -> list[T]:
    lib = get_lib()
    out_results = ctypes.POINTER(CGenerationResult)()
    out_count = ctypes.c_size_t()
    code = lib.ct2_generator_generate_batch(
        handle,
        ctypes.byref(start_tokens),
        ctypes.byref(options),
        callback.has_callback,
        callback.c_callback,
        None,
        ctypes.byref(out_results),
        ctypes.byref(out_count),
    )
    return _collect(
        code, out_results, out_count, lib.ct2_generation_results_free, convert, start_tokens.length
    )


def call_generator_score_batch(
    handle: int,
    tokens: CStringMatrix,
    options: CScoringOptions,
    convert: Callable[[CScoringResult], T],
) -> list[T]:
    lib = get_lib()
    out_results = ctypes.POINTER(CScoringResult)()
    out_count = ctypes.c_size_t()
    code = lib.ct2_generator_score_batch(
        handle,
        ctypes.byref(tokens),
        ctypes.byref(options),
        ctypes.byref(out_results),
        ctypes.byref(out_count),
    )
    return _collect(
        code, out_results, out_count, lib.ct2_scoring_results_free, convert, tokens.length
    )


# =============================================================================
# Whisper
# =============================================================================


def call_whisper_generate(
    handle: int,
    features: int,
    prompts: CStringMatrix,
    options: CWhisperOptions,
    convert: Callable[[CWhisperGenerationResult], T],
) -> list[T]:
    lib = get_lib()
    out_results = ctypes.POINTER(CWhisperGenerationResult)()
    out_count = ctypes.c_size_t()
    code = lib.ct2_whisper_generate(
        handle,
        features,
        ctypes.byref(prompts),
        ctypes.byref(options),
        ctypes.byref(out_results),
        ctypes.byref(out_count),
    )
    return _collect(
        code,
        out_results,
        out_count,
        lib.ct2_whisper_generation_results_free,
        convert,
        prompts.length,
    )


def call_whisper_detect_language(
    handle: int,
    features: int,
    batch_size: int,
    convert: Callable[[CDetectionResultArray], T],
) -> list[T]:
    lib = get_lib()
    out_results = ctypes.POINTER(CDetectionResultArray)()
    out_count = ctypes.c_size_t()
    code = lib.ct2_whisper_detect_language(
        handle, features, ctypes.byref(out_results), ctypes.byref(out_count)
    )
    return _collect(
        code, out_results, out_count, lib.ct2_detection_results_free, convert, batch_size
    )


def call_whisper_encode(handle: int, features: int, to_cpu: bool) -> int:
    """Return the handle of a new StorageView owned by the caller."""
    out_view = ctypes.c_void_p()
    check(get_lib().ct2_whisper_encode(handle, features, to_cpu, ctypes.byref(out_view)))
    if not out_view.value:
        raise NativeRuntimeError("ct2_whisper_encode returned no output")
    return out_view.value


def call_whisper_align(
    handle: int,
    features: int,
    start_sequence: CSizeArray,
    text_tokens: CSizeMatrix,
    num_frames: CSizeArray,
    median_filter_width: int,
    convert: Callable[[CWhisperAlignmentResult], T],
) -> list[T]:
    lib = get_lib()
    out_results = ctypes.POINTER(CWhisperAlignmentResult)()
    out_count = ctypes.c_size_t()
    code = lib.ct2_whisper_align(
        handle,
        features,
        ctypes.byref(start_sequence),
        ctypes.byref(text_tokens),
        ctypes.byref(num_frames),
        median_filter_width,
        ctypes.byref(out_results),
        ctypes.byref(out_count),
    )
    return _collect(
        code,
        out_results,
        out_count,
        lib.ct2_alignment_results_free,
        convert,
        text_tokens.length,
    )


def call_whisper_is_multilingual(handle: int) -> bool:
    out_value = ctypes.c_bool()
    check(get_lib().ct2_whisper_is_multilingual(handle, ctypes.byref(out_value)))
    return bool(out_value.value)


def call_whisper_size(name: str, handle: int) -> int:
    """Call ct2_whisper_n_mels or ct2_whisper_num_languages."""
    out_value = ctypes.c_size_t()
    check(getattr(get_lib(), f"ct2_whisper_{name}")(handle, ctypes.byref(out_value)))
    return out_value.value
