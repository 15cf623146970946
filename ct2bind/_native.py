"""
ctypes mirrors of the libct2c C ABI.

Every structure here matches the layout declared in ``ct2c.h``; field order is
significant. ``SIGNATURES`` lists argtypes/restype for every exported entry
point and is applied by ``configure()`` when the library is loaded, so that
64-bit handles are never truncated to ``int``.

Conventions of the C ABI:

- Entry points return an ``int`` status (0 on success). The diagnostic text of
  the last failure is read with ``ct2_last_error`` (thread-local).
- Strings travel as ``(data, length)`` views; they may contain NUL bytes and
  an empty string may have a NULL ``data`` pointer.
- Result arrays are allocated by the library and must be released with the
  matching ``*_results_free`` function exactly once.
- Input buffers are copied by the library before the call returns.
"""

import ctypes
from ctypes import (
    POINTER,
    c_bool,
    c_char,
    c_char_p,
    c_float,
    c_int,
    c_int32,
    c_int64,
    c_long,
    c_size_t,
    c_uint32,
    c_void_p,
)

# Opaque handle types
Ct2TranslatorHandle = c_void_p
Ct2GeneratorHandle = c_void_p
Ct2WhisperHandle = c_void_p
Ct2StorageViewHandle = c_void_p
Ct2MemoryReaderHandle = c_void_p


# =============================================================================
# Containers
# =============================================================================


class CStringView(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(c_char)),
        ("length", c_size_t),
    ]


class CStringArray(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(CStringView)),
        ("length", c_size_t),
    ]


class CStringMatrix(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(CStringArray)),
        ("length", c_size_t),
    ]


class CSizeArray(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(c_size_t)),
        ("length", c_size_t),
    ]


class CSizeMatrix(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(CSizeArray)),
        ("length", c_size_t),
    ]


class CIntArray(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(c_int32)),
        ("length", c_size_t),
    ]


class CFloatArray(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(c_float)),
        ("length", c_size_t),
    ]


class CFloatMatrix(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(CFloatArray)),
        ("length", c_size_t),
    ]


class CFloatTensor(ctypes.Structure):
    """Array of float matrices (one attention matrix per hypothesis)."""

    _fields_ = [
        ("data", POINTER(CFloatMatrix)),
        ("length", c_size_t),
    ]


class CHandleArray(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(c_void_p)),
        ("length", c_size_t),
    ]


class COptionalFloat(ctypes.Structure):
    _fields_ = [
        ("has_value", c_bool),
        ("value", c_float),
    ]


class CSizePair(ctypes.Structure):
    _fields_ = [
        ("first", c_size_t),
        ("second", c_size_t),
    ]


class CSizePairArray(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(CSizePair)),
        ("length", c_size_t),
    ]


# =============================================================================
# Configuration
# =============================================================================


class CReplicaPoolConfig(ctypes.Structure):
    _fields_ = [
        ("num_threads_per_replica", c_size_t),  # 0 = engine default
        ("max_queued_batches", c_long),  # 0 = automatic, -1 = unbounded
        ("cpu_core_offset", c_int32),  # -1 = no pinning
    ]


class CConfig(ctypes.Structure):
    _fields_ = [
        ("device", c_int32),
        ("compute_type", c_int32),
        ("device_indices", CIntArray),  # empty = engine default
        ("tensor_parallel", c_bool),
        ("replica_pool", CReplicaPoolConfig),
    ]


# =============================================================================
# Options
# =============================================================================


class CEndToken(ctypes.Structure):
    _fields_ = [
        ("kind", c_int32),  # 0 none, 1 single, 2 multiple, 3 multiple ids
        ("tokens", CStringArray),  # kinds 1 and 2
        ("ids", CSizeArray),  # kind 3
    ]


class CTranslationOptions(ctypes.Structure):
    _fields_ = [
        ("beam_size", c_size_t),
        ("patience", c_float),
        ("length_penalty", c_float),
        ("coverage_penalty", c_float),
        ("repetition_penalty", c_float),
        ("no_repeat_ngram_size", c_size_t),
        ("disable_unk", c_bool),
        ("suppress_sequences", CStringMatrix),
        ("prefix_bias_beta", c_float),
        ("end_token", CEndToken),
        ("return_end_token", c_bool),
        ("max_input_length", c_size_t),
        ("max_decoding_length", c_size_t),
        ("min_decoding_length", c_size_t),
        ("sampling_topk", c_size_t),
        ("sampling_topp", c_float),
        ("sampling_temperature", c_float),
        ("use_vmap", c_bool),
        ("num_hypotheses", c_size_t),
        ("return_scores", c_bool),
        ("return_attention", c_bool),
        ("return_logits_vocab", c_bool),
        ("return_alternatives", c_bool),
        ("min_alternative_expansion_prob", c_float),
        ("replace_unknowns", c_bool),
        ("max_batch_size", c_size_t),
        ("batch_type", c_int32),
    ]


class CGenerationOptions(ctypes.Structure):
    _fields_ = [
        ("beam_size", c_size_t),
        ("patience", c_float),
        ("length_penalty", c_float),
        ("repetition_penalty", c_float),
        ("no_repeat_ngram_size", c_size_t),
        ("disable_unk", c_bool),
        ("suppress_sequences", CStringMatrix),
        ("end_token", CEndToken),
        ("return_end_token", c_bool),
        ("max_length", c_size_t),
        ("min_length", c_size_t),
        ("sampling_topk", c_size_t),
        ("sampling_topp", c_float),
        ("sampling_temperature", c_float),
        ("num_hypotheses", c_size_t),
        ("return_scores", c_bool),
        ("return_logits_vocab", c_bool),
        ("return_alternatives", c_bool),
        ("min_alternative_expansion_prob", c_float),
        ("static_prompt", CStringArray),
        ("cache_static_prompt", c_bool),
        ("include_prompt_in_result", c_bool),
        ("max_batch_size", c_size_t),
        ("batch_type", c_int32),
    ]


class CWhisperOptions(ctypes.Structure):
    _fields_ = [
        ("beam_size", c_size_t),
        ("patience", c_float),
        ("length_penalty", c_float),
        ("repetition_penalty", c_float),
        ("no_repeat_ngram_size", c_size_t),
        ("max_length", c_size_t),
        ("sampling_topk", c_size_t),
        ("sampling_temperature", c_float),
        ("num_hypotheses", c_size_t),
        ("return_scores", c_bool),
        ("return_logits_vocab", c_bool),
        ("return_no_speech_prob", c_bool),
        ("max_initial_timestamp_index", c_size_t),
        ("suppress_blank", c_bool),
        ("suppress_tokens", CIntArray),
    ]


class CScoringOptions(ctypes.Structure):
    _fields_ = [
        ("max_input_length", c_size_t),
        ("offset", c_int64),
        ("max_batch_size", c_size_t),
        ("batch_type", c_int32),
    ]


# =============================================================================
# Results
# =============================================================================


class CTranslationResult(ctypes.Structure):
    _fields_ = [
        ("hypotheses", CStringMatrix),
        ("scores", CFloatArray),  # empty unless return_scores
        ("attention", CFloatTensor),  # empty unless return_attention
        ("logits", CHandleArray),  # StorageView handles, moved out by the caller
    ]


class CGenerationResult(ctypes.Structure):
    _fields_ = [
        ("sequences", CStringMatrix),
        ("sequences_ids", CSizeMatrix),
        ("scores", CFloatArray),
        ("logits", CHandleArray),
    ]


class CScoringResult(ctypes.Structure):
    _fields_ = [
        ("tokens", CStringArray),
        ("tokens_score", CFloatArray),
    ]


class CWhisperGenerationResult(ctypes.Structure):
    _fields_ = [
        ("sequences", CStringMatrix),
        ("sequences_ids", CSizeMatrix),
        ("scores", CFloatArray),
        ("no_speech_prob", COptionalFloat),
    ]


class CDetectionResult(ctypes.Structure):
    _fields_ = [
        ("language", CStringView),
        ("probability", c_float),
    ]


class CDetectionResultArray(ctypes.Structure):
    _fields_ = [
        ("data", POINTER(CDetectionResult)),
        ("length", c_size_t),
    ]


class CWhisperAlignmentResult(ctypes.Structure):
    _fields_ = [
        ("alignments", CSizePairArray),  # (text_token_index, time_index)
        ("text_token_probs", CFloatArray),
    ]


class CStorageViewInfo(ctypes.Structure):
    _fields_ = [
        ("dtype", c_int32),
        ("device", c_int32),
        ("rank", c_size_t),
        ("size", c_size_t),
        ("shape", POINTER(c_size_t)),  # borrowed, valid while the view lives
    ]


# =============================================================================
# Step callback
# =============================================================================


class CGenerationStepResult(ctypes.Structure):
    _fields_ = [
        ("step", c_size_t),
        ("batch_id", c_size_t),
        ("token_id", c_size_t),
        ("hypothesis_id", c_size_t),
        ("token", CStringView),
        ("score", COptionalFloat),
        ("is_last", c_bool),
    ]


# bool callback(const ct2_generation_step_result*, void* user_data)
# Returning true stops decoding for that (batch_id, hypothesis_id).
CStepCallback = ctypes.CFUNCTYPE(c_bool, POINTER(CGenerationStepResult), c_void_p)


# =============================================================================
# Signatures
# =============================================================================

_STATUS = c_int
_OUT_HANDLE = POINTER(c_void_p)
_OUT_SIZE = POINTER(c_size_t)


def _counters(prefix: str) -> dict:
    return {
        f"ct2_{prefix}_num_queued_batches": ([c_void_p, _OUT_SIZE], _STATUS),
        f"ct2_{prefix}_num_active_batches": ([c_void_p, _OUT_SIZE], _STATUS),
        f"ct2_{prefix}_num_replicas": ([c_void_p, _OUT_SIZE], _STATUS),
    }


SIGNATURES: dict[str, tuple[list, object]] = {
    # Errors and process-wide state
    "ct2_last_error": ([], c_char_p),
    "ct2_clear_error": ([], None),
    "ct2_text_free": ([c_void_p], None),
    "ct2_version": ([], c_char_p),
    "ct2_get_device_count": ([c_int32, POINTER(c_int32)], _STATUS),
    "ct2_set_log_level": ([c_int32], None),
    "ct2_get_log_level": ([], c_int32),
    "ct2_set_random_seed": ([c_uint32], None),
    "ct2_get_random_seed": ([], c_uint32),
    # Translator
    "ct2_translator_create": ([c_char_p, POINTER(CConfig), _OUT_HANDLE], _STATUS),
    "ct2_translator_create_from_memory": ([c_void_p, POINTER(CConfig), _OUT_HANDLE], _STATUS),
    "ct2_translator_free": ([c_void_p], None),
    "ct2_translator_translate_batch": (
        [
            c_void_p,
            POINTER(CStringMatrix),
            POINTER(CStringMatrix),  # target prefix, may be NULL
            POINTER(CTranslationOptions),
            c_bool,  # has_callback
            CStepCallback,
            c_void_p,  # user_data
            POINTER(POINTER(CTranslationResult)),
            _OUT_SIZE,
        ],
        _STATUS,
    ),
    "ct2_translation_results_free": ([POINTER(CTranslationResult), c_size_t], None),
    "ct2_translator_score_batch": (
        [
            c_void_p,
            POINTER(CStringMatrix),
            POINTER(CStringMatrix),
            POINTER(CScoringOptions),
            POINTER(POINTER(CScoringResult)),
            _OUT_SIZE,
        ],
        _STATUS,
    ),
    **_counters("translator"),
    # Generator
    "ct2_generator_create": ([c_char_p, POINTER(CConfig), _OUT_HANDLE], _STATUS),
    "ct2_generator_create_from_memory": ([c_void_p, POINTER(CConfig), _OUT_HANDLE], _STATUS),
    "ct2_generator_free": ([c_void_p], None),
    "ct2_generator_generate_batch": (
        [
            c_void_p,
            POINTER(CStringMatrix),
            POINTER(CGenerationOptions),
            c_bool,
            CStepCallback,
            c_void_p,
            POINTER(POINTER(CGenerationResult)),
            _OUT_SIZE,
        ],
        _STATUS,
    ),
    "ct2_generation_results_free": ([POINTER(CGenerationResult), c_size_t], None),
    "ct2_generator_score_batch": (
        [
            c_void_p,
            POINTER(CStringMatrix),
            POINTER(CScoringOptions),
            POINTER(POINTER(CScoringResult)),
            _OUT_SIZE,
        ],
        _STATUS,
    ),
    **_counters("generator"),
    # Shared result release
    "ct2_scoring_results_free": ([POINTER(CScoringResult), c_size_t], None),
    # Whisper
    "ct2_whisper_create": ([c_char_p, POINTER(CConfig), _OUT_HANDLE], _STATUS),
    "ct2_whisper_create_from_memory": ([c_void_p, POINTER(CConfig), _OUT_HANDLE], _STATUS),
    "ct2_whisper_free": ([c_void_p], None),
    "ct2_whisper_generate": (
        [
            c_void_p,
            c_void_p,  # features (StorageView)
            POINTER(CStringMatrix),
            POINTER(CWhisperOptions),
            POINTER(POINTER(CWhisperGenerationResult)),
            _OUT_SIZE,
        ],
        _STATUS,
    ),
    "ct2_whisper_generation_results_free": (
        [POINTER(CWhisperGenerationResult), c_size_t],
        None,
    ),
    "ct2_whisper_detect_language": (
        [c_void_p, c_void_p, POINTER(POINTER(CDetectionResultArray)), _OUT_SIZE],
        _STATUS,
    ),
    "ct2_detection_results_free": ([POINTER(CDetectionResultArray), c_size_t], None),
    "ct2_whisper_encode": ([c_void_p, c_void_p, c_bool, _OUT_HANDLE], _STATUS),
    "ct2_whisper_align": (
        [
            c_void_p,
            c_void_p,
            POINTER(CSizeArray),  # start sequence
            POINTER(CSizeMatrix),  # text tokens
            POINTER(CSizeArray),  # num frames
            c_int64,  # median filter width
            POINTER(POINTER(CWhisperAlignmentResult)),
            _OUT_SIZE,
        ],
        _STATUS,
    ),
    "ct2_alignment_results_free": ([POINTER(CWhisperAlignmentResult), c_size_t], None),
    "ct2_whisper_is_multilingual": ([c_void_p, POINTER(c_bool)], _STATUS),
    "ct2_whisper_n_mels": ([c_void_p, _OUT_SIZE], _STATUS),
    "ct2_whisper_num_languages": ([c_void_p, _OUT_SIZE], _STATUS),
    **_counters("whisper"),
    # StorageView
    "ct2_storage_view_create": (
        [POINTER(c_size_t), c_size_t, c_void_p, c_int32, c_int32, _OUT_HANDLE],
        _STATUS,
    ),
    "ct2_storage_view_free": ([c_void_p], None),
    "ct2_storage_view_info": ([c_void_p, POINTER(CStorageViewInfo)], _STATUS),
    "ct2_storage_view_copy_to_host": ([c_void_p, c_void_p, c_size_t], _STATUS),
    "ct2_storage_view_to_string": ([c_void_p, _OUT_HANDLE], _STATUS),
    # ModelMemoryReader
    "ct2_memory_reader_create": ([c_char_p, _OUT_HANDLE], _STATUS),
    "ct2_memory_reader_free": ([c_void_p], None),
    "ct2_memory_reader_register_file": ([c_void_p, c_char_p, c_char_p, c_size_t], _STATUS),
    "ct2_memory_reader_get_model_id": ([c_void_p, _OUT_HANDLE], _STATUS),
}


def configure(lib: ctypes.CDLL) -> None:
    """Apply ``SIGNATURES`` to a loaded library.

    Raises
    ------
        AttributeError: If the library does not export one of the entry points.
    """
    for name, (argtypes, restype) in SIGNATURES.items():
        func = getattr(lib, name)
        func.argtypes = argtypes
        func.restype = restype
