"""
Instrumented stand-in for libct2c.

``FakeNativeLibrary`` implements every ``ct2_*`` entry point in Python over
the real ctypes structures, so the bindings run their actual marshalling
code. It is installed with ``ct2bind._bindings.set_lib()``.

Instrumentation:

- ``created`` / ``freed`` counters per handle kind, ``live`` handles, and an
  AssertionError on double free or on freeing a model with calls in flight.
- ``events`` records call order; ``gate`` blocks batch calls until set.
- ``fail(name, code, message)`` makes the next call of ``name`` fail.
- Results stay registered until their ``*_results_free`` call (``allocations``).

Decoding is deterministic. Every input token is echoed upper-cased (ids
100+), followed by ``TAIL``. The default terminator is ``</s>``; the tail is
ordered so that each end-token variant stops at a different length:

    MultipleIds([3, 7]) -> stops at "q"   (index 1 of the tail)
    Multiple(["X", "Y"]) -> stops at "Y"  (index 2)
    Single("X")          -> stops at "X"  (index 4)
    None                 -> stops at "</s>" (index 6)

Hypothesis ``h`` scores ``-0.5 * h`` (hypothesis 0 scores exactly 0.0).
Batch items are decoded on separate threads when the model has several
replicas (``len(device_indices) > 1``); otherwise all streams are decoded
round-robin on the calling thread.
"""

from __future__ import annotations

import ctypes
import itertools
import os
import threading
from collections import Counter
from dataclasses import dataclass, field
from typing import Any

from ct2bind import _native as n
from ct2bind.bridge import (
    keepalive,
    to_native_batch,
    to_native_id_batch,
    to_native_strings,
)

END_OF_SEQUENCE = "</s>"
TAIL = [("p", 11), ("q", 3), ("Y", 12), ("r", 13), ("X", 14), ("s", 15), (END_OF_SEQUENCE, 2)]

_DTYPES = {0: ctypes.c_float, 1: ctypes.c_int8, 2: ctypes.c_int16}


# =============================================================================
# Raw readers (independent of ct2bind.bridge)
# =============================================================================


def deref(ref: Any) -> Any:
    """Object behind a byref() argument or a pointer."""
    obj = getattr(ref, "_obj", None)
    if obj is not None:
        return obj
    return ref.contents


def read_strings(array: n.CStringArray) -> list[str]:
    tokens = []
    for i in range(array.length):
        view = array.data[i]
        raw = ctypes.string_at(view.data, view.length) if view.length else b""
        tokens.append(raw.decode("utf-8", "surrogatepass"))
    return tokens


def read_matrix(matrix: n.CStringMatrix) -> list[list[str]]:
    return [read_strings(matrix.data[i]) for i in range(matrix.length)]


def read_sizes(array: n.CSizeArray) -> list[int]:
    return [array.data[i] for i in range(array.length)]


def read_ints(array: n.CIntArray) -> list[int]:
    return [array.data[i] for i in range(array.length)]


def read_end_token(c_end: n.CEndToken) -> tuple[int, list | None]:
    if c_end.kind == 0:
        return (0, None)
    if c_end.kind in (1, 2):
        return (c_end.kind, read_strings(c_end.tokens))
    return (c_end.kind, read_sizes(c_end.ids))


def write_pointer(pointer_obj: Any, target: Any) -> None:
    """Point a ctypes pointer object at ``target``."""
    ctypes.c_void_p.from_address(ctypes.addressof(pointer_obj)).value = ctypes.addressof(target)


def address_of(pointer: Any) -> int:
    return ctypes.cast(pointer, ctypes.c_void_p).value or 0


def float_array(values: list[float]) -> n.CFloatArray:
    buffer = (ctypes.c_float * len(values))(*values)
    array = n.CFloatArray(
        ctypes.cast(buffer, ctypes.POINTER(ctypes.c_float)) if values else None, len(values)
    )
    return keepalive(array, buffer)


# =============================================================================
# Native state
# =============================================================================


@dataclass
class FakeModel:
    kind: str
    source: str
    device: int
    compute_type: int
    device_indices: list[int]
    tensor_parallel: bool
    num_threads_per_replica: int
    max_queued_batches: int
    cpu_core_offset: int
    in_flight: int = 0

    @property
    def num_replicas(self) -> int:
        return max(1, len(self.device_indices))


@dataclass
class FakeView:
    shape: list[int]
    dtype: int
    device: int
    data: list
    c_shape: Any = None


@dataclass
class FakeReader:
    name: str
    files: dict[str, bytes] = field(default_factory=dict)


class FakeNativeLibrary:
    """Python implementation of the libct2c entry points."""

    def __init__(self, cuda_devices: int = 0):
        self.cuda_devices = cuda_devices
        self.created: Counter[str] = Counter()
        self.freed: Counter[str] = Counter()
        self.live: dict[int, tuple[str, Any]] = {}
        self.allocations: dict[int, tuple[str, Any]] = {}
        self.events: list[tuple] = []
        self.failures: dict[str, tuple[int, str]] = {}
        self.gate: threading.Event | None = None
        self.entered = threading.Event()
        self.callback_threads: set[threading.Thread] = set()
        self.steps_emitted = 0
        self.last_options: dict[str, Any] = {}
        self.last_end_token: tuple[int, list | None] | None = None
        self.last_callback: tuple[bool, Any] | None = None
        self.drop_scores = False
        self.extra_result = False
        self.log_level = 0
        self.random_seed = 0
        self._handles = itertools.count(0x1000, 0x10)
        self._errors = threading.local()
        self._lock = threading.Lock()

    # =========================================================================
    # Instrumentation helpers
    # =========================================================================

    def fail(self, name: str, code: int, message: str) -> None:
        """Make the next call of entry point ``name`` fail."""
        self.failures[name] = (code, message)

    def live_count(self, kind: str) -> int:
        return sum(1 for item_kind, _ in self.live.values() if item_kind == kind)

    def _set_error(self, code: int, message: str) -> int:
        self._errors.message = message.encode("utf-8")
        return code

    def _injected(self, name: str) -> int | None:
        entry = self.failures.pop(name, None)
        if entry is None:
            return None
        return self._set_error(*entry)

    def _register(self, kind: str, obj: Any) -> int:
        with self._lock:
            handle = next(self._handles)
            self.live[handle] = (kind, obj)
            self.created[kind] += 1
        return handle

    def _release(self, kind: str, handle: int) -> Any:
        with self._lock:
            entry = self.live.pop(handle, None)
            if entry is None or entry[0] != kind:
                raise AssertionError(f"free of unknown {kind} handle {handle:#x}")
            self.freed[kind] += 1
        return entry[1]

    def _get(self, kind: str, handle: int) -> Any:
        entry = self.live.get(handle)
        if entry is None or entry[0] != kind:
            raise AssertionError(f"use of unknown {kind} handle {handle!r}")
        return entry[1]

    def _allocate(self, kind: str, array: Any, keep: list) -> int:
        address = ctypes.addressof(array)
        with self._lock:
            self.allocations[address] = (kind, (array, keep))
        return address

    def _free_allocation(self, kind: str, pointer: Any) -> Any:
        address = address_of(pointer)
        with self._lock:
            entry = self.allocations.pop(address, None)
        if entry is None or entry[0] != kind:
            raise AssertionError(f"free of unknown {kind} results at {address:#x}")
        return entry[1][0]

    def _text(self, out_text: Any, text: str) -> None:
        buffer = ctypes.create_string_buffer(text.encode("utf-8"))
        address = self._allocate("text", buffer, [])
        deref(out_text).value = address

    # =========================================================================
    # Errors and process-wide state
    # =========================================================================

    def ct2_last_error(self) -> bytes | None:
        return getattr(self._errors, "message", None)

    def ct2_clear_error(self) -> None:
        self._errors.message = None

    def ct2_text_free(self, text: Any) -> None:
        self._free_allocation("text", text)

    def ct2_version(self) -> bytes:
        return b"4.5.0-fake"

    def ct2_get_device_count(self, device: int, out_count: Any) -> int:
        deref(out_count).value = 1 if device == 0 else self.cuda_devices
        return 0

    def ct2_set_log_level(self, level: int) -> None:
        self.log_level = level

    def ct2_get_log_level(self) -> int:
        return self.log_level

    def ct2_set_random_seed(self, seed: int) -> None:
        self.random_seed = seed

    def ct2_get_random_seed(self) -> int:
        return self.random_seed

    # =========================================================================
    # Model lifecycle
    # =========================================================================

    def _model_from_config(self, kind: str, source: str, config_ref: Any) -> FakeModel | int:
        config = deref(config_ref)
        model = FakeModel(
            kind=kind,
            source=source,
            device=config.device,
            compute_type=config.compute_type,
            device_indices=read_ints(config.device_indices),
            tensor_parallel=bool(config.tensor_parallel),
            num_threads_per_replica=config.replica_pool.num_threads_per_replica,
            max_queued_batches=config.replica_pool.max_queued_batches,
            cpu_core_offset=config.replica_pool.cpu_core_offset,
        )
        if model.device == 1 and self.cuda_devices == 0:
            return self._set_error(102, "This CTranslate2 package was not compiled with CUDA support")
        if model.device == 1 and model.compute_type == 7:
            return self._set_error(
                102,
                "Requested int16 compute type, but the target device or backend do not "
                "support efficient int16 computation.",
            )
        return model

    def _create(self, kind: str, path: bytes, config_ref: Any, out_handle: Any) -> int:
        self.events.append(("create", kind))
        failure = self._injected(f"ct2_{kind}_create")
        if failure is not None:
            return failure
        model_path = path.decode("utf-8")
        if not os.path.isdir(model_path):
            return self._set_error(100, f"Unable to open model directory {model_path}")
        if not os.path.exists(os.path.join(model_path, "model.bin")):
            return self._set_error(101, f"Unsupported model format in {model_path}: missing model.bin")
        model = self._model_from_config(kind, model_path, config_ref)
        if isinstance(model, int):
            return model
        deref(out_handle).value = self._register(kind, model)
        return 0

    def _create_from_memory(self, kind: str, reader_handle: int, config_ref: Any, out_handle: Any) -> int:
        self.events.append(("create_from_memory", kind))
        reader = self._get("memory_reader", reader_handle)
        if "model.bin" not in reader.files:
            return self._set_error(101, f"Unsupported model format in {reader.name}: missing model.bin")
        model = self._model_from_config(kind, f"memory:{reader.name}", config_ref)
        if isinstance(model, int):
            return model
        deref(out_handle).value = self._register(kind, model)
        return 0

    def _free_model(self, kind: str, handle: int) -> None:
        model = self._get(kind, handle)
        if model.in_flight:
            raise AssertionError(f"{kind} {handle:#x} freed with {model.in_flight} calls in flight")
        self._release(kind, handle)
        self.events.append(("free", kind, handle))

    def _counter(self, kind: str, name: str, handle: int, out_value: Any) -> int:
        model = self._get(kind, handle)
        value = {
            "num_queued_batches": 0,
            "num_active_batches": model.in_flight,
            "num_replicas": model.num_replicas,
        }[name]
        deref(out_value).value = value
        return 0

    def ct2_translator_create(self, path, config, out):
        return self._create("translator", path, config, out)

    def ct2_translator_create_from_memory(self, reader, config, out):
        return self._create_from_memory("translator", reader, config, out)

    def ct2_translator_free(self, handle):
        self._free_model("translator", handle)

    def ct2_translator_num_queued_batches(self, handle, out):
        return self._counter("translator", "num_queued_batches", handle, out)

    def ct2_translator_num_active_batches(self, handle, out):
        return self._counter("translator", "num_active_batches", handle, out)

    def ct2_translator_num_replicas(self, handle, out):
        return self._counter("translator", "num_replicas", handle, out)

    def ct2_generator_create(self, path, config, out):
        return self._create("generator", path, config, out)

    def ct2_generator_create_from_memory(self, reader, config, out):
        return self._create_from_memory("generator", reader, config, out)

    def ct2_generator_free(self, handle):
        self._free_model("generator", handle)

    def ct2_generator_num_queued_batches(self, handle, out):
        return self._counter("generator", "num_queued_batches", handle, out)

    def ct2_generator_num_active_batches(self, handle, out):
        return self._counter("generator", "num_active_batches", handle, out)

    def ct2_generator_num_replicas(self, handle, out):
        return self._counter("generator", "num_replicas", handle, out)

    def ct2_whisper_create(self, path, config, out):
        return self._create("whisper", path, config, out)

    def ct2_whisper_create_from_memory(self, reader, config, out):
        return self._create_from_memory("whisper", reader, config, out)

    def ct2_whisper_free(self, handle):
        self._free_model("whisper", handle)

    def ct2_whisper_num_queued_batches(self, handle, out):
        return self._counter("whisper", "num_queued_batches", handle, out)

    def ct2_whisper_num_active_batches(self, handle, out):
        return self._counter("whisper", "num_active_batches", handle, out)

    def ct2_whisper_num_replicas(self, handle, out):
        return self._counter("whisper", "num_replicas", handle, out)

    # =========================================================================
    # Decoding
    # =========================================================================

    def _begin(self, kind: str, handle: int, name: str) -> FakeModel:
        model = self._get(kind, handle)
        with self._lock:
            model.in_flight += 1
        self.events.append((name, "start"))
        self.entered.set()
        if self.gate is not None:
            self.gate.wait(timeout=10)
        return model

    def _end(self, model: FakeModel, name: str) -> None:
        self.events.append((name, "end"))
        with self._lock:
            model.in_flight -= 1

    def _gated(self, name: str, handle: int, body: Any, *args: Any) -> int:
        """Run a Whisper entry point as an in-flight call that honours ``gate``."""
        model = self._begin("whisper", handle, name)
        try:
            return body(*args)
        finally:
            self._end(model, name)

    @staticmethod
    def _is_end(end: tuple[int, list | None], token: str, token_id: int) -> bool:
        kind, values = end
        if kind == 0:
            return token == END_OF_SEQUENCE
        if kind in (1, 2):
            return token in values
        return token_id in values

    def _plan(self, tokens: list[str], end: tuple, return_end_token: bool, max_length: int) -> list:
        stream = [(token.upper(), 100 + i) for i, token in enumerate(tokens)] + TAIL
        planned = []
        for token, token_id in stream:
            if self._is_end(end, token, token_id):
                if return_end_token:
                    planned.append((token, token_id))
                break
            if len(planned) >= max_length:
                break
            planned.append((token, token_id))
        return planned

    def _emit(self, callback: Any, step: int, key: tuple, token: str, token_id: int,
              return_scores: bool, is_last: bool) -> bool:
        self.callback_threads.add(threading.current_thread())
        self.steps_emitted += 1
        raw = token.encode("utf-8")
        buffer = ctypes.create_string_buffer(raw)
        c_step = n.CGenerationStepResult(
            step=step,
            batch_id=key[0],
            token_id=token_id,
            hypothesis_id=key[1],
            token=n.CStringView(ctypes.cast(buffer, ctypes.POINTER(ctypes.c_char)), len(raw)),
            score=n.COptionalFloat(return_scores, -0.1 * (step + 1)),
            is_last=is_last,
        )
        return bool(callback(ctypes.pointer(c_step), None))

    def _run_streams(self, model: FakeModel, streams: dict, has_callback: bool, callback: Any,
                     return_scores: bool) -> dict:
        emitted: dict[tuple, list] = {key: [] for key in streams}

        def run(keys: list) -> None:
            active = list(keys)
            step = 0
            while active:
                for key in list(active):
                    planned = streams[key]
                    if step >= len(planned):
                        active.remove(key)
                        continue
                    token, token_id = planned[step]
                    emitted[key].append((token, token_id))
                    is_last = step == len(planned) - 1
                    stop = has_callback and self._emit(
                        callback, step, key, token, token_id, return_scores, is_last
                    )
                    if stop or is_last:
                        active.remove(key)
                step += 1

        groups: dict[int, list] = {}
        for key in streams:
            groups.setdefault(key[0], []).append(key)

        if model.num_replicas > 1 and len(groups) > 1:
            threads = [threading.Thread(target=run, args=(keys,)) for keys in groups.values()]
            for thread in threads:
                thread.start()
            for thread in threads:
                thread.join()
        else:
            run(list(streams))
        return emitted

    def _decode(self, model, inputs, options, max_length, has_callback, callback):
        end = read_end_token(options.end_token)
        self.last_end_token = end
        self.last_callback = (bool(has_callback), callback)
        streams = {}
        for batch_id, tokens in enumerate(inputs):
            for hypothesis_id in range(options.num_hypotheses):
                streams[(batch_id, hypothesis_id)] = self._plan(
                    tokens, end, options.return_end_token, max_length
                )
        return self._run_streams(model, streams, has_callback, callback, options.return_scores)

    def _scores(self, requested: bool, count: int) -> n.CFloatArray:
        if not requested or self.drop_scores:
            return float_array([])
        return float_array([-0.5 * h for h in range(count)])

    def _views(self, requested: bool, count: int) -> n.CHandleArray:
        if not requested:
            return n.CHandleArray(None, 0)
        handles = (ctypes.c_void_p * count)(
            *[self._register("storage_view", FakeView([1, 4], 0, 0, [float(h)] * 4)) for h in range(count)]
        )
        array = n.CHandleArray(ctypes.cast(handles, ctypes.POINTER(ctypes.c_void_p)), count)
        return keepalive(array, handles)

    def _record_options(self, options: Any) -> None:
        self.last_options = {
            name: getattr(options, name)
            for name, ctype in options._fields_
            if ctype in (ctypes.c_size_t, ctypes.c_float, ctypes.c_bool, ctypes.c_int32, ctypes.c_int64)
        }

    def ct2_translator_translate_batch(self, handle, source_ref, prefix_ref, options_ref,
                                       has_callback, callback, user_data, out_results, out_count):
        failure = self._injected("ct2_translator_translate_batch")
        if failure is not None:
            return failure
        model = self._begin("translator", handle, "translate_batch")
        try:
            source = read_matrix(deref(source_ref))
            prefixes = read_matrix(deref(prefix_ref)) if prefix_ref is not None else [[] for _ in source]
            if len(prefixes) != len(source):
                return self._set_error(200, "Batch size mismatch: source and target prefix")
            options = deref(options_ref)
            self._record_options(options)
            self.last_options["suppress_sequences"] = read_matrix(options.suppress_sequences)

            emitted = self._decode(
                model, source, options, options.max_decoding_length, has_callback, callback
            )

            count = len(source) + (1 if self.extra_result else 0)
            results = (n.CTranslationResult * count)()
            keep = []
            for batch_id in range(count):
                index = min(batch_id, len(source) - 1)
                hypotheses = [
                    prefixes[index] + [token for token, _ in emitted[(index, h)]]
                    for h in range(options.num_hypotheses)
                ]
                matrix = to_native_batch(hypotheses)
                scores = self._scores(options.return_scores, options.num_hypotheses)
                attention = self._attention(options.return_attention, hypotheses, len(source[index]))
                logits = self._views(options.return_logits_vocab, options.num_hypotheses)
                results[batch_id].hypotheses = matrix
                results[batch_id].scores = scores
                results[batch_id].attention = attention
                results[batch_id].logits = logits
                keep.extend([matrix, scores, attention, logits])

            self._allocate("translation", results, keep)
            write_pointer(deref(out_results), results)
            deref(out_count).value = count
            return 0
        finally:
            self._end(model, "translate_batch")

    def _attention(self, requested: bool, hypotheses: list, source_length: int) -> n.CFloatTensor:
        if not requested:
            return n.CFloatTensor(None, 0)
        keep = []
        matrices = (n.CFloatMatrix * len(hypotheses))()
        for h, tokens in enumerate(hypotheses):
            rows = [float_array([1.0 / max(1, source_length)] * source_length) for _ in tokens]
            row_array = (n.CFloatArray * len(rows))(*rows)
            matrices[h] = n.CFloatMatrix(
                ctypes.cast(row_array, ctypes.POINTER(n.CFloatArray)) if rows else None, len(rows)
            )
            keep.extend([row_array, *rows])
        tensor = n.CFloatTensor(ctypes.cast(matrices, ctypes.POINTER(n.CFloatMatrix)), len(hypotheses))
        return keepalive(tensor, matrices, *keep)

    def _free_views(self, handles: n.CHandleArray) -> None:
        for i in range(handles.length):
            if handles.data[i]:
                self._release("storage_view", handles.data[i])

    def ct2_translation_results_free(self, results, count):
        array = self._free_allocation("translation", results)
        for i in range(count):
            self._free_views(array[i].logits)

    def ct2_generator_generate_batch(self, handle, start_ref, options_ref, has_callback, callback,
                                     user_data, out_results, out_count):
        failure = self._injected("ct2_generator_generate_batch")
        if failure is not None:
            return failure
        model = self._begin("generator", handle, "generate_batch")
        try:
            prompts = read_matrix(deref(start_ref))
            options = deref(options_ref)
            self._record_options(options)
            self.last_options["static_prompt"] = read_strings(options.static_prompt)

            emitted = self._decode(model, prompts, options, options.max_length, has_callback, callback)

            count = len(prompts)
            results = (n.CGenerationResult * count)()
            keep = []
            for batch_id, prompt in enumerate(prompts):
                prefix = (
                    [(token, 500 + i) for i, token in enumerate(prompt)]
                    if options.include_prompt_in_result
                    else []
                )
                outputs = [prefix + emitted[(batch_id, h)] for h in range(options.num_hypotheses)]
                sequences = to_native_batch([[token for token, _ in out] for out in outputs])
                sequences_ids = to_native_id_batch([[token_id for _, token_id in out] for out in outputs])
                scores = self._scores(options.return_scores, options.num_hypotheses)
                logits = self._views(options.return_logits_vocab, options.num_hypotheses)
                results[batch_id].sequences = sequences
                results[batch_id].sequences_ids = sequences_ids
                results[batch_id].scores = scores
                results[batch_id].logits = logits
                keep.extend([sequences, sequences_ids, scores, logits])

            self._allocate("generation", results, keep)
            write_pointer(deref(out_results), results)
            deref(out_count).value = count
            return 0
        finally:
            self._end(model, "generate_batch")

    def ct2_generation_results_free(self, results, count):
        array = self._free_allocation("generation", results)
        for i in range(count):
            self._free_views(array[i].logits)

    # =========================================================================
    # Scoring
    # =========================================================================

    def _score_results(self, sequences: list[list[str]], out_results: Any, out_count: Any) -> int:
        count = len(sequences)
        results = (n.CScoringResult * count)()
        keep = []
        for i, tokens in enumerate(sequences):
            c_tokens = to_native_strings(tokens)
            c_scores = float_array([-0.1 * (j + 1) for j in range(len(tokens))])
            results[i].tokens = c_tokens
            results[i].tokens_score = c_scores
            keep.extend([c_tokens, c_scores])
        self._allocate("scoring", results, keep)
        write_pointer(deref(out_results), results)
        deref(out_count).value = count
        return 0

    def ct2_translator_score_batch(self, handle, source_ref, target_ref, options_ref, out_results, out_count):
        self._get("translator", handle)
        failure = self._injected("ct2_translator_score_batch")
        if failure is not None:
            return failure
        self._record_options(deref(options_ref))
        return self._score_results(read_matrix(deref(target_ref)), out_results, out_count)

    def ct2_generator_score_batch(self, handle, tokens_ref, options_ref, out_results, out_count):
        self._get("generator", handle)
        self._record_options(deref(options_ref))
        tokens = read_matrix(deref(tokens_ref))
        return self._score_results([row[1:] for row in tokens], out_results, out_count)

    def ct2_scoring_results_free(self, results, count):
        self._free_allocation("scoring", results)

    # =========================================================================
    # Whisper
    # =========================================================================

    def ct2_whisper_generate(self, handle, features, prompts_ref, options_ref, out_results, out_count):
        model = self._begin("whisper", handle, "whisper_generate")
        try:
            view = self._get("storage_view", features)
            prompts = read_matrix(deref(prompts_ref))
            if len(prompts) != view.shape[0]:
                return self._set_error(200, "prompts and features batch size differ")
            options = deref(options_ref)
            self._record_options(options)
            self.last_options["suppress_tokens"] = read_ints(options.suppress_tokens)

            count = len(prompts)
            results = (n.CWhisperGenerationResult * count)()
            keep = []
            for i, prompt in enumerate(prompts):
                hypotheses = [[" Hello", " world", "."] for _ in range(options.num_hypotheses)]
                ids = [[50, 51, 13] for _ in range(options.num_hypotheses)]
                sequences = to_native_batch(hypotheses)
                sequences_ids = to_native_id_batch(ids)
                scores = self._scores(options.return_scores, options.num_hypotheses)
                results[i].sequences = sequences
                results[i].sequences_ids = sequences_ids
                results[i].scores = scores
                # Present and zero when requested
                results[i].no_speech_prob = n.COptionalFloat(options.return_no_speech_prob, 0.0)
                keep.extend([sequences, sequences_ids, scores])

            self._allocate("whisper_generation", results, keep)
            write_pointer(deref(out_results), results)
            deref(out_count).value = count
            return 0
        finally:
            self._end(model, "whisper_generate")

    def ct2_whisper_generation_results_free(self, results, count):
        self._free_allocation("whisper_generation", results)

    def ct2_whisper_detect_language(self, handle, features, out_results, out_count):
        return self._gated("whisper_detect_language", handle, self._detect_language,
                           features, out_results, out_count)

    def _detect_language(self, features, out_results, out_count):
        view = self._get("storage_view", features)
        count = view.shape[0]
        results = (n.CDetectionResultArray * count)()
        keep = []
        for i in range(count):
            languages = [("<|en|>", 0.9), ("<|de|>", 0.1)]
            items = (n.CDetectionResult * len(languages))()
            for j, (language, probability) in enumerate(languages):
                buffer = ctypes.create_string_buffer(language.encode("utf-8"))
                items[j].language = n.CStringView(
                    ctypes.cast(buffer, ctypes.POINTER(ctypes.c_char)), len(language)
                )
                items[j].probability = probability
                keep.append(buffer)
            results[i] = n.CDetectionResultArray(
                ctypes.cast(items, ctypes.POINTER(n.CDetectionResult)), len(languages)
            )
            keep.append(items)
        self._allocate("detection", results, keep)
        write_pointer(deref(out_results), results)
        deref(out_count).value = count
        return 0

    def ct2_detection_results_free(self, results, count):
        self._free_allocation("detection", results)

    def ct2_whisper_encode(self, handle, features, to_cpu, out_view):
        return self._gated("whisper_encode", handle, self._encode, features, to_cpu, out_view)

    def _encode(self, features, to_cpu, out_view):
        view = self._get("storage_view", features)
        shape = [view.shape[0], 2, 3]
        encoded = FakeView(shape, 0, 0 if to_cpu else view.device, [0.0] * (shape[0] * 6))
        deref(out_view).value = self._register("storage_view", encoded)
        return 0

    def ct2_whisper_align(self, handle, features, start_ref, text_ref, frames_ref, median_filter_width,
                          out_results, out_count):
        return self._gated("whisper_align", handle, self._align, features, start_ref, text_ref,
                           frames_ref, median_filter_width, out_results, out_count)

    def _align(self, features, start_ref, text_ref, frames_ref, median_filter_width,
               out_results, out_count):
        self._get("storage_view", features)
        self.last_options = {
            "start_sequence": read_sizes(deref(start_ref)),
            "num_frames": read_sizes(deref(frames_ref)),
            "median_filter_width": median_filter_width,
        }
        text_matrix = deref(text_ref)
        rows = [read_sizes(text_matrix.data[i]) for i in range(text_matrix.length)]
        results = (n.CWhisperAlignmentResult * len(rows))()
        keep = []
        for i, row in enumerate(rows):
            pairs = (n.CSizePair * len(row))(*[n.CSizePair(j, j * 2) for j in range(len(row))])
            results[i].alignments = n.CSizePairArray(
                ctypes.cast(pairs, ctypes.POINTER(n.CSizePair)) if row else None, len(row)
            )
            probs = float_array([0.5] * len(row))
            results[i].text_token_probs = probs
            keep.extend([pairs, probs])
        self._allocate("alignment", results, keep)
        write_pointer(deref(out_results), results)
        deref(out_count).value = len(rows)
        return 0

    def ct2_alignment_results_free(self, results, count):
        self._free_allocation("alignment", results)

    def ct2_whisper_is_multilingual(self, handle, out_value):
        self._get("whisper", handle)
        deref(out_value).value = True
        return 0

    def ct2_whisper_n_mels(self, handle, out_value):
        self._get("whisper", handle)
        deref(out_value).value = 80
        return 0

    def ct2_whisper_num_languages(self, handle, out_value):
        self._get("whisper", handle)
        deref(out_value).value = 99
        return 0

    # =========================================================================
    # StorageView
    # =========================================================================

    def ct2_storage_view_create(self, shape, rank, data, dtype, device, out_view):
        dims = [shape[i] for i in range(rank)]
        size = 1
        for dim in dims:
            size *= dim
        address = data.value if isinstance(data, ctypes.c_void_p) else data
        values = list((_DTYPES[dtype] * size).from_address(address)) if size else []
        deref(out_view).value = self._register("storage_view", FakeView(dims, dtype, device, values))
        return 0

    def ct2_storage_view_free(self, handle):
        self._release("storage_view", handle)

    def ct2_storage_view_info(self, handle, info_ref):
        view = self._get("storage_view", handle)
        view.c_shape = (ctypes.c_size_t * max(1, len(view.shape)))(*view.shape)
        info = deref(info_ref)
        info.dtype = view.dtype
        info.device = view.device
        info.rank = len(view.shape)
        info.size = len(view.data)
        info.shape = ctypes.cast(view.c_shape, ctypes.POINTER(ctypes.c_size_t))
        return 0

    def ct2_storage_view_copy_to_host(self, handle, destination, nbytes):
        view = self._get("storage_view", handle)
        ctype = _DTYPES[view.dtype]
        if nbytes != ctypes.sizeof(ctype) * len(view.data):
            return self._set_error(901, "destination size mismatch")
        address = destination.value if isinstance(destination, ctypes.c_void_p) else destination
        if view.data:
            (ctype * len(view.data)).from_address(address)[:] = view.data
        return 0

    def ct2_storage_view_to_string(self, handle, out_text):
        view = self._get("storage_view", handle)
        self._text(out_text, f"{view.data} [shape={view.shape}]")
        return 0

    # =========================================================================
    # ModelMemoryReader
    # =========================================================================

    def ct2_memory_reader_create(self, name, out_reader):
        deref(out_reader).value = self._register("memory_reader", FakeReader(name.decode("utf-8")))
        return 0

    def ct2_memory_reader_free(self, handle):
        self._release("memory_reader", handle)

    def ct2_memory_reader_register_file(self, handle, filename, content, length):
        reader = self._get("memory_reader", handle)
        reader.files[filename.decode("utf-8")] = bytes(content[:length])
        return 0

    def ct2_memory_reader_get_model_id(self, handle, out_text):
        reader = self._get("memory_reader", handle)
        self._text(out_text, reader.name)
        return 0
