"""
Conversions between Python containers and the C ABI containers.

Every conversion copies. Python -> native conversions build ctypes arrays that
the returned structure keeps alive through its ``_keepalive`` list, so the
structure must stay referenced until the native call returns. Native -> Python
conversions copy every element out, since result buffers are released right
after conversion.

Strings are UTF-8 with ``surrogatepass`` so that any Python ``str`` survives a
round trip, including empty strings and embedded NUL characters. Inputs are
never padded, truncated or reshaped; malformed shapes raise
``ConversionError`` before the native library is called.
"""

import ctypes
from collections.abc import Iterable, Sequence
from typing import Any

from ._native import (
    CFloatArray,
    CFloatMatrix,
    CFloatTensor,
    CIntArray,
    COptionalFloat,
    CSizeArray,
    CSizeMatrix,
    CSizePairArray,
    CStringArray,
    CStringMatrix,
    CStringView,
)
from .exceptions import ConversionError, ValidationError

SIZE_MAX = 2 ** (8 * ctypes.sizeof(ctypes.c_size_t)) - 1
INT32_MIN = -(2**31)
INT32_MAX = 2**31 - 1

_CHAR_P = ctypes.POINTER(ctypes.c_char)


def keepalive(owner: Any, *objects: Any) -> Any:
    """Attach ctypes buffers to ``owner`` so they live as long as it does."""
    try:
        owner._keepalive.extend(objects)
    except AttributeError:
        owner._keepalive = list(objects)
    return owner


# =============================================================================
# Scalars
# =============================================================================


def encode_token(token: str) -> bytes:
    return token.encode("utf-8", "surrogatepass")


def decode_token(raw: bytes) -> str:
    try:
        return raw.decode("utf-8", "surrogatepass")
    except UnicodeDecodeError:
        # Engine vocabularies may hold partial UTF-8 sequences (byte-level BPE)
        return raw.decode("utf-8", "replace")


def require_size(name: str, value: Any) -> int:
    """Validate a value destined for a ``size_t`` field."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{name} must be an int, got {type(value).__name__}",
            details={"field": name, "value": value},
        )
    if not 0 <= value <= SIZE_MAX:
        raise ValidationError(
            f"{name} must be between 0 and {SIZE_MAX}, got {value}",
            details={"field": name, "value": value},
        )
    return value


def require_int(name: str, value: Any, low: int, high: int) -> int:
    """Validate a value destined for a signed integer field."""
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(
            f"{name} must be an int, got {type(value).__name__}",
            details={"field": name, "value": value},
        )
    if not low <= value <= high:
        raise ValidationError(
            f"{name} must be between {low} and {high}, got {value}",
            details={"field": name, "value": value},
        )
    return value


def require_float(name: str, value: Any) -> float:
    """Validate a value destined for a ``float`` field."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(
            f"{name} must be a number, got {type(value).__name__}",
            details={"field": name, "value": value},
        )
    try:
        return float(value)
    except OverflowError as e:
        raise ValidationError(
            f"{name} is too large for a float field",
            details={"field": name},
        ) from e


def optional_to_native(value: float | None) -> COptionalFloat:
    if value is None:
        return COptionalFloat(False, 0.0)
    return COptionalFloat(True, value)


def optional_from_native(value: COptionalFloat) -> float | None:
    """Map a has-value/value pair to ``float | None``. 0.0 stays 0.0."""
    if not value.has_value:
        return None
    return value.value


# =============================================================================
# Strings
# =============================================================================


def _as_list(value: Any, what: str) -> list:
    """Materialize a caller sequence, rejecting strings and non-iterables."""
    if isinstance(value, (str, bytes)) or not isinstance(value, Iterable):
        raise ConversionError(
            f"{what} must be a sequence, not {type(value).__name__}",
            code="CONVERSION_NOT_A_SEQUENCE",
            details={"value": repr(value)[:64]},
        )
    return list(value)


def to_native_strings(tokens: Iterable[str], what: str = "tokens") -> CStringArray:
    """Copy a sequence of strings into a native string array."""
    encoded = []
    for index, token in enumerate(_as_list(tokens, what)):
        if not isinstance(token, str):
            raise ConversionError(
                f"{what}[{index}] must be str, got {type(token).__name__}",
                code="CONVERSION_INVALID_TOKEN",
                details={"index": index},
            )
        encoded.append(encode_token(token))

    count = len(encoded)
    views = (CStringView * count)()
    buffers = []
    for view, raw in zip(views, encoded):
        if raw:
            buffer = (ctypes.c_char * len(raw)).from_buffer_copy(raw)
            view.data = ctypes.cast(buffer, _CHAR_P)
            view.length = len(raw)
            buffers.append(buffer)

    array = CStringArray(ctypes.cast(views, ctypes.POINTER(CStringView)) if count else None, count)
    return keepalive(array, views, *buffers)


def string_from_view(view: CStringView) -> str:
    if not view.length or not view.data:
        return ""
    return decode_token(ctypes.string_at(view.data, view.length))


def from_native_strings(array: CStringArray) -> list[str]:
    """Copy a native string array into a list of ``str``."""
    return [string_from_view(array.data[i]) for i in range(array.length)]


def to_native_batch(batch: Iterable[Sequence[str]], what: str = "batch") -> CStringMatrix:
    """Copy a batch of token sequences, preserving order and exact counts."""
    rows = [to_native_strings(row, f"{what}[{i}]") for i, row in enumerate(_as_list(batch, what))]
    count = len(rows)
    row_array = (CStringArray * count)(*rows)

    matrix = CStringMatrix(
        ctypes.cast(row_array, ctypes.POINTER(CStringArray)) if count else None, count
    )
    return keepalive(matrix, row_array, *rows)


def from_native_batch(matrix: CStringMatrix) -> list[list[str]]:
    return [from_native_strings(matrix.data[i]) for i in range(matrix.length)]


def check_paired_lengths(first_name: str, first: int, second_name: str, second: int) -> None:
    """Raise ``ConversionError`` unless two batch lengths are equal."""
    if first != second:
        raise ConversionError(
            f"{second_name} has {second} entries but {first_name} has {first}; "
            "they must have the same length",
            code="CONVERSION_LENGTH_MISMATCH",
            details={f"{first_name}_length": first, f"{second_name}_length": second},
        )


# =============================================================================
# Numbers
# =============================================================================


def to_native_ids(ids: Iterable[int], what: str = "ids") -> CSizeArray:
    """Copy non-negative integers into a native ``size_t`` array."""
    values = _as_list(ids, what)
    for index, value in enumerate(values):
        if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= SIZE_MAX:
            raise ConversionError(
                f"{what}[{index}] must be a non-negative int, got {value!r}",
                code="CONVERSION_INVALID_ID",
                details={"index": index},
            )

    count = len(values)
    buffer = (ctypes.c_size_t * count)(*values)
    array = CSizeArray(ctypes.cast(buffer, ctypes.POINTER(ctypes.c_size_t)) if count else None, count)
    return keepalive(array, buffer)


def from_native_ids(array: CSizeArray) -> list[int]:
    if not array.length:
        return []
    return array.data[: array.length]


def to_native_id_batch(batch: Iterable[Sequence[int]], what: str = "batch") -> CSizeMatrix:
    rows = [to_native_ids(row, f"{what}[{i}]") for i, row in enumerate(_as_list(batch, what))]
    count = len(rows)
    row_array = (CSizeArray * count)(*rows)

    matrix = CSizeMatrix(ctypes.cast(row_array, ctypes.POINTER(CSizeArray)) if count else None, count)
    return keepalive(matrix, row_array, *rows)


def from_native_id_batch(matrix: CSizeMatrix) -> list[list[int]]:
    return [from_native_ids(matrix.data[i]) for i in range(matrix.length)]


def to_native_int32s(values: Iterable[int], what: str) -> CIntArray:
    """Copy signed integers into a native ``int32`` array (range-checked)."""
    checked = [
        require_int(f"{what}[{i}]", value, INT32_MIN, INT32_MAX)
        for i, value in enumerate(_as_list(values, what))
    ]

    count = len(checked)
    buffer = (ctypes.c_int32 * count)(*checked)
    array = CIntArray(ctypes.cast(buffer, ctypes.POINTER(ctypes.c_int32)) if count else None, count)
    return keepalive(array, buffer)


def from_native_int32s(array: CIntArray) -> list[int]:
    if not array.length:
        return []
    return array.data[: array.length]


def from_native_floats(array: CFloatArray) -> list[float]:
    if not array.length:
        return []
    return array.data[: array.length]


def from_native_float_matrix(matrix: CFloatMatrix) -> list[list[float]]:
    return [from_native_floats(matrix.data[i]) for i in range(matrix.length)]


def from_native_float_tensor(tensor: CFloatTensor) -> list[list[list[float]]]:
    return [from_native_float_matrix(tensor.data[i]) for i in range(tensor.length)]


def from_native_pairs(array: CSizePairArray) -> list[tuple[int, int]]:
    pairs = []
    for i in range(array.length):
        pair = array.data[i]
        pairs.append((pair.first, pair.second))
    return pairs
