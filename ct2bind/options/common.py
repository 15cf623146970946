"""Pieces shared by the per-call options dataclasses."""

from __future__ import annotations

from dataclasses import fields, replace
from typing import Any, ClassVar

from ..bridge import require_float, require_size
from ..config import _NamedIntEnum
from .end_token import EndToken


class BatchType(_NamedIntEnum):
    """
    Unit of ``max_batch_size``.

    EXAMPLES counts sequences; TOKENS counts the total number of tokens. The
    engine uses it to regroup a request internally; result count and order
    are unaffected.
    """

    EXAMPLES = 0
    TOKENS = 1


class NativeOptions:
    """
    Mixin for options dataclasses backed by a native struct.

    Subclasses list their scalar fields by native type; ``_fill_scalars``
    checks and copies them into the struct. Container fields are converted
    by each subclass.
    """

    _size_fields: ClassVar[tuple[str, ...]] = ()
    _float_fields: ClassVar[tuple[str, ...]] = ()
    _bool_fields: ClassVar[tuple[str, ...]] = ()

    def _fill_scalars(self, c_struct: Any) -> Any:
        for name in self._size_fields:
            setattr(c_struct, name, require_size(name, getattr(self, name)))
        for name in self._float_fields:
            setattr(c_struct, name, require_float(name, getattr(self, name)))
        for name in self._bool_fields:
            setattr(c_struct, name, bool(getattr(self, name)))
        return c_struct

    def to_dict(self) -> dict[str, Any]:
        """Plain-value representation (end tokens and enums as values)."""
        data: dict[str, Any] = {}
        for f in fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if isinstance(value, EndToken):
                value = value.value
            elif isinstance(value, BatchType):
                value = value.name.lower()
            elif isinstance(value, list):
                value = [list(item) if isinstance(item, (list, tuple)) else item for item in value]
            data[f.name] = value
        return data

    def override(self, **kwargs: Any) -> Any:
        """Return a copy with the given fields replaced."""
        return replace(self, **kwargs)  # type: ignore[type-var]
