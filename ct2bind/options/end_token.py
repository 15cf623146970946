"""
End-token variants.

The engine distinguishes "no override" (its default terminator rules apply)
from an explicit terminator list, so the field is a tagged union rather than
an optional list:

    NoEndToken()                      -> engine default
    SingleEndToken("</s>")            -> stop on this token
    MultipleEndTokens(("</s>", "."))  -> stop on any of these tokens
    MultipleEndTokenIds((2, 7))       -> stop on any of these token ids

Plain Python values are accepted wherever an ``EndToken`` is expected and are
converted with ``EndToken.coerce``.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, ClassVar

from .._native import CEndToken
from ..bridge import SIZE_MAX, keepalive, to_native_ids, to_native_strings
from ..exceptions import ValidationError

__all__ = [
    "EndTokenKind",
    "EndToken",
    "NoEndToken",
    "SingleEndToken",
    "MultipleEndTokens",
    "MultipleEndTokenIds",
]


class EndTokenKind(IntEnum):
    NONE = 0
    SINGLE = 1
    MULTIPLE = 2
    MULTIPLE_IDS = 3


class EndToken:
    """Base class of the end-token variants."""

    __slots__ = ()

    kind: ClassVar[EndTokenKind]

    @staticmethod
    def none() -> NoEndToken:
        return NoEndToken()

    @staticmethod
    def single(token: str) -> SingleEndToken:
        return SingleEndToken(token)

    @staticmethod
    def multiple(tokens: Iterable[str]) -> MultipleEndTokens:
        return MultipleEndTokens(tuple(tokens))

    @staticmethod
    def multiple_ids(ids: Iterable[int]) -> MultipleEndTokenIds:
        return MultipleEndTokenIds(tuple(ids))

    @staticmethod
    def coerce(value: Any) -> EndToken:
        """
        Convert a plain value to an end-token variant.

        ``None`` and an empty list mean no override; a string is a single
        token; a list of strings or a list of ints selects the list variants.

        Raises
        ------
            ValidationError: For mixed lists and unsupported types.
        """
        if isinstance(value, EndToken):
            return value
        if value is None:
            return NoEndToken()
        if isinstance(value, str):
            return SingleEndToken(value)
        if isinstance(value, (list, tuple)):
            if not value:
                return NoEndToken()
            if all(isinstance(item, str) for item in value):
                return MultipleEndTokens(tuple(value))
            if all(isinstance(item, int) and not isinstance(item, bool) for item in value):
                return MultipleEndTokenIds(tuple(value))
            raise ValidationError(
                "end_token list must contain only strings or only token ids",
                details={"value": list(value)},
            )
        raise ValidationError(
            f"Unsupported end_token value of type {type(value).__name__}",
            details={"value": repr(value)},
        )

    @property
    def value(self) -> Any:
        """Plain Python form: None, a string, or a list."""
        raise NotImplementedError

    def _to_c(self) -> CEndToken:
        raise NotImplementedError


@dataclass(frozen=True)
class NoEndToken(EndToken):
    """Keep the engine's default terminator rules."""

    kind: ClassVar[EndTokenKind] = EndTokenKind.NONE

    @property
    def value(self) -> None:
        return None

    def _to_c(self) -> CEndToken:
        c_end = CEndToken()
        c_end.kind = int(self.kind)
        return c_end


@dataclass(frozen=True)
class SingleEndToken(EndToken):
    token: str

    kind: ClassVar[EndTokenKind] = EndTokenKind.SINGLE

    def __post_init__(self) -> None:
        if not isinstance(self.token, str):
            raise ValidationError(
                f"end token must be str, got {type(self.token).__name__}",
                details={"value": repr(self.token)},
            )

    @property
    def value(self) -> str:
        return self.token

    def _to_c(self) -> CEndToken:
        tokens = to_native_strings([self.token], "end_token")
        c_end = CEndToken()
        c_end.kind = int(self.kind)
        c_end.tokens = tokens
        return keepalive(c_end, tokens)


@dataclass(frozen=True)
class MultipleEndTokens(EndToken):
    tokens: tuple[str, ...]

    kind: ClassVar[EndTokenKind] = EndTokenKind.MULTIPLE

    def __post_init__(self) -> None:
        if isinstance(self.tokens, str):
            raise ValidationError(
                "MultipleEndTokens takes a list of tokens; use SingleEndToken for one",
                details={"value": self.tokens},
            )
        object.__setattr__(self, "tokens", tuple(self.tokens))
        if not self.tokens:
            raise ValidationError("MultipleEndTokens requires at least one token; use NoEndToken")
        for token in self.tokens:
            if not isinstance(token, str):
                raise ValidationError(
                    f"end tokens must be str, got {type(token).__name__}",
                    details={"value": repr(token)},
                )

    @property
    def value(self) -> list[str]:
        return list(self.tokens)

    def _to_c(self) -> CEndToken:
        tokens = to_native_strings(self.tokens, "end_token")
        c_end = CEndToken()
        c_end.kind = int(self.kind)
        c_end.tokens = tokens
        return keepalive(c_end, tokens)


@dataclass(frozen=True)
class MultipleEndTokenIds(EndToken):
    ids: tuple[int, ...]

    kind: ClassVar[EndTokenKind] = EndTokenKind.MULTIPLE_IDS

    def __post_init__(self) -> None:
        object.__setattr__(self, "ids", tuple(self.ids))
        if not self.ids:
            raise ValidationError("MultipleEndTokenIds requires at least one id; use NoEndToken")
        for token_id in self.ids:
            if isinstance(token_id, bool) or not isinstance(token_id, int):
                raise ValidationError(
                    f"end token ids must be int, got {type(token_id).__name__}",
                    details={"value": repr(token_id)},
                )
            if not 0 <= token_id <= SIZE_MAX:
                raise ValidationError(
                    f"end token id out of range: {token_id}", details={"value": token_id}
                )

    @property
    def value(self) -> list[int]:
        return list(self.ids)

    def _to_c(self) -> CEndToken:
        ids = to_native_ids(self.ids, "end_token")
        c_end = CEndToken()
        c_end.kind = int(self.kind)
        c_end.ids = ids
        return keepalive(c_end, ids)
