"""Options for score_batch()."""

from __future__ import annotations

from dataclasses import dataclass

from .._native import CScoringOptions
from ..bridge import require_int
from .common import BatchType, NativeOptions


@dataclass
class ScoringOptions(NativeOptions):
    """
    Attributes
    ----------
    max_input_length : int
        Truncate inputs after this many tokens (0 disables truncation).
    offset : int
        Ignore the first ``offset`` positions when scoring.
    max_batch_size : int
        Split the request into sub-batches of this size (0 disables it).
    batch_type : BatchType
        Unit of ``max_batch_size``.
    """

    max_input_length: int = 1024
    offset: int = 0
    max_batch_size: int = 0
    batch_type: BatchType = BatchType.EXAMPLES

    _size_fields = ("max_input_length", "max_batch_size")

    def __post_init__(self) -> None:
        self.batch_type = BatchType.parse(self.batch_type)

    def _to_c(self) -> CScoringOptions:
        c_options = self._fill_scalars(CScoringOptions())
        c_options.offset = require_int("offset", self.offset, -(2**63), 2**63 - 1)
        c_options.batch_type = int(BatchType.parse(self.batch_type))
        return c_options
