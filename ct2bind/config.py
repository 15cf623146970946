"""
Model runner construction settings and process-wide engine settings.

A ``Config`` is converted to the native ``ct2_config`` struct each time a
Translator, Generator or Whisper is constructed. Values are checked for
representability only (a negative thread count cannot be passed to a
``size_t`` field); combinations such as tensor parallelism with several
device indices are validated by the engine, and the boundary never coerces
them.
"""

from __future__ import annotations

import ctypes
from dataclasses import asdict, dataclass, field, replace
from enum import IntEnum
from typing import Any

from ._bindings import check, get_lib
from ._native import CConfig, CReplicaPoolConfig
from .bridge import INT32_MAX, keepalive, require_int, require_size, to_native_int32s
from .exceptions import ValidationError

__all__ = [
    "Device",
    "ComputeType",
    "LogLevel",
    "Config",
    "get_device_count",
    "set_log_level",
    "get_log_level",
    "set_random_seed",
    "get_random_seed",
]


class _NamedIntEnum(IntEnum):
    @classmethod
    def parse(cls, value: Any):
        """Accept a member, its integer value or its case-insensitive name."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        elif isinstance(value, int) and not isinstance(value, bool):
            try:
                return cls(value)
            except ValueError:
                pass
        choices = ", ".join(member.name.lower() for member in cls)
        raise ValidationError(
            f"Invalid {cls.__name__} {value!r}. Expected one of: {choices}",
            details={"value": value},
        )


class Device(_NamedIntEnum):
    """Device the model runs on."""

    CPU = 0
    CUDA = 1


class ComputeType(_NamedIntEnum):
    """
    Computation precision.

    Values are the engine's native ordinals. ``DEFAULT`` keeps the precision the
    model was converted with; ``AUTO`` picks the fastest type supported by the
    device.
    """

    DEFAULT = 0
    AUTO = 1
    FLOAT32 = 2
    INT8 = 3
    INT8_FLOAT16 = 5
    INT16 = 7
    FLOAT16 = 8


class LogLevel(_NamedIntEnum):
    """Verbosity of the native engine's logger."""

    OFF = -3
    CRITICAL = -2
    ERROR = -1
    WARNING = 0
    INFO = 1
    DEBUG = 2
    TRACE = 3


@dataclass
class Config:
    """
    Settings used to construct a model runner.

    Attributes
    ----------
    device : Device
        CPU or CUDA. Strings such as ``"cuda"`` are accepted.
    compute_type : ComputeType
        Precision of the weights and computation. Strings such as
        ``"int8_float16"`` are accepted.
    device_indices : list[int]
        Device ids to place replicas on. Empty means the engine default.
        Repeating an id creates several replicas on that device.
    tensor_parallel : bool
        Split the model across ``device_indices`` instead of replicating it.
    num_threads_per_replica : int
        Intra-op threads per replica. 0 lets the engine decide.
    max_queued_batches : int
        Bound of the replica pool queue. 0 picks a bound automatically,
        -1 means unbounded.
    cpu_core_offset : int
        Pin worker threads starting at this core. -1 disables pinning.

    Examples
    --------
    >>> config = Config(device="cuda", compute_type="int8_float16", device_indices=[0, 1])
    >>> translator = Translator("ende_ctranslate2/", config)
    """

    device: Device = Device.CPU
    compute_type: ComputeType = ComputeType.DEFAULT
    device_indices: list[int] = field(default_factory=list)
    tensor_parallel: bool = False
    num_threads_per_replica: int = 0
    max_queued_batches: int = 0
    cpu_core_offset: int = -1

    def __post_init__(self) -> None:
        self.device = Device.parse(self.device)
        self.compute_type = ComputeType.parse(self.compute_type)
        self.device_indices = list(self.device_indices)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["device"] = self.device.name.lower()
        data["compute_type"] = self.compute_type.name.lower()
        return data

    def override(self, **kwargs: Any) -> Config:
        """Return a copy with the given fields replaced."""
        return replace(self, **kwargs)

    def _to_c(self) -> CConfig:
        """Snapshot this config into the native struct."""
        c_config = CConfig()
        c_config.device = int(Device.parse(self.device))
        c_config.compute_type = int(ComputeType.parse(self.compute_type))

        indices = to_native_int32s(self.device_indices, "device_indices")
        for index, value in enumerate(self.device_indices):
            if value < 0:
                raise ValidationError(
                    f"device_indices[{index}] must be non-negative, got {value}",
                    details={"field": "device_indices", "value": value},
                )
        c_config.device_indices = indices

        c_config.tensor_parallel = bool(self.tensor_parallel)
        c_config.replica_pool = CReplicaPoolConfig(
            require_size("num_threads_per_replica", self.num_threads_per_replica),
            require_int(
                "max_queued_batches",
                self.max_queued_batches,
                -1,
                2 ** (8 * ctypes.sizeof(ctypes.c_long) - 1) - 1,
            ),
            require_int("cpu_core_offset", self.cpu_core_offset, -1, INT32_MAX),
        )
        return keepalive(c_config, indices)


# =============================================================================
# Process-wide engine settings
# =============================================================================


def get_device_count(device: Device | str = Device.CUDA) -> int:
    """Number of devices of the given kind visible to the engine."""
    out_count = ctypes.c_int32()
    check(get_lib().ct2_get_device_count(int(Device.parse(device)), ctypes.byref(out_count)))
    return out_count.value


def set_log_level(level: LogLevel | str | int) -> None:
    """
    Set the native engine's log verbosity.

    Args:
        level: A ``LogLevel``, its name (``"off"`` ... ``"trace"``) or value.

    Example:
        >>> import ct2bind
        >>> ct2bind.set_log_level("info")
    """
    get_lib().ct2_set_log_level(int(LogLevel.parse(level)))


def get_log_level() -> LogLevel:
    """Current native engine log verbosity."""
    return LogLevel(get_lib().ct2_get_log_level())


def set_random_seed(seed: int) -> None:
    """Seed the engine's random generator used by sampling."""
    require_int("seed", seed, 0, 2**32 - 1)
    get_lib().ct2_set_random_seed(seed)


def get_random_seed() -> int:
    return get_lib().ct2_get_random_seed()
