"""Error types raised by nativeboost.

Types:
    - Phase: The booster operation a native failure belongs to
    - NativeBoostError: Base class for recoverable library errors
    - NativeCallError: A gateway call reported a non-success status
    - NativeLibraryError: The native library could not be loaded
    - ContractViolation: A caller broke an API contract
"""

from __future__ import annotations

from enum import Enum


class Phase(str, Enum):
    """Booster operation phase, attached to every native call failure."""

    CREATE = "create"
    CONFIGURE = "configure"
    TRAIN = "train"
    EVALUATE = "evaluate"
    PREDICT = "predict"
    SERIALIZE = "serialize"
    DUMP = "dump"
    CHECKPOINT = "checkpoint"


class NativeBoostError(Exception):
    """Base class for errors raised by nativeboost."""


class NativeCallError(NativeBoostError):
    """A native call returned a failure status.

    Attributes:
        phase: Operation phase that failed.
        message: Diagnostic text reported by the native library.
    """

    def __init__(self, phase: Phase, message: str) -> None:
        super().__init__(f"[{phase.value}] {message}")
        self.phase = phase
        self.message = message

    def __reduce__(self) -> tuple[type[NativeCallError], tuple[Phase, str]]:
        return type(self), (self.phase, self.message)


class NativeLibraryError(NativeBoostError):
    """The native library is missing, failed to load or lacks an entry point."""


class ContractViolation(AssertionError):  # noqa: N818
    """A caller broke an API contract.

    These are programming errors, raised before any native call is issued.
    """


__all__: list[str] = [
    "ContractViolation",
    "NativeBoostError",
    "NativeCallError",
    "NativeLibraryError",
    "Phase",
]
