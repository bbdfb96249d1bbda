"""Native call surface used by the booster.

Every gateway method mirrors one native entry point. Methods return the
native status code, or a ``(status, output)`` tuple when the entry point
writes an output slot. Outputs are only meaningful when the status is zero.
Status codes are turned into exceptions by ``check_call``.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any, Protocol, TypeVar

import numpy as np
from numpy.typing import NDArray

from nativeboost.errors import NativeCallError, Phase

T = TypeVar("T")


class Gateway(Protocol):
    """Primitive booster operations exposed by a native library."""

    def last_error(self) -> str:
        """Diagnostic message of the most recent failed call on this thread."""
        ...

    def booster_create(self, dmats: Sequence[Any]) -> tuple[int, int]: ...

    def booster_set_param(self, handle: int, key: str, value: str) -> int: ...

    def booster_update_one_iter(self, handle: int, iteration: int, dtrain: Any) -> int: ...

    def booster_boost_one_iter(
        self,
        handle: int,
        dtrain: Any,
        grad: NDArray[np.float32],
        hess: NDArray[np.float32],
    ) -> int: ...

    def booster_eval_one_iter(
        self,
        handle: int,
        iteration: int,
        dmats: Sequence[Any],
        names: Sequence[str],
    ) -> tuple[int, str]: ...

    def booster_predict(
        self,
        handle: int,
        dmat: Any,
        option_mask: int,
        tree_limit: int,
    ) -> tuple[int, NDArray[np.float32]]: ...

    def booster_save_model(self, handle: int, path: str) -> int: ...

    def booster_load_model(self, handle: int, path: str) -> int: ...

    def booster_dump_model(self, handle: int, fmap: str, with_stats: int) -> tuple[int, list[str]]: ...

    def booster_get_model_raw(self, handle: int) -> tuple[int, bytes]: ...

    def booster_load_model_from_buffer(self, handle: int, raw: bytes) -> int: ...

    def booster_load_rabit_checkpoint(self, handle: int) -> tuple[int, int]: ...

    def booster_save_rabit_checkpoint(self, handle: int) -> int: ...

    def booster_free(self, handle: int) -> int: ...


def check_call(gateway: Gateway, phase: Phase, ret: int) -> None:
    """Check the status returned by a gateway call.

    Raises:
        NativeCallError: If ``ret`` is non-zero.
    """
    if ret != 0:
        raise NativeCallError(phase, gateway.last_error())


def check_output(gateway: Gateway, phase: Phase, result: tuple[int, T]) -> T:
    """Check a ``(status, output)`` result and return the output.

    Raises:
        NativeCallError: If the status is non-zero.
    """
    ret, out = result
    check_call(gateway, phase, ret)
    return out


__all__: list[str] = [
    "Gateway",
    "check_call",
    "check_output",
]
