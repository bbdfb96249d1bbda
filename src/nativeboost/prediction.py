"""Prediction output decoding.

The native library returns predictions as one flat float buffer. The row
count comes from the dataset that was predicted on, never from the buffer.
"""

from __future__ import annotations

from enum import IntFlag

import numpy as np
from numpy.typing import ArrayLike, NDArray

from nativeboost.errors import ContractViolation


class PredictOption(IntFlag):
    """Native prediction option mask."""

    NONE = 0
    OUTPUT_MARGIN = 1
    PRED_LEAF = 2


def option_mask(output_margin: bool, pred_leaf: bool, *, leaf_overrides_margin: bool = False) -> PredictOption:
    """Encode prediction options as a native option mask.

    Margin and leaf output are exclusive. With ``leaf_overrides_margin`` the
    leaf flag replaces the margin flag, as the native flag semantics do;
    otherwise asking for both is rejected.

    Raises:
        ContractViolation: If both options are requested and
            ``leaf_overrides_margin`` is not set.
    """
    if output_margin and pred_leaf and not leaf_overrides_margin:
        raise ContractViolation("output_margin and pred_leaf cannot be requested together")

    mask = PredictOption.NONE
    if output_margin:
        mask = PredictOption.OUTPUT_MARGIN
    if pred_leaf:
        mask = PredictOption.PRED_LEAF
    return mask


def decode_predictions(buffer: ArrayLike, n_rows: int) -> NDArray[np.float32]:
    """Reshape a flat native prediction buffer into a row-major matrix.

    Element ``i`` of the buffer lands at ``(i // n_cols, i % n_cols)`` where
    ``n_cols = len(buffer) // n_rows``.

    Args:
        buffer: Flat prediction values.
        n_rows: Row count of the dataset the predictions belong to.

    Returns:
        Array of shape ``(n_rows, n_cols)`` and dtype float32.

    Raises:
        ContractViolation: If ``n_rows`` is not positive or the buffer length
            is not a multiple of ``n_rows``.
    """
    flat = np.ascontiguousarray(buffer, dtype=np.float32).reshape(-1)
    if n_rows <= 0:
        raise ContractViolation(f"row count must be positive, got {n_rows}")
    if flat.size % n_rows != 0:
        raise ContractViolation(f"prediction buffer of length {flat.size} does not divide into {n_rows} rows")
    return flat.reshape(n_rows, flat.size // n_rows)


__all__: list[str] = [
    "PredictOption",
    "decode_predictions",
    "option_mask",
]
