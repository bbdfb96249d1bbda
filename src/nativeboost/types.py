"""Common types for nativeboost.

This module defines the protocols the booster depends on. Datasets are owned
by the caller; the booster only reads their native handle and row count.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from os import PathLike
from typing import Any, Protocol, runtime_checkable

import numpy as np
from numpy.typing import ArrayLike, NDArray


@runtime_checkable
class DataMatrix(Protocol):
    """Dataset reference backed by a native matrix handle.

    ``xgboost.DMatrix`` satisfies this protocol.
    """

    @property
    def handle(self) -> Any:
        """Native handle of the matrix."""
        ...

    def num_row(self) -> int:
        """Number of rows in the matrix."""
        ...


Objective = Callable[[NDArray[np.float32], DataMatrix], tuple[ArrayLike, ArrayLike]]
"""Custom objective.

Called with margin predictions of shape ``(n_rows, n_cols)`` and the training
matrix; returns ``(gradient, hessian)`` with one entry per prediction.
"""

Evaluator = Callable[[NDArray[np.float32], DataMatrix], tuple[str, float]]
"""Custom evaluation metric.

Called with transformed predictions and the evaluation matrix; returns
``(metric_name, score)``.
"""

ParamValue = str | int | float | bool
Params = Mapping[str, ParamValue] | Iterable[tuple[str, ParamValue]]
"""Booster parameters, as a mapping or as ordered ``(key, value)`` pairs."""

PathType = str | PathLike[str]

__all__: list[str] = [
    "DataMatrix",
    "Evaluator",
    "Objective",
    "ParamValue",
    "Params",
    "PathType",
]
