"""Booster handle over a native gradient boosted tree model.

The model lives in the native library; a ``Booster`` owns the integer handle
that refers to it. The handle is non-zero while the booster is live and zero
once it has been disposed.

Threading:
    ``predict``, the native-metric ``eval_set``, dump and serialization calls
    and ``dispose`` are serialized on a per-booster lock because the native
    side hands back transient output buffers. ``update`` and ``boost`` are not:
    training one booster from several threads needs external synchronization.

Disposal:
    ``dispose`` frees the native model at most once and never raises. A
    ``weakref.finalize`` hook frees boosters that are garbage collected
    without being disposed; it is a safety net, not a cleanup strategy.
"""

from __future__ import annotations

import copy
import logging
import os
import threading
import weakref
from collections.abc import Iterable, Mapping, Sequence
from typing import Any, Self

import numpy as np
from numpy.typing import ArrayLike, NDArray

from nativeboost import _native
from nativeboost.config import get_config
from nativeboost.dump import feature_score, write_model_dump
from nativeboost.errors import ContractViolation, Phase
from nativeboost.gateway import Gateway, check_call, check_output
from nativeboost.prediction import decode_predictions, option_mask
from nativeboost.types import DataMatrix, Evaluator, Objective, Params, ParamValue, PathType

logger = logging.getLogger(__name__)


class _HandleRef:
    """Native handle cell shared by a booster and its finalizer."""

    __slots__ = ("_lock", "value")

    def __init__(self, value: int = 0) -> None:
        self._lock = threading.Lock()
        self.value = value

    def claim(self) -> int:
        """Take the handle, leaving zero behind. Only one caller sees it non-zero."""
        with self._lock:
            value, self.value = self.value, 0
        return value


def _release(gateway: Gateway, ref: _HandleRef, reason: str) -> None:
    """Free the native model behind ``ref`` if nobody has yet."""
    handle = ref.claim()
    if not handle:
        return
    if reason == "finalizer":
        logger.warning("Booster handle %#x was not disposed; freeing it during garbage collection", handle)
    try:
        ret = gateway.booster_free(handle)
        error = gateway.last_error() if ret != 0 else ""
    except Exception:  # teardown never raises
        logger.warning("Freeing booster handle %#x failed", handle, exc_info=True)
        return
    if ret != 0:
        logger.warning("Freeing booster handle %#x failed: %s", handle, error)
    else:
        logger.debug("Freed booster handle %#x (%s)", handle, reason)


def _require_matrix(data: DataMatrix | None, name: str) -> DataMatrix:
    if data is None:
        raise ContractViolation(f"{name} must not be None")
    return data


def _matrix_handles(dmats: Sequence[DataMatrix] | None, name: str) -> list[Any]:
    if dmats is None:
        raise ContractViolation(f"{name} must not be None")
    return [_require_matrix(d, f"{name}[{i}]").handle for i, d in enumerate(dmats)]


def _iter_params(params: Params) -> Iterable[tuple[str, ParamValue]]:
    if isinstance(params, Mapping):
        return params.items()
    return params


def _as_float32_1d(values: ArrayLike, name: str) -> NDArray[np.float32]:
    if values is None:
        raise ContractViolation(f"{name} must not be None")
    return np.ascontiguousarray(values, dtype=np.float32).reshape(-1)


class Booster:
    """Handle to a native gradient boosted tree model.

    A booster is created over the datasets it will train and evaluate on, or
    from a saved model. Parameters are forwarded eagerly to the native side;
    ``seed`` is always set to the configured default (``"0"``) first, so a
    ``seed`` in ``params`` overrides it.

    Args:
        params: Booster parameters, as a mapping or ``(key, value)`` pairs.
        cache: Datasets the booster is created over.
        gateway: Native call surface. Defaults to the process-wide gateway.

    Raises:
        NativeCallError: If the native side rejects creation or a parameter.

    Example:
        >>> import xgboost as xgb
        >>> dtrain = xgb.DMatrix(X, label=y)
        >>> with Booster({"max_depth": 3}, [dtrain]) as bst:
        ...     for i in range(10):
        ...         bst.update(dtrain, i)
        ...     preds = bst.predict(dtrain)
    """

    def __init__(
        self,
        params: Params | None = None,
        cache: Sequence[DataMatrix] = (),
        *,
        gateway: Gateway | None = None,
    ) -> None:
        self._init_handle(cache, gateway)
        self._apply_initial_params(params)

    def _init_handle(self, cache: Sequence[DataMatrix], gateway: Gateway | None) -> None:
        self._gateway = gateway if gateway is not None else _native.get_gateway()
        self._lock = threading.RLock()
        handle = self._call(Phase.CREATE, self._gateway.booster_create, _matrix_handles(cache, "cache"))
        self._ref = _HandleRef(handle)
        self._finalizer = weakref.finalize(self, _release, self._gateway, self._ref, "finalizer")
        logger.debug("Created booster handle %#x over %d dataset(s)", handle, len(cache))

    def _apply_initial_params(self, params: Params | None) -> None:
        try:
            self.set_param("seed", get_config().default_seed)
            if params is not None:
                self.set_params(params)
        except BaseException:
            self.dispose()
            raise

    @classmethod
    def from_model_file(
        cls,
        path: PathType,
        params: Params | None = None,
        *,
        gateway: Gateway | None = None,
    ) -> Self:
        """Create a booster from a model file written by ``save_model``.

        Raises:
            ContractViolation: If ``path`` is None.
            NativeCallError: If the file cannot be loaded.
        """
        if path is None:
            raise ContractViolation("model path must not be None")
        booster = cls.__new__(cls)
        booster._init_handle((), gateway)
        try:
            booster.load_model(path)
        except BaseException:
            booster.dispose()
            raise
        booster._apply_initial_params(params)
        return booster

    @classmethod
    def from_bytes(
        cls,
        raw: bytes | bytearray,
        params: Params | None = None,
        *,
        gateway: Gateway | None = None,
    ) -> Self:
        """Create a booster from bytes produced by ``to_bytes``.

        Raises:
            ContractViolation: If ``raw`` is None.
            NativeCallError: If the bytes are not a valid model.
        """
        if raw is None:
            raise ContractViolation("model bytes must not be None")
        booster = cls.__new__(cls)
        booster._init_handle((), gateway)
        try:
            booster.load_model_from_bytes(raw)
        except BaseException:
            booster.dispose()
            raise
        booster._apply_initial_params(params)
        return booster

    # -------------------------------------------------------------------------
    # Handle lifecycle
    # -------------------------------------------------------------------------

    @property
    def handle(self) -> int:
        """Native handle, zero once disposed."""
        return self._ref.value

    @property
    def is_disposed(self) -> bool:
        """Whether the native model has been freed."""
        return self._ref.value == 0

    def _require_handle(self) -> int:
        handle = self._ref.value
        if not handle:
            raise ContractViolation("booster has been disposed")
        return handle

    def dispose(self) -> None:
        """Free the native model. Safe to call more than once; never raises."""
        with self._lock:
            self._finalizer.detach()
            _release(self._gateway, self._ref, "dispose")

    def __enter__(self) -> Self:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.dispose()

    def _call(self, phase: Phase, fn: Any, *args: Any) -> Any:
        """Invoke a gateway method and translate its status.

        Methods returning a bare status yield None; methods returning a
        ``(status, output)`` tuple yield the output.
        """
        result = fn(*args)
        if isinstance(result, tuple):
            return check_output(self._gateway, phase, result)
        check_call(self._gateway, phase, result)
        return None

    # -------------------------------------------------------------------------
    # Parameters
    # -------------------------------------------------------------------------

    def set_param(self, key: str, value: ParamValue) -> None:
        """Set one parameter, sent as ``str(value)``.

        Raises:
            ContractViolation: If ``key`` or ``value`` is None.
            NativeCallError: If the native side rejects the parameter.
        """
        if key is None or value is None:
            raise ContractViolation(f"parameter key and value must not be None (got {key!r}={value!r})")
        self._call(Phase.CONFIGURE, self._gateway.booster_set_param, self._require_handle(), key, str(value))

    def set_params(self, params: Params) -> None:
        """Set parameters in iteration order.

        The first rejected parameter raises; later ones are not applied. A key
        given more than once is sent each time and the native side keeps the
        last value, or accumulates it for list-valued keys such as
        ``eval_metric``.
        """
        for key, value in _iter_params(params):
            self.set_param(key, value)

    # -------------------------------------------------------------------------
    # Training and evaluation
    # -------------------------------------------------------------------------

    def update(self, dtrain: DataMatrix, iteration: int = 0, fobj: Objective | None = None) -> None:
        """Run one boosting iteration.

        Without ``fobj`` the native side computes gradients with its
        configured objective. With ``fobj`` the gradients come from
        ``fobj(margin_predictions, dtrain)`` and are applied with ``boost``.

        Args:
            dtrain: Training data.
            iteration: Current iteration number (native objective only).
            fobj: Custom objective returning ``(grad, hess)``.
        """
        _require_matrix(dtrain, "dtrain")
        if fobj is None:
            self._call(
                Phase.TRAIN,
                self._gateway.booster_update_one_iter,
                self._require_handle(),
                iteration,
                dtrain.handle,
            )
            return

        preds = self.predict(dtrain, output_margin=True)
        grad, hess = fobj(preds, dtrain)
        self.boost(dtrain, grad, hess)

    def boost(self, dtrain: DataMatrix, grad: ArrayLike, hess: ArrayLike) -> None:
        """Boost one iteration with explicit first and second order gradients.

        Raises:
            ContractViolation: If ``dtrain`` is None or ``grad`` and ``hess``
                differ in length.
            NativeCallError: If the native update fails.
        """
        _require_matrix(dtrain, "dtrain")
        grad_arr = _as_float32_1d(grad, "grad")
        hess_arr = _as_float32_1d(hess, "hess")
        if grad_arr.size != hess_arr.size:
            raise ContractViolation(f"grad/hess length mismatch {grad_arr.size} / {hess_arr.size}")
        self._call(
            Phase.TRAIN,
            self._gateway.booster_boost_one_iter,
            self._require_handle(),
            dtrain.handle,
            grad_arr,
            hess_arr,
        )

    def eval_set(
        self,
        datasets: Sequence[DataMatrix],
        names: Sequence[str],
        iteration: int = 0,
        feval: Evaluator | None = None,
    ) -> str:
        """Evaluate the model on named datasets.

        Without ``feval`` the native side formats its configured metrics.
        With ``feval`` each dataset is predicted in order and contributes
        ``"\\t{name}-{metric}:{score:f}"`` to the result.

        Raises:
            ContractViolation: If a dataset or ``names`` is None, or ``datasets``
                and ``names`` differ in length.
        """
        handles = _matrix_handles(datasets, "datasets")
        if names is None:
            raise ContractViolation("names must not be None")
        if len(datasets) != len(names):
            raise ContractViolation(f"got {len(datasets)} datasets but {len(names)} names")

        if feval is None:
            with self._lock:
                return self._call(
                    Phase.EVALUATE,
                    self._gateway.booster_eval_one_iter,
                    self._require_handle(),
                    iteration,
                    handles,
                    list(names),
                )

        parts: list[str] = []
        for dmat, name in zip(datasets, names, strict=True):
            metric, score = feval(self.predict(dmat), dmat)
            parts.append(f"\t{name}-{metric}:{score:f}")
        return "".join(parts)

    def eval(self, data: DataMatrix, name: str = "eval", iteration: int = 0, feval: Evaluator | None = None) -> str:
        """Evaluate the model on a single dataset."""
        return self.eval_set([data], [name], iteration, feval)

    # -------------------------------------------------------------------------
    # Prediction
    # -------------------------------------------------------------------------

    def predict(
        self,
        data: DataMatrix,
        output_margin: bool = False,
        tree_limit: int = 0,
        pred_leaf: bool = False,
    ) -> NDArray[np.float32]:
        """Predict on a dataset.

        Args:
            data: Dataset to predict on.
            output_margin: Return untransformed margin values.
            tree_limit: Number of trees to use; 0 uses all trees.
            pred_leaf: Return the leaf index of every sample in every tree,
                giving a matrix of shape ``(n_rows, n_trees)``.

        Returns:
            Float32 array of shape ``(n_rows, n_cols)``.

        Raises:
            ContractViolation: If both ``output_margin`` and ``pred_leaf`` are
                set (unless ``leaf_overrides_margin`` is configured), or the
                output does not divide into the dataset's rows.
        """
        _require_matrix(data, "data")
        mask = option_mask(output_margin, pred_leaf, leaf_overrides_margin=get_config().leaf_overrides_margin)
        with self._lock:
            flat = self._call(
                Phase.PREDICT,
                self._gateway.booster_predict,
                self._require_handle(),
                data.handle,
                int(mask),
                tree_limit,
            )
        return decode_predictions(flat, data.num_row())

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        """Serialize the whole model.

        The bytes load back into an equivalent booster with ``from_bytes``,
        in this or another process.
        """
        with self._lock:
            return bytes(self._call(Phase.SERIALIZE, self._gateway.booster_get_model_raw, self._require_handle()))

    def load_model_from_bytes(self, raw: bytes | bytearray) -> None:
        """Replace the model state with bytes produced by ``to_bytes``."""
        if raw is None:
            raise ContractViolation("model bytes must not be None")
        with self._lock:
            self._call(
                Phase.SERIALIZE,
                self._gateway.booster_load_model_from_buffer,
                self._require_handle(),
                bytes(raw),
            )

    def save_model(self, path: PathType) -> None:
        """Save the model to a file with native file I/O."""
        if path is None:
            raise ContractViolation("model path must not be None")
        self._call(Phase.SERIALIZE, self._gateway.booster_save_model, self._require_handle(), os.fspath(path))

    def load_model(self, path: PathType) -> None:
        """Load a model file into this booster with native file I/O."""
        if path is None:
            raise ContractViolation("model path must not be None")
        self._call(Phase.SERIALIZE, self._gateway.booster_load_model, self._require_handle(), os.fspath(path))

    def __getstate__(self) -> dict[str, Any]:
        return {"raw": self.to_bytes()}

    def __setstate__(self, state: dict[str, Any]) -> None:
        self._init_handle((), None)
        try:
            self.load_model_from_bytes(state["raw"])
        except BaseException:
            self.dispose()
            raise

    def __copy__(self) -> Booster:
        return self.__deepcopy__(None)

    def __deepcopy__(self, memo: Any) -> Booster:
        return type(self).from_bytes(self.to_bytes(), gateway=self._gateway)

    def copy(self) -> Booster:
        """Return an independent booster holding a copy of this model."""
        return copy.copy(self)

    # -------------------------------------------------------------------------
    # Model dump
    # -------------------------------------------------------------------------

    def get_dump(self, fmap: PathType = "", with_stats: bool = False) -> list[str]:
        """Return the text dump of every tree.

        Args:
            fmap: Feature map file used to name features; empty for indices.
            with_stats: Include split gain and cover.
        """
        with self._lock:
            return self._call(
                Phase.DUMP,
                self._gateway.booster_dump_model,
                self._require_handle(),
                os.fspath(fmap),
                int(with_stats),
            )

    def dump_model(self, path: PathType, fmap: PathType = "", with_stats: bool = False) -> None:
        """Write the text dump of every tree to ``path``.

        Raises:
            NativeCallError: If the dump cannot be produced.
            OSError: If the file cannot be written.
        """
        write_model_dump(path, self.get_dump(fmap, with_stats))

    def get_feature_score(self, fmap: PathType = "") -> dict[str, int]:
        """Return how many splits use each feature."""
        return feature_score(self.get_dump(fmap))

    # -------------------------------------------------------------------------
    # Distributed checkpoints
    # -------------------------------------------------------------------------

    def load_rabit_checkpoint(self) -> int:
        """Load the model from the thread-local distributed checkpoint.

        Returns:
            Version number stored with the checkpoint, 0 if there is none.
        """
        return self._call(Phase.CHECKPOINT, self._gateway.booster_load_rabit_checkpoint, self._require_handle())

    def save_rabit_checkpoint(self) -> None:
        """Save the model into the thread-local distributed checkpoint."""
        self._call(Phase.CHECKPOINT, self._gateway.booster_save_rabit_checkpoint, self._require_handle())

    def __repr__(self) -> str:
        state = "disposed" if self.is_disposed else f"handle={self.handle:#x}"
        return f"Booster({state})"


__all__: list[str] = [
    "Booster",
]
