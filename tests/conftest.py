"""Pytest configuration and the in-memory gateway used by the tests."""

from __future__ import annotations

import itertools
import json
import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import numpy as np
import pytest
from numpy.typing import NDArray

from nativeboost import _native
from nativeboost.config import reset_config
from nativeboost.prediction import PredictOption


def _check_xgboost() -> bool:
    """Check if xgboost is available."""
    try:
        import xgboost  # noqa: F401

        return True
    except ImportError:
        return False


_XGBOOST_AVAILABLE = _check_xgboost()


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line("markers", "xgboost: tests requiring the xgboost native library")


def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Skip tests based on marker and available dependencies."""
    skip_xgboost = pytest.mark.skip(reason="xgboost not installed")
    for item in items:
        if "xgboost" in item.keywords and not _XGBOOST_AVAILABLE:
            item.add_marker(skip_xgboost)


# =============================================================================
# Fake native side
# =============================================================================


class FakeMatrix:
    """Dataset reference with a handle known to a FakeGateway."""

    def __init__(self, handle: int, n_rows: int) -> None:
        self.handle = handle
        self._n_rows = n_rows

    def num_row(self) -> int:
        return self._n_rows


@dataclass
class FakeModel:
    """Native-side state behind one booster handle."""

    cache: list[int] = field(default_factory=list)
    params: dict[str, str] = field(default_factory=dict)
    param_log: list[tuple[str, str]] = field(default_factory=list)
    trees: list[int] = field(default_factory=list)
    shift: float = 0.0

    def state(self) -> dict[str, Any]:
        return {"params": self.params, "trees": self.trees, "shift": self.shift}

    def restore(self, state: dict[str, Any]) -> None:
        self.params = dict(state["params"])
        self.trees = list(state["trees"])
        self.shift = float(state["shift"])


class FakeGateway:
    """In-memory gateway that records every call.

    Each update grows one tree splitting on ``f{round % 3}``. Margin output
    for row ``r`` and class ``c`` is ``0.5 * n_trees + shift + 0.01 * r + 0.001 * c``;
    transformed output adds 1.0 so tests can tell them apart. Leaf output has
    one column per tree holding the tree index.
    """

    def __init__(self) -> None:
        self.models: dict[int, FakeModel] = {}
        self.matrices: dict[int, FakeMatrix] = {}
        self.calls: list[tuple[str, tuple[Any, ...]]] = []
        self.fail: set[str] = set()
        self.rejected_params: set[str] = set()
        self.free_status = 0
        self.freed: list[int] = []
        self.predict_padding = 0
        self.checkpoint: tuple[int, dict[str, Any]] | None = None
        self._handles = itertools.count(0x1000)
        self._error = ""

    # -- helpers --------------------------------------------------------------

    def matrix(self, n_rows: int) -> FakeMatrix:
        mat = FakeMatrix(next(self._handles), n_rows)
        self.matrices[mat.handle] = mat
        return mat

    def count(self, method: str) -> int:
        return sum(1 for name, _ in self.calls if name == method)

    def _record(self, method: str, *args: Any) -> str | None:
        self.calls.append((method, args))
        if method in self.fail:
            return f"injected failure in {method}"
        return None

    def _failed(self, message: str) -> int:
        self._error = message
        return -1

    def _model(self, handle: int) -> FakeModel | None:
        return self.models.get(handle)

    # -- gateway surface ------------------------------------------------------

    def last_error(self) -> str:
        return self._error

    def booster_create(self, dmats: Sequence[Any]) -> tuple[int, int]:
        if err := self._record("booster_create", *dmats):
            return self._failed(err), 0
        handle = next(self._handles)
        self.models[handle] = FakeModel(cache=list(dmats))
        return 0, handle

    def booster_set_param(self, handle: int, key: str, value: str) -> int:
        if err := self._record("booster_set_param", handle, key, value):
            return self._failed(err)
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle")
        if key in self.rejected_params:
            return self._failed(f"Unknown parameter: {key}")
        model.params[key] = value
        model.param_log.append((key, value))
        return 0

    def booster_update_one_iter(self, handle: int, iteration: int, dtrain: Any) -> int:
        if err := self._record("booster_update_one_iter", handle, iteration, dtrain):
            return self._failed(err)
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle")
        model.trees.append(iteration)
        return 0

    def booster_boost_one_iter(
        self,
        handle: int,
        dtrain: Any,
        grad: NDArray[np.float32],
        hess: NDArray[np.float32],
    ) -> int:
        if err := self._record("booster_boost_one_iter", handle, dtrain, grad.copy(), hess.copy()):
            return self._failed(err)
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle")
        model.trees.append(len(model.trees))
        model.shift -= float(np.sum(grad) / max(float(np.sum(hess)), 1.0))
        return 0

    def booster_eval_one_iter(
        self,
        handle: int,
        iteration: int,
        dmats: Sequence[Any],
        names: Sequence[str],
    ) -> tuple[int, str]:
        if err := self._record("booster_eval_one_iter", handle, iteration, tuple(dmats), tuple(names)):
            return self._failed(err), ""
        if self._model(handle) is None:
            return self._failed("invalid booster handle"), ""
        score = 1.0 / (iteration + 1)
        return 0, "".join(f"\t{name}-rmse:{score:f}" for name in names)

    def booster_predict(
        self,
        handle: int,
        dmat: Any,
        option_mask: int,
        tree_limit: int,
    ) -> tuple[int, NDArray[np.float32]]:
        empty = np.empty(0, dtype=np.float32)
        if err := self._record("booster_predict", handle, dmat, option_mask, tree_limit):
            return self._failed(err), empty
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle"), empty
        if (mat := self.matrices.get(dmat)) is None:
            return self._failed("invalid matrix handle"), empty

        n_trees = len(model.trees) if tree_limit == 0 else min(tree_limit, len(model.trees))
        rows = np.arange(mat.num_row(), dtype=np.float32)[:, None]
        if option_mask & PredictOption.PRED_LEAF:
            out = np.tile(np.arange(n_trees, dtype=np.float32), (mat.num_row(), 1))
        else:
            n_class = int(model.params.get("num_class", "1"))
            classes = np.arange(n_class, dtype=np.float32)[None, :]
            out = 0.5 * n_trees + model.shift + 0.01 * rows + 0.001 * classes
            if not option_mask & PredictOption.OUTPUT_MARGIN:
                out = out + 1.0
        flat = np.ascontiguousarray(out, dtype=np.float32).reshape(-1)
        if self.predict_padding:
            flat = np.concatenate([flat, np.zeros(self.predict_padding, dtype=np.float32)])
        return 0, flat

    def booster_save_model(self, handle: int, path: str) -> int:
        if err := self._record("booster_save_model", handle, path):
            return self._failed(err)
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle")
        try:
            Path(path).write_bytes(json.dumps(model.state()).encode("utf-8"))
        except OSError as e:
            return self._failed(f"cannot write model file: {e}")
        return 0

    def booster_load_model(self, handle: int, path: str) -> int:
        if err := self._record("booster_load_model", handle, path):
            return self._failed(err)
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle")
        try:
            model.restore(json.loads(Path(path).read_bytes()))
        except OSError as e:
            return self._failed(f"cannot open model file: {e}")
        except (ValueError, KeyError):
            return self._failed("invalid model file")
        return 0

    def _tree_text(self, round_index: int, names: dict[int, str], with_stats: bool) -> str:
        fid = round_index % 3
        feature = names.get(fid, f"f{fid}")
        split_stats = f",gain={10.0 + round_index:g},cover=100" if with_stats else ""
        leaf_stats = ",cover=50" if with_stats else ""
        return (
            f"0:[{feature}<0.5] yes=1,no=2,missing=1{split_stats}\n"
            f"\t1:leaf=0.1{leaf_stats}\n"
            f"\t2:leaf=-0.1{leaf_stats}\n"
        )

    def booster_dump_model(self, handle: int, fmap: str, with_stats: int) -> tuple[int, list[str]]:
        if err := self._record("booster_dump_model", handle, fmap, with_stats):
            return self._failed(err), []
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle"), []
        names: dict[int, str] = {}
        if fmap:
            try:
                for line in Path(fmap).read_text(encoding="utf-8").splitlines():
                    idx, name, _ = line.split("\t")
                    names[int(idx)] = name
            except OSError as e:
                return self._failed(f"cannot open feature map: {e}"), []
        return 0, [self._tree_text(r, names, bool(with_stats)) for r in range(len(model.trees))]

    def booster_get_model_raw(self, handle: int) -> tuple[int, bytes]:
        if err := self._record("booster_get_model_raw", handle):
            return self._failed(err), b""
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle"), b""
        return 0, json.dumps(model.state()).encode("utf-8")

    def booster_load_model_from_buffer(self, handle: int, raw: bytes) -> int:
        if err := self._record("booster_load_model_from_buffer", handle, raw):
            return self._failed(err)
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle")
        try:
            model.restore(json.loads(raw))
        except (ValueError, KeyError):
            return self._failed("invalid model buffer")
        return 0

    def booster_load_rabit_checkpoint(self, handle: int) -> tuple[int, int]:
        if err := self._record("booster_load_rabit_checkpoint", handle):
            return self._failed(err), 0
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle"), 0
        if self.checkpoint is None:
            return 0, 0
        version, state = self.checkpoint
        model.restore(state)
        return 0, version

    def booster_save_rabit_checkpoint(self, handle: int) -> int:
        if err := self._record("booster_save_rabit_checkpoint", handle):
            return self._failed(err)
        if (model := self._model(handle)) is None:
            return self._failed("invalid booster handle")
        version = 0 if self.checkpoint is None else self.checkpoint[0]
        self.checkpoint = (version + 1, json.loads(json.dumps(model.state())))
        return 0

    def booster_free(self, handle: int) -> int:
        self._record("booster_free", handle)
        self.freed.append(handle)
        if self.free_status != 0:
            return self._failed("injected failure in booster_free")
        if self.models.pop(handle, None) is None:
            return self._failed("double free")
        return 0


def sigmoid(x: float) -> float:
    """Logistic function, used by custom objective tests."""
    return 1.0 / (1.0 + math.exp(-x))


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _fresh_config() -> Iterator[None]:
    """Rebuild the runtime config from the environment for every test."""
    reset_config()
    yield
    reset_config()


@pytest.fixture
def gateway() -> Iterator[FakeGateway]:
    """Fake gateway installed as the process-wide default."""
    fake = FakeGateway()
    previous = _native.set_gateway(fake)
    yield fake
    _native.set_gateway(previous)


@pytest.fixture
def dtrain(gateway: FakeGateway) -> FakeMatrix:
    """Training matrix with 20 rows."""
    return gateway.matrix(20)


@pytest.fixture
def dtest(gateway: FakeGateway) -> FakeMatrix:
    """Test matrix with 8 rows."""
    return gateway.matrix(8)
