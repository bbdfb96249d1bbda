"""Native library loading and the ctypes gateway.

The shared library is loaded once per process, on first use. A failed load
is remembered and reported to every caller that asks for the gateway.
"""

from __future__ import annotations

import ctypes
import json
import logging
import math
import threading
from collections.abc import Sequence
from typing import Any

import numpy as np
from numpy.typing import NDArray

from nativeboost.config import LIBRARY_PATH_ENV, get_config
from nativeboost.errors import NativeLibraryError
from nativeboost.gateway import Gateway
from nativeboost.prediction import PredictOption

logger = logging.getLogger(__name__)
_native_logger = logging.getLogger("nativeboost.native")

_LOG_CALLBACK = ctypes.CFUNCTYPE(None, ctypes.c_char_p)

# Native prediction types accepted by XGBoosterPredictFromDMatrix.
_PREDICT_VALUE = 0
_PREDICT_MARGIN = 1
_PREDICT_LEAF = 6


def _log_callback(msg: bytes) -> None:
    """Redirect logs from the native library into Python."""
    _native_logger.info(msg.decode("utf-8", errors="replace").rstrip())


# Must outlive the library; the native side keeps a raw function pointer.
_log_callback_ptr = _LOG_CALLBACK(_log_callback)


def find_lib_path() -> list[str]:
    """Return candidate paths of the native shared library.

    An explicit ``library_path`` in the config wins; otherwise the library
    shipped with the ``xgboost`` package is used.

    Raises:
        NativeLibraryError: If no library can be located.
    """
    config = get_config()
    if config.library_path is not None:
        if not config.library_path.is_file():
            raise NativeLibraryError(f"native library not found at {config.library_path}")
        return [str(config.library_path)]

    try:
        from xgboost.libpath import find_lib_path as _find_xgboost_lib  # noqa: PLC0415 (optional dependency)
    except ImportError as e:
        raise NativeLibraryError(
            f"cannot locate the native library: install nativeboost[native] or set {LIBRARY_PATH_ENV}"
        ) from e

    try:
        paths = _find_xgboost_lib()
    except Exception as e:  # noqa: BLE001 (xgboost raises its own not-found type)
        raise NativeLibraryError(str(e)) from e
    if not paths:
        raise NativeLibraryError("cannot locate the native library")
    return paths


def _load_lib() -> ctypes.CDLL:
    """Load the native library and route its log output to ``logging``."""
    lib_path = find_lib_path()[0]
    try:
        lib = ctypes.cdll.LoadLibrary(lib_path)
    except OSError as e:
        raise NativeLibraryError(f"failed to load native library {lib_path}: {e}") from e

    lib.XGBGetLastError.restype = ctypes.c_char_p
    register = getattr(lib, "XGBRegisterLogCallback", None)
    if register is not None and register(_log_callback_ptr) != 0:
        raise NativeLibraryError(lib.XGBGetLastError().decode("utf-8", errors="replace"))

    logger.info("Loaded native library from %s", lib_path)
    return lib


def _c_str(value: str) -> ctypes.c_char_p:
    return ctypes.c_char_p(value.encode("utf-8"))


def _c_handle(handle: Any) -> ctypes.c_void_p:
    if isinstance(handle, ctypes.c_void_p):
        return handle
    return ctypes.c_void_p(handle)


def _c_handle_array(handles: Sequence[Any]) -> ctypes.Array[ctypes.c_void_p]:
    return (ctypes.c_void_p * len(handles))(*[_c_handle(h) for h in handles])


def _c_float_ptr(arr: NDArray[np.float32]) -> Any:
    return arr.ctypes.data_as(ctypes.POINTER(ctypes.c_float))


def _prediction_type(option_mask: int) -> int:
    if option_mask & PredictOption.PRED_LEAF:
        return _PREDICT_LEAF
    if option_mask & PredictOption.OUTPUT_MARGIN:
        return _PREDICT_MARGIN
    return _PREDICT_VALUE


class CtypesGateway:
    """Gateway over the XGBoost C API loaded with ctypes.

    Output buffers handed back by the native side are thread-local and are
    copied before the method returns.
    """

    def __init__(self, lib: ctypes.CDLL) -> None:
        self._lib = lib

    def _fn(self, name: str) -> Any:
        try:
            return getattr(self._lib, name)
        except AttributeError as e:
            raise NativeLibraryError(f"native library does not export {name}") from e

    def last_error(self) -> str:
        return self._lib.XGBGetLastError().decode("utf-8", errors="replace")

    def booster_create(self, dmats: Sequence[Any]) -> tuple[int, int]:
        out = ctypes.c_void_p()
        ret = self._fn("XGBoosterCreate")(_c_handle_array(dmats), ctypes.c_uint64(len(dmats)), ctypes.byref(out))
        return ret, out.value or 0

    def booster_set_param(self, handle: int, key: str, value: str) -> int:
        return self._fn("XGBoosterSetParam")(_c_handle(handle), _c_str(key), _c_str(value))

    def booster_update_one_iter(self, handle: int, iteration: int, dtrain: Any) -> int:
        return self._fn("XGBoosterUpdateOneIter")(_c_handle(handle), ctypes.c_int(iteration), _c_handle(dtrain))

    def booster_boost_one_iter(
        self,
        handle: int,
        dtrain: Any,
        grad: NDArray[np.float32],
        hess: NDArray[np.float32],
    ) -> int:
        return self._fn("XGBoosterBoostOneIter")(
            _c_handle(handle),
            _c_handle(dtrain),
            _c_float_ptr(grad),
            _c_float_ptr(hess),
            ctypes.c_uint64(len(grad)),
        )

    def booster_eval_one_iter(
        self,
        handle: int,
        iteration: int,
        dmats: Sequence[Any],
        names: Sequence[str],
    ) -> tuple[int, str]:
        c_names = (ctypes.c_char_p * len(names))(*[name.encode("utf-8") for name in names])
        out = ctypes.c_char_p()
        ret = self._fn("XGBoosterEvalOneIter")(
            _c_handle(handle),
            ctypes.c_int(iteration),
            _c_handle_array(dmats),
            c_names,
            ctypes.c_uint64(len(dmats)),
            ctypes.byref(out),
        )
        return ret, (out.value or b"").decode("utf-8")

    def booster_predict(
        self,
        handle: int,
        dmat: Any,
        option_mask: int,
        tree_limit: int,
    ) -> tuple[int, NDArray[np.float32]]:
        config = json.dumps(
            {
                "type": _prediction_type(option_mask),
                "training": False,
                "iteration_begin": 0,
                "iteration_end": tree_limit,
                "strict_shape": False,
            }
        )
        shape = ctypes.POINTER(ctypes.c_uint64)()
        dims = ctypes.c_uint64()
        preds = ctypes.POINTER(ctypes.c_float)()
        ret = self._fn("XGBoosterPredictFromDMatrix")(
            _c_handle(handle),
            _c_handle(dmat),
            _c_str(config),
            ctypes.byref(shape),
            ctypes.byref(dims),
            ctypes.byref(preds),
        )
        if ret != 0:
            return ret, np.empty(0, dtype=np.float32)
        size = math.prod(shape[i] for i in range(dims.value))
        if size == 0:
            return ret, np.empty(0, dtype=np.float32)
        return ret, np.ctypeslib.as_array(preds, shape=(size,)).astype(np.float32, copy=True)

    def booster_save_model(self, handle: int, path: str) -> int:
        return self._fn("XGBoosterSaveModel")(_c_handle(handle), _c_str(path))

    def booster_load_model(self, handle: int, path: str) -> int:
        return self._fn("XGBoosterLoadModel")(_c_handle(handle), _c_str(path))

    def booster_dump_model(self, handle: int, fmap: str, with_stats: int) -> tuple[int, list[str]]:
        length = ctypes.c_uint64()
        sarr = ctypes.POINTER(ctypes.c_char_p)()
        ret = self._fn("XGBoosterDumpModel")(
            _c_handle(handle),
            _c_str(fmap),
            ctypes.c_int(with_stats),
            ctypes.byref(length),
            ctypes.byref(sarr),
        )
        if ret != 0:
            return ret, []
        return ret, [sarr[i].decode("utf-8") for i in range(length.value)]

    def booster_get_model_raw(self, handle: int) -> tuple[int, bytes]:
        length = ctypes.c_uint64()
        cptr = ctypes.POINTER(ctypes.c_char)()
        ret = self._fn("XGBoosterSaveModelToBuffer")(
            _c_handle(handle),
            _c_str(json.dumps({"format": "ubj"})),
            ctypes.byref(length),
            ctypes.byref(cptr),
        )
        if ret != 0:
            return ret, b""
        return ret, ctypes.string_at(cptr, length.value)

    def booster_load_model_from_buffer(self, handle: int, raw: bytes) -> int:
        buf = (ctypes.c_char * len(raw)).from_buffer_copy(raw)
        return self._fn("XGBoosterLoadModelFromBuffer")(_c_handle(handle), buf, ctypes.c_uint64(len(raw)))

    def booster_load_rabit_checkpoint(self, handle: int) -> tuple[int, int]:
        version = ctypes.c_int()
        ret = self._fn("XGBoosterLoadRabitCheckpoint")(_c_handle(handle), ctypes.byref(version))
        return ret, version.value

    def booster_save_rabit_checkpoint(self, handle: int) -> int:
        return self._fn("XGBoosterSaveRabitCheckpoint")(_c_handle(handle))

    def booster_free(self, handle: int) -> int:
        return self._fn("XGBoosterFree")(_c_handle(handle))


_gateway: Gateway | None = None
_init_error: NativeLibraryError | None = None
_init_lock = threading.Lock()


def get_gateway() -> Gateway:
    """Return the process-wide gateway, loading the native library on first use.

    Raises:
        NativeLibraryError: If the library could not be loaded, now or on an
            earlier attempt.
    """
    global _gateway, _init_error
    with _init_lock:
        if _gateway is not None:
            return _gateway
        if _init_error is not None:
            raise NativeLibraryError(str(_init_error)) from _init_error
        try:
            _gateway = CtypesGateway(_load_lib())
        except NativeLibraryError as e:
            _init_error = e
            raise
        return _gateway


def set_gateway(gateway: Gateway | None) -> Gateway | None:
    """Install the process-wide gateway and return the previous one.

    Passing ``None`` forgets the current gateway and any load failure, so the
    next ``get_gateway`` call loads the native library again.
    """
    global _gateway, _init_error
    with _init_lock:
        previous = _gateway
        _gateway = gateway
        _init_error = None
    return previous


__all__: list[str] = [
    "CtypesGateway",
    "find_lib_path",
    "get_gateway",
    "set_gateway",
]
