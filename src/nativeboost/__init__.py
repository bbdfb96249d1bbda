"""nativeboost - Python handle for natively resident gradient boosted tree models.

The model lives in the native library; this package manages the handle that
refers to it and marshals data across the boundary: parameters, training
iterations with native or custom objectives, evaluation, predictions,
serialization and text dumps.

Example:
    >>> import xgboost as xgb
    >>> import nativeboost as nb
    >>> dtrain = xgb.DMatrix(X, label=y)
    >>> with nb.train({"max_depth": 3}, dtrain, num_boost_round=10) as bst:
    ...     preds = bst.predict(dtrain)
    ...     scores = bst.get_feature_score()
"""

__version__ = "0.1.0"

# Booster
from nativeboost.booster import Booster

# Configuration
from nativeboost.config import NativeConfig, get_config, set_config

# Errors
from nativeboost.errors import (
    ContractViolation,
    NativeBoostError,
    NativeCallError,
    NativeLibraryError,
    Phase,
)

# Prediction options
from nativeboost.prediction import PredictOption

# Training loop
from nativeboost.training import train

# Protocols and type aliases
from nativeboost.types import DataMatrix, Evaluator, Objective

__all__ = [
    "Booster",
    "ContractViolation",
    "DataMatrix",
    "Evaluator",
    "NativeBoostError",
    "NativeCallError",
    "NativeConfig",
    "NativeLibraryError",
    "Objective",
    "Phase",
    "PredictOption",
    "__version__",
    "get_config",
    "set_config",
    "train",
]
