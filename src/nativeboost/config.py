"""Runtime configuration for nativeboost.

The active configuration is built from the environment on first use and can
be replaced with ``set_config``.

Environment variables:
    - NATIVEBOOST_LIBRARY_PATH: Explicit path to the native shared library
    - NATIVEBOOST_LEAF_OVERRIDES_MARGIN: Let leaf output win over margin output
"""

from __future__ import annotations

import os
import threading
from collections.abc import Mapping
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, field_validator

LIBRARY_PATH_ENV = "NATIVEBOOST_LIBRARY_PATH"
LEAF_OVERRIDES_MARGIN_ENV = "NATIVEBOOST_LEAF_OVERRIDES_MARGIN"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


class NativeConfig(BaseModel):
    """Process-wide nativeboost settings.

    Attributes:
        library_path: Shared library to load instead of searching for one.
        leaf_overrides_margin: When set, asking for margin and leaf output at
            once returns leaf output, matching the native flag semantics.
            Otherwise the combination is rejected.
        default_seed: Seed applied to every new booster before caller params.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    library_path: Path | None = None
    leaf_overrides_margin: bool = False
    default_seed: str = "0"

    @field_validator("default_seed", mode="before")
    @classmethod
    def stringify_seed(cls, v: Any) -> str:
        """Accept integer seeds; the native side only sees strings."""
        return str(v)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> NativeConfig:
        """Build a config from environment variables."""
        env = os.environ if environ is None else environ
        library_path = env.get(LIBRARY_PATH_ENV) or None
        leaf_flag = env.get(LEAF_OVERRIDES_MARGIN_ENV, "").strip().lower()
        return cls(
            library_path=Path(library_path) if library_path else None,
            leaf_overrides_margin=leaf_flag in _TRUE_VALUES,
        )


_config: NativeConfig | None = None
_config_lock = threading.Lock()


def get_config() -> NativeConfig:
    """Return the active configuration."""
    global _config
    with _config_lock:
        if _config is None:
            _config = NativeConfig.from_env()
        return _config


def set_config(**changes: Any) -> NativeConfig:
    """Replace the active configuration and return the previous one.

    Raises:
        pydantic.ValidationError: If a changed field fails validation.
    """
    global _config
    with _config_lock:
        previous = _config if _config is not None else NativeConfig.from_env()
        _config = NativeConfig.model_validate(previous.model_dump() | changes)
    return previous


def reset_config() -> None:
    """Forget the active configuration so it is rebuilt from the environment."""
    global _config
    with _config_lock:
        _config = None


__all__: list[str] = [
    "LEAF_OVERRIDES_MARGIN_ENV",
    "LIBRARY_PATH_ENV",
    "NativeConfig",
    "get_config",
    "reset_config",
    "set_config",
]
