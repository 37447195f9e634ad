"""Typed access to AUDIOFLOW_* environment variables.

The loader takes an EnvReader instead of reading os.environ directly, so
tests can hand it a plain dict.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})


class EnvReader:
    """Read environment variables as str, int, float, bool or Path.

    Unset and empty variables yield the default. A value that cannot be
    converted is logged and also yields the default, so a typo in one
    variable does not stop the CLI from starting.

    Example:
        reader = EnvReader(env={"AUDIOFLOW_MAX_CONCURRENT_FILES": "2"})
        reader.get_int("AUDIOFLOW_MAX_CONCURRENT_FILES", 4)  # -> 2
    """

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env: Mapping[str, str] = os.environ if env is None else env

    def _convert(
        self,
        var: str,
        convert: Callable[[str], T],
        default: T | None,
        kind: str,
    ) -> T | None:
        raw = self._env.get(var, "").strip()
        if not raw:
            return default
        try:
            return convert(raw)
        except ValueError:
            logger.warning("Ignoring %s=%r: not a valid %s", var, raw, kind)
            return default

    def get_str(self, var: str, default: str | None = None) -> str | None:
        """Return the variable's value, or default if unset or empty."""
        return self._convert(var, str, default, "string")

    def get_int(self, var: str, default: int | None = None) -> int | None:
        """Return the variable as an int."""
        return self._convert(var, int, default, "integer")

    def get_float(self, var: str, default: float | None = None) -> float | None:
        """Return the variable as a float."""
        return self._convert(var, float, default, "number")

    def get_bool(self, var: str, default: bool | None = None) -> bool | None:
        """Return the variable as a bool.

        1, true, yes and on (any case) are true; any other value is false.
        """
        return self._convert(
            var, lambda raw: raw.casefold() in _TRUE_VALUES, default, "boolean"
        )

    def get_path(self, var: str, default: Path | None = None) -> Path | None:
        """Return the variable as a Path with ~ expanded."""
        return self._convert(
            var, lambda raw: Path(raw).expanduser(), default, "path"
        )
