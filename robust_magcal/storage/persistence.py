################################################################################
#
#  Copyright (C) 2026 Garrett Brown
#  This file is part of OASIS - https://github.com/eigendude/OASIS
#
#  SPDX-License-Identifier: Apache-2.0
#  See DOCS/LICENSING.md for more information.
#
################################################################################

"""Persistence helpers for calibration result YAML snapshots."""

from __future__ import annotations

import logging
import os
from pathlib import Path

from robust_magcal.calibration_types.calibration_result import CalibrationResult
from robust_magcal.storage.yaml_format import MagCalYamlError
from robust_magcal.storage.yaml_format import dumps_yaml
from robust_magcal.storage.yaml_format import loads_yaml


_LOG: logging.Logger = logging.getLogger(__name__)


class MagCalPersistenceError(Exception):
    """Raised when loading or saving calibration files fails."""


def is_yaml_path(path: str | os.PathLike[str]) -> bool:
    """Return True if the path has a YAML extension."""
    suffix: str = Path(os.fspath(path)).suffix.lower()
    return suffix in {".yaml", ".yml"}


def save_calibration(
    path: str | os.PathLike[str],
    result: CalibrationResult,
    *,
    atomic_write: bool = True,
) -> None:
    """Save a calibration result to disk as YAML."""
    if not is_yaml_path(path):
        raise MagCalPersistenceError("Path must end with .yaml or .yml")

    path_obj: Path = Path(os.fspath(path))
    try:
        path_obj.parent.mkdir(parents=True, exist_ok=True)
        text: str = dumps_yaml(result)
        if atomic_write:
            tmp_name: str = f".{path_obj.name}.tmp.{os.getpid()}"
            tmp_path: Path = path_obj.with_name(tmp_name)
            with tmp_path.open("w", encoding="utf-8") as handle:
                handle.write(text)
                handle.flush()
                os.fsync(handle.fileno())
            os.replace(tmp_path, path_obj)
        else:
            path_obj.write_text(text, encoding="utf-8")
    except (OSError, MagCalYamlError) as exc:
        raise MagCalPersistenceError(
            f"Failed to save calibration to {path_obj}"
        ) from exc
    _LOG.info("Saved calibration to %s", path_obj)


def load_calibration(path: str | os.PathLike[str]) -> CalibrationResult:
    """Load a calibration result from a YAML file."""
    if not is_yaml_path(path):
        raise MagCalPersistenceError("Path must end with .yaml or .yml")

    path_obj: Path = Path(os.fspath(path))
    try:
        text: str = path_obj.read_text(encoding="utf-8")
        return loads_yaml(text)
    except (OSError, MagCalYamlError) as exc:
        raise MagCalPersistenceError(
            f"Failed to load calibration from {path_obj}"
        ) from exc
