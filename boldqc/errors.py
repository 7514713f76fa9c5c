#!/usr/bin/env python
# -*- coding: utf-8 -*-
#
#   Copyright 2016-2025 Blaise Frederick
#
#   Licensed under the Apache License, Version 2.0 (the "License");
#   you may not use this file except in compliance with the License.
#   You may obtain a copy of the License at
#
#       http://www.apache.org/licenses/LICENSE-2.0
#
#   Unless required by applicable law or agreed to in writing, software
#   distributed under the License is distributed on an "AS IS" BASIS,
#   WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
#   See the License for the specific language governing permissions and
#   limitations under the License.
#
#
"""Exceptions raised by boldqc."""
from typing import Any, Optional


class BoldQCError(Exception):
    """Base class for all boldqc errors."""


class ConfigurationError(BoldQCError, ValueError):
    """Raised when an option is invalid or a required routine is unavailable."""


class InputShapeError(ConfigurationError):
    """Raised when input arrays do not share the expected dimensions."""

    def __init__(self, *args: Any, expected: Any = None, found: Any = None) -> None:
        msg = args[0] if args else "input shape mismatch"
        if expected is not None and found is not None:
            msg += f" (expected {expected}, found {found})"
        self.expected = expected
        self.found = found
        super().__init__(msg, *args[1:])


class DataError(BoldQCError, ValueError):
    """Raised when the data cannot be processed as given.

    Parameters
    ----------
    voxel : int, optional
        Flat index of the voxel that failed, if the error is voxel specific.
    stage : str, optional
        Name of the processing stage that failed.
    """

    def __init__(
        self, *args: Any, voxel: Optional[int] = None, stage: Optional[str] = None
    ) -> None:
        msg = args[0] if args else "invalid data"
        if stage is not None:
            msg = f"{stage}: {msg}"
        if voxel is not None:
            msg += f" (voxel {voxel})"
        self.voxel = voxel
        self.stage = stage
        super().__init__(msg, *args[1:])


class VoxelProcessingError(BoldQCError, RuntimeError):
    """Raised in the parent process when a worker fails on one item."""

    def __init__(self, index: int, stage: str, reason: str) -> None:
        self.index = index
        self.stage = stage
        self.reason = reason
        super().__init__(f"{stage} failed on item {index}: {reason}")
