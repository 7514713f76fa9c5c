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
import logging
import os
import platform
import sys
import time
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as pkg_version
from typing import Any, Dict, Sequence, Union

import numpy as np
from numpy.typing import NDArray

from boldqc.errors import InputShapeError

LGR = logging.getLogger("GENERAL")
TimingLGR = logging.getLogger("TIMING")


def version() -> str:
    """Installed version of boldqc, or "unknown" when running from a source tree."""
    try:
        return pkg_version("boldqc")
    except PackageNotFoundError:
        return "unknown"


def makeadir(pathname: str) -> bool:
    """
    Create a directory if it doesn't already exist.

    Returns
    -------
    bool
        True if the directory exists or was created, False otherwise.
    """
    try:
        os.makedirs(pathname)
    except OSError:
        if os.path.exists(pathname):
            return True
        else:
            LGR.error(f"{pathname} does not exist, and could not create it")
            return False
    return True


def savecommandline(theargs: Sequence[str], thename: str) -> None:
    """Write the command line, joined by spaces, to ``<thename>_commandline.txt``."""
    with open(thename + "_commandline.txt", "w") as thefile:
        thefile.write(" ".join(theargs) + "\n")


def runinfo() -> Dict[str, Any]:
    """Provenance entries added to every run options file."""
    return {
        "boldqc_version": version(),
        "python_version": platform.python_version(),
        "numpy_version": np.__version__,
        "platform": platform.platform(),
        "starttime": time.strftime("%Y-%m-%d %H:%M:%S"),
        "commandline_argv": " ".join(sys.argv),
    }


def timingmessage(message: str, count: int | None = None, unit: str | None = None) -> None:
    """Record a processing milestone on the timing log."""
    if count is None:
        TimingLGR.info(message)
    else:
        TimingLGR.info(message, {"message2": count, "message3": unit})


def asvolumeseries(volumes: Union[NDArray, Sequence[NDArray]]) -> NDArray:
    """
    Return `volumes` as a single float64 array of shape (x, y, z, t).

    Parameters
    ----------
    volumes : ndarray or sequence of ndarray
        Either a 4D array, or a sequence of 3D arrays of identical shape, one
        per timepoint.  The input is never modified.

    Raises
    ------
    InputShapeError
        If the data is not 4D, or the volumes do not all have the same shape.
    """
    if isinstance(volumes, np.ndarray):
        if volumes.ndim != 4:
            raise InputShapeError("volume series must be 4D", expected=4, found=volumes.ndim)
        return volumes.astype(np.float64, copy=False)
    volumelist = [np.asarray(thevol) for thevol in volumes]
    if len(volumelist) == 0:
        raise InputShapeError("volume series is empty")
    firstshape = volumelist[0].shape
    if len(firstshape) != 3:
        raise InputShapeError(
            "each volume must be 3D", expected=3, found=len(firstshape)
        )
    for i, thevol in enumerate(volumelist):
        if thevol.shape != firstshape:
            raise InputShapeError(
                f"volume {i} does not match the shape of volume 0",
                expected=firstshape,
                found=thevol.shape,
            )
    return np.stack(volumelist, axis=-1).astype(np.float64, copy=False)
