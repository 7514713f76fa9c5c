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
"""Spatial smoothing of volumes and temporal median filtering of timecourses."""
import numpy as np
from numpy.lib.stride_tricks import sliding_window_view
from numpy.typing import NDArray
from scipy import ndimage

from boldqc.errors import ConfigurationError

SMOOTHINGMETHODS = ["box", "gauss"]


def smooth3(
    inputdata: NDArray, method: str = "box", size: int = 3, sd: float = 0.65
) -> NDArray:
    """
    Smooth a 3D volume with a small kernel, replicating values past the edges.

    Parameters
    ----------
    inputdata : NDArray
        3D volume.
    method : {"box", "gauss"}, optional
        Kernel type.  "box" is a uniform ``size``-cubed average, "gauss" a
        gaussian of standard deviation `sd` voxels truncated at ``size // 2``
        voxels.  Default is "box".
    size : int, optional
        Kernel width in voxels (odd).  Default is 3.
    sd : float, optional
        Standard deviation of the gaussian kernel in voxels.  Default is 0.65.

    Returns
    -------
    NDArray
        Smoothed volume, same shape as `inputdata`, dtype float64.

    Examples
    --------
    >>> vol = np.zeros((5, 5, 5))
    >>> vol[2, 2, 2] = 27.0
    >>> float(smooth3(vol)[2, 2, 2])
    1.0
    """
    if size < 1 or size % 2 == 0:
        raise ConfigurationError(f"smoothing kernel size must be a positive odd integer, not {size}")
    thevol = np.asarray(inputdata, dtype=np.float64)
    if method == "box":
        return ndimage.uniform_filter(thevol, size=size, mode="nearest")
    elif method == "gauss":
        radius = size // 2
        return ndimage.gaussian_filter(thevol, sd, mode="nearest", truncate=(radius + 0.25) / sd)
    else:
        raise ConfigurationError(
            f"illegal smoothing method {method} - must be one of {', '.join(SMOOTHINGMETHODS)}"
        )


def movingmedian(timecourse: NDArray, window: int) -> NDArray:
    """
    Moving median filter with edge replication.

    Point i of the output is the median of the `window` points starting
    ``window // 2`` points before i, with the first and last values of the
    series repeated to fill the window near the ends.  The last point of the
    output is a copy of the last input point.

    Parameters
    ----------
    timecourse : NDArray
        1D timecourse.
    window : int
        Filter length in points, at least 1.

    Returns
    -------
    NDArray
        Filtered timecourse, same length as the input.

    Examples
    --------
    >>> movingmedian(np.array([1.0, 1.0, 9.0, 1.0, 1.0]), 3)
    array([1., 1., 1., 1., 1.])
    """
    if window < 1:
        raise ConfigurationError(f"median filter window must be at least 1, not {window}")
    timecourse = np.asarray(timecourse, dtype=np.float64)
    npts = len(timecourse)
    if npts == 0:
        return timecourse.copy()
    halfwidth = window // 2
    padded = np.pad(timecourse, halfwidth, mode="edge")
    filtered = np.median(sliding_window_view(padded, window), axis=1)[:npts]
    filtered[-1] = timecourse[-1]
    return filtered
