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
from typing import Any, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

import boldqc.filter as qc_filt
import boldqc.genericmultiproc as qc_genericmultiproc
import boldqc.stats as qc_stats
import boldqc.util as qc_util
from boldqc.errors import ConfigurationError, DataError, InputShapeError

LGR = logging.getLogger("GENERAL")


def _procOneVolumeSmooth(
    vol: int,
    voxelargs: list,
    debug: bool = False,
    **kwargs: Any,
) -> Tuple[int, NDArray]:
    thevolume, smoothing = voxelargs
    return vol, qc_filt.smooth3(thevolume, method=smoothing)


def _packvolumedata(vol: int, voxelargs: list) -> list:
    return [voxelargs[0][:, :, :, vol], voxelargs[1]]


def _unpackvolumedata(retvals: tuple, voxelproducts: list) -> None:
    (voxelproducts[0])[:, :, :, retvals[0]] = retvals[1]


def smoothvolumes(
    volumedata: NDArray,
    smoothing: str = "box",
    nprocs: int = 1,
    alwaysmultiproc: bool = False,
    showprogressbar: bool = False,
    chunksize: int = 1000,
    usethreads: bool = False,
    debug: bool = False,
) -> NDArray:
    """
    Spatially smooth every volume of a 4D array independently.

    Parameters
    ----------
    volumedata : NDArray
        Data of shape (x, y, z, t).  Not modified.
    smoothing : {"box", "gauss"}, optional
        Kernel passed to :func:`boldqc.filter.smooth3`.

    Returns
    -------
    NDArray
        Smoothed data, same shape as `volumedata`.
    """
    smoothed = np.zeros(volumedata.shape, dtype=np.float64)
    numvolumes = volumedata.shape[3]
    qc_genericmultiproc.run_multiproc(
        _procOneVolumeSmooth,
        _packvolumedata,
        _unpackvolumedata,
        [volumedata, smoothing],
        [smoothed],
        volumedata.shape,
        np.ones(numvolumes, dtype=np.int8),
        LGR,
        nprocs,
        alwaysmultiproc,
        showprogressbar,
        chunksize,
        indexaxis=3,
        procunit="volumes",
        usethreads=usethreads,
        stage="mask smoothing",
        debug=debug,
    )
    return smoothed


def makeautomask(
    volumes: Union[NDArray, Sequence[NDArray]],
    threshold: float = 0.2,
    smoothing: str = "box",
    nprocs: int = 1,
    alwaysmultiproc: bool = False,
    showprogressbar: bool = False,
    chunksize: int = 1000,
    usethreads: bool = False,
    failondegenerate: bool = False,
    debug: bool = False,
) -> NDArray:
    """
    Estimate a brain mask from an fMRI time series.

    Each volume is smoothed with a small kernel, the whole smoothed series is
    scaled to the range 0 to 1 using its global minimum and maximum, and the
    scaled volumes are averaged over time.  A voxel is in the mask if that
    average exceeds `threshold` and its smoothed signal changes at some point
    in time.

    Parameters
    ----------
    volumes : NDArray or sequence of NDArray
        Data of shape (x, y, z, t), or t volumes of shape (x, y, z).  Not modified.
    threshold : float, optional
        Fraction of the full intensity range the mean signal must exceed, in
        [0, 1).  Default is 0.2.
    smoothing : {"box", "gauss"}, optional
        Smoothing kernel, 3 voxels wide.  Default is "box".
    nprocs : int, optional
        Number of processes used to smooth the volumes.  Default is 1.
    alwaysmultiproc, showprogressbar, chunksize, usethreads
        Passed on to :func:`boldqc.genericmultiproc.run_multiproc`.
    failondegenerate : bool, optional
        Raise DataError if every value in the data is the same.  Otherwise an
        empty mask is returned.  Default is False.
    debug : bool, optional
        Print intermediate values.

    Returns
    -------
    NDArray
        Boolean mask of shape (x, y, z).

    Raises
    ------
    ConfigurationError
        If `threshold` is out of range.
    InputShapeError
        If the input is not a 4D series of identically shaped volumes.
    DataError
        If `failondegenerate` is set and the data is constant.
    """
    if not (0.0 <= threshold < 1.0):
        raise ConfigurationError(f"mask threshold must lie in [0, 1), not {threshold}")
    volumedata = qc_util.asvolumeseries(volumes)
    xsize, ysize, numslices, numvolumes = volumedata.shape
    if numvolumes < 1:
        raise InputShapeError("volume series contains no volumes")
    LGR.debug(f"estimating mask from {numvolumes} volumes of {xsize}x{ysize}x{numslices}")

    smoothed = smoothvolumes(
        volumedata,
        smoothing=smoothing,
        nprocs=nprocs,
        alwaysmultiproc=alwaysmultiproc,
        showprogressbar=showprogressbar,
        chunksize=chunksize,
        usethreads=usethreads,
        debug=debug,
    )

    # normalize over the whole series, not volume by volume
    globalmin = np.nanmin(smoothed) if np.any(np.isfinite(smoothed)) else np.nan
    globalmax = np.nanmax(smoothed) if np.any(np.isfinite(smoothed)) else np.nan
    if debug:
        print(f"makeautomask: {globalmin=}, {globalmax=}")
    if not np.isfinite(globalmin) or not np.isfinite(globalmax) or globalmax == globalmin:
        if failondegenerate:
            raise DataError("input data has no intensity range", stage="mask estimation")
        LGR.warning("input data has no intensity range - returning an empty mask")
        return np.zeros((xsize, ysize, numslices), dtype=bool)
    normalized = (smoothed - globalmin) / (globalmax - globalmin)

    meanvol = np.mean(normalized, axis=3)
    if numvolumes > 1:
        haschanged = np.any(np.diff(normalized, axis=3) != 0.0, axis=3)
    else:
        haschanged = np.zeros((xsize, ysize, numslices), dtype=bool)
    themask = np.logical_and(haschanged, meanvol > threshold)
    LGR.info(f"mask contains {qc_stats.getmasksize(themask)} voxels")
    return themask
