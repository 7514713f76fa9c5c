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
"""
Voxelwise detection and suppression of spikes in fMRI data.

Despiking runs in two passes over the voxels in a mask.  The first pass
detrends each timecourse and marks timepoints that are improbably far from
the mean, then flags volumes where an unusual fraction of voxels is marked.
Only if some volume is flagged does the second pass run: each timecourse is
compared to a moving median, and positive excursions larger than
``lowerthresh`` robust standard deviations are squashed so that they can
never exceed ``upperthresh``.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence, Tuple, Union

import numpy as np
from numpy.typing import NDArray

import boldqc.correlate as qc_corr
import boldqc.filter as qc_filt
import boldqc.fit as qc_fit
import boldqc.genericmultiproc as qc_genericmultiproc
import boldqc.io as qc_io
import boldqc.stats as qc_stats
import boldqc.util as qc_util
from boldqc.decorators import conditionaljit
from boldqc.errors import ConfigurationError, DataError, InputShapeError

LGR = logging.getLogger("GENERAL")
ErrorLGR = logging.getLogger("ERROR")

DESPIKEMETHODS = ["median"]
MINDESPIKEWINDOW = qc_corr.MINDESPIKEWINDOW
SIGMAFROMMAD = np.sqrt(np.pi / 2.0)


@dataclass
class DespikeOptions:
    """
    Settings for :func:`despike`.

    Attributes
    ----------
    method : str
        Temporal smoother.  Only "median" is supported.
    window : int or None
        Length of the moving median in timepoints.  None estimates it from the
        autocorrelation of the data.
    clampwindow : bool
        Raise a window shorter than 3 to 3 instead of failing.
    lowerthresh : float
        Residuals (in robust standard deviations) above this are despiked (c1).
    upperthresh : float
        Despiked residuals approach, but never exceed, this value (c2).
    detrendorder : int
        Order of the polynomial removed before outlier detection.
    pthresh : float
        Family wise false positive rate for outlier detection within a timecourse.
    nprocs : int
        Number of worker processes.
    alwaysmultiproc : bool
        Use the worker pool even if `nprocs` is 1.
    usethreads : bool
        Use threads instead of processes.
    showprogressbar : bool
        Show progress bars.
    chunksize : int
        Voxels handed to the workers at a time.
    debug : bool
        Print intermediate values.
    """

    method: str = "median"
    window: Optional[int] = None
    clampwindow: bool = True
    lowerthresh: float = 2.5
    upperthresh: float = 4.0
    detrendorder: int = 2
    pthresh: float = 0.001
    nprocs: int = 1
    alwaysmultiproc: bool = False
    usethreads: bool = False
    showprogressbar: bool = False
    chunksize: int = 1000
    debug: bool = False

    def validate(self) -> None:
        """Raise ConfigurationError if any setting is out of range."""
        if self.method not in DESPIKEMETHODS:
            raise ConfigurationError(
                f"despike method {self.method} is not supported - must be one of {', '.join(DESPIKEMETHODS)}"
            )
        if not (0.0 < self.lowerthresh < self.upperthresh):
            raise ConfigurationError(
                f"thresholds must satisfy 0 < lowerthresh < upperthresh, got {self.lowerthresh}, {self.upperthresh}"
            )
        if self.detrendorder < 0:
            raise ConfigurationError(f"detrendorder must be nonnegative, not {self.detrendorder}")
        if not (0.0 < self.pthresh < 1.0):
            raise ConfigurationError(f"pthresh must lie between 0 and 1, not {self.pthresh}")
        if self.chunksize < 1:
            raise ConfigurationError(f"chunksize must be positive, not {self.chunksize}")
        if self.window is not None and int(self.window) != self.window:
            raise ConfigurationError(f"window must be an integer, not {self.window}")


@dataclass
class DespikeReport:
    """
    Summary of a despiking run.

    Attributes
    ----------
    outlyingvoxels : NDArray
        Percentage of mask voxels that are outliers at each timepoint.
    outliervolumes : NDArray
        True for timepoints flagged as outlier volumes.
    despikedvoxels : NDArray
        Percentage of mask voxels despiked at each timepoint.
    classification : NDArray
        Boolean (x, y, z, t) map of the despiked voxel timepoints.
    window : int or None
        Median filter length used.  None if no despiking was needed and no
        window was supplied.
    windowestimated : bool
        True if the window came from the autocorrelation of the data.
    nummaskvoxels : int
        Number of voxels in the mask.
    failedvoxels : int
        Mask voxels left unchanged because their data could not be processed.
    alpha : float
        Normal quantile used for outlier detection.
    volumethresh : float
        Robust z threshold used to flag volumes.
    """

    outlyingvoxels: NDArray
    outliervolumes: NDArray
    despikedvoxels: NDArray
    classification: NDArray
    window: Optional[int] = None
    windowestimated: bool = False
    nummaskvoxels: int = 0
    failedvoxels: int = 0
    alpha: float = 0.0
    volumethresh: float = 0.0
    options: Dict[str, Any] = field(default_factory=dict)

    def numdespiked(self) -> int:
        """Total number of despiked voxel timepoints."""
        return int(np.count_nonzero(self.classification))

    def numoutliervolumes(self) -> int:
        return int(np.count_nonzero(self.outliervolumes))

    def todict(self) -> Dict[str, Any]:
        """Everything except the classification map, in json friendly form."""
        return {
            "OutlyingVoxelsPct": self.outlyingvoxels,
            "OutlierVolumes": np.where(self.outliervolumes)[0],
            "NumOutlierVolumes": self.numoutliervolumes(),
            "DespikedVoxelsPct": self.despikedvoxels,
            "NumDespiked": self.numdespiked(),
            "Window": self.window,
            "WindowEstimated": self.windowestimated,
            "NumMaskVoxels": self.nummaskvoxels,
            "FailedVoxels": self.failedvoxels,
            "Alpha": self.alpha,
            "VolumeThreshold": self.volumethresh,
            "Options": self.options,
        }


def _checkfinite(timecourse: NDArray, stage: str, voxel: Optional[int] = None) -> None:
    if np.all(np.isnan(timecourse)):
        raise DataError("timecourse is entirely NaN", voxel=voxel, stage=stage)
    if not np.all(np.isfinite(timecourse)):
        raise DataError("timecourse contains non-finite values", voxel=voxel, stage=stage)


def volumeoutliers(
    timecourse: NDArray,
    alpha: float,
    detrendorder: int = 2,
    voxel: Optional[int] = None,
) -> NDArray:
    """
    Mark the timepoints of one timecourse that are outliers about its trend.

    The timecourse is detrended with a polynomial; a point is an outlier if
    its residual is more than ``alpha * sqrt(pi / 2) * MAD`` from the mean
    residual, where MAD is the median absolute deviation of the residuals.

    Parameters
    ----------
    timecourse : NDArray
        1D timecourse.
    alpha : float
        Normal quantile, see :func:`boldqc.stats.bonferronialpha`.
    detrendorder : int, optional
        Order of the trend removed.  Default is 2.
    voxel : int, optional
        Index used in error messages.

    Returns
    -------
    NDArray
        Boolean outlier flags, same length as `timecourse`.

    Raises
    ------
    DataError
        If the timecourse contains NaNs or infinities.
    """
    timecourse = np.asarray(timecourse, dtype=np.float64)
    _checkfinite(timecourse, "outlier detection", voxel=voxel)
    if np.ptp(timecourse) == 0.0:
        return np.zeros(len(timecourse), dtype=bool)
    cleandata = qc_fit.detrend(timecourse, order=detrendorder, demean=True)
    halfwidth = alpha * SIGMAFROMMAD * qc_stats.rawmad(cleandata)
    themean = np.mean(cleandata)
    return np.logical_or(cleandata > themean + halfwidth, cleandata < themean - halfwidth)


def flagoutliervolumes(outlyingvoxels: NDArray, volumethresh: float) -> NDArray:
    """
    Flag timepoints whose outlier percentage is unusual for the run.

    Parameters
    ----------
    outlyingvoxels : NDArray
        Percentage of outlying voxels at each timepoint.
    volumethresh : float
        Robust z score above which a volume is flagged.

    Returns
    -------
    NDArray
        Boolean flags, one per timepoint.
    """
    return qc_stats.robustz(outlyingvoxels) > volumethresh


@conditionaljit()
def compressspikes(normresid, lowerthresh, upperthresh):
    """
    Squash normalized residuals above `lowerthresh` so they stay below `upperthresh`.

    ``s' = c1 + (c2 - c1) * tanh((s - c1) / (c2 - c1))`` for ``s > c1``;
    other values pass through unchanged.
    """
    thewidth = upperthresh - lowerthresh
    return np.where(
        normresid > lowerthresh,
        lowerthresh + thewidth * np.tanh((normresid - lowerthresh) / thewidth),
        normresid,
    )


def despiketimecourse(
    timecourse: NDArray,
    window: int,
    lowerthresh: float = 2.5,
    upperthresh: float = 4.0,
    voxel: Optional[int] = None,
) -> Tuple[NDArray, NDArray]:
    """
    Despike one timecourse against its moving median.

    Parameters
    ----------
    timecourse : NDArray
        1D timecourse.
    window : int
        Moving median length.
    lowerthresh, upperthresh : float, optional
        Compression thresholds in robust standard deviations.
    voxel : int, optional
        Index used in error messages.

    Returns
    -------
    despiked : NDArray
        The timecourse with spikes compressed.  Values that were not despiked
        are copied unchanged.
    spikes : NDArray
        Boolean flags marking the despiked timepoints.

    Raises
    ------
    DataError
        If the timecourse contains NaNs or infinities.
    """
    timecourse = np.asarray(timecourse, dtype=np.float64)
    _checkfinite(timecourse, "despiking", voxel=voxel)
    despiked = timecourse.copy()
    smoothed = qc_filt.movingmedian(timecourse, window)
    residual = timecourse - smoothed
    sigma = SIGMAFROMMAD * qc_stats.rawmad(residual)
    if sigma == 0.0:
        return despiked, np.zeros(len(timecourse), dtype=bool)
    normresid = residual / sigma
    spikes = normresid > lowerthresh
    if np.any(spikes):
        despiked[spikes] = (
            compressspikes(normresid[spikes], lowerthresh, upperthresh) * sigma + smoothed[spikes]
        )
    return despiked, spikes


def resolvewindow(window: int, numtimepoints: int, clampwindow: bool = True) -> int:
    """
    Check a median filter length against the data.

    Raises
    ------
    ConfigurationError
        If the window is shorter than 3 and `clampwindow` is False, or longer
        than the timecourse.
    """
    window = int(window)
    if window < MINDESPIKEWINDOW:
        if clampwindow:
            LGR.warning(f"despike window {window} is too short - using {MINDESPIKEWINDOW}")
            window = MINDESPIKEWINDOW
        else:
            raise ConfigurationError(
                f"despike window must be at least {MINDESPIKEWINDOW}, not {window}"
            )
    if window > numtimepoints:
        raise ConfigurationError(
            f"despike window {window} is longer than the timecourse ({numtimepoints} points)"
        )
    return window


# --------------------------- per voxel workers ---------------------------
def _procOneVoxelOutliers(
    vox: int,
    voxelargs: list,
    detrendorder: int = 2,
    debug: bool = False,
    **kwargs: Any,
) -> Tuple[int, NDArray, bool]:
    thetc, alpha = voxelargs
    try:
        return vox, volumeoutliers(thetc, alpha, detrendorder=detrendorder, voxel=vox), False
    except DataError as e:
        if debug:
            print(e)
        return vox, np.zeros(len(thetc), dtype=bool), True


def _procOneVoxelDespike(
    vox: int,
    voxelargs: list,
    window: int = MINDESPIKEWINDOW,
    lowerthresh: float = 2.5,
    upperthresh: float = 4.0,
    debug: bool = False,
    **kwargs: Any,
) -> Tuple[int, NDArray, NDArray, bool]:
    thetc = voxelargs[0]
    try:
        despiked, spikes = despiketimecourse(
            thetc, window, lowerthresh=lowerthresh, upperthresh=upperthresh, voxel=vox
        )
    except DataError as e:
        if debug:
            print(e)
        return vox, np.asarray(thetc, dtype=np.float64), np.zeros(len(thetc), dtype=bool), True
    return vox, despiked, spikes, False


def _packvoxeldata(voxnum: int, voxelargs: list) -> list:
    return [voxelargs[0][voxnum, :]] + voxelargs[1:]


def _unpackoutlierdata(retvals: tuple, voxelproducts: list) -> None:
    (voxelproducts[0])[retvals[0], :] = retvals[1]
    (voxelproducts[1])[retvals[0]] = retvals[2]


def _unpackdespikedata(retvals: tuple, voxelproducts: list) -> None:
    (voxelproducts[0])[retvals[0], :] = retvals[1]
    (voxelproducts[1])[retvals[0], :] = retvals[2]
    (voxelproducts[2])[retvals[0]] = retvals[3]


def despike(
    volumes: Union[NDArray, Sequence[NDArray]],
    mask: NDArray,
    options: Optional[DespikeOptions] = None,
) -> Tuple[NDArray, DespikeReport]:
    """
    Detect outlier volumes and despike the voxels in a mask.

    Parameters
    ----------
    volumes : NDArray or sequence of NDArray
        Data of shape (x, y, z, t), or t volumes of shape (x, y, z).  Not modified.
    mask : NDArray
        Voxels to process, shape (x, y, z).  Nonzero values are in the mask.
    options : DespikeOptions, optional
        Settings.  Defaults are used if None.

    Returns
    -------
    despiked : NDArray
        float64 array of shape (x, y, z, t).  Equal to the input outside the
        mask, and everywhere if no outlier volume was found.
    report : DespikeReport
        What was found and done.

    Raises
    ------
    ConfigurationError
        For invalid options, or if the statistics routines are unavailable.
    InputShapeError
        If the mask does not match the data, or the data is not 4D.
    """
    if options is None:
        options = DespikeOptions()
    options.validate()
    volumedata = qc_util.asvolumeseries(volumes)
    xsize, ysize, numslices, numtimepoints = volumedata.shape
    themask = np.asarray(mask)
    if themask.shape != (xsize, ysize, numslices):
        raise InputShapeError(
            "mask does not match the spatial dimensions of the data",
            expected=(xsize, ysize, numslices),
            found=themask.shape,
        )
    themask = themask > 0
    if options.window is not None:
        suppliedwindow = resolvewindow(options.window, numtimepoints, options.clampwindow)
    else:
        suppliedwindow = None

    # these fail early if the distributions are unavailable
    alpha = qc_stats.bonferronialpha(numtimepoints, pthresh=options.pthresh)
    volumethresh = qc_stats.volumethreshold(0.975, 1)

    numspatiallocs = xsize * ysize * numslices
    fmri_data = volumedata.reshape((numspatiallocs, numtimepoints))
    maskflat = themask.reshape(numspatiallocs)
    nummaskvoxels = qc_stats.getmasksize(maskflat)
    despiked_data = np.array(fmri_data, dtype=np.float64, copy=True)
    LGR.info(
        f"despiking {nummaskvoxels} voxels with {numtimepoints} timepoints ({alpha=:.3f}, {volumethresh=:.3f})"
    )
    if nummaskvoxels == 0:
        LGR.warning("mask is empty - nothing to despike")

    # find outlying voxels and outlier volumes
    outlierflags = np.zeros((numspatiallocs, numtimepoints), dtype=bool)
    stageafailed = np.zeros(numspatiallocs, dtype=bool)
    if nummaskvoxels > 0:
        qc_genericmultiproc.run_multiproc(
            _procOneVoxelOutliers,
            _packvoxeldata,
            _unpackoutlierdata,
            [fmri_data, alpha],
            [outlierflags, stageafailed],
            fmri_data.shape,
            maskflat,
            LGR,
            options.nprocs,
            options.alwaysmultiproc,
            options.showprogressbar,
            options.chunksize,
            usethreads=options.usethreads,
            stage="outlier detection",
            debug=options.debug,
            detrendorder=options.detrendorder,
        )
    qc_util.timingmessage("Outlier detection done", nummaskvoxels, "voxels")
    outlyingvoxels = qc_stats.percentof(np.sum(outlierflags, axis=0), nummaskvoxels)
    if nummaskvoxels > 0:
        outliervolumes = flagoutliervolumes(outlyingvoxels, volumethresh)
    else:
        outliervolumes = np.zeros(numtimepoints, dtype=bool)
    LGR.info(f"{np.count_nonzero(outliervolumes)} outlier volumes found")
    if options.debug:
        print(f"{outlyingvoxels=}")
        print(f"{outliervolumes=}")

    classification = np.zeros((numspatiallocs, numtimepoints), dtype=bool)
    failed = stageafailed.copy()
    thewindow = suppliedwindow
    windowestimated = False
    if np.any(outliervolumes):
        usable = np.logical_and(maskflat, np.logical_not(stageafailed))
        if thewindow is None:
            thewindow = resolvewindow(
                qc_corr.estimatedespikewindow(fmri_data[usable, :], debug=options.debug),
                numtimepoints,
                options.clampwindow,
            )
            windowestimated = True
            LGR.info(f"estimated despike window: {thewindow} timepoints")
        stagebfailed = np.zeros(numspatiallocs, dtype=bool)
        qc_genericmultiproc.run_multiproc(
            _procOneVoxelDespike,
            _packvoxeldata,
            _unpackdespikedata,
            [fmri_data],
            [despiked_data, classification, stagebfailed],
            fmri_data.shape,
            usable,
            LGR,
            options.nprocs,
            options.alwaysmultiproc,
            options.showprogressbar,
            options.chunksize,
            usethreads=options.usethreads,
            stage="despiking",
            debug=options.debug,
            window=thewindow,
            lowerthresh=options.lowerthresh,
            upperthresh=options.upperthresh,
        )
        failed = np.logical_or(failed, stagebfailed)
        qc_util.timingmessage("Despiking done", int(np.count_nonzero(usable)), "voxels")
    else:
        LGR.info("no outlier volumes - data left unchanged")

    numfailed = int(np.count_nonzero(failed))
    if numfailed > 0:
        ErrorLGR.warning(f"{numfailed} voxels contained non-finite values and were left unchanged")
    despikedvoxels = qc_stats.percentof(np.sum(classification, axis=0), nummaskvoxels)

    thereport = DespikeReport(
        outlyingvoxels=outlyingvoxels,
        outliervolumes=outliervolumes,
        despikedvoxels=despikedvoxels,
        classification=classification.reshape((xsize, ysize, numslices, numtimepoints)),
        window=thewindow,
        windowestimated=windowestimated,
        nummaskvoxels=nummaskvoxels,
        failedvoxels=numfailed,
        alpha=alpha,
        volumethresh=volumethresh,
        options={
            "method": options.method,
            "lowerthresh": options.lowerthresh,
            "upperthresh": options.upperthresh,
            "detrendorder": options.detrendorder,
            "pthresh": options.pthresh,
            "clampwindow": options.clampwindow,
        },
    )
    LGR.info(f"{thereport.numdespiked()} voxel timepoints despiked")
    return despiked_data.reshape((xsize, ysize, numslices, numtimepoints)), thereport


def writedespikereport(
    thereport: DespikeReport,
    outputroot: str,
    header: Any = None,
    samplerate: float = 1.0,
) -> None:
    """
    Save a despiking report next to the despiked data.

    Writes ``<outputroot>_desc-despike_info.json`` (summary),
    ``<outputroot>_desc-despike_timeseries.tsv`` (per timepoint percentages and
    volume flags, with a json sidecar) and the classification map, as
    ``<outputroot>_desc-despike_mask.nii.gz`` if a nifti header is given, or
    ``<outputroot>_desc-despike_mask.npy`` otherwise.

    Parameters
    ----------
    thereport : DespikeReport
        The report.
    outputroot : str
        Prefix for all output files.
    header : nifti header, optional
        Geometry for the classification map.
    samplerate : float, optional
        Sampling rate of the data in Hz, recorded in the tsv sidecar.
    """
    qc_io.writedicttojson(thereport.todict(), outputroot + "_desc-despike_info.json")
    qc_io.writebidstsv(
        outputroot + "_desc-despike_timeseries",
        np.vstack(
            (
                thereport.outlyingvoxels,
                thereport.outliervolumes.astype(np.float64),
                thereport.despikedvoxels,
            )
        ),
        samplerate,
        columns=["outlyingvoxels", "outliervolume", "despikedvoxels"],
        yaxislabel="percent of mask voxels",
    )
    if header is not None:
        qc_io.savetonifti(
            thereport.classification.astype(np.uint8), header, outputroot + "_desc-despike_mask"
        )
    else:
        np.save(outputroot + "_desc-despike_mask.npy", thereport.classification)
