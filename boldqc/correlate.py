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
from typing import Tuple

import numpy as np
from numpy.typing import NDArray
from scipy import signal

LGR = logging.getLogger("GENERAL")

MINDESPIKEWINDOW = 3


def autocovariance(timecourse: NDArray, normalize: bool = True) -> NDArray:
    """
    Biased autocovariance of a timecourse at lags 0 to N-1, computed with an FFT.

    Parameters
    ----------
    timecourse : NDArray
        1D timecourse.  The mean is removed first.
    normalize : bool, optional
        Divide by the lag 0 value so the result starts at 1.  A constant
        timecourse gives all zeros.  Default is True.

    Returns
    -------
    NDArray
        Autocovariance, same length as `timecourse`.
    """
    thedata = np.asarray(timecourse, dtype=np.float64)
    npts = len(thedata)
    thedata = thedata - np.mean(thedata)
    # zero pad to avoid circular wraparound
    thefft = np.fft.rfft(thedata, n=2 * npts)
    acov = np.fft.irfft(thefft * np.conj(thefft), n=2 * npts)[:npts].real / npts
    if normalize:
        if acov[0] > 0.0:
            acov = acov / acov[0]
        else:
            acov = np.zeros(npts, dtype=np.float64)
    return acov


def meanautocovariance(tcarray: NDArray) -> Tuple[NDArray, int]:
    """
    Average of the normalized autocovariance of every row of `tcarray`.

    Rows that are constant or contain NaNs do not contribute.

    Returns
    -------
    meanacov : NDArray
        Mean normalized autocovariance (all zeros if no row contributed).
    numused : int
        Number of rows averaged.
    """
    tcarray = np.atleast_2d(np.asarray(tcarray, dtype=np.float64))
    meanacov = np.zeros(tcarray.shape[1], dtype=np.float64)
    numused = 0
    for thetc in tcarray:
        if not np.all(np.isfinite(thetc)):
            continue
        theacov = autocovariance(thetc)
        if theacov[0] > 0.0:
            meanacov += theacov
            numused += 1
    if numused > 0:
        meanacov /= numused
    return meanacov, numused


def estimatedespikewindow(tcarray: NDArray, debug: bool = False) -> int:
    """
    Estimate a median filter length from the temporal autocorrelation of the data.

    The window is the lag of the first peak after lag 0 of the mean normalized
    autocovariance of the timecourses, which is the dominant period of slow
    structure in the data.  If there is no such peak the window is 3, and it is
    never less than 3.

    Parameters
    ----------
    tcarray : NDArray
        Timecourses, shape (numvoxels, numtimepoints), or a single 1D timecourse.
    debug : bool, optional
        Print intermediate values.

    Returns
    -------
    int
        The window length.

    Examples
    --------
    >>> t = np.arange(64)
    >>> estimatedespikewindow(np.sin(2.0 * np.pi * t / 8.0))
    8
    """
    meanacov, numused = meanautocovariance(tcarray)
    if numused == 0:
        LGR.debug("no usable timecourses for window estimation")
        return MINDESPIKEWINDOW
    peaklocs, peakprops = signal.find_peaks(meanacov[1:])
    if debug:
        print(f"estimatedespikewindow: {numused=}, {peaklocs=}")
    if len(peaklocs) == 0:
        thewindow = MINDESPIKEWINDOW
    else:
        thewindow = int(peaklocs[0]) + 1
    return max(thewindow, MINDESPIKEWINDOW)
