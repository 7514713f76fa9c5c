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
from typing import Any, Tuple

import numpy as np
from numpy.typing import ArrayLike, NDArray
from statsmodels.robust import mad

from boldqc.errors import ConfigurationError

LGR = logging.getLogger("GENERAL")

# MAD of a unit normal
MADNORMALIZER = 0.6745


def getdistributions() -> Tuple[Any, Any]:
    """
    Return the normal and chi-square distributions used for thresholding.

    The import happens here, so a broken scipy installation is reported as
    a configuration problem the first time a threshold is needed.

    Returns
    -------
    tuple
        ``(norm, chi2)`` from :mod:`scipy.stats`.

    Raises
    ------
    ConfigurationError
        If the distributions cannot be imported.
    """
    try:
        from scipy.stats import chi2, norm
    except ImportError as e:
        raise ConfigurationError(
            f"statistical distribution routines are unavailable: {e}"
        ) from e
    return norm, chi2


def bonferronialpha(numtimepoints: int, pthresh: float = 0.001) -> float:
    """
    Two-sided normal quantile for a Bonferroni corrected significance level.

    Parameters
    ----------
    numtimepoints : int
        Number of comparisons (timepoints).
    pthresh : float, optional
        Family wise p value.  Default is 0.001.

    Returns
    -------
    float
        ``norm.ppf(1 - (pthresh / numtimepoints) / 2)``

    Examples
    --------
    >>> round(bonferronialpha(1, pthresh=0.05), 3)
    1.96
    """
    if numtimepoints < 1:
        raise ConfigurationError(f"number of timepoints must be positive, not {numtimepoints}")
    if not (0.0 < pthresh < 1.0):
        raise ConfigurationError(f"pthresh must lie between 0 and 1, not {pthresh}")
    norm, chi2 = getdistributions()
    return float(norm.ppf(1.0 - (pthresh / numtimepoints) / 2.0))


def volumethreshold(quantile: float = 0.975, dof: int = 1) -> float:
    """Robust z threshold ``sqrt(chi2.ppf(quantile, dof))`` for flagging volumes."""
    norm, chi2 = getdistributions()
    return float(np.sqrt(chi2.ppf(quantile, dof)))


def rawmad(thedata: ArrayLike, axis: int = 0) -> NDArray | float:
    """Median absolute deviation about the median, without normal scaling."""
    return mad(np.asarray(thedata, dtype=np.float64), c=1.0, axis=axis)


def robustz(thedata: ArrayLike) -> NDArray:
    """
    Robust z scores, ``|x - median(x)| / (MAD(x) / 0.6745)``.

    When the MAD is zero every point that differs from the median gets an
    infinite score and every point equal to it gets 0.
    """
    thedata = np.asarray(thedata, dtype=np.float64)
    thedev = np.fabs(thedata - np.median(thedata))
    thescale = mad(thedata, c=MADNORMALIZER)
    if thescale > 0.0:
        return thedev / thescale
    return np.where(thedev > 0.0, np.inf, 0.0)


def getmasksize(themask: NDArray) -> int:
    """Number of nonzero voxels in a mask."""
    return int(np.count_nonzero(themask))


def percentof(thecounts: ArrayLike, thetotal: int) -> NDArray:
    """Express counts as a percentage of `thetotal` (0 if `thetotal` is 0)."""
    thecounts = np.asarray(thecounts, dtype=np.float64)
    if thetotal <= 0:
        return np.zeros_like(thecounts)
    return 100.0 * thecounts / thetotal
