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
import warnings
from typing import Any

import numpy as np
from numpy.polynomial import Polynomial
from numpy.typing import NDArray


def trendgen(
    thexvals: NDArray[np.floating[Any]], thefitcoffs: NDArray[np.floating[Any]], demean: bool
) -> NDArray[np.floating[Any]]:
    """
    Evaluate a polynomial trend.

    Parameters
    ----------
    thexvals : ndarray
        Points at which to evaluate the trend.
    thefitcoffs : ndarray
        Coefficients, highest power first.
    demean : bool
        Include the constant term.  With it, subtracting the trend also removes
        the mean; without it, the mean of the data survives detrending.

    Examples
    --------
    >>> trendgen(np.array([0.0, 1.0, 2.0]), np.array([2.0, 1.0]), True)
    array([1., 3., 5.])
    """
    theshape = thefitcoffs.shape
    order = theshape[0] - 1
    thepoly = thexvals
    thefit = 0.0 * thexvals
    if order > 0:
        for i in range(1, order + 1):
            thefit += thefitcoffs[order - i] * thepoly
            thepoly = np.multiply(thepoly, thexvals)
    if demean:
        thefit = thefit + thefitcoffs[order]
    return thefit


def detrend(
    inputdata: NDArray[np.floating[Any]], order: int = 1, demean: bool = False
) -> NDArray[np.floating[Any]]:
    """
    Remove a polynomial trend from a timecourse.

    Parameters
    ----------
    inputdata : ndarray
        1D timecourse.
    order : int, optional
        Polynomial order.  Default is 1.
    demean : bool, optional
        Remove the constant term as well.  Default is False.

    Returns
    -------
    ndarray
        Residuals about the fitted trend.

    Notes
    -----
    Time is centered, running from -N/2 to N/2 - 1, to keep the fit well
    conditioned.  If the fit is rank deficient (fewer points than
    coefficients) only the mean is removed, and only when `demean` is set.

    Examples
    --------
    >>> np.allclose(detrend(np.array([1.0, 2.0, 3.0, 4.0, 5.0]), order=1, demean=True), 0.0)
    True
    """
    inputdata = np.asarray(inputdata, dtype=np.float64)
    thetimepoints = np.arange(0.0, len(inputdata), 1.0) - len(inputdata) / 2.0
    if len(inputdata) <= order:
        thecoffs = np.array([0.0, np.mean(inputdata)])
    else:
        with warnings.catch_warnings():
            warnings.simplefilter("error", np.exceptions.RankWarning)
            try:
                thecoffs = Polynomial.fit(thetimepoints, inputdata, order).convert().coef[::-1]
            except np.exceptions.RankWarning:
                thecoffs = np.array([0.0, np.mean(inputdata)])
    # convert() drops trailing zero coefficients, so pad back to full order
    if len(thecoffs) < order + 1:
        thecoffs = np.concatenate((np.zeros(order + 1 - len(thecoffs)), thecoffs))
    thefittc = trendgen(thetimepoints, thecoffs, demean)
    return inputdata - thefittc
