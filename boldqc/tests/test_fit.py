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
import numpy as np

import boldqc.fit as qc_fit


def test_trendgen(debug=False):
    thexvals = np.linspace(-5.0, 5.0, 11)
    thecoffs = np.array([0.5, -2.0, 3.0])
    withmean = qc_fit.trendgen(thexvals, thecoffs, True)
    withoutmean = qc_fit.trendgen(thexvals, thecoffs, False)
    assert np.allclose(withmean, 0.5 * thexvals**2 - 2.0 * thexvals + 3.0)
    assert np.allclose(withmean - withoutmean, 3.0)
    if debug:
        print(withmean)


def test_detrend(debug=False):
    npts = 40
    t = np.arange(npts, dtype=np.float64)
    rng = np.random.default_rng(5)
    noise = rng.normal(0.0, 1.0, npts)

    # polynomial trends of up to the fit order are removed entirely
    for order in range(4):
        thetrend = np.full(npts, 7.0)
        for i in range(1, order + 1):
            thetrend += 0.1 * (i + 1) * (t / npts) ** i
        assert np.allclose(qc_fit.detrend(thetrend, order=order, demean=True), 0.0)
        if debug:
            print(order, np.max(np.fabs(qc_fit.detrend(thetrend, order=order, demean=True))))

    # the residual of a quadratic fit to noise is orthogonal to the trend terms
    resid = qc_fit.detrend(noise + 0.01 * t**2, order=2, demean=True)
    thetimepoints = t - npts / 2.0
    for i in range(3):
        assert abs(np.dot(resid, thetimepoints**i)) < 1.0e-6 * npts ** (i + 1)

    # without demean the constant term stays
    ramp = 10.0 + t[:5]
    assert np.allclose(qc_fit.detrend(ramp, order=1, demean=False), 12.5)

    # constant data, and data too short to fit
    assert np.allclose(qc_fit.detrend(np.full(20, 4.0), order=2, demean=True), 0.0)
    assert np.allclose(qc_fit.detrend(np.array([5.0]), order=2, demean=True), 0.0)
    assert np.allclose(qc_fit.detrend(np.array([5.0, 7.0]), order=2, demean=False), [5.0, 7.0])

    # the input is not modified
    saved = noise.copy()
    qc_fit.detrend(noise, order=2, demean=True)
    assert np.array_equal(noise, saved)


if __name__ == "__main__":
    test_trendgen(debug=True)
    test_detrend(debug=True)
