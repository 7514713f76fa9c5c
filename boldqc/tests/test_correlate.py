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

import boldqc.correlate as qc_corr


def test_autocovariance(debug=False):
    rng = np.random.default_rng(9)
    thetc = rng.normal(0.0, 1.0, 50)
    acov = qc_corr.autocovariance(thetc)
    assert len(acov) == 50
    assert acov[0] == 1.0 or np.isclose(acov[0], 1.0)
    assert np.all(np.fabs(acov) <= 1.0 + 1.0e-12)

    # matches the direct sum
    demeaned = thetc - np.mean(thetc)
    direct = np.array([np.sum(demeaned[: 50 - k] * demeaned[k:]) for k in range(50)]) / 50
    assert np.allclose(qc_corr.autocovariance(thetc, normalize=False), direct)

    # constant input has no structure
    assert np.array_equal(qc_corr.autocovariance(np.full(10, 2.0)), np.zeros(10))
    if debug:
        print(acov[:5])


def test_estimatedespikewindow(debug=False):
    t = np.arange(64)
    sinusoid = np.sin(2.0 * np.pi * t / 8.0)
    assert qc_corr.estimatedespikewindow(sinusoid, debug=debug) == 8

    # the period of an alternating series is below the floor
    alternating = 100.0 + 0.1 * np.power(-1.0, np.arange(20))
    assert qc_corr.estimatedespikewindow(alternating) == 3

    # nothing usable
    assert qc_corr.estimatedespikewindow(np.full((4, 20), 5.0)) == 3

    # rows are averaged, rows with NaNs and flat rows are skipped
    tcarray = np.vstack((sinusoid, sinusoid, np.full(64, np.nan), np.zeros(64)))
    meanacov, numused = qc_corr.meanautocovariance(tcarray)
    assert numused == 2
    assert qc_corr.estimatedespikewindow(tcarray) == 8


if __name__ == "__main__":
    test_autocovariance(debug=True)
    test_estimatedespikewindow(debug=True)
