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
import pytest

import boldqc.genericmultiproc as qc_genericmultiproc
import boldqc.multiproc as qc_multiproc
from boldqc.errors import DataError, InputShapeError, VoxelProcessingError


def _procOneRow(vox, voxelargs, debug=False, scale=1.0, failat=None):
    (therow,) = voxelargs
    if failat is not None and vox == failat:
        raise ZeroDivisionError("bad row")
    return vox, scale * np.sum(therow)


def _procOneRowDataError(vox, voxelargs, debug=False):
    raise DataError("unusable row", voxel=vox, stage="summing")


def _packrow(vox, voxelargs):
    return [voxelargs[0][vox, :]]


def _unpackrow(retvals, voxelproducts):
    voxelproducts[0][retvals[0]] = retvals[1]


def _runrows(thedata, themask, **kwargs):
    thesums = np.zeros(thedata.shape[0], dtype=np.float64)
    numdone = qc_genericmultiproc.run_multiproc(
        kwargs.pop("voxelfunc", _procOneRow),
        _packrow,
        _unpackrow,
        [thedata],
        [thesums],
        thedata.shape,
        themask,
        None,
        kwargs.pop("nprocs", 1),
        kwargs.pop("alwaysmultiproc", False),
        False,
        kwargs.pop("chunksize", 7),
        stage="summing",
        **kwargs,
    )
    return numdone, thesums


def eval_agreement(debug=False):
    if debug:
        print("eval_agreement")
    rng = np.random.default_rng(11)
    thedata = rng.normal(0.0, 1.0, (50, 12))
    themask = np.ones(50, dtype=np.int64)
    themask[::4] = 0
    expected = np.where(themask > 0, 2.0 * np.sum(thedata, axis=1), 0.0)

    for nprocs, alwaysmultiproc, usethreads in [
        (1, False, False),
        (1, True, False),
        (3, False, False),
        (3, False, True),
    ]:
        numdone, thesums = _runrows(
            thedata,
            themask,
            nprocs=nprocs,
            alwaysmultiproc=alwaysmultiproc,
            usethreads=usethreads,
            scale=2.0,
        )
        if debug:
            print(nprocs, alwaysmultiproc, usethreads, numdone)
        assert numdone == np.count_nonzero(themask)
        assert np.allclose(thesums, expected)


def eval_failures(debug=False):
    if debug:
        print("eval_failures")
    thedata = np.ones((20, 5))
    themask = np.ones(20)

    # unexpected worker exceptions are reported with the failing item
    for nprocs, usethreads in [(1, False), (2, False), (2, True)]:
        with pytest.raises(VoxelProcessingError) as excinfo:
            _runrows(thedata, themask, nprocs=nprocs, usethreads=usethreads, failat=13)
        assert excinfo.value.index == 13
        assert excinfo.value.stage == "summing"
        assert "ZeroDivisionError" in excinfo.value.reason

    # boldqc errors pass through unchanged when running serially
    with pytest.raises(DataError):
        _runrows(thedata, themask, voxelfunc=_procOneRowDataError)

    # a mask that does not match the data is caught before any worker starts
    with pytest.raises(InputShapeError):
        _runrows(thedata, np.ones(19), nprocs=2)
    with pytest.raises(InputShapeError):
        _runrows(thedata, np.ones(19), nprocs=2, usethreads=True)


def eval_chunking(debug=False):
    if debug:
        print("eval_chunking")
    assert qc_multiproc.maxcpus() >= 1
    assert qc_multiproc.maxcpus(reservecpu=False) >= qc_multiproc.maxcpus()

    thedata = np.arange(30.0).reshape((10, 3))
    for chunksize in [1, 3, 10, 100]:
        numdone, thesums = _runrows(
            thedata, np.ones(10), nprocs=2, usethreads=True, chunksize=chunksize
        )
        assert numdone == 10
        assert np.allclose(thesums, np.sum(thedata, axis=1))


def test_multiproc(debug=False):
    eval_agreement(debug=debug)
    eval_failures(debug=debug)
    eval_chunking(debug=debug)


if __name__ == "__main__":
    test_multiproc(debug=True)
