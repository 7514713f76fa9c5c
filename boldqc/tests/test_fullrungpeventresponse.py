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
import os

import numpy as np
import pytest

import boldqc.eventresponse as qc_event
import boldqc.io as qc_io
import boldqc.workflows.gpeventresponse as gpeventresponse_workflow
import boldqc.workflows.parser_funcs as pf
from boldqc.errors import InputShapeError
from boldqc.tests.utils import writenifti


def _rungpeventresponse(inputargs):
    pf.generic_init(
        gpeventresponse_workflow._get_parser,
        gpeventresponse_workflow.gpeventresponse,
        inputargs=inputargs,
    )


def makeinputs(testtemproot, numsubjects=8):
    numtimepoints = 16
    t = np.arange(numtimepoints) * 0.5
    thebf = np.zeros((numtimepoints, 2))
    thebf[:, 0] = (t / 2.0) * np.exp(-t / 2.0)
    thebf[:, 1] = np.gradient(thebf[:, 0])
    basisfile = os.path.join(testtemproot, "basis.txt")
    np.savetxt(basisfile, thebf)

    # one image per subject per condition, with the first basis function weight at voxel (2, 3, 1)
    rng = np.random.default_rng(31)
    imagefiles = []
    weights = []
    for condition, level in [("faces", 3.0), ("houses", 1.0)]:
        for subject in range(numsubjects):
            thevol = np.zeros((5, 5, 5))
            thevol[2, 3, 1] = level + rng.normal(0.0, 0.2)
            weights.append(thevol[2, 3, 1])
            imagefiles.append(
                writenifti(thevol, os.path.join(testtemproot, f"beta_{condition}_{subject:02d}.nii.gz"))
            )
    return basisfile, thebf, imagefiles, np.array(weights)


def test_fullrungpeventresponse(tmp_path, debug=False):
    basisfile, thebf, imagefiles, weights = makeinputs(tmp_path)
    outputroot = os.path.join(tmp_path, "group", "faceshouses")
    _rungpeventresponse(
        [
            basisfile,
            outputroot,
            "--images",
            *imagefiles,
            "--conditions",
            "faces",
            "houses",
            "--coordinate",
            "2,3,1",
            "--space",
            "voxel",
            "--dt",
            "0.5",
            "--numboot",
            "99",
            "--seed",
            "5",
        ]
    )

    info = qc_io.readdictfromjson(outputroot + "_desc-eventresponse_info.json")
    if debug:
        print(info)
    assert info["ConditionNames"] == ["faces", "houses"]
    assert info["NumImages"] == 16
    assert info["CoordinateSpace"] == "voxel"
    assert np.allclose(info["times"], np.arange(16) * 0.5)

    for label in ["eventresponse", "adjustedeventresponse"]:
        samplerate, starttime, columns, thedata = qc_io.readbidstsv(
            f"{outputroot}_desc-{label}_timeseries"
        )
        assert samplerate == pytest.approx(2.0)
        assert columns == [
            "faces_mean",
            "faces_cilow",
            "faces_cihigh",
            "houses_mean",
            "houses_cilow",
            "houses_cihigh",
        ]
        assert thedata.shape == (6, 16)
        assert np.allclose(thedata[0], np.mean(weights[:8]) * thebf[:, 0])
        assert np.allclose(thedata[3], np.mean(weights[8:]) * thebf[:, 0])
        assert np.all(thedata[1] <= thedata[2])

    # mm coordinates of the same voxel give the same answer; writenifti uses 2mm voxels
    _rungpeventresponse(
        [
            basisfile,
            outputroot + "_mm",
            "--images",
            *imagefiles,
            "--conditions",
            "faces",
            "houses",
            "--coordinate",
            "4,6,2",
            "--numboot",
            "99",
            "--seed",
            "5",
        ]
    )
    samplerate, starttime, columns, mmdata = qc_io.readbidstsv(
        outputroot + "_mm_desc-eventresponse_timeseries"
    )
    assert samplerate == 1.0
    assert np.allclose(mmdata[0], thedata[0])

    # boosted estimates: the adjusted responses follow the canonical response at each time to peak
    timetopeakfiles = []
    for i in range(len(imagefiles)):
        thevol = np.zeros((5, 5, 5))
        thevol[2, 3, 1] = 5.0 if i < 8 else 7.0
        timetopeakfiles.append(writenifti(thevol, os.path.join(tmp_path, f"t2p_{i:02d}.nii.gz")))
    _rungpeventresponse(
        [
            basisfile,
            outputroot + "_boost",
            "--images",
            *imagefiles,
            "--conditions",
            "faces",
            "houses",
            "--coordinate",
            "2,3,1",
            "--space",
            "voxel",
            "--dt",
            "0.5",
            "--timetopeak",
            *timetopeakfiles,
            "--numboot",
            "99",
            "--seed",
            "5",
        ]
    )
    boostinfo = qc_io.readdictfromjson(outputroot + "_boost_desc-eventresponse_info.json")
    assert np.allclose(np.array(boostinfo["individual_time_to_peak"])[:, 0], [5.0] * 8 + [7.0] * 8)
    assert np.allclose(boostinfo["adjusted_average"][1]["time_to_peak"], [7.0])
    samplerate, starttime, columns, boostdata = qc_io.readbidstsv(
        outputroot + "_boost_desc-adjustedeventresponse_timeseries"
    )
    assert np.allclose(
        boostdata[0], np.mean(weights[:8]) * qc_event.canonicalhrf(0.5, 5.0, numpoints=16)
    )
    assert np.allclose(
        boostdata[3], np.mean(weights[8:]) * qc_event.canonicalhrf(0.5, 7.0, numpoints=16)
    )
    samplerate, starttime, columns, plaindata = qc_io.readbidstsv(
        outputroot + "_boost_desc-eventresponse_timeseries"
    )
    assert np.allclose(plaindata[0], thedata[0])

    # the images must split evenly over the conditions
    with pytest.raises(InputShapeError):
        _rungpeventresponse(
            [
                basisfile,
                outputroot + "_bad",
                "--images",
                *imagefiles[:15],
                "--conditions",
                "faces",
                "houses",
                "--coordinate",
                "2,3,1",
                "--space",
                "voxel",
            ]
        )
    with open(outputroot + "_bad_errors.txt", "r") as fp:
        assert "gpeventresponse failed" in fp.read()

    with pytest.raises(SystemExit):
        _rungpeventresponse(
            [basisfile, outputroot, "--images", *imagefiles, "--conditions", "faces", "--coordinate", "2,3"]
        )
