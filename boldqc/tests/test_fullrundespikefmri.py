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
from unittest import mock

import nibabel as nib
import numpy as np
import pytest

import boldqc.io as qc_io
import boldqc.workflows.despikefmri as despikefmri_workflow
import boldqc.workflows.parser_funcs as pf
from boldqc.errors import DataError, InputShapeError
from boldqc.tests.utils import create_dir, spikedata, writenifti

SPIKELOC = (1, 2, 1)
SPIKETIME = 10
SIGMA = np.sqrt(np.pi / 2.0) * 0.2


def _rundespikefmri(inputargs):
    pf.generic_init(
        despikefmri_workflow._get_parser, despikefmri_workflow.despikefmri, inputargs=inputargs
    )


def fullrun_4d(testtemproot, debug=False):
    inputdata = spikedata()
    inputname = writenifti(inputdata, os.path.join(testtemproot, "sub-01_bold.nii.gz"))
    maskname = writenifti(
        np.ones(inputdata.shape[:3], dtype=np.uint8), os.path.join(testtemproot, "mask.nii.gz")
    )
    outputdir = os.path.join(testtemproot, "derivatives")
    _rundespikefmri(
        [inputname, "--maskfile", maskname, "--outputdir", outputdir, "--noprogressbar"]
    )

    outputroot = os.path.join(outputdir, "despiked_sub-01_bold")
    for thesuffix in [
        ".nii.gz",
        "_desc-despike_info.json",
        "_desc-despike_timeseries.tsv",
        "_desc-despike_timeseries.json",
        "_desc-despike_mask.nii.gz",
        "_desc-runoptions_info.json",
        "_commandline.txt",
        "_log.txt",
        "_runtimings.tsv",
    ]:
        assert os.path.isfile(outputroot + thesuffix), f"{outputroot + thesuffix} is missing"
    assert not os.path.isfile(outputroot + "_desc-automask_mask.nii.gz")

    despiked = nib.load(outputroot + ".nii.gz").get_fdata()
    assert despiked.shape == inputdata.shape
    newvalue = despiked[SPIKELOC + (SPIKETIME,)]
    assert 99.9 < newvalue <= 99.9 + 4.0 * SIGMA + 1.0e-6
    despiked[SPIKELOC + (SPIKETIME,)] = inputdata[SPIKELOC + (SPIKETIME,)]
    assert np.allclose(despiked, inputdata)

    info = qc_io.readdictfromjson(outputroot + "_desc-despike_info.json")
    if debug:
        print(info)
    assert info["OutlierVolumes"] == [SPIKETIME]
    assert info["NumDespiked"] == 1
    assert info["NumMaskVoxels"] == 64
    assert info["Window"] == 3
    assert info["WindowEstimated"]

    # TR is 2 seconds
    samplerate, starttime, columns, thetimecourses = qc_io.readbidstsv(
        outputroot + "_desc-despike_timeseries"
    )
    assert samplerate == pytest.approx(0.5)
    assert thetimecourses[1, SPIKETIME] == 1.0

    # split output, with a fixed window
    _rundespikefmri(
        [
            inputname,
            "--maskfile",
            maskname,
            "--outputdir",
            outputdir,
            "--prefix",
            "split_",
            "--splitoutput",
            "--window",
            "3",
            "--noprogressbar",
        ]
    )
    for i in range(inputdata.shape[3]):
        thevolume = nib.load(os.path.join(outputdir, f"split_sub-01_bold_{i:04d}.nii.gz"))
        assert thevolume.shape == inputdata.shape[:3]
    assert not qc_io.readdictfromjson(
        os.path.join(outputdir, "split_sub-01_bold_desc-despike_info.json")
    )["WindowEstimated"]


def fullrun_volumelist(testtemproot, debug=False):
    inputdata = spikedata()
    inputnames = [
        writenifti(inputdata[:, :, :, i], os.path.join(testtemproot, f"vol_{i:02d}.nii.gz"))
        for i in range(inputdata.shape[3])
    ]
    maskname = writenifti(
        np.ones(inputdata.shape[:3], dtype=np.uint8), os.path.join(testtemproot, "mask.nii.gz")
    )
    _rundespikefmri(inputnames + ["--maskfile", maskname, "--noprogressbar", "--window", "3"])
    for i in range(inputdata.shape[3]):
        thevolume = nib.load(os.path.join(testtemproot, f"despiked_vol_{i:02d}.nii.gz")).get_fdata()
        if i == SPIKETIME:
            assert thevolume[SPIKELOC] < 100.0 + 4.0 * SIGMA
        else:
            assert np.allclose(thevolume, inputdata[:, :, :, i])
    assert os.path.isfile(os.path.join(testtemproot, "despiked_vol_00_desc-despike_info.json"))


def fullrun_automask(testtemproot, debug=False):
    # the spike dominates the intensity range, so the estimated mask is empty and nothing changes
    inputdata = spikedata()
    inputname = writenifti(inputdata, os.path.join(testtemproot, "sub-02_bold.nii.gz"))
    _rundespikefmri([inputname, "--noprogressbar"])
    outputroot = os.path.join(testtemproot, "despiked_sub-02_bold")
    themask = nib.load(outputroot + "_desc-automask_mask.nii.gz")
    assert themask.shape == inputdata.shape[:3]
    info = qc_io.readdictfromjson(outputroot + "_desc-despike_info.json")
    assert info["NumMaskVoxels"] == int(np.count_nonzero(np.asarray(themask.dataobj)))
    if info["NumMaskVoxels"] == 0:
        assert np.allclose(nib.load(outputroot + ".nii.gz").get_fdata(), inputdata)


def fullrun_errors(testtemproot, debug=False):
    inputdata = spikedata()
    inputname = writenifti(inputdata, os.path.join(testtemproot, "sub-03_bold.nii.gz"))
    badmaskname = writenifti(
        np.ones((3, 4, 4), dtype=np.uint8), os.path.join(testtemproot, "badmask.nii.gz")
    )
    outputroot = os.path.join(testtemproot, "despiked_sub-03_bold")
    with pytest.raises(InputShapeError):
        _rundespikefmri([inputname, "--maskfile", badmaskname, "--noprogressbar"])
    with open(outputroot + "_errors.txt", "r") as fp:
        assert "despikefmri failed" in fp.read()
    assert not os.path.isfile(outputroot + ".nii.gz")

    # failures inside the despiker are logged and passed on
    with mock.patch(
        "boldqc.despike.despike", side_effect=DataError("bad data", stage="despiking")
    ) as mocked:
        with pytest.raises(DataError):
            _rundespikefmri([inputname, "--noprogressbar"])
        mocked.assert_called_once()
    with open(outputroot + "_errors.txt", "r") as fp:
        assert "bad data" in fp.read()

    # bad options are rejected before anything is read
    with pytest.raises(SystemExit):
        _rundespikefmri([inputname, "--detrendorder", "-1"])


def test_fullrundespikefmri(tmp_path, debug=False):
    for thesubdir in ["fourd", "volumes", "automask", "errors"]:
        create_dir(os.path.join(tmp_path, thesubdir))
    fullrun_4d(os.path.join(tmp_path, "fourd"), debug=debug)
    fullrun_volumelist(os.path.join(tmp_path, "volumes"), debug=debug)
    fullrun_automask(os.path.join(tmp_path, "automask"), debug=debug)
    fullrun_errors(os.path.join(tmp_path, "errors"), debug=debug)
