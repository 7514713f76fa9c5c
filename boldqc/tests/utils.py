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
Utility functions for testing boldqc.
"""
import os

import nibabel as nib
import numpy as np


def create_dir(thedir, debug=False):
    # create a directory if it doesn't exist
    try:
        os.makedirs(thedir)
        if debug:
            print(thedir, "created")
    except OSError:
        if debug:
            print(thedir, "exists")
        else:
            pass


def alternatingbaseline(shape=(4, 4, 4), numtimepoints=20, level=100.0, amplitude=0.1):
    """A 4D series where every voxel alternates about `level`."""
    thetc = level + amplitude * np.power(-1.0, np.arange(numtimepoints))
    return np.tile(thetc, shape + (1,)).astype(np.float64)


def spikedata(spikeloc=(1, 2, 1), spiketime=10, spikevalue=10000.0):
    """The alternating baseline with one huge spike in one voxel."""
    thedata = alternatingbaseline()
    thedata[spikeloc + (spiketime,)] = spikevalue
    return thedata


def writenifti(thedata, thefilename, tr=2.0, voxelsize=2.0):
    """Write an array to a nifti file with a simple scaled affine."""
    affine = np.diag([voxelsize, voxelsize, voxelsize, 1.0])
    theimage = nib.Nifti1Image(thedata, affine)
    if thedata.ndim == 4:
        theimage.header.set_zooms((voxelsize, voxelsize, voxelsize, tr))
        theimage.header.set_xyzt_units("mm", "sec")
    nib.save(theimage, thefilename)
    return thefilename
