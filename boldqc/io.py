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
import json
import logging
import os
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

import nibabel as nib
import numpy as np
import pandas as pd
from numpy.typing import NDArray

from boldqc.errors import InputShapeError

LGR = logging.getLogger("GENERAL")


def readfromnifti(
    inputfile: str, headeronly: bool = False
) -> Tuple[Any, Optional[NDArray], Any, NDArray, NDArray]:
    """
    Open a nifti file and read in the various important parts

    Parameters
    ----------
    inputfile : str
        The name of the nifti file.  Can be provided with or without file extension
        (.nii or .nii.gz).
    headeronly : bool, optional
        If True, only read the header without loading data.  Default is False.

    Returns
    -------
    tuple
        ``(nim, nim_data, nim_hdr, thedims, thesizes)``: the nibabel image, the data
        (None if `headeronly`), a copy of the header, and the ``dim`` and ``pixdim``
        header fields.

    Raises
    ------
    FileNotFoundError
        If no file matches `inputfile`.

    Examples
    --------
    >>> nim, data, hdr, dims, sizes = readfromnifti('my_image')
    >>> nim, data, hdr, dims, sizes = readfromnifti('my_image.nii.gz', headeronly=True)
    """
    if os.path.isfile(inputfile):
        inputfilename = inputfile
    elif os.path.isfile(f"{inputfile}.nii.gz"):
        inputfilename = f"{inputfile}.nii.gz"
    elif os.path.isfile(f"{inputfile}.nii"):
        inputfilename = f"{inputfile}.nii"
    else:
        raise FileNotFoundError(f"nifti file {inputfile} does not exist")
    nim = nib.load(inputfilename)
    if headeronly:
        nim_data = None
    else:
        nim_data = nim.get_fdata()
    nim_hdr = nim.header.copy()
    thedims = nim_hdr["dim"].copy()
    thesizes = nim_hdr["pixdim"].copy()
    return nim, nim_data, nim_hdr, thedims, thesizes


def parseniftidims(thedims: NDArray) -> Tuple[int, int, int, int]:
    """
    Split the nifti ``dim`` field into its spatial and temporal components.

    Examples
    --------
    >>> dims = np.array([4, 64, 64, 32, 100, 1, 1, 1])
    >>> parseniftidims(dims)
    (64, 64, 32, 100)
    """
    return int(thedims[1]), int(thedims[2]), int(thedims[3]), int(thedims[4])


def checkspacedimmatch(dims1: NDArray, dims2: NDArray, verbose: bool = False) -> bool:
    """
    Check that two nifti ``dim`` fields describe the same spatial grid.

    Returns
    -------
    bool
        True if dimensions 1-3 match.
    """
    for i in range(1, 4):
        if dims1[i] != dims2[i]:
            if verbose:
                LGR.info(f"File spatial voxels do not match: dimension {i}: {dims1[i]} != {dims2[i]}")
            return False
    return True


def checktimematch(dims1: NDArray, dims2: NDArray, verbose: bool = False) -> bool:
    """Check that two nifti ``dim`` fields have the same number of timepoints."""
    if dims1[4] != dims2[4]:
        if verbose:
            LGR.info(f"File numbers of timepoints do not match: {dims1[4]} != {dims2[4]}")
        return False
    return True


def niftisplitext(filename: str) -> Tuple[str, str]:
    """
    Split nifti filename into name base and extension.

    Examples
    --------
    >>> niftisplitext('image.nii.gz')
    ('image', '.nii.gz')
    >>> niftisplitext('data.nii')
    ('data', '.nii')
    """
    firstsplit = os.path.splitext(filename)
    secondsplit = os.path.splitext(firstsplit[0])
    if secondsplit[1] != "":
        return secondsplit[0], secondsplit[1] + firstsplit[1]
    else:
        return firstsplit[0], firstsplit[1]


def prefixedname(filename: str, prefix: str, outputdir: Optional[str] = None) -> str:
    """
    Build an output file root by prefixing the base name of `filename`.

    The extension is dropped, since :func:`savetonifti` appends its own.

    Examples
    --------
    >>> prefixedname('/data/sub-01_bold.nii.gz', 'despiked_')
    '/data/despiked_sub-01_bold'
    >>> prefixedname('/data/sub-01_bold.nii.gz', 'despiked_', outputdir='/out')
    '/out/despiked_sub-01_bold'
    """
    thedir, thename = os.path.split(filename)
    theroot, theext = niftisplitext(thename)
    if outputdir is not None:
        thedir = outputdir
    return os.path.join(thedir, prefix + theroot)


def savetonifti(thearray: NDArray, theheader: Any, thename: str, debug: bool = False) -> None:
    """
    Save a data array out to a nifti file

    Parameters
    ----------
    thearray : array-like
        The data array to save.  Boolean arrays are stored as uint8.
    theheader : nifti header
        A valid nifti header.  It is copied, never modified.
    thename : str
        The name of the nifti file to save, without extension.  ``.nii.gz`` is
        appended for NIFTI-1 headers, ``.nii`` for NIFTI-2.
    debug : bool, optional
        Enable debug output.  Default is False.
    """
    if thearray.dtype == np.bool_:
        thearray = thearray.astype(np.uint8)
    outputheader = theheader.copy()
    outputaffine = outputheader.get_best_affine()
    qaffine, qcode = outputheader.get_qform(coded=True)
    saffine, scode = outputheader.get_sform(coded=True)
    outputheader.set_data_shape(thearray.shape)
    outputheader.set_data_dtype(thearray.dtype)
    if debug:
        print(f"savetonifti: {thename}, {thearray.shape=}, {thearray.dtype=}")

    if outputheader["magic"] == b"n+2":
        output_nifti = nib.Nifti2Image(thearray, outputaffine, header=outputheader)
        suffix = ".nii"
    else:
        output_nifti = nib.Nifti1Image(thearray, outputaffine, header=outputheader)
        suffix = ".nii.gz"
    if qaffine is not None:
        output_nifti.set_qform(qaffine, code=int(qcode))
    if saffine is not None:
        output_nifti.set_sform(saffine, code=int(scode))

    output_nifti.to_filename(thename + suffix)


def niftihdrfromarray(data: NDArray, voxelsizes: Optional[Sequence[float]] = None) -> Any:
    """
    Make a NIFTI-1 header with an identity (or voxel size scaled) affine for `data`.

    Useful when arrays that never came from a file have to be written out.
    """
    affine = np.eye(4)
    if voxelsizes is not None:
        for i in range(3):
            affine[i, i] = voxelsizes[i]
    return nib.Nifti1Image(data, affine).header.copy()


def readvolumeseries(
    inputfiles: Union[str, List[str]],
) -> Tuple[NDArray, Any, NDArray, NDArray]:
    """
    Read an fMRI time series from one 4D nifti file or from a list of 3D volumes.

    Parameters
    ----------
    inputfiles : str or list of str
        A 4D file, or one 3D file per timepoint, in temporal order.

    Returns
    -------
    tuple
        ``(data, header, dims, sizes)``, with `data` of shape (x, y, z, t) and the
        header, dims and sizes adjusted to describe the whole series.

    Raises
    ------
    InputShapeError
        If the data is not 3D/4D, or the volumes do not share spatial dimensions.
    """
    if isinstance(inputfiles, str):
        inputfiles = [inputfiles]
    if len(inputfiles) == 1:
        nim, nim_data, nim_hdr, thedims, thesizes = readfromnifti(inputfiles[0])
        if nim_data.ndim == 3:
            nim_data = nim_data[:, :, :, np.newaxis]
        elif nim_data.ndim != 4:
            raise InputShapeError(
                f"{inputfiles[0]} is not a 3D or 4D image", expected=4, found=nim_data.ndim
            )
        nim_hdr.set_data_shape(nim_data.shape)
        return nim_data, nim_hdr, nim_hdr["dim"].copy(), thesizes

    volumes = []
    firsthdr = None
    firstdims = None
    firstsizes = None
    for thefile in inputfiles:
        nim, nim_data, nim_hdr, thedims, thesizes = readfromnifti(thefile)
        if nim_data.ndim == 4 and nim_data.shape[3] == 1:
            nim_data = nim_data[:, :, :, 0]
        if nim_data.ndim != 3:
            raise InputShapeError(
                f"{thefile} is not a single 3D volume", expected=3, found=nim_data.ndim
            )
        if firstdims is None:
            firsthdr, firstdims, firstsizes = nim_hdr, thedims, thesizes
        elif not checkspacedimmatch(firstdims, thedims, verbose=True):
            raise InputShapeError(
                f"{thefile} does not match the spatial dimensions of {inputfiles[0]}",
                expected=tuple(firstdims[1:4]),
                found=tuple(thedims[1:4]),
            )
        volumes.append(nim_data)
    thedata = np.stack(volumes, axis=-1)
    firsthdr.set_data_shape(thedata.shape)
    return thedata, firsthdr, firsthdr["dim"].copy(), firstsizes


def savevolumeseries(
    thearray: NDArray,
    theheader: Any,
    outputnames: Union[str, List[str]],
    debug: bool = False,
) -> List[str]:
    """
    Write a 4D array either as one 4D file or as one 3D file per timepoint.

    Parameters
    ----------
    thearray : ndarray
        Data of shape (x, y, z, t).
    theheader : nifti header
        Header to take the geometry from.
    outputnames : str or list of str
        A single output root (4D output), or one output root per timepoint.

    Returns
    -------
    list of str
        The output roots written.
    """
    if isinstance(outputnames, str):
        savetonifti(thearray, theheader, outputnames, debug=debug)
        return [outputnames]
    if len(outputnames) != thearray.shape[3]:
        raise InputShapeError(
            "one output name is needed per timepoint",
            expected=thearray.shape[3],
            found=len(outputnames),
        )
    for i, thename in enumerate(outputnames):
        savetonifti(np.ascontiguousarray(thearray[:, :, :, i]), theheader, thename, debug=debug)
    return list(outputnames)


def _jsonable(theval: Any) -> Any:
    if isinstance(theval, np.bool_):
        return bool(theval)
    elif isinstance(theval, np.integer):
        return int(theval)
    elif isinstance(theval, np.floating):
        return float(theval)
    elif isinstance(theval, np.ndarray):
        return theval.tolist()
    elif isinstance(theval, dict):
        return {key: _jsonable(val) for key, val in theval.items()}
    elif isinstance(theval, (list, tuple)):
        return [_jsonable(val) for val in theval]
    else:
        return theval


def writedicttojson(thedict: Dict[str, Any], thefilename: str) -> None:
    """
    Write key-value pairs to a json file, converting numpy types on the way.

    Parameters
    ----------
    thedict : dict
        Dictionary to write.  numpy scalars become python scalars, arrays become
        (nested) lists.
    thefilename : str
        Output file name, including the extension.
    """
    thisdict = {}
    for key in thedict:
        thisdict[key] = _jsonable(thedict[key])
    with open(thefilename, "wb") as fp:
        fp.write(
            json.dumps(thisdict, sort_keys=True, indent=4, separators=(",", ":")).encode("utf-8")
        )


def readdictfromjson(inputfilename: str) -> Dict[str, Any]:
    """
    Read key value pairs out of a json file.

    The ".json" extension is added if missing.  A missing file gives an empty dict.
    """
    thefileroot, theext = os.path.splitext(inputfilename)
    if os.path.exists(thefileroot + ".json"):
        with open(thefileroot + ".json", "r") as json_data:
            d = json.load(json_data)
            return d
    else:
        LGR.warning(f"specified json file {thefileroot}.json does not exist")
        return {}


def writebidstsv(
    outputfileroot: str,
    data: NDArray,
    samplerate: float,
    columns: Optional[List[str]] = None,
    extraheaderinfo: Optional[Dict[str, Any]] = None,
    compressed: bool = False,
    xaxislabel: str = "time",
    yaxislabel: str = "arbitrary value",
    starttime: float = 0.0,
    colsintsv: bool = True,
) -> None:
    """
    Write columns of data to a BIDS style tsv file with a json sidecar.

    Parameters
    ----------
    outputfileroot : str
        Output name without extension; ``.tsv`` (or ``.tsv.gz``) and ``.json`` are added.
    data : ndarray
        Array of shape (ncolumns, npoints), or a single 1D column.
    samplerate : float
        Sampling frequency of the rows, in Hz.
    columns : list of str, optional
        Column names.  Defaults to ``col_00``, ``col_01``...
    extraheaderinfo : dict, optional
        Additional entries for the json sidecar.
    compressed : bool, optional
        Gzip the tsv.  Default is False.
    colsintsv : bool, optional
        Write the column names as the first row of the tsv.  Default is True.
    """
    if len(data.shape) == 1:
        reshapeddata = data.reshape((1, -1))
    else:
        reshapeddata = data
    if columns is None:
        columns = [f"col_{i:02d}" for i in range(reshapeddata.shape[0])]
    elif len(columns) != reshapeddata.shape[0]:
        raise InputShapeError(
            "number of column names does not match number of columns in data",
            expected=reshapeddata.shape[0],
            found=len(columns),
        )
    df = pd.DataFrame(data=np.transpose(reshapeddata), columns=columns)
    if compressed:
        df.to_csv(
            outputfileroot + ".tsv.gz", sep="\t", compression="gzip", header=colsintsv, index=False
        )
    else:
        df.to_csv(outputfileroot + ".tsv", sep="\t", compression=None, header=colsintsv, index=False)
    headerdict = {
        "SamplingFrequency": float(samplerate),
        "StartTime": float(starttime),
        "XAxisLabel": xaxislabel,
        "YAxisLabel": yaxislabel,
        "Columns": list(columns),
    }
    if extraheaderinfo is not None:
        headerdict.update(extraheaderinfo)
    writedicttojson(headerdict, outputfileroot + ".json")


def readbidstsv(inputfileroot: str) -> Tuple[float, float, List[str], NDArray]:
    """
    Read a file written by :func:`writebidstsv`.

    Returns
    -------
    tuple
        ``(samplerate, starttime, columns, data)`` with `data` of shape (ncolumns, npoints).
    """
    headerdict = readdictfromjson(inputfileroot + ".json")
    if not headerdict:
        raise FileNotFoundError(f"no json sidecar for {inputfileroot}")
    columns = headerdict["Columns"]
    if os.path.isfile(inputfileroot + ".tsv.gz"):
        thefile = inputfileroot + ".tsv.gz"
    else:
        thefile = inputfileroot + ".tsv"
    df = pd.read_csv(thefile, sep="\t", header=0, names=columns)
    return (
        float(headerdict["SamplingFrequency"]),
        float(headerdict["StartTime"]),
        columns,
        np.transpose(df.to_numpy()),
    )
