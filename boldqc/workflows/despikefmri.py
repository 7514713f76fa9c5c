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
import argparse
import logging
import os
import time
from argparse import Namespace
from typing import List

import numpy as np

import boldqc.despike as qc_despike
import boldqc.io as qc_io
import boldqc.maskutil as qc_mask
import boldqc.util as qc_util
import boldqc.workflows.parser_funcs as pf
from boldqc.errors import BoldQCError, InputShapeError

from .utils import setup_logger

LGR = logging.getLogger("GENERAL")
ErrorLGR = logging.getLogger("ERROR")

DEFAULT_PREFIX = "despiked_"


def _get_parser() -> argparse.ArgumentParser:
    """
    Argument parser for despikefmri
    """
    parser = argparse.ArgumentParser(
        prog="despikefmri",
        description=(
            "Find outlier volumes in an fMRI dataset and, if there are any, suppress "
            "spikes in every voxel in the brain."
        ),
        allow_abbrev=False,
    )

    # Required arguments
    parser.add_argument(
        "inputfilenames",
        type=lambda x: pf.is_valid_file(parser, x),
        nargs="+",
        help="A 4D nifti file, or a list of 3D nifti files in temporal order.",
    )

    # Optional arguments
    parser.add_argument(
        "--outputdir",
        dest="outputdir",
        action="store",
        type=str,
        metavar="DIR",
        help="Write the output files to DIR.  Default is the directory of the first input file.",
        default=None,
    )
    parser.add_argument(
        "--prefix",
        dest="prefix",
        action="store",
        type=str,
        metavar="PREFIX",
        help=f"Prefix added to the input file names to name the outputs.  Default is {DEFAULT_PREFIX}.",
        default=DEFAULT_PREFIX,
    )
    parser.add_argument(
        "--splitoutput",
        dest="splitoutput",
        action="store_true",
        help="Write a 4D input back out as one 3D file per timepoint.",
        default=False,
    )

    mask_opts = parser.add_argument_group("Mask options")
    mask_opts.add_argument(
        "--maskfile",
        dest="maskfile",
        action="store",
        type=lambda x: pf.is_valid_file(parser, x),
        metavar="MASK",
        help="Only despike voxels in MASK.  By default a mask is estimated from the data.",
        default=None,
    )
    mask_opts.add_argument(
        "--maskthreshold",
        dest="maskthreshold",
        action="store",
        type=lambda x: pf.is_float(parser, x, minval=0.0, maxval=0.999999),
        metavar="FRAC",
        help="Threshold for the estimated mask, as a fraction of the intensity range.  Default is 0.2.",
        default=0.2,
    )

    despike_opts = parser.add_argument_group("Despiking options")
    despike_opts.add_argument(
        "--window",
        dest="window",
        action="store",
        type=lambda x: pf.is_int(parser, x),
        metavar="NPTS",
        help=(
            "Length of the moving median in timepoints.  Estimated from the autocorrelation "
            "of the data if not given or set to auto."
        ),
        default=None,
    )
    despike_opts.add_argument(
        "--noclampwindow",
        dest="clampwindow",
        action="store_false",
        help="Fail instead of raising a window shorter than 3 to 3.",
        default=True,
    )
    despike_opts.add_argument(
        "--lowerthresh",
        dest="lowerthresh",
        action="store",
        type=lambda x: pf.is_float(parser, x, minval=0.0),
        metavar="SIGMA",
        help="Residuals larger than SIGMA robust standard deviations are despiked.  Default is 2.5.",
        default=2.5,
    )
    despike_opts.add_argument(
        "--upperthresh",
        dest="upperthresh",
        action="store",
        type=lambda x: pf.is_float(parser, x, minval=0.0),
        metavar="SIGMA",
        help="Despiked residuals never exceed SIGMA robust standard deviations.  Default is 4.0.",
        default=4.0,
    )
    despike_opts.add_argument(
        "--detrendorder",
        dest="detrendorder",
        action="store",
        type=lambda x: pf.is_int(parser, x, minval=0),
        metavar="ORDER",
        help="Order of the polynomial removed before looking for outliers.  Default is 2.",
        default=2,
    )
    despike_opts.add_argument(
        "--pthresh",
        dest="pthresh",
        action="store",
        type=lambda x: pf.is_float(parser, x, minval=0.0, maxval=1.0),
        metavar="P",
        help="Family wise false positive rate for outlying timepoints.  Default is 0.001.",
        default=0.001,
    )
    pf.addparallelopts(parser, details=True)
    pf.addloggingopts(parser)
    pf.addversionopts(parser)
    return parser


def outputnames(
    inputfilenames: List[str],
    numtimepoints: int,
    prefix: str = DEFAULT_PREFIX,
    outputdir: str | None = None,
    splitoutput: bool = False,
) -> List[str] | str:
    """
    Names of the despiked output files, without extensions.

    A list of 3D inputs gives one prefixed name per input.  A 4D input gives a
    single prefixed name, or with `splitoutput` one name per timepoint ending
    in ``_<index>``.
    """
    if len(inputfilenames) > 1:
        return [qc_io.prefixedname(thename, prefix, outputdir=outputdir) for thename in inputfilenames]
    theroot = qc_io.prefixedname(inputfilenames[0], prefix, outputdir=outputdir)
    if splitoutput:
        return [f"{theroot}_{i:04d}" for i in range(numtimepoints)]
    return theroot


def despikefmri(args: Namespace) -> None:
    """Despike an fMRI dataset and write the despiked data and a report."""
    starttime = time.time()
    args = pf.postprocessparallelopts(args)
    if args.outputdir is None:
        args.outputdir = os.path.dirname(os.path.abspath(args.inputfilenames[0]))
    qc_util.makeadir(args.outputdir)
    outputroot = qc_io.prefixedname(args.inputfilenames[0], args.prefix, outputdir=args.outputdir)

    setup_logger(
        logger_filename=f"{outputroot}_log.txt",
        timing_filename=f"{outputroot}_runtimings.tsv",
        error_filename=f"{outputroot}_errors.txt",
        verbose=args.verbose,
        debug=args.debug,
    )
    qc_util.timingmessage("Start")

    runoptions = vars(args).copy()
    runoptions.update(qc_util.runinfo())
    qc_io.writedicttojson(runoptions, f"{outputroot}_desc-runoptions_info.json")
    qc_util.savecommandline(getattr(args, "commandline", "despikefmri").split(), outputroot)

    if args.window == "auto":
        args.window = None
    theoptions = qc_despike.DespikeOptions(
        window=args.window,
        clampwindow=args.clampwindow,
        lowerthresh=args.lowerthresh,
        upperthresh=args.upperthresh,
        detrendorder=args.detrendorder,
        pthresh=args.pthresh,
        nprocs=args.nprocs,
        alwaysmultiproc=args.alwaysmultiproc,
        usethreads=args.usethreads,
        showprogressbar=args.showprogressbar,
        chunksize=args.chunksize,
        debug=args.debug,
    )

    try:
        # check everything we can before starting any real work
        theoptions.validate()
        LGR.info(f"reading {len(args.inputfilenames)} input file(s)")
        fmri_data, fmri_header, fmri_dims, fmri_sizes = qc_io.readvolumeseries(
            args.inputfilenames
        )
        xsize, ysize, numslices, numtimepoints = qc_io.parseniftidims(fmri_dims)
        if len(args.inputfilenames) == 1 and numtimepoints < 2:
            raise InputShapeError(
                f"{args.inputfilenames[0]} contains a single volume", expected="4D", found="3D"
            )
        qc_util.timingmessage("Data read", numtimepoints, "timepoints")

        if args.maskfile is not None:
            LGR.info(f"reading mask {args.maskfile}")
            mask_img, mask_data, mask_hdr, mask_dims, mask_sizes = qc_io.readfromnifti(
                args.maskfile
            )
            if not qc_io.checkspacedimmatch(mask_dims, fmri_dims, verbose=True):
                raise InputShapeError(
                    "mask does not match the spatial dimensions of the data",
                    expected=(xsize, ysize, numslices),
                    found=tuple(mask_dims[1:4]),
                )
            themask = np.asarray(mask_data).reshape((xsize, ysize, numslices)) > 0
        else:
            LGR.info("estimating mask")
            themask = qc_mask.makeautomask(
                fmri_data,
                threshold=args.maskthreshold,
                nprocs=args.nprocs,
                alwaysmultiproc=args.alwaysmultiproc,
                showprogressbar=args.showprogressbar,
                chunksize=args.chunksize,
                usethreads=args.usethreads,
                debug=args.debug,
            )
            qc_io.savetonifti(
                themask.astype(np.uint8), fmri_header, f"{outputroot}_desc-automask_mask"
            )
        qc_util.timingmessage("Mask ready", int(np.count_nonzero(themask)), "voxels")

        despiked_data, thereport = qc_despike.despike(fmri_data, themask, theoptions)
    except BoldQCError as e:
        ErrorLGR.error(f"despikefmri failed: {e}")
        raise

    thenames = outputnames(
        args.inputfilenames,
        numtimepoints,
        prefix=args.prefix,
        outputdir=args.outputdir,
        splitoutput=args.splitoutput,
    )
    qc_io.savevolumeseries(despiked_data, fmri_header, thenames, debug=args.debug)

    tr = float(fmri_sizes[4])
    if fmri_header.get_xyzt_units()[1] == "msec":
        tr /= 1000.0
    samplerate = 1.0 / tr if tr > 0.0 else 1.0
    qc_despike.writedespikereport(thereport, outputroot, header=fmri_header, samplerate=samplerate)
    qc_util.timingmessage("Done")
    LGR.info(
        f"{thereport.numoutliervolumes()} outlier volumes, {thereport.numdespiked()} voxel "
        f"timepoints despiked, finished in {time.time() - starttime:.2f} seconds"
    )
