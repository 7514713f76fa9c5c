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

import numpy as np

import boldqc.io as qc_io
import boldqc.maskutil as qc_mask
import boldqc.util as qc_util
import boldqc.workflows.parser_funcs as pf
from boldqc.errors import BoldQCError

from .utils import setup_logger

LGR = logging.getLogger("GENERAL")
ErrorLGR = logging.getLogger("ERROR")


def _get_parser() -> argparse.ArgumentParser:
    """
    Argument parser for automask
    """
    parser = argparse.ArgumentParser(
        prog="automask",
        description="Estimate a brain mask from a 4D fMRI dataset.",
        allow_abbrev=False,
    )

    # Required arguments
    parser.add_argument(
        "inputfilename",
        type=lambda x: pf.is_valid_file(parser, x),
        help="The input 4D nifti file.",
    )
    parser.add_argument("outputroot", type=str, help="The root name for the output files.")

    # Optional arguments
    parser.add_argument(
        "--threshold",
        dest="threshold",
        action="store",
        type=lambda x: pf.is_float(parser, x, minval=0.0, maxval=0.999999),
        metavar="FRAC",
        help=(
            "Voxels whose mean smoothed signal is below FRAC of the full intensity range "
            "are excluded.  Default is 0.2."
        ),
        default=0.2,
    )
    parser.add_argument(
        "--smoothing",
        dest="smoothing",
        action="store",
        type=str,
        choices=["box", "gauss"],
        help="Kernel used to smooth each volume before thresholding.  Default is box.",
        default="box",
    )
    pf.addparallelopts(parser, details=True)
    pf.addloggingopts(parser)
    pf.addversionopts(parser)
    return parser


def automask(args: Namespace) -> None:
    """Make a mask for an fMRI dataset and save it as ``<outputroot>_desc-automask_mask``."""
    starttime = time.time()
    args = pf.postprocessparallelopts(args)
    outputroot = args.outputroot
    outputdir = os.path.dirname(outputroot)
    if outputdir != "":
        qc_util.makeadir(outputdir)

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
    qc_util.savecommandline(getattr(args, "commandline", "automask").split(), outputroot)

    try:
        LGR.info(f"reading {args.inputfilename}")
        fmri_data, fmri_header, fmri_dims, fmri_sizes = qc_io.readvolumeseries(
            args.inputfilename
        )
        themask = qc_mask.makeautomask(
            fmri_data,
            threshold=args.threshold,
            smoothing=args.smoothing,
            nprocs=args.nprocs,
            alwaysmultiproc=args.alwaysmultiproc,
            showprogressbar=args.showprogressbar,
            chunksize=args.chunksize,
            usethreads=args.usethreads,
            debug=args.debug,
        )
    except BoldQCError as e:
        ErrorLGR.error(f"automask failed: {e}")
        raise
    qc_util.timingmessage("Mask estimated", int(np.count_nonzero(themask)), "voxels")

    qc_io.savetonifti(themask.astype(np.uint8), fmri_header, f"{outputroot}_desc-automask_mask")
    qc_io.writedicttojson(
        {
            "RawSources": [os.path.relpath(args.inputfilename, start=outputdir or ".")],
            "Threshold": args.threshold,
            "Smoothing": args.smoothing,
            "NumVoxels": int(np.count_nonzero(themask)),
        },
        f"{outputroot}_desc-automask_mask.json",
    )
    qc_util.timingmessage("Done")
    LGR.info(f"automask finished in {time.time() - starttime:.2f} seconds")
