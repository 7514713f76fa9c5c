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

import boldqc.eventresponse as qc_event
import boldqc.io as qc_io
import boldqc.util as qc_util
import boldqc.workflows.parser_funcs as pf
from boldqc.errors import BoldQCError

from .utils import setup_logger

LGR = logging.getLogger("GENERAL")
ErrorLGR = logging.getLogger("ERROR")


def _parsecoordinate(parser: argparse.ArgumentParser, arg: str) -> List[float]:
    try:
        thecoords = [float(x) for x in arg.split(",")]
    except ValueError:
        parser.error(f"coordinate {arg} is not of the form X,Y,Z")
    if len(thecoords) != 3:
        parser.error(f"coordinate {arg} must have 3 components")
    return thecoords


def _get_parser() -> argparse.ArgumentParser:
    """
    Argument parser for gpeventresponse
    """
    parser = argparse.ArgumentParser(
        prog="gpeventresponse",
        description=(
            "Reconstruct event related responses from subject level parameter estimates "
            "and average them over subjects, with bootstrap confidence intervals."
        ),
        allow_abbrev=False,
    )

    # Required arguments
    parser.add_argument(
        "basisfile",
        type=lambda x: pf.is_valid_file(parser, x),
        help="Text file with the first level basis functions, one column per function.",
    )
    parser.add_argument("outputroot", type=str, help="The root name for the output files.")
    parser.add_argument(
        "--images",
        dest="imagefiles",
        type=lambda x: pf.is_valid_file(parser, x),
        nargs="+",
        required=True,
        metavar="IMAGE",
        help=(
            "Parameter estimate images, grouped by condition: all the images for the "
            "first condition, then all for the second, and so on."
        ),
    )
    parser.add_argument(
        "--conditions",
        dest="conditionnames",
        type=str,
        nargs="+",
        required=True,
        metavar="NAME",
        help="Condition names, in the order the images are grouped.",
    )
    parser.add_argument(
        "--coordinate",
        dest="coordinates",
        action="append",
        type=lambda x: _parsecoordinate(parser, x),
        required=True,
        metavar="X,Y,Z",
        help="Location to read the parameters at.  May be given more than once; values are averaged.",
    )

    # Optional arguments
    parser.add_argument(
        "--space",
        dest="space",
        action="store",
        type=str,
        choices=["mm", "voxel"],
        help="Coordinate system of the coordinates.  Default is mm.",
        default="mm",
    )
    parser.add_argument(
        "--whitening",
        dest="whiteningfile",
        action="store",
        type=lambda x: pf.is_valid_file(parser, x),
        metavar="FILE",
        help="Text file with the group whitening matrix.  Identity if not given.",
        default=None,
    )
    parser.add_argument(
        "--dt",
        dest="dt",
        action="store",
        type=lambda x: pf.is_float(parser, x, minval=0.0),
        metavar="SECONDS",
        help="Sample spacing of the basis functions.",
        default=None,
    )
    parser.add_argument(
        "--timetopeak",
        dest="timetopeakfiles",
        type=lambda x: pf.is_valid_file(parser, x),
        nargs="+",
        metavar="IMAGE",
        help=(
            "Time to peak images for boosted parameter estimates, one per parameter image "
            "and in the same order.  The adjusted responses are then built from the canonical "
            "response with that time to peak.  Requires --dt."
        ),
        default=None,
    )
    parser.add_argument(
        "--numboot",
        dest="numboot",
        action="store",
        type=lambda x: pf.is_int(parser, x, minval=40),
        metavar="NUM",
        help=f"Number of bootstrap resamples.  Default is {qc_event.DEFAULT_NUMBOOT}.",
        default=qc_event.DEFAULT_NUMBOOT,
    )
    parser.add_argument(
        "--seed",
        dest="seed",
        action="store",
        type=int,
        metavar="SEED",
        help="Seed for the bootstrap, for reproducible intervals.",
        default=None,
    )
    pf.addloggingopts(parser)
    pf.addversionopts(parser)
    return parser


def gpeventresponse(args: Namespace) -> None:
    """Compute group event related responses and save them as json and tsv."""
    starttime = time.time()
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
    qc_util.savecommandline(getattr(args, "commandline", "gpeventresponse").split(), outputroot)

    try:
        basisfunctions = np.loadtxt(args.basisfile, ndmin=2)
        if args.whiteningfile is not None:
            whitening = np.loadtxt(args.whiteningfile, ndmin=2)
        else:
            whitening = None
        coefficients = qc_event.extractcoefficients(
            args.imagefiles, args.coordinates, space=args.space
        )
        qc_util.timingmessage("Parameters read", len(args.imagefiles), "images")
        if args.timetopeakfiles is not None:
            timetopeak = qc_event.extractcoefficients(
                args.timetopeakfiles, args.coordinates, space=args.space
            )
        else:
            timetopeak = None
        theresponse = qc_event.groupeventresponse(
            coefficients,
            basisfunctions,
            args.conditionnames,
            whitening=whitening,
            dt=args.dt,
            numboot=args.numboot,
            coordinates=args.coordinates,
            rng=args.seed,
            timetopeak=timetopeak,
        )
    except BoldQCError as e:
        ErrorLGR.error(f"gpeventresponse failed: {e}")
        raise

    summary = theresponse.todict()
    summary["ConditionNames"] = list(args.conditionnames)
    summary["CoordinateSpace"] = args.space
    summary["NumImages"] = len(args.imagefiles)
    qc_io.writedicttojson(summary, f"{outputroot}_desc-eventresponse_info.json")

    for label, theaverages in [
        ("eventresponse", theresponse.average),
        ("adjustedeventresponse", theresponse.adjustedaverage),
    ]:
        columns = []
        thedata = []
        for thecondition in theaverages:
            columns += [
                f"{thecondition.name}_mean",
                f"{thecondition.name}_cilow",
                f"{thecondition.name}_cihigh",
            ]
            thedata += [thecondition.response, thecondition.ci[:, 0], thecondition.ci[:, 1]]
        qc_io.writebidstsv(
            f"{outputroot}_desc-{label}_timeseries",
            np.vstack(thedata),
            1.0 / args.dt if args.dt is not None and args.dt > 0.0 else 1.0,
            columns=columns,
            yaxislabel="response",
        )
    qc_util.timingmessage("Done")
    LGR.info(f"gpeventresponse finished in {time.time() - starttime:.2f} seconds")
