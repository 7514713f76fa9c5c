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
Functions for parsers.
"""
import argparse
import os.path as op
import sys
from argparse import Namespace
from typing import Callable, List, Optional, Union

import boldqc.multiproc as qc_multiproc
import boldqc.util as qc_util


def is_valid_file(parser: argparse.ArgumentParser, arg: Optional[str]) -> Optional[str]:
    """
    Check if argument is existing file.

    Nifti files may be given without their extension.

    Examples
    --------
    >>> parser = argparse.ArgumentParser()
    >>> is_valid_file(parser, "nonexistent_file.txt")  # doctest: +SKIP
    # Raises SystemExit with error message
    """
    if arg is None:
        return arg
    for thecandidate in [arg, arg + ".nii.gz", arg + ".nii"]:
        if op.isfile(thecandidate):
            return arg
    parser.error("The file {0} does not exist!".format(arg))


def _checkrange(
    parser: argparse.ArgumentParser,
    arg: Union[int, float],
    minval: Optional[Union[int, float]],
    maxval: Optional[Union[int, float]],
) -> None:
    if minval is not None and arg < minval:
        parser.error(f"Value {arg} is smaller than {minval}")
    if maxval is not None and arg > maxval:
        parser.error(f"Value {arg} is larger than {maxval}")


def is_float(
    parser: argparse.ArgumentParser,
    arg: Union[str, float],
    minval: Optional[float] = None,
    maxval: Optional[float] = None,
) -> Union[str, float]:
    """
    Convert an argument to a float in [minval, maxval], passing "auto" through.

    Examples
    --------
    >>> parser = argparse.ArgumentParser()
    >>> is_float(parser, "0.25", minval=0.0)
    0.25
    >>> is_float(parser, "auto")
    'auto'
    """
    if arg == "auto":
        return arg
    try:
        thevalue = float(arg)
    except ValueError:
        parser.error(f'Value {arg} is not a float or "auto"')
    _checkrange(parser, thevalue, minval, maxval)
    return thevalue


def is_int(
    parser: argparse.ArgumentParser,
    arg: Union[str, int],
    minval: Optional[int] = None,
    maxval: Optional[int] = None,
) -> Union[str, int]:
    """Integer counterpart of :func:`is_float`."""
    if arg == "auto":
        return arg
    try:
        thevalue = int(arg)
    except ValueError:
        parser.error(f'Value {arg} is not an int or "auto"')
    _checkrange(parser, thevalue, minval, maxval)
    return thevalue


def addversionopts(parser: argparse.ArgumentParser) -> None:
    version_opts = parser.add_argument_group("Version options")
    version_opts.add_argument(
        "--version",
        action="version",
        help="Show version information and exit",
        version=f"%(prog)s {qc_util.version()}",
    )


def addparallelopts(parser: argparse.ArgumentParser, details: bool = False) -> None:
    """Add the options that control parallel processing and progress display."""
    parallel_opts = parser.add_argument_group("Performance options")
    parallel_opts.add_argument(
        "--nprocs",
        dest="nprocs",
        action="store",
        type=int,
        metavar="NPROCS",
        help=(
            "Use NPROCS worker processes.  Setting NPROCS to less than 1 sets the "
            "number of worker processes to n_cpus - 1."
        ),
        default=1,
    )
    parallel_opts.add_argument(
        "--noprogressbar",
        dest="showprogressbar",
        action="store_false",
        help="Will disable showing progress bars (helpful if stdout is going to a file).",
        default=True,
    )
    if details:
        parallel_opts.add_argument(
            "--alwaysmultiproc",
            dest="alwaysmultiproc",
            action="store_true",
            help="Use the worker pool even when only one process is requested.",
            default=False,
        )
        parallel_opts.add_argument(
            "--usethreads",
            dest="usethreads",
            action="store_true",
            help="Use threads rather than processes for parallel execution.",
            default=False,
        )
        parallel_opts.add_argument(
            "--chunksize",
            dest="chunksize",
            action="store",
            type=int,
            metavar="NUMITEMS",
            help="Hand work to the workers NUMITEMS items at a time.",
            default=1000,
        )


def addloggingopts(parser: argparse.ArgumentParser) -> None:
    debug_opts = parser.add_argument_group("Debugging options")
    debug_opts.add_argument(
        "--verbose",
        dest="verbose",
        action="store_true",
        help="Log more detail about processing.",
        default=False,
    )
    debug_opts.add_argument(
        "--debug",
        dest="debug",
        action="store_true",
        help="Enable additional debugging output.",
        default=False,
    )


def postprocessparallelopts(args: Namespace) -> Namespace:
    """Resolve a non-positive process count to the number of available cpus."""
    if args.nprocs < 1:
        args.nprocs = qc_multiproc.maxcpus()
    return args


def generic_init(
    theparser: Callable[[], argparse.ArgumentParser],
    themain: Callable[[Namespace], None],
    inputargs: Optional[List[str]] = None,
) -> None:
    """
    Parse the command line and run a workflow.

    Parameters
    ----------
    theparser : callable
        Returns the argument parser.
    themain : callable
        The workflow; takes the parsed arguments.
    inputargs : list of str, optional
        Arguments to parse instead of ``sys.argv``.

    Notes
    -----
    The raw command line is stored on the parsed arguments as ``commandline``.
    """
    if inputargs is None:
        try:
            args = theparser().parse_args()
            argstowrite = sys.argv
        except SystemExit:
            print("Use --help option for detailed information on options.")
            raise
    else:
        try:
            args = theparser().parse_args(inputargs)
            argstowrite = inputargs
        except SystemExit:
            print("Use --help option for detailed information on options.")
            raise

    # save the raw command line
    args.commandline = " ".join(argstowrite)

    themain(args)
