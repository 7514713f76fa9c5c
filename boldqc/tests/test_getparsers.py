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
import os

import pytest

import boldqc.workflows.parser_funcs as pf
from boldqc.workflows.automask import _get_parser as automask_getparser
from boldqc.workflows.despikefmri import _get_parser as despikefmri_getparser
from boldqc.workflows.gpeventresponse import _get_parser as gpeventresponse_getparser


def _get_parser():
    parser = argparse.ArgumentParser(
        prog="dummy",
        description="dummy",
        allow_abbrev=False,
    )
    parser.add_argument(
        "inputfile",
        type=lambda x: pf.is_valid_file(parser, x),
        help="A file.",
    )
    parser.add_argument(
        "--fraction",
        type=lambda x: pf.is_float(parser, x, minval=0.0, maxval=1.0),
        default=0.5,
    )
    parser.add_argument(
        "--count",
        type=lambda x: pf.is_int(parser, x, minval=1),
        default=1,
    )
    pf.addparallelopts(parser)
    pf.addloggingopts(parser)
    return parser


def test_parsers(debug=False):
    parserlist = [
        automask_getparser,
        despikefmri_getparser,
        gpeventresponse_getparser,
    ]

    for thegetparser in parserlist:
        theusage = thegetparser().format_help()
        if debug:
            print(theusage)


def test_parserfuncs(tmp_path, debug=False):
    thefile = os.path.join(tmp_path, "image.nii.gz")
    with open(thefile, "w") as fp:
        fp.write("not really an image\n")
    theparser = _get_parser()

    # nifti names can leave off the extension
    for thename in [thefile, os.path.join(tmp_path, "image")]:
        args = theparser.parse_args([thename, "--fraction", "0.25", "--count", "auto"])
        assert args.inputfile == thename
        assert args.fraction == 0.25
        assert args.count == "auto"
        assert args.nprocs == 1
        assert args.showprogressbar

    args = theparser.parse_args([thefile, "--nprocs", "-1", "--noprogressbar", "--verbose"])
    assert not args.showprogressbar
    assert args.verbose
    assert not args.debug
    assert pf.postprocessparallelopts(args).nprocs >= 1

    for badargs in [
        [os.path.join(tmp_path, "nothere.nii.gz")],
        [thefile, "--fraction", "1.5"],
        [thefile, "--fraction", "half"],
        [thefile, "--count", "0"],
        [thefile, "--count", "2.5"],
    ]:
        if debug:
            print(badargs)
        with pytest.raises(SystemExit):
            theparser.parse_args(badargs)


if __name__ == "__main__":
    test_parsers(debug=True)
