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
"""Logging setup shared by the command line workflows."""
import logging
import os

LGR = logging.getLogger("GENERAL")
TimingLGR = logging.getLogger("TIMING")
ErrorLGR = logging.getLogger("ERROR")

VERBOSE_LEVEL = 15  # between info and debug


class ContextFilter(logging.Filter):
    """Keep messages from the secondary loggers off the general handlers."""

    NAMES = {"TIMING", "ERROR"}

    def filter(self, record):
        if not any([n in record.name for n in self.NAMES]):
            return True
        return False


class TimingFormatter(logging.Formatter):
    """A formatter to allow optional extra fields (message2 and message3) in a logger.

    The fields must be passed as a dictionary, without a keyword.
    """

    def format(self, record):
        if isinstance(record.args, dict):
            record.message2 = record.args.get("message2", None)
            record.message3 = record.args.get("message3", None)
        else:
            record.message2 = None
            record.message3 = None
        return super().format(record)


def _removehandlers(thelogger):
    for thehandler in list(thelogger.handlers):
        thelogger.removeHandler(thehandler)
        thehandler.close()


def setup_logger(logger_filename, timing_filename, error_filename, verbose=False, debug=False):
    """Set up a set of loggers.

    Parameters
    ----------
    logger_filename : str
        Output file for generic logging information.
    timing_filename : str
        Output file for timing-related information.
    error_filename : str
        Output file for errors.
    verbose : bool, optional
        Sets the target logging level to VERBOSE (a custom level between INFO and DEBUG).
        Is overridden by ``debug``, if ``debug = True``.
        Default is False.
    debug : bool, optional
        Sets the target logging level to DEBUG. Default is False.
    """
    # Clean up existing files from previous runs
    for fname in [logger_filename, timing_filename, error_filename]:
        if os.path.isfile(fname):
            LGR.info(f"Removing existing file: {fname}")
            os.remove(fname)

    # a second run in the same interpreter must not duplicate output
    for thelogger in [LGR, TimingLGR, ErrorLGR]:
        _removehandlers(thelogger)

    # Create a new "verbose" logging level
    logging.addLevelName(VERBOSE_LEVEL, "VERBOSE")

    def verbose_log(self, message, *args, **kwargs):
        if self.isEnabledFor(VERBOSE_LEVEL):
            self._log(VERBOSE_LEVEL, message, args, **kwargs)

    logging.Logger.verbose = verbose_log

    # Set logging level for main logger
    if debug:
        logging.root.setLevel(logging.DEBUG)
        LGR.setLevel(logging.DEBUG)
    elif verbose:
        logging.root.setLevel(VERBOSE_LEVEL)
        LGR.setLevel(VERBOSE_LEVEL)
    else:
        logging.root.setLevel(logging.INFO)
        LGR.setLevel(logging.INFO)

    # Set up handler for main logger's output file
    log_formatter = logging.Formatter("%(message)s")
    log_handler = logging.FileHandler(logger_filename)
    log_handler.setFormatter(log_formatter)
    stream_handler = logging.StreamHandler()
    stream_handler.setFormatter(log_formatter)

    log_handler.addFilter(ContextFilter())
    stream_handler.addFilter(ContextFilter())

    LGR.addHandler(log_handler)
    LGR.addHandler(stream_handler)
    LGR.propagate = False  # do not print to console, except for messages for StreamHandler

    # A timing logger
    timing_formatter = TimingFormatter(
        "%(asctime)s.%(msecs)03d\t%(message)s\t%(message2)s\t%(message3)s",
        datefmt="%Y%m%dT%H%M%S",
    )
    timing_handler = logging.FileHandler(timing_filename)
    timing_handler.setFormatter(timing_formatter)
    TimingLGR.setLevel(logging.INFO)
    TimingLGR.addHandler(timing_handler)
    TimingLGR.propagate = False  # do not print to console

    # An error logger, which also echoes to the console
    error_formatter = logging.Formatter("%(asctime)s\t%(levelname)s\t%(message)s")
    error_handler = logging.FileHandler(error_filename)
    error_handler.setFormatter(error_formatter)
    error_stream_handler = logging.StreamHandler()
    error_stream_handler.setFormatter(log_formatter)
    ErrorLGR.setLevel(logging.WARNING)
    ErrorLGR.addHandler(error_handler)
    ErrorLGR.addHandler(error_stream_handler)
    ErrorLGR.propagate = False
