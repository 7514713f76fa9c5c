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
import gc
import logging
from typing import Any, Callable, NamedTuple

from numpy.typing import NDArray
from tqdm import tqdm

import boldqc.multiproc as qc_multiproc
from boldqc.errors import BoldQCError, VoxelProcessingError


class _WorkerFailure(NamedTuple):
    index: int
    reason: str


def run_multiproc(
    voxelfunc: Callable,
    packfunc: Callable,
    unpackfunc: Callable,
    voxelargs: list,
    voxelproducts: list,
    inputshape: tuple,
    voxelmask: NDArray,
    LGR: logging.Logger | None,
    nprocs: int,
    alwaysmultiproc: bool,
    showprogressbar: bool,
    chunksize: int,
    indexaxis: int = 0,
    procunit: str = "voxels",
    usethreads: bool = False,
    stage: str = "processing",
    debug: bool = False,
    **kwargs: Any,
) -> int:
    """
    Apply `voxelfunc` to every selected index, in parallel if requested.

    This is the parallel map used throughout boldqc.  Each index along
    `indexaxis` with a nonzero `voxelmask` entry is handed to `packfunc`, the
    packed arguments to `voxelfunc`, and the result to `unpackfunc`, which
    writes it into the preallocated arrays in `voxelproducts`.  Every index
    owns its own slots in the output arrays, so workers never share mutable
    state and the order in which they finish does not matter.

    Parameters
    ----------
    voxelfunc : callable
        ``voxelfunc(index, packedargs, debug=..., **kwargs)``; returns a tuple whose
        first element is the index.
    packfunc : callable
        ``packfunc(index, voxelargs)``; extracts the arguments for one index.
    unpackfunc : callable
        ``unpackfunc(returnvals, voxelproducts)``; stores one result.
    voxelargs : list
        Shared inputs passed to `packfunc`.
    voxelproducts : list
        Output arrays filled in by `unpackfunc`.
    inputshape : tuple
        Shape of the data; ``inputshape[indexaxis]`` items are considered.
    voxelmask : ndarray
        One entry per index; only nonzero entries are processed.
    LGR : logging.Logger or None
        Logger for progress messages.
    nprocs : int
        Number of workers.  1 runs in the calling process.
    alwaysmultiproc : bool
        Use the worker pool even when `nprocs` is 1.
    showprogressbar : bool
        Display a progress bar.
    chunksize : int
        Items per chunk handed to the pool.
    indexaxis : int, optional
        Axis to iterate over.  Default is 0.
    procunit : str, optional
        Unit name for messages.  Default is "voxels".
    usethreads : bool, optional
        Use a thread pool instead of worker processes.  Default is False.
    stage : str, optional
        Name of the calling stage, used in error messages.
    debug : bool, optional
        Passed on to `voxelfunc`.
    **kwargs
        Passed on to `voxelfunc`.

    Returns
    -------
    int
        Number of items processed.

    Raises
    ------
    VoxelProcessingError
        If `voxelfunc` raises anything other than a boldqc error for some index.
    """
    if debug:
        print(f"{len(voxelproducts)=}, {voxelproducts[0].shape}")
    if nprocs > 1 or alwaysmultiproc:
        # define the consumer function here so it inherits most of the arguments
        def theconsumerfunc(inQ, outQ):
            while True:
                # get a new message
                val = inQ.get()

                # this is the 'TERM' signal
                if val is None:
                    break

                # process and send the data
                try:
                    outQ.put(
                        voxelfunc(
                            val,
                            packfunc(val, voxelargs),
                            debug=debug,
                            **kwargs,
                        )
                    )
                except Exception as e:
                    outQ.put(_WorkerFailure(val, f"{type(e).__name__}: {e}"))

        if usethreads:
            poolfunc = qc_multiproc.run_multithread
        else:
            poolfunc = qc_multiproc.run_multiproc
        data_out = poolfunc(
            theconsumerfunc,
            inputshape,
            voxelmask,
            indexaxis=indexaxis,
            procunit=procunit,
            verbose=(LGR is not None),
            nprocs=nprocs,
            showprogressbar=showprogressbar,
            chunksize=chunksize,
        )

        # unpack the data
        volumetotal = 0
        for returnvals in data_out:
            if isinstance(returnvals, _WorkerFailure):
                raise VoxelProcessingError(returnvals.index, stage, returnvals.reason)
            volumetotal += 1
            unpackfunc(returnvals, voxelproducts)
        del data_out
    else:
        volumetotal = 0
        for vox in tqdm(
            range(0, inputshape[indexaxis]),
            desc=procunit.capitalize(),
            unit=procunit,
            disable=(not showprogressbar),
        ):
            if voxelmask[vox] > 0:
                try:
                    returnvals = voxelfunc(
                        vox,
                        packfunc(vox, voxelargs),
                        debug=debug,
                        **kwargs,
                    )
                except BoldQCError:
                    raise
                except Exception as e:
                    raise VoxelProcessingError(vox, stage, f"{type(e).__name__}: {e}") from e
                unpackfunc(returnvals, voxelproducts)
                volumetotal += 1

    # garbage collect
    uncollected = gc.collect()
    if LGR is not None:
        if uncollected != 0:
            LGR.debug(f"garbage collected - unable to collect {uncollected} objects")
        else:
            LGR.debug("garbage collected")

    return volumetotal
