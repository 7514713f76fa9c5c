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
import logging
import multiprocessing as mp
import queue as thrQueue
import threading as thread
from platform import system
from typing import Any, Callable, List, Optional, Tuple

from numpy.typing import NDArray
from tqdm import tqdm

from boldqc.errors import InputShapeError

LGR = logging.getLogger("GENERAL")


def maxcpus(reservecpu: bool = True) -> int:
    """Return the number of CPUs available for parallel processing.

    Parameters
    ----------
    reservecpu : bool, default=True
        If True, leave one core free for the system.

    Returns
    -------
    int
        ``cpu_count() - 1`` if `reservecpu`, otherwise ``cpu_count()``.  Never less than 1.
    """
    if reservecpu:
        return max(mp.cpu_count() - 1, 1)
    else:
        return mp.cpu_count()


def _process_data(
    data_in: List[Any],
    inQ: Any,
    outQ: Any,
    showprogressbar: bool = True,
    chunksize: int = 10000,
    procunit: str = "voxels",
) -> List[Any]:
    """Feed indices to the workers in chunks and collect what they send back.

    Parameters
    ----------
    data_in : list
        Indices to process.
    inQ, outQ : queue
        Queues shared with the workers.
    showprogressbar : bool, optional
        Display a tqdm progress bar.  Default is True.
    chunksize : int, optional
        Number of items queued before the results are drained.  Default is 10000.
    procunit : str, optional
        Unit name for the progress bar.

    Returns
    -------
    list
        Every non-None item returned by the workers, in completion order.
    """
    data_out = []
    totalnum = len(data_in)
    numchunks = int(totalnum // chunksize)
    remainder = totalnum - numchunks * chunksize
    with tqdm(
        total=totalnum, desc=procunit.capitalize(), unit=procunit, disable=(not showprogressbar)
    ) as pbar:
        chunkbounds = [
            (thechunk * chunksize, (thechunk + 1) * chunksize) for thechunk in range(numchunks)
        ]
        if remainder != 0:
            chunkbounds.append((numchunks * chunksize, numchunks * chunksize + remainder))
        for startpt, endpt in chunkbounds:
            # queue the chunk
            for dat in data_in[startpt:endpt]:
                inQ.put(dat)

            # retrieve the chunk
            numreturned = 0
            while numreturned < endpt - startpt:
                ret = outQ.get()
                if ret is not None:
                    data_out.append(ret)
                numreturned += 1
                pbar.update(1)

    return data_out


def _buildindexlist(
    inputshape: Tuple[int, ...],
    maskarray: Optional[NDArray],
    indexaxis: int,
    caller: str,
) -> List[int]:
    if maskarray is not None:
        if inputshape[indexaxis] != len(maskarray):
            raise InputShapeError(
                f"{caller}: maskarray dimension does not equal index axis dimension",
                expected=inputshape[indexaxis],
                found=len(maskarray),
            )
    data_in = []
    for d in range(inputshape[indexaxis]):
        if maskarray is None:
            data_in.append(d)
        elif maskarray[d] > 0.5:
            data_in.append(d)
    return data_in


def run_multiproc(
    consumerfunc: Callable[[Any, Any], None],
    inputshape: Tuple[int, ...],
    maskarray: Optional[NDArray] = None,
    nprocs: int = 1,
    verbose: bool = True,
    indexaxis: int = 0,
    procunit: str = "voxels",
    showprogressbar: bool = True,
    chunksize: int = 1000,
) -> List[Any]:
    """
    Run `consumerfunc` in `nprocs` worker processes over an index set.

    Parameters
    ----------
    consumerfunc : callable
        Worker loop taking ``(inQ, outQ)``; it must read indices from ``inQ`` until it
        receives ``None`` and put exactly one item on ``outQ`` per index.
    inputshape : tuple of int
        Shape of the data; ``inputshape[indexaxis]`` is the size of the index set.
    maskarray : ndarray, optional
        Only indices with ``maskarray[d] > 0.5`` are processed.
    nprocs : int, optional
        Number of worker processes.  Default is 1.
    verbose : bool, optional
        Log the amount of work being dispatched.
    indexaxis : int, optional
        Axis of `inputshape` to iterate over.  Default is 0.
    procunit : str, optional
        Unit name used in messages.  Default is "voxels".
    showprogressbar : bool, optional
        Display a progress bar.  Default is True.
    chunksize : int, optional
        Number of items per chunk.  Default is 1000.

    Returns
    -------
    list
        Results returned by the workers.

    Raises
    ------
    InputShapeError
        If `maskarray` does not match the index axis.  This is checked before any
        worker is started.
    """
    data_in = _buildindexlist(inputshape, maskarray, indexaxis, "run_multiproc")

    # initialize the workers and the queues
    n_workers = nprocs
    if system() != "Windows":
        ctx = mp.get_context("fork")
    else:
        ctx = mp.get_context()
    inQ = ctx.Queue()
    outQ = ctx.Queue()
    workers = [ctx.Process(target=consumerfunc, args=(inQ, outQ)) for i in range(n_workers)]
    for w in workers:
        w.start()

    if verbose:
        LGR.info(f"processing {len(data_in)} {procunit} with {n_workers} processes")
    data_out = _process_data(
        data_in,
        inQ,
        outQ,
        showprogressbar=showprogressbar,
        chunksize=chunksize,
        procunit=procunit,
    )

    # shut down workers
    for i in range(n_workers):
        inQ.put(None)
    for w in workers:
        w.join()
        w.close()

    return data_out


def run_multithread(
    consumerfunc: Callable[[Any, Any], None],
    inputshape: Tuple[int, ...],
    maskarray: Optional[NDArray] = None,
    verbose: bool = True,
    nprocs: int = 1,
    indexaxis: int = 0,
    procunit: str = "voxels",
    showprogressbar: bool = True,
    chunksize: int = 1000,
) -> List[Any]:
    """
    Thread based counterpart of :func:`run_multiproc`.

    Threads share the parent's memory, so nothing has to be pickled; numpy
    releases the GIL in most of the heavy lifting.  Arguments and return value
    are the same as for :func:`run_multiproc`.
    """
    data_in = _buildindexlist(inputshape, maskarray, indexaxis, "run_multithread")

    # initialize the workers and the queues
    n_workers = nprocs
    inQ = thrQueue.Queue()
    outQ = thrQueue.Queue()
    workers = [thread.Thread(target=consumerfunc, args=(inQ, outQ)) for i in range(n_workers)]
    for w in workers:
        w.start()

    if verbose:
        LGR.info(f"processing {len(data_in)} {procunit} with {n_workers} threads")
    data_out = _process_data(
        data_in,
        inQ,
        outQ,
        showprogressbar=showprogressbar,
        chunksize=chunksize,
        procunit=procunit,
    )

    # shut down workers
    for i in range(n_workers):
        inQ.put(None)
    for w in workers:
        w.join()

    return data_out
