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
Group level event related responses.

Subject level parameter estimates for a set of conditions are read at one or
more locations, turned back into response timecourses with the basis
functions of the first level model, and averaged over subjects, with
bootstrap confidence intervals on the average.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

import numpy as np
from nibabel.affines import apply_affine
from numpy.typing import ArrayLike, NDArray
from scipy.stats import gamma

import boldqc.io as qc_io
from boldqc.errors import ConfigurationError, InputShapeError

LGR = logging.getLogger("GENERAL")

DEFAULT_NUMBOOT = 599
DEFAULT_HRFPARAMETERS = (6.0, 16.0, 1.0, 1.0, 6.0, 0.0, 32.0)


@dataclass
class ConditionResponse:
    name: str
    parameters: NDArray
    response: NDArray
    ci: NDArray
    timetopeak: Optional[NDArray] = None

    def todict(self) -> Dict[str, Any]:
        thedict = {
            "name": self.name,
            "parameters": self.parameters,
            "response": self.response,
            "ci_low": self.ci[:, 0],
            "ci_high": self.ci[:, 1],
        }
        if self.timetopeak is not None:
            thedict["time_to_peak"] = self.timetopeak
        return thedict


@dataclass
class GroupEventResponse:
    """
    Result of :func:`groupeventresponse`.

    Attributes
    ----------
    coordinates : NDArray or None
        Voxel coordinates the parameters were read at, shape (ncoords, 3).
    individualparameters : NDArray
        Parameters, shape (nimages, nbasis, ncoords).
    individualresponses : NDArray
        Fitted responses, shape (nimages, ntime, ncoords).
    individualadjustedparameters, individualadjustedresponses : NDArray
        The same after applying the group whitening matrix.
    times : NDArray or None
        Time of each response point, if the sample spacing is known.
    individualtimetopeak : NDArray or None
        Time to peak estimates of boosted parameters as given, shape
        (nimages, ncoords) or (nimages, ncombined, ncoords).
    individualbetacoefficients : NDArray or None
        For contrast images, the parameters of the combined betas before
        averaging, shape (nimages, ncombined, nbasis, ncoords).
    average, adjustedaverage : list of ConditionResponse
        Per condition subject averages with confidence intervals.
    """

    coordinates: Optional[NDArray]
    individualparameters: NDArray
    individualresponses: NDArray
    individualadjustedparameters: NDArray
    individualadjustedresponses: NDArray
    times: Optional[NDArray]
    individualtimetopeak: Optional[NDArray] = None
    individualbetacoefficients: Optional[NDArray] = None
    average: List[ConditionResponse] = field(default_factory=list)
    adjustedaverage: List[ConditionResponse] = field(default_factory=list)

    def conditionnames(self) -> List[str]:
        return [thecondition.name for thecondition in self.average]

    def todict(self) -> Dict[str, Any]:
        thedict = {
            "coordinates": self.coordinates,
            "times": self.times,
            "average": [thecondition.todict() for thecondition in self.average],
            "adjusted_average": [thecondition.todict() for thecondition in self.adjustedaverage],
        }
        if self.individualtimetopeak is not None:
            thedict["individual_time_to_peak"] = self.individualtimetopeak
        return thedict


def mmtovoxel(coordinates: ArrayLike, affine: NDArray) -> NDArray:
    """
    Convert world (mm) coordinates to fractional voxel coordinates.

    Parameters
    ----------
    coordinates : array-like
        Shape (3,) or (ncoords, 3).
    affine : NDArray
        4x4 voxel to world affine of the image.

    Examples
    --------
    >>> mmtovoxel([4.0, 4.0, 4.0], np.diag([2.0, 2.0, 2.0, 1.0]))
    array([2., 2., 2.])
    """
    return apply_affine(np.linalg.inv(affine), np.asarray(coordinates, dtype=np.float64))


def voxeltomm(coordinates: ArrayLike, affine: NDArray) -> NDArray:
    """Convert voxel coordinates to world (mm) coordinates."""
    return apply_affine(affine, np.asarray(coordinates, dtype=np.float64))


def _nearestvoxels(coordinates: NDArray, shape: Sequence[int]) -> NDArray:
    thevoxels = np.rint(np.atleast_2d(coordinates)).astype(int)
    if thevoxels.shape[1] != 3:
        raise InputShapeError("coordinates must have 3 columns", expected=3, found=thevoxels.shape[1])
    for thevoxel in thevoxels:
        if np.any(thevoxel < 0) or np.any(thevoxel >= np.asarray(shape[:3])):
            raise ConfigurationError(f"coordinate {tuple(thevoxel)} lies outside the image {tuple(shape[:3])}")
    return thevoxels


def extractcoefficients(
    imagefiles: Sequence[str], coordinates: ArrayLike, space: str = "voxel"
) -> NDArray:
    """
    Read the value of every image at every coordinate.

    Parameters
    ----------
    imagefiles : sequence of str
        3D parameter estimate images.
    coordinates : array-like
        Shape (3,) or (ncoords, 3).
    space : {"voxel", "mm"}, optional
        Coordinate system of `coordinates`.  mm coordinates are converted with
        the affine of each image.  Either way the nearest voxel is used.

    Returns
    -------
    NDArray
        Values, shape (nimages, ncoords).
    """
    if space not in ["voxel", "mm"]:
        raise ConfigurationError(f"coordinate space must be 'voxel' or 'mm', not {space}")
    coordinates = np.atleast_2d(np.asarray(coordinates, dtype=np.float64))
    thevalues = np.zeros((len(imagefiles), coordinates.shape[0]), dtype=np.float64)
    for i, thefile in enumerate(imagefiles):
        nim, nim_data, nim_hdr, thedims, thesizes = qc_io.readfromnifti(thefile)
        if nim_data.ndim == 4 and nim_data.shape[3] == 1:
            nim_data = nim_data[:, :, :, 0]
        if nim_data.ndim != 3:
            raise InputShapeError(f"{thefile} is not a 3D image", expected=3, found=nim_data.ndim)
        if space == "mm":
            thevoxels = _nearestvoxels(mmtovoxel(coordinates, nim.affine), nim_data.shape)
        else:
            thevoxels = _nearestvoxels(coordinates, nim_data.shape)
        thevalues[i, :] = nim_data[thevoxels[:, 0], thevoxels[:, 1], thevoxels[:, 2]]
    LGR.debug(f"read {thevalues.shape[1]} coordinates from {len(imagefiles)} images")
    return thevalues


def _asparameterarray(coefficients: ArrayLike) -> NDArray:
    thecoffs = np.asarray(coefficients, dtype=np.float64)
    if thecoffs.ndim == 1:
        return thecoffs[:, np.newaxis, np.newaxis]
    elif thecoffs.ndim == 2:
        # one parameter per image, one column per coordinate
        return thecoffs[:, np.newaxis, :]
    elif thecoffs.ndim == 3:
        return thecoffs
    raise InputShapeError("coefficients must have 1 to 3 dimensions", expected=3, found=thecoffs.ndim)


def reconstructresponses(coefficients: ArrayLike, basisfunctions: ArrayLike) -> NDArray:
    """
    Fitted responses from parameter estimates and basis functions.

    Parameters
    ----------
    coefficients : array-like
        Shape (nimages,), (nimages, ncoords) for one parameter per image, or
        (nimages, nbasis, ncoords).
    basisfunctions : array-like
        Shape (ntime,) or (ntime, nbasistotal); the first nbasis columns are used.

    Returns
    -------
    NDArray
        Responses, shape (nimages, ntime, ncoords).
    """
    thecoffs = _asparameterarray(coefficients)
    thebf = np.asarray(basisfunctions, dtype=np.float64)
    if thebf.ndim == 1:
        thebf = thebf[:, np.newaxis]
    numbasis = thecoffs.shape[1]
    if numbasis > thebf.shape[1]:
        raise InputShapeError(
            "more parameters than basis functions", expected=thebf.shape[1], found=numbasis
        )
    return np.einsum("tb,ibc->itc", thebf[:, :numbasis], thecoffs)


def canonicalhrf(
    dt: float, parameters: Optional[ArrayLike] = None, numpoints: Optional[int] = None
) -> NDArray:
    """
    Canonical double gamma haemodynamic response, sampled every `dt` seconds.

    Parameters
    ----------
    dt : float
        Sample spacing in seconds.
    parameters : array-like, optional
        Up to seven values overriding the leading entries of
        ``[6, 16, 1, 1, 6, 0, 32]``: delay of the response, delay of the
        undershoot, dispersion of the response, dispersion of the undershoot,
        ratio of response to undershoot, onset and length of the kernel, all
        in seconds.  The first value is the time to peak estimate used for
        boosted parameters.
    numpoints : int, optional
        Number of samples.  Default is enough to cover the kernel length.

    Returns
    -------
    NDArray
        The response, normalized to unit sum.
    """
    if dt <= 0.0:
        raise ConfigurationError(f"sample spacing must be positive, not {dt}")
    p = np.array(DEFAULT_HRFPARAMETERS, dtype=np.float64)
    if parameters is not None:
        theparameters = np.atleast_1d(np.asarray(parameters, dtype=np.float64))
        if len(theparameters) > len(p):
            raise InputShapeError(
                "too many response parameters", expected=len(p), found=len(theparameters)
            )
        p[: len(theparameters)] = theparameters
    if numpoints is None:
        numpoints = int(np.floor(p[6] / dt)) + 1
    t = np.arange(numpoints) * dt - p[5]
    hrf = gamma.pdf(t, p[0] / p[2], scale=p[2]) - gamma.pdf(t, p[1] / p[3], scale=p[3]) / p[4]
    return hrf / np.sum(hrf)


def _cibrackets(ci: NDArray, themean: NDArray) -> bool:
    peak = np.max(np.fabs(themean))
    return bool(np.max(np.fabs(ci[:, 0])) < peak and np.max(np.fabs(ci[:, 1])) > peak)


def bootstrapci(
    data: ArrayLike,
    numboot: int = DEFAULT_NUMBOOT,
    rng: Any = None,
    requirebracket: bool = False,
    maxtries: int = 100,
) -> NDArray:
    """
    Percentile bootstrap 95% confidence interval of the mean over subjects.

    Subjects are resampled with replacement `numboot` times, and the
    ``round(0.025 * numboot)``-th and ``round(0.975 * numboot)``-th smallest
    resampled means (the 15th and 584th of 599) bound the interval.

    Parameters
    ----------
    data : array-like
        Shape (nsubjects, ntime).
    numboot : int, optional
        Number of resamples.  Default is 599.
    rng : int or numpy Generator, optional
        Seed or generator for the resampling.
    requirebracket : bool, optional
        Resample until the bounds bracket the peak absolute value of the mean,
        at most `maxtries` times.  Default is False.
    maxtries : int, optional
        Attempts allowed when `requirebracket` is set.

    Returns
    -------
    NDArray
        Shape (ntime, 2): lower and upper bound at each timepoint.
    """
    thedata = np.atleast_2d(np.asarray(data, dtype=np.float64))
    numsubjects = thedata.shape[0]
    if numsubjects < 1:
        raise InputShapeError("no subjects to bootstrap")
    if numboot < 40:
        raise ConfigurationError(f"at least 40 bootstrap samples are needed, not {numboot}")
    rng = np.random.default_rng(rng)
    lowidx = int(round(0.025 * numboot)) - 1
    highidx = int(round(0.975 * numboot)) - 1
    themean = np.mean(thedata, axis=0)
    for thetry in range(max(maxtries, 1)):
        resampled = rng.integers(0, numsubjects, size=(numboot, numsubjects))
        bootmeans = np.sort(np.mean(thedata[resampled, :], axis=1), axis=0)
        theci = np.transpose(bootmeans[[lowidx, highidx], :])
        if not requirebracket or _cibrackets(theci, themean):
            return theci
    LGR.warning(f"bootstrap interval did not bracket the mean peak after {maxtries} tries")
    return theci


def groupeventresponse(
    coefficients: ArrayLike,
    basisfunctions: ArrayLike,
    conditionnames: Sequence[str],
    whitening: Optional[ArrayLike] = None,
    dt: Optional[float] = None,
    numboot: int = DEFAULT_NUMBOOT,
    coordinates: Optional[ArrayLike] = None,
    rng: Any = None,
    maxtries: int = 100,
    timetopeak: Optional[ArrayLike] = None,
) -> GroupEventResponse:
    """
    Average event related responses over subjects, condition by condition.

    Parameters
    ----------
    coefficients : array-like
        Parameter estimates, shape (nimages,), (nimages, ncoords) or
        (nimages, nbasis, ncoords).  Images are ordered by condition: the
        first N images belong to the first condition, and so on.  Contrast
        images may instead give the parameters of every beta they combine,
        shape (nimages, ncombined, nbasis, ncoords); these are averaged over
        the combined betas.
    basisfunctions : array-like
        First level basis functions, shape (ntime, nbasistotal).
    conditionnames : sequence of str
        One name per condition.
    whitening : array-like, optional
        Group level whitening matrix, (nimages, nimages), applied to the
        parameters to give the adjusted results.  Identity if None.
    dt : float, optional
        Sample spacing of the basis functions in seconds.
    numboot : int, optional
        Bootstrap resamples.  Default is 599.
    coordinates : array-like, optional
        Voxel coordinates the parameters came from; recorded only.
    rng : int or numpy Generator, optional
        Seed or generator for the bootstrap.
    maxtries : int, optional
        Attempts at a bracketing interval for the unadjusted averages.
    timetopeak : array-like, optional
        Time to peak estimates of boosted parameters, shape (nimages, ncoords),
        or (nimages, ncombined, ncoords) for contrast images, where the
        estimates of the combined betas are averaged.  When given, each
        adjusted response is the canonical response with that time to peak
        scaled by the first adjusted parameter, and `dt` is required.

    Returns
    -------
    GroupEventResponse

    Raises
    ------
    InputShapeError
        If the images cannot be split evenly over the conditions, or the
        whitening matrix or time to peak estimates do not match the number
        of images.
    ConfigurationError
        If time to peak estimates are given without `dt`.
    """
    thecoeffsin = np.asarray(coefficients, dtype=np.float64)
    if thecoeffsin.ndim == 4:
        betacoffs = thecoeffsin
        thecoffs = np.mean(thecoeffsin, axis=1)
    else:
        betacoffs = None
        thecoffs = _asparameterarray(thecoeffsin)
    numimages = thecoffs.shape[0]
    numcoords = thecoffs.shape[2]
    numconditions = len(conditionnames)
    if numconditions < 1:
        raise InputShapeError("at least one condition is needed")
    if numimages % numconditions != 0:
        raise InputShapeError(
            f"{numimages} images cannot be split evenly over {numconditions} conditions",
            expected=f"a multiple of {numconditions}",
            found=numimages,
        )
    numsubjects = numimages // numconditions
    if whitening is None:
        thewhitening = np.eye(numimages)
    else:
        thewhitening = np.asarray(whitening, dtype=np.float64)
        if thewhitening.shape != (numimages, numimages):
            raise InputShapeError(
                "whitening matrix does not match the number of images",
                expected=(numimages, numimages),
                found=thewhitening.shape,
            )
    adjustedcoffs = np.einsum("ij,jbc->ibc", thewhitening, thecoffs)
    responses = reconstructresponses(thecoffs, basisfunctions)
    numtimepoints = responses.shape[1]
    if dt is not None:
        times = np.arange(numtimepoints) * dt
    else:
        times = None

    if timetopeak is None:
        thetimetopeak = None
        imagetimetopeak = None
        adjustedresponses = reconstructresponses(adjustedcoffs, basisfunctions)
    else:
        if dt is None:
            raise ConfigurationError("the sample spacing is needed to build responses from time to peak")
        thetimetopeak = np.asarray(timetopeak, dtype=np.float64)
        if thetimetopeak.ndim == 1:
            thetimetopeak = thetimetopeak[:, np.newaxis]
        if thetimetopeak.ndim == 3:
            imagetimetopeak = np.mean(thetimetopeak, axis=1)
        else:
            imagetimetopeak = thetimetopeak
        if imagetimetopeak.shape != (numimages, numcoords):
            raise InputShapeError(
                "time to peak estimates do not match the parameters",
                expected=(numimages, numcoords),
                found=thetimetopeak.shape,
            )
        adjustedresponses = np.zeros((numimages, numtimepoints, numcoords), dtype=np.float64)
        for i in range(numimages):
            for c in range(numcoords):
                adjustedresponses[i, :, c] = (
                    canonicalhrf(dt, imagetimetopeak[i, c], numpoints=numtimepoints)
                    * adjustedcoffs[i, 0, c]
                )
        LGR.debug("adjusted responses built from time to peak estimates")
    LGR.info(
        f"{numconditions} conditions, {numsubjects} images per condition, {numcoords} coordinates"
    )

    rng = np.random.default_rng(rng)
    theresult = GroupEventResponse(
        coordinates=None if coordinates is None else np.atleast_2d(coordinates),
        individualparameters=thecoffs,
        individualresponses=responses,
        individualadjustedparameters=adjustedcoffs,
        individualadjustedresponses=adjustedresponses,
        times=times,
        individualtimetopeak=thetimetopeak,
        individualbetacoefficients=betacoffs,
    )
    for n, thename in enumerate(conditionnames):
        theblock = slice(n * numsubjects, (n + 1) * numsubjects)
        if imagetimetopeak is None:
            conditiontimetopeak = None
        else:
            conditiontimetopeak = np.mean(imagetimetopeak[theblock], axis=0)
        for theparams, theresponses, destination, bracket in [
            (thecoffs, responses, theresult.average, True),
            (adjustedcoffs, adjustedresponses, theresult.adjustedaverage, False),
        ]:
            # average over coordinates, then over subjects
            subjectparams = np.mean(theparams[theblock], axis=2)
            subjectresponses = np.mean(theresponses[theblock], axis=2)
            destination.append(
                ConditionResponse(
                    name=thename,
                    parameters=np.mean(subjectparams, axis=0),
                    response=np.mean(subjectresponses, axis=0),
                    ci=bootstrapci(
                        subjectresponses,
                        numboot=numboot,
                        rng=rng,
                        requirebracket=bracket,
                        maxtries=maxtries,
                    ),
                    timetopeak=conditiontimetopeak,
                )
            )
    return theresult
