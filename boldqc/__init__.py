# emacs: -*- mode: python-mode; py-indent-offset: 4; tab-width: 4; -*-
# ex: set sts=4 ts=4 sw=4 et:
"""
fMRI quality control and denoising: automatic masking, despiking and
group event related responses.
"""
from ._version import __version__  # noqa
from .despike import DespikeOptions, DespikeReport  # noqa
from .maskutil import makeautomask  # noqa
