# emacs: -*- mode: python-mode; py-indent-offset: 4; tab-width: 4; -*-
# ex: set sts=4 ts=4 sw=4 et:
"""
Command line workflows.
"""

from .automask import automask as automask_workflow
from .despikefmri import despikefmri as despikefmri_workflow
from .gpeventresponse import gpeventresponse as gpeventresponse_workflow

__all__ = ["automask_workflow", "despikefmri_workflow", "gpeventresponse_workflow"]
