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
"""Optional numba compilation for the inner loops."""
from typing import Callable

try:
    from numba import jit
except ImportError:
    donotusenumba = True
else:
    donotusenumba = False


def conditionaljit() -> Callable:
    """
    Compile the decorated function in nopython mode if numba is installed.

    Examples
    --------
    >>> @conditionaljit()
    ... def twice(x):
    ...     return x * 2
    >>> twice(5)
    10
    """

    def resdec(f):
        if donotusenumba:
            return f
        return jit(f, nopython=True)

    return resdec
