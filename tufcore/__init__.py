# Copyright the tufcore contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""tufcore: client-side trust verification for TUF metadata."""

import tufcore.api
import tufcore.client

# This value is used in the requests user agent.
__version__ = "1.0.0"
__all__ = [
    tufcore.api.__name__,
    tufcore.client.__name__,
]
