# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
Timing signal parsing.

Sort and load executables report their own measured duration on a line of the
form::

    TIMING: 12.34 seconds

This module is the only place that scrapes structured data out of backend
output. Everything else in the output is opaque log text.
"""

import re

# "TIMING:" SP <float> [SP "seconds"], alone on its line
TIMING_PATTERN = re.compile(
    r"^\s*TIMING:[ \t]+(?P<seconds>[+-]?(?:\d+(?:\.\d*)?|\.\d+)(?:[eE][+-]?\d+)?)(?:[ \t]+seconds?)?\s*$",
    re.MULTILINE,
)


def parse_timing(output: str) -> float | None:
    """Extract the self-reported duration from operation output.

    Args:
        output: Combined stdout/stderr text of one operation

    Returns:
        Duration in seconds from the last ``TIMING:`` line, or None if the
        output has no well-formed timing line
    """
    if not output:
        return None

    matches = list(TIMING_PATTERN.finditer(output))
    if not matches:
        return None
    return float(matches[-1].group("seconds"))
