#!/usr/bin/env python3
"""
Preview of what the console will make of a calibration.

Maps [min, center-deadzone] -> [0, 0.5] and [center+deadzone, max] -> [0.5, 1.0],
with the deadzone itself pinned at 0.5. Display only; nothing here is written
to the controller.
"""


def clamp(value, low=0.0, high=1.0):
    return max(low, min(high, value))


def remap(raw, minimum, center, maximum, deadzone):
    """Normalize one raw 12-bit reading to [0, 1]."""
    low_edge = center - deadzone
    high_edge = center + deadzone
    if raw < low_edge:
        span = low_edge - minimum
        if span <= 0:
            # No travel below the deadzone: saturated
            return 0.0
        return clamp((raw - minimum) / span / 2.0)
    if raw > high_edge:
        span = maximum - high_edge
        if span <= 0:
            return 1.0
        return clamp((raw - high_edge) / span / 2.0 + 0.5)
    return 0.5


def remap_stick(x, y, record, deadzone):
    """Remap a raw (x, y) pair with a StickCalibrationRecord."""
    return (
        remap(x, record.xmin, record.xcenter, record.xmax, deadzone),
        remap(y, record.ymin, record.ycenter, record.ymax, deadzone),
    )
