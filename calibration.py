#!/usr/bin/env python3
"""
Calibration data model: live stick samples, the running min/max extent
tracked during a wizard phase, and the per-stick record written to flash.
"""

import math
from collections import namedtuple
from dataclasses import dataclass
from enum import Enum

from errors import DegenerateCalibration
from stick_codec import MAX_12BIT, decode_values, encode_pair, encode_values

STICK_NEUTRAL = 0x800

# Inward shrink of the measured range when the outer deadzone is enabled
OUTER_DEADZONE_PADDING = 0x050
# Stick parameter "range ratio"; empirical, same for both sticks
RANGE_RATIO = 0xF80

StickSample = namedtuple('StickSample', ['lx', 'ly', 'rx', 'ry'], defaults=(STICK_NEUTRAL,) * 4)


class DeadzoneMode(Enum):
    """How the center phase turns its extent into a deadzone radius."""
    AXIS = 'axis'          # half the X-axis extent
    DIAGONAL = 'diagonal'  # half the distance between the extreme corners


def deadzone_from_extent(min_x, max_x, min_y, max_y, mode=DeadzoneMode.AXIS):
    if max_x < min_x or max_y < min_y:
        return 0
    if mode is DeadzoneMode.DIAGONAL:
        return int(math.hypot(max_x - min_x, max_y - min_y) / 2)
    return (max_x - min_x) // 2


class RunningExtent:
    """Per-axis running min/max for both sticks.

    Seeded inverted (min=0xFFF, max=0) so the first sample sets both ends.
    """

    AXES = ('lx', 'ly', 'rx', 'ry')

    def __init__(self, deadzone_mode=DeadzoneMode.AXIS):
        self.deadzone_mode = deadzone_mode
        self.reset()

    def reset(self):
        self.min_lx = self.min_ly = self.min_rx = self.min_ry = MAX_12BIT
        self.max_lx = self.max_ly = self.max_rx = self.max_ry = 0
        self.center_lx = self.center_ly = self.center_rx = self.center_ry = 0
        self.deadzone_l = self.deadzone_r = 0
        self.samples = 0

    def is_empty(self):
        return self.samples == 0

    def update(self, sample):
        for axis in self.AXES:
            value = getattr(sample, axis)
            lo = min(getattr(self, 'min_' + axis), value)
            hi = max(getattr(self, 'max_' + axis), value)
            setattr(self, 'min_' + axis, lo)
            setattr(self, 'max_' + axis, hi)
            setattr(self, 'center_' + axis, (lo + hi) // 2)
        self.deadzone_l = deadzone_from_extent(
            self.min_lx, self.max_lx, self.min_ly, self.max_ly, self.deadzone_mode)
        self.deadzone_r = deadzone_from_extent(
            self.min_rx, self.max_rx, self.min_ry, self.max_ry, self.deadzone_mode)
        self.samples += 1

    def left_bounds(self):
        """(min_x, max_x, min_y, max_y) of the left stick."""
        return self.min_lx, self.max_lx, self.min_ly, self.max_ly

    def right_bounds(self):
        return self.min_rx, self.max_rx, self.min_ry, self.max_ry

    def __repr__(self):
        return (f"RunningExtent(L x[{self.min_lx:03X}-{self.max_lx:03X}] y[{self.min_ly:03X}-{self.max_ly:03X}], "
                f"R x[{self.min_rx:03X}-{self.max_rx:03X}] y[{self.min_ry:03X}-{self.max_ry:03X}])")


@dataclass
class StickCalibrationRecord:
    """One stick's calibration in raw 12-bit units."""
    xmin: int = 0
    xcenter: int = 0
    xmax: int = 0
    ymin: int = 0
    ycenter: int = 0
    ymax: int = 0

    def validate(self, label="stick"):
        for name in ('xmin', 'xcenter', 'xmax', 'ymin', 'ycenter', 'ymax'):
            value = getattr(self, name)
            if not 0 <= value <= MAX_12BIT:
                raise DegenerateCalibration(f"{label}: {name}=0x{value:X} is outside 12 bits")
        if not self.xmin <= self.xcenter <= self.xmax:
            raise DegenerateCalibration(
                f"{label}: X range 0x{self.xmin:03X} <= 0x{self.xcenter:03X} <= 0x{self.xmax:03X} does not hold "
                "(was the stick moved?)")
        if not self.ymin <= self.ycenter <= self.ymax:
            raise DegenerateCalibration(
                f"{label}: Y range 0x{self.ymin:03X} <= 0x{self.ycenter:03X} <= 0x{self.ymax:03X} does not hold "
                "(was the stick moved?)")

    def offsets(self):
        """(x above, y above, x below, y below) center, as stored in flash."""
        return (self.xmax - self.xcenter, self.ymax - self.ycenter,
                self.xcenter - self.xmin, self.ycenter - self.ymin)


def apply_outer_padding(min_value, max_value, padding):
    """Shrink a measured range inward by padding, saturating at 12 bits."""
    return min(min_value + padding, MAX_12BIT), max(max_value - padding, 0)


def encode_left_calibration(record):
    """9-byte left stick record: above-center, center, below-center."""
    record.validate("left stick")
    above_x, above_y, below_x, below_y = record.offsets()
    return encode_values([above_x, above_y, record.xcenter, record.ycenter, below_x, below_y])


def encode_right_calibration(record):
    """9-byte right stick record: center, below-center, above-center."""
    record.validate("right stick")
    above_x, above_y, below_x, below_y = record.offsets()
    return encode_values([record.xcenter, record.ycenter, below_x, below_y, above_x, above_y])


def decode_left_calibration(data):
    above_x, above_y, xcenter, ycenter, below_x, below_y = decode_values(bytes(data))
    return StickCalibrationRecord(xmin=xcenter - below_x, xcenter=xcenter, xmax=xcenter + above_x,
                                  ymin=ycenter - below_y, ycenter=ycenter, ymax=ycenter + above_y)


def decode_right_calibration(data):
    xcenter, ycenter, below_x, below_y, above_x, above_y = decode_values(bytes(data))
    return StickCalibrationRecord(xmin=xcenter - below_x, xcenter=xcenter, xmax=xcenter + above_x,
                                  ymin=ycenter - below_y, ycenter=ycenter, ymax=ycenter + above_y)


def encode_stick_params(deadzone, range_ratio=RANGE_RATIO):
    """3-byte stick parameter block: deadzone, range ratio."""
    for name, value in (('deadzone', deadzone), ('range ratio', range_ratio)):
        if not 0 <= value <= MAX_12BIT:
            raise DegenerateCalibration(f"{name} 0x{value:X} is outside 12 bits")
    return encode_pair(deadzone, range_ratio)
