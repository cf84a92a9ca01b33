#!/usr/bin/env python3
"""
Two-phase stick calibration wizard.

  Idle -> Connected -> Center -> Range -> OuterDeadzone -> Review -> Done

Center phase: wiggle the sticks inside their slack; the extent gives the
center and the deadzone. Range phase: spin the sticks around the rim; the
extent gives min/max. The result is previewed with axis_remap and committed
to SPI flash in a fixed order.
"""

import threading
from enum import Enum

import hid_session
from axis_remap import remap_stick
from calibration import (
    OUTER_DEADZONE_PADDING,
    DeadzoneMode,
    RunningExtent,
    StickCalibrationRecord,
    apply_outer_padding,
    deadzone_from_extent,
    encode_left_calibration,
    encode_right_calibration,
    encode_stick_params,
)
from errors import (
    CommitFailed,
    ControllerError,
    DegenerateCalibration,
    PartialCommitError,
    WizardStateError,
)
from hid_session import ControllerIdentity
from spi_flash import (
    LEFT_STICK_CAL_ADDR,
    LEFT_STICK_PARAMS_ADDR,
    RIGHT_STICK_CAL_ADDR,
    RIGHT_STICK_PARAMS_ADDR,
    enable_standard_input,
    read_device_info,
    read_stick_sample,
    write_spi,
)


class CalibrationStep(Enum):
    IDLE = 'idle'
    CONNECTED = 'connected'
    CENTER = 'center'
    RANGE = 'range'
    OUTER_DEADZONE = 'outer_deadzone'
    REVIEW = 'review'
    DONE = 'done'


TRACKING_STEPS = (CalibrationStep.CENTER, CalibrationStep.RANGE)

# Flash regions in commit order
REGION_RIGHT_CAL = 'right calibration'
REGION_RIGHT_PARAMS = 'right parameters'
REGION_LEFT_CAL = 'left calibration'
REGION_LEFT_PARAMS = 'left parameters'


def calibration_writes(identity, left, right, left_deadzone, right_deadzone):
    """Ordered (region, address, payload) list for a commit.

    Joy-Cons carry one stick; its record and parameters go to both slots.
    Everything is encoded (and validated) here, before any write happens.
    """
    if identity is ControllerIdentity.LEFT:
        right, right_deadzone = left, left_deadzone
    elif identity is ControllerIdentity.RIGHT:
        left, left_deadzone = right, right_deadzone

    return [
        (REGION_RIGHT_CAL, RIGHT_STICK_CAL_ADDR, encode_right_calibration(right)),
        (REGION_RIGHT_PARAMS, RIGHT_STICK_PARAMS_ADDR, encode_stick_params(right_deadzone)),
        (REGION_LEFT_CAL, LEFT_STICK_CAL_ADDR, encode_left_calibration(left)),
        (REGION_LEFT_PARAMS, LEFT_STICK_PARAMS_ADDR, encode_stick_params(left_deadzone)),
    ]


def commit_calibration(session, left, right, left_deadzone, right_deadzone):
    """Write both stick records and parameter blocks. Returns the regions written.

    Raises CommitFailed if nothing was written, PartialCommitError if some
    regions were already written when a later one failed. Flash writes are
    not transactional; nothing is rolled back.
    """
    try:
        writes = calibration_writes(session.identity, left, right, left_deadzone, right_deadzone)
    except DegenerateCalibration as e:
        raise CommitFailed(f"Calibration rejected: {e}") from e

    written = []
    for region, address, payload in writes:
        try:
            write_spi(session, address, payload)
        except ControllerError as e:
            if written:
                raise PartialCommitError(
                    f"Failed to write {region} after writing {', '.join(written)}: {e}",
                    failed=region, written=written) from e
            raise CommitFailed(f"Failed to write {region}: {e}", failed=region) from e
        written.append(region)
        if session.debug:
            print(f"  ✓ {region} written at 0x{address:04X}: {payload.hex()}", flush=True)
    return written


class CalibrationWizard:
    """Drives one calibration pass for a connected controller."""

    def __init__(self, session=None, deadzone_mode=DeadzoneMode.AXIS, debug=False):
        self.session = session
        self.debug = debug
        self.deadzone_mode = deadzone_mode
        self.step = CalibrationStep.CONNECTED if session is not None else CalibrationStep.IDLE
        self.device_info = None
        self.sample = None
        self.extent = RunningExtent(deadzone_mode)
        self.left = StickCalibrationRecord()
        self.right = StickCalibrationRecord()
        self.left_deadzone = 0
        self.right_deadzone = 0
        self.outer_deadzone = False
        self.error = None
        self._state_lock = threading.Lock()

    @property
    def identity(self):
        return self.session.identity if self.session is not None else None

    @property
    def has_left(self):
        return self.identity is not None and self.identity.has_left

    @property
    def has_right(self):
        return self.identity is not None and self.identity.has_right

    def _require(self, *steps):
        if self.step not in steps:
            expected = ', '.join(s.value for s in steps)
            raise WizardStateError(f"not allowed in step '{self.step.value}' (expected {expected})")

    def connect(self, identity=None):
        """Open a controller and read its device info (optional; may be None)."""
        self._require(CalibrationStep.IDLE)
        self.session = hid_session.connect(identity, debug=self.debug)
        try:
            self.device_info = read_device_info(self.session)
        except ControllerError as e:
            self.device_info = None
            if self.debug:
                print(f"⚠️  {e}", flush=True)
        self.error = None
        self.step = CalibrationStep.CONNECTED
        return self.session

    def start(self):
        """Enable full input reports and begin the center phase."""
        self._require(CalibrationStep.CONNECTED, CalibrationStep.REVIEW, CalibrationStep.DONE)
        enable_standard_input(self.session)
        with self._state_lock:
            self.extent.reset()
            self.left = StickCalibrationRecord()
            self.right = StickCalibrationRecord()
            self.left_deadzone = self.right_deadzone = 0
            self.outer_deadzone = False
            self.error = None
            self.step = CalibrationStep.CENTER

    restart = start

    def poll(self):
        """Read the latest sample and feed it to the active phase."""
        if self.session is None:
            raise WizardStateError("no controller connected")
        sample = read_stick_sample(self.session)
        self.feed(sample)
        return sample

    def feed(self, sample):
        with self._state_lock:
            self.sample = sample
            if self.step in TRACKING_STEPS:
                self.extent.update(sample)

    def advance(self):
        """Finish the current tracking phase."""
        with self._state_lock:
            self._require(*TRACKING_STEPS)
            if self.extent.is_empty():
                raise WizardStateError("no stick samples were collected in this phase")
            if self.step is CalibrationStep.CENTER:
                self._finish_center()
                self.extent.reset()
                self.step = CalibrationStep.RANGE
            else:
                # Range extent is kept for the outer deadzone step
                self.step = CalibrationStep.OUTER_DEADZONE

    def _finish_center(self):
        ext = self.extent
        self.left.xcenter = (ext.min_lx + ext.max_lx) // 2
        self.left.ycenter = (ext.min_ly + ext.max_ly) // 2
        self.right.xcenter = (ext.min_rx + ext.max_rx) // 2
        self.right.ycenter = (ext.min_ry + ext.max_ry) // 2
        self.left_deadzone = deadzone_from_extent(*ext.left_bounds(), mode=self.deadzone_mode)
        self.right_deadzone = deadzone_from_extent(*ext.right_bounds(), mode=self.deadzone_mode)

    def choose_outer_deadzone(self, enable):
        """Set final min/max from the range extent, padded inward if enable."""
        with self._state_lock:
            self._require(CalibrationStep.OUTER_DEADZONE)
            self.outer_deadzone = bool(enable)
            padding = OUTER_DEADZONE_PADDING if enable else 0
            ext = self.extent
            self.left.xmin, self.left.xmax = apply_outer_padding(ext.min_lx, ext.max_lx, padding)
            self.left.ymin, self.left.ymax = apply_outer_padding(ext.min_ly, ext.max_ly, padding)
            self.right.xmin, self.right.xmax = apply_outer_padding(ext.min_rx, ext.max_rx, padding)
            self.right.ymin, self.right.ymax = apply_outer_padding(ext.min_ry, ext.max_ry, padding)
            self.step = CalibrationStep.REVIEW

    def preview(self, sample=None):
        """Remapped (x, y) in [0, 1] for each stick the controller has."""
        self._require(CalibrationStep.REVIEW, CalibrationStep.DONE)
        sample = sample or self.sample
        if sample is None:
            return {}
        result = {}
        if self.has_left:
            result['left'] = remap_stick(sample.lx, sample.ly, self.left, self.left_deadzone)
        if self.has_right:
            result['right'] = remap_stick(sample.rx, sample.ry, self.right, self.right_deadzone)
        return result

    def commit(self):
        """Write the calibration. On failure stays in Review and re-raises."""
        self._require(CalibrationStep.REVIEW)
        self.error = None
        try:
            written = commit_calibration(
                self.session, self.left, self.right, self.left_deadzone, self.right_deadzone)
        except CommitFailed as e:
            self.error = str(e)
            raise
        self.step = CalibrationStep.DONE
        return written

    def close(self):
        if self.session is not None:
            self.session.close()
