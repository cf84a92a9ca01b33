#!/usr/bin/env python3
"""
Exceptions raised by the controller session, the SPI flash protocol and the
calibration wizard.

Everything derives from ControllerError so a front end can catch one type.
"""


class ControllerError(Exception):
    """Base class for all controller and calibration failures."""


class DeviceNotFound(ControllerError):
    """No recognized controller could be opened."""


class TransportError(ControllerError):
    """The HID handle rejected a write (device unplugged, permissions, ...)."""


class DeviceInfoUnavailable(ControllerError):
    """The controller never answered the device info subcommand."""


class NoStickData(ControllerError):
    """No usable input report arrived within the read window."""


class SpiWriteFailed(ControllerError):
    """A flash write was never acknowledged within the attempt budget."""

    def __init__(self, address, attempts):
        super().__init__(f"SPI write to 0x{address:04X} failed after {attempts} attempts")
        self.address = address
        self.attempts = attempts


class SpiReadFailed(ControllerError):
    """A flash read was never answered within the attempt budget."""

    def __init__(self, address, attempts):
        super().__init__(f"SPI read from 0x{address:04X} failed after {attempts} attempts")
        self.address = address
        self.attempts = attempts


class DegenerateCalibration(ControllerError):
    """A calibration record breaks min <= center <= max or leaves 12 bits."""


class WizardStateError(ControllerError):
    """A wizard operation was called in the wrong step."""


class CommitFailed(ControllerError):
    """Commit aborted before anything reached the flash."""

    def __init__(self, message, failed=None, written=()):
        super().__init__(message)
        self.failed = failed
        self.written = list(written)

    @property
    def partial(self):
        return bool(self.written)


class PartialCommitError(CommitFailed):
    """Commit aborted after some regions were already written (no rollback)."""
