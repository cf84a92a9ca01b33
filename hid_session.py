#!/usr/bin/env python3
"""
HID transport session for Switch controllers (Joy-Con L/R, Pro Controller).

One HIDSession owns one open hidapi handle. The controller answers one request
at a time and carries no request ids, so every write, and every write+read
exchange built on top of it, runs under the session lock.
"""

import threading
import time
from enum import Enum

import hid
import usb.core

from errors import ControllerError, DeviceNotFound, TransportError

VID = 0x057e

OUTPUT_REPORT_SIZE = 49
INPUT_REPORT_SIZE = 362

# Output report 0x01: rumble + subcommand
CMD_SUBCOMMAND = 0x01
SUBCOMMAND_OFFSET = 10

# Pro Controller over USB: handshake, then force USB HID and disable the BT timeout.
# Output report 0x80 is not a subcommand and does not use the packet counter.
USB_HANDSHAKE = bytes([0x80, 0x02])
USB_FORCE_HID = bytes([0x80, 0x04])
USB_HANDSHAKE_REPLY_TIMEOUT_MS = 100


class ControllerIdentity(Enum):
    """Recognized controllers, keyed by USB product id."""
    LEFT = 0x2006
    RIGHT = 0x2007
    PRO = 0x2009

    @property
    def product_id(self):
        return self.value

    @property
    def label(self):
        return {
            ControllerIdentity.LEFT: "Switch Joy-Con (L)",
            ControllerIdentity.RIGHT: "Switch Joy-Con (R)",
            ControllerIdentity.PRO: "Switch Pro Controller",
        }[self]

    @property
    def has_left(self):
        return self in (ControllerIdentity.LEFT, ControllerIdentity.PRO)

    @property
    def has_right(self):
        return self in (ControllerIdentity.RIGHT, ControllerIdentity.PRO)


# Tried in this order when no identity is requested
CONNECT_ORDER = (ControllerIdentity.LEFT, ControllerIdentity.RIGHT, ControllerIdentity.PRO)


class HIDSession:
    """Exclusive owner of an open controller handle."""

    def __init__(self, device, identity, path=None, debug=False):
        self._device = device
        self.identity = identity
        self.path = path
        self.debug = debug
        # Re-entrant so an SPI exchange can hold it across write_command + reads
        self.lock = threading.RLock()
        self._packet_counter = 0
        self._closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    @property
    def packet_counter(self):
        """Counter value the next command will carry (4 bits)."""
        return self._packet_counter

    @property
    def closed(self):
        return self._closed

    def write_command(self, buffer):
        """Send a 49-byte subcommand report; byte0/byte1 are filled in here."""
        if len(buffer) > OUTPUT_REPORT_SIZE:
            raise ValueError(f"command is {len(buffer)} bytes, max {OUTPUT_REPORT_SIZE}")
        report = bytearray(OUTPUT_REPORT_SIZE)
        report[:len(buffer)] = buffer
        report[0] = CMD_SUBCOMMAND
        with self.lock:
            report[1] = self._packet_counter & 0x0F
            self._packet_counter = (self._packet_counter + 1) & 0x0F
            self._write(report)
        return report

    def write_raw(self, data):
        """Send an output report as-is (no command id, no counter)."""
        with self.lock:
            self._write(bytes(data))

    def read_timeout(self, size=INPUT_REPORT_SIZE, timeout_ms=0):
        """Read one input report. Returns b'' when nothing arrived in time.

        timeout_ms=0 polls: the handle is non-blocking, so an empty buffer
        returns at once.
        """
        with self.lock:
            if timeout_ms:
                data = self._device.read(size, timeout_ms)
            else:
                data = self._device.read(size)
        return bytes(data) if data else b""

    def usb_handshake(self):
        """Switch a USB-attached Pro Controller to plain USB HID reporting."""
        with self.lock:
            for report in (USB_HANDSHAKE, USB_FORCE_HID):
                self.write_raw(report)
                try:
                    reply = self.read_timeout(64, USB_HANDSHAKE_REPLY_TIMEOUT_MS)
                except OSError:
                    reply = b""
                if self.debug:
                    print(f"  USB {report.hex()} -> {reply[:4].hex() or 'no reply'}", flush=True)

    def close(self):
        with self.lock:
            if self._closed:
                return
            self._closed = True
            try:
                self._device.close()
            except OSError as e:
                if self.debug:
                    print(f"✗ Error closing HID device: {e}", flush=True)

    def _write(self, data):
        if self._closed:
            raise TransportError("session is closed")
        try:
            written = self._device.write(list(data))
        except (OSError, ValueError) as e:
            raise TransportError(f"HID write failed: {e}") from e
        if written is not None and written < 0:
            raise TransportError("HID write failed")


def list_controllers():
    """Describe every attached recognized controller without opening it."""
    found = []
    for identity in CONNECT_ORDER:
        try:
            devices = hid.enumerate(VID, identity.product_id)
        except OSError:
            devices = []
        for d in devices:
            found.append({
                'identity': identity,
                'path': d.get('path'),
                'serial': d.get('serial_number') or '',
                'product': d.get('product_string') or identity.label,
                'usb': is_usb_attached(identity),
            })
    return found


def is_usb_attached(identity):
    """True if a controller with this identity is on the USB bus (not Bluetooth)."""
    try:
        return usb.core.find(idVendor=VID, idProduct=identity.product_id) is not None
    except (usb.core.USBError, ValueError):
        # ValueError covers pyusb's NoBackendError (no libusb installed)
        return False


def open_hid_device(identity, device_index=0, debug=False):
    """Open the device_index-th HID device of this identity, or return None."""
    try:
        devices = hid.enumerate(VID, identity.product_id)
        if device_index >= len(devices):
            return None, None
        path = devices[device_index]['path']
        device = hid.device()
        device.open_path(path)
        device.set_nonblocking(True)
        return device, path
    except OSError as e:
        if debug:
            print(f"✗ Failed to open {identity.label}: {e}", flush=True)
        return None, None


def connect(identity=None, debug=False):
    """Open the first recognized controller (Left, Right, then Pro).

    Raises DeviceNotFound if none can be opened, TransportError if the USB
    handshake fails (the handle is closed first).
    """
    candidates = (identity,) if identity is not None else CONNECT_ORDER
    for candidate in candidates:
        device, path = open_hid_device(candidate, debug=debug)
        if device is None:
            continue
        session = HIDSession(device, candidate, path=path, debug=debug)
        if candidate is ControllerIdentity.PRO and is_usb_attached(candidate):
            try:
                session.usb_handshake()
            except ControllerError:
                session.close()
                raise
            # Let the controller switch report source before the first subcommand
            time.sleep(0.1)
        if debug:
            print(f"✓ HID device opened ({candidate.label})", flush=True)
        return session
    wanted = candidates[0].label if identity is not None else "Joy-Con or Pro Controller"
    raise DeviceNotFound(f"No supported controller found ({wanted})")
