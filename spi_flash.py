#!/usr/bin/env python3
"""
Subcommand exchanges on top of an HIDSession: device info, input mode,
live stick samples and SPI flash read/write.

Each exchange sends one subcommand and polls the reply stream for the matching
ack. The controller drops requests now and then, so every exchange retries
with a fixed budget before giving up.
"""

import struct
import time
from dataclasses import dataclass
from typing import Optional

from calibration import StickSample, decode_left_calibration, decode_right_calibration
from errors import DeviceInfoUnavailable, NoStickData, SpiReadFailed, SpiWriteFailed
from hid_session import INPUT_REPORT_SIZE, SUBCOMMAND_OFFSET, ControllerIdentity
from stick_codec import decode_sticks

# Subcommands
SUBCMD_DEVICE_INFO = 0x02
SUBCMD_SET_INPUT_MODE = 0x03
SUBCMD_SPI_READ = 0x10
SUBCMD_SPI_WRITE = 0x11

INPUT_MODE_STANDARD = 0x30

# Reply layout (input report 0x21)
REPLY_ACK_OFFSET = 0x0D
REPLY_SUBCMD_OFFSET = 0x0E
REPLY_DATA_OFFSET = 0x0F
ACK_DEVICE_INFO = 0x82
ACK_SPI_WRITE = 0x80
ACK_SPI_READ = 0x90

# SPI write payload starts after 4 address bytes and a length byte
SPI_ARGS_OFFSET = SUBCOMMAND_OFFSET + 1
SPI_PAYLOAD_OFFSET = 16
SPI_WRITE_MAX_LEN = 25
SPI_READ_MAX_LEN = 0x1D
SPI_READ_DATA_OFFSET = 0x14

# Retry budget: attempts x polls x poll timeout
MAX_ATTEMPTS = 20
MAX_POLLS = 8
POLL_TIMEOUT_MS = 64
RETRY_DELAY_SEC = 0.010

# Hardware-tuned delays, not documented by Nintendo
SPI_WRITE_SETTLE_SEC = 0.100
INPUT_MODE_SETTLE_SEC = 0.100

STICK_FALLBACK_TIMEOUT_MS = 20
# hidapi buffers ~64 reports; drain at most twice that per call
STICK_DRAIN_LIMIT = 128

# Factory stick calibration in SPI flash
LEFT_STICK_CAL_ADDR = 0x603D
RIGHT_STICK_CAL_ADDR = 0x6046
LEFT_STICK_PARAMS_ADDR = 0x6089
RIGHT_STICK_PARAMS_ADDR = 0x609B
STICK_CAL_LEN = 9
STICK_PARAMS_LEN = 3

_DEVICE_TYPES = {
    0x01: ControllerIdentity.LEFT,
    0x02: ControllerIdentity.RIGHT,
    0x03: ControllerIdentity.PRO,
}


@dataclass
class DeviceInfo:
    """Reply to subcommand 0x02."""
    firmware: str
    mac: str
    # Type byte the controller reports; None for an unknown byte
    reported_identity: Optional[ControllerIdentity] = None

    def identity_mismatch(self, identity):
        """True if the controller reports a different type than the one opened."""
        return self.reported_identity is not None and self.reported_identity is not identity


def build_subcommand(subcommand, args=b""):
    """Command buffer with the subcommand id at byte 10 and its args after it."""
    buf = bytearray(SUBCOMMAND_OFFSET + 1 + len(args))
    buf[SUBCOMMAND_OFFSET] = subcommand
    buf[SUBCOMMAND_OFFSET + 1:] = bytes(args)
    return buf


def is_reply(report, ack, subcommand, min_len=REPLY_SUBCMD_OFFSET + 1):
    return (
        len(report) >= min_len
        and report[REPLY_ACK_OFFSET] == ack
        and report[REPLY_SUBCMD_OFFSET] == subcommand
    )


def _poll_reply(session, match):
    """Poll up to MAX_POLLS reports for one that satisfies match()."""
    for _ in range(MAX_POLLS):
        try:
            report = session.read_timeout(INPUT_REPORT_SIZE, POLL_TIMEOUT_MS)
        except OSError:
            # Read error ends this attempt; the next attempt resends
            return None
        if report and match(report):
            return report
    return None


def parse_device_info(report):
    firmware = f"{report[0x0F]:X}.{report[0x10]:02X}"
    mac = ":".join(f"{b:02X}" for b in report[0x13:0x19])
    return DeviceInfo(firmware=firmware, mac=mac, reported_identity=_DEVICE_TYPES.get(report[0x11]))


def read_device_info(session):
    """Query firmware version and MAC address. Raises DeviceInfoUnavailable."""
    command = build_subcommand(SUBCMD_DEVICE_INFO)

    def match(report):
        return is_reply(report, ACK_DEVICE_INFO, SUBCMD_DEVICE_INFO, min_len=0x19)

    with session.lock:
        for attempt in range(MAX_ATTEMPTS):
            session.write_command(command)
            report = _poll_reply(session, match)
            if report is not None:
                return parse_device_info(report)
            if session.debug:
                print(f"  device info: no reply (attempt {attempt + 1}/{MAX_ATTEMPTS})", flush=True)
    raise DeviceInfoUnavailable(f"Failed to get valid device info after {MAX_ATTEMPTS} attempts")


def enable_standard_input(session):
    """Switch to full 0x30 input reports. The controller sends no ack for this."""
    with session.lock:
        session.write_command(build_subcommand(SUBCMD_SET_INPUT_MODE, [INPUT_MODE_STANDARD]))
        time.sleep(INPUT_MODE_SETTLE_SEC)


def write_spi(session, address, payload):
    """Write up to 25 bytes of SPI flash at address. Raises SpiWriteFailed.

    Returns the number of attempts it took. Holds the session lock for the
    whole retry loop, including the post-ack settle delay.
    """
    payload = bytes(payload)
    if not 0 < len(payload) <= SPI_WRITE_MAX_LEN:
        raise ValueError(f"SPI write payload must be 1..{SPI_WRITE_MAX_LEN} bytes, got {len(payload)}")
    if not 0 <= address <= 0xFFFFFFFF:
        raise ValueError(f"SPI address out of range: {address:#x}")

    command = build_subcommand(SUBCMD_SPI_WRITE, struct.pack('<IB', address, len(payload)) + payload)

    def match(report):
        return is_reply(report, ACK_SPI_WRITE, SUBCMD_SPI_WRITE)

    with session.lock:
        for attempt in range(MAX_ATTEMPTS):
            session.write_command(command)
            if _poll_reply(session, match) is not None:
                time.sleep(SPI_WRITE_SETTLE_SEC)
                return attempt + 1
            if session.debug:
                print(f"  SPI write 0x{address:04X}: no ack (attempt {attempt + 1}/{MAX_ATTEMPTS})", flush=True)
            time.sleep(RETRY_DELAY_SEC)
    raise SpiWriteFailed(address, MAX_ATTEMPTS)


def read_spi(session, address, length):
    """Read length bytes of SPI flash at address. Raises SpiReadFailed."""
    if not 0 < length <= SPI_READ_MAX_LEN:
        raise ValueError(f"SPI read length must be 1..{SPI_READ_MAX_LEN}, got {length}")
    if not 0 <= address <= 0xFFFFFFFF:
        raise ValueError(f"SPI address out of range: {address:#x}")

    echo = struct.pack('<I', address)
    command = build_subcommand(SUBCMD_SPI_READ, echo + bytes([length]))

    def match(report):
        return (
            is_reply(report, ACK_SPI_READ, SUBCMD_SPI_READ, min_len=SPI_READ_DATA_OFFSET + length)
            and report[REPLY_DATA_OFFSET:REPLY_DATA_OFFSET + 4] == echo
        )

    with session.lock:
        for attempt in range(MAX_ATTEMPTS):
            session.write_command(command)
            report = _poll_reply(session, match)
            if report is not None:
                return bytes(report[SPI_READ_DATA_OFFSET:SPI_READ_DATA_OFFSET + length])
            if session.debug:
                print(f"  SPI read 0x{address:04X}: no reply (attempt {attempt + 1}/{MAX_ATTEMPTS})", flush=True)
            time.sleep(RETRY_DELAY_SEC)
    raise SpiReadFailed(address, MAX_ATTEMPTS)


def read_stick_calibration(session):
    """Current factory stick calibration as (left, right) records."""
    left = decode_left_calibration(read_spi(session, LEFT_STICK_CAL_ADDR, STICK_CAL_LEN))
    right = decode_right_calibration(read_spi(session, RIGHT_STICK_CAL_ADDR, STICK_CAL_LEN))
    return left, right


def read_stick_sample(session):
    """Latest stick sample. Drains the backlog; falls back to one 20 ms read.

    Raises NoStickData when nothing usable arrives.
    """
    with session.lock:
        latest = None
        for _ in range(STICK_DRAIN_LIMIT):
            try:
                report = session.read_timeout(INPUT_REPORT_SIZE, 0)
            except OSError:
                break
            if not report:
                break
            sticks = decode_sticks(report)
            if sticks is not None:
                latest = sticks

        if latest is None:
            try:
                report = session.read_timeout(INPUT_REPORT_SIZE, STICK_FALLBACK_TIMEOUT_MS)
            except OSError as e:
                raise NoStickData(f"Read error: {e}") from e
            latest = decode_sticks(report)
            if latest is None:
                raise NoStickData("No data or invalid packet")

    return StickSample(*latest)
