#!/usr/bin/env python3
"""
12-bit nibble packing used by Switch controllers.

Two 12-bit values share 3 bytes:
  byte0: low 8 bits of v0
  byte1: high 4 bits of v0 (low nibble) | low 4 bits of v1 (high nibble)
  byte2: high 8 bits of v1
The same layout carries live stick data in input reports and calibration
values in SPI flash.
"""

MAX_12BIT = 0xFFF

# Stick block inside a standard input report (0x30): left stick 6-8, right stick 9-11
STICK_DATA_OFFSET = 6
MIN_STICK_REPORT_LEN = 13


def encode_pair(v0, v1):
    """Pack two 12-bit values into 3 bytes. Callers range-check first."""
    return bytes([
        v0 & 0xFF,
        ((v0 >> 8) & 0x0F) | ((v1 & 0x0F) << 4),
        (v1 >> 4) & 0xFF,
    ])


def decode_pair(data, offset=0):
    """Unpack two 12-bit values from 3 bytes starting at offset."""
    b0, b1, b2 = data[offset], data[offset + 1], data[offset + 2]
    v0 = b0 | ((b1 & 0x0F) << 8)
    v1 = (b1 >> 4) | (b2 << 4)
    return v0, v1


def encode_values(values):
    """Pack an even-length sequence of 12-bit values, two per 3 bytes."""
    if len(values) % 2:
        raise ValueError("need an even number of 12-bit values")
    out = bytearray()
    for i in range(0, len(values), 2):
        out += encode_pair(values[i], values[i + 1])
    return bytes(out)


def decode_values(data):
    """Inverse of encode_values; data length must be a multiple of 3."""
    if len(data) % 3:
        raise ValueError("packed 12-bit data must be a multiple of 3 bytes")
    values = []
    for i in range(0, len(data), 3):
        values.extend(decode_pair(data, i))
    return values


def decode_sticks(report):
    """Return (lx, ly, rx, ry) from an input report, or None if it is too short."""
    if report is None or len(report) < MIN_STICK_REPORT_LEN:
        return None
    lx, ly = decode_pair(report, STICK_DATA_OFFSET)
    rx, ry = decode_pair(report, STICK_DATA_OFFSET + 3)
    return lx, ly, rx, ry
