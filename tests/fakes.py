"""In-memory stand-ins for a hidapi device and the controller's SPI flash."""

from __future__ import annotations

import struct
from collections import deque
from typing import Callable, Deque, Dict, Iterable, List, Optional, Set

from stick_codec import encode_pair

REPORT_SIZE = 49


def reply(ack: int, subcommand: int, data: bytes = b"", size: int = REPORT_SIZE) -> bytes:
    report = bytearray(size)
    report[0] = 0x21
    report[0x0D] = ack
    report[0x0E] = subcommand
    report[0x0F:0x0F + len(data)] = data
    return bytes(report)


def stick_report(lx: int, ly: int, rx: int = 0x800, ry: int = 0x800) -> bytes:
    report = bytearray(REPORT_SIZE)
    report[0] = 0x30
    report[6:9] = encode_pair(lx, ly)
    report[9:12] = encode_pair(rx, ry)
    return bytes(report)


def device_info_reply(major: int = 0x03, minor: int = 0x8B, device_type: int = 0x03,
                      mac: bytes = bytes([0x98, 0xB6, 0xE9, 0x12, 0x34, 0xAB])) -> bytes:
    data = bytearray(10)
    data[0] = major
    data[1] = minor
    data[2] = device_type
    data[3] = 0x02
    data[4:10] = mac
    return reply(0x82, 0x02, bytes(data))


class FakeHIDDevice:
    """Records writes; serves queued reports on read.

    A queued b"" is served as "nothing this call". The responder, if set, is
    called with every written report and may return reports to queue.
    """

    def __init__(self, responder: Optional[Callable[[bytes], Iterable[bytes]]] = None) -> None:
        self.responder = responder
        self.writes: List[bytes] = []
        self.reads: Deque[bytes] = deque()
        self.read_timeouts: List[int] = []
        self.read_errors = 0
        self.closed = False

    def queue(self, *reports: bytes) -> None:
        self.reads.extend(reports)

    def write(self, data) -> int:
        report = bytes(data)
        self.writes.append(report)
        if self.responder is not None:
            self.reads.extend(self.responder(report) or ())
        return len(report)

    def read(self, size: int, timeout_ms: int = 0) -> list:
        self.read_timeouts.append(timeout_ms)
        if self.read_errors:
            self.read_errors -= 1
            raise OSError("read error")
        if self.reads:
            return list(self.reads.popleft()[:size])
        return []

    def close(self) -> None:
        self.closed = True

    def subcommands(self) -> List[int]:
        return [w[10] for w in self.writes if w and w[0] == 0x01]


class FlashResponder:
    """Answers subcommands like a controller with a writable SPI flash."""

    def __init__(self, memory: Optional[Dict[int, int]] = None, fail_addresses: Iterable[int] = (),
                 device_info: Optional[bytes] = None) -> None:
        self.memory: Dict[int, int] = dict(memory or {})
        self.fail_addresses: Set[int] = set(fail_addresses)
        self.device_info = device_info
        self.spi_writes: List[tuple] = []

    def load(self, address: int, data: bytes) -> None:
        for i, b in enumerate(data):
            self.memory[address + i] = b

    def read_memory(self, address: int, length: int) -> bytes:
        return bytes(self.memory.get(address + i, 0xFF) for i in range(length))

    def __call__(self, report: bytes) -> List[bytes]:
        if report[0] != 0x01:
            return []
        subcommand = report[10]
        if subcommand == 0x02 and self.device_info is not None:
            return [self.device_info]
        if subcommand == 0x11:
            address, length = struct.unpack_from('<IB', report, 11)
            if address in self.fail_addresses:
                return []
            payload = report[16:16 + length]
            self.load(address, payload)
            self.spi_writes.append((address, payload))
            return [reply(0x80, 0x11)]
        if subcommand == 0x10:
            address, length = struct.unpack_from('<IB', report, 11)
            if address in self.fail_addresses:
                return []
            data = report[11:16] + self.read_memory(address, length)
            return [reply(0x90, 0x10, data, size=max(REPORT_SIZE, 0x14 + length))]
        return []
