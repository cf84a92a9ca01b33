from __future__ import annotations

import unittest
from unittest import mock

import spi_flash
from calibration import StickCalibrationRecord, StickSample
from errors import DeviceInfoUnavailable, NoStickData, SpiReadFailed, SpiWriteFailed
from hid_session import ControllerIdentity, HIDSession
from tests.fakes import FakeHIDDevice, FlashResponder, device_info_reply, reply, stick_report

# Factory default stick calibration (center 0x800, 0x700 either side)
FACTORY_LEFT = bytes([0x00, 0x07, 0x70, 0x00, 0x08, 0x80, 0x00, 0x07, 0x70])
FACTORY_RIGHT = bytes([0x00, 0x08, 0x80, 0x00, 0x07, 0x70, 0x00, 0x07, 0x70])


class SpiFlashTestCase(unittest.TestCase):
    def setUp(self) -> None:
        patcher = mock.patch.object(spi_flash.time, "sleep")
        self.sleep = patcher.start()
        self.addCleanup(patcher.stop)
        self.flash = FlashResponder(device_info=device_info_reply())
        self.device = FakeHIDDevice(self.flash)
        self.session = HIDSession(self.device, ControllerIdentity.PRO)


class WriteSpiTests(SpiFlashTestCase):
    def test_write_command_layout(self) -> None:
        attempts = spi_flash.write_spi(self.session, 0x603D, b"\x01\x02\x03")

        self.assertEqual(attempts, 1)
        sent = self.device.writes[0]
        self.assertEqual(sent[0], 0x01)
        self.assertEqual(sent[10], 0x11)
        self.assertEqual(sent[11:15], bytes([0x3D, 0x60, 0x00, 0x00]))
        self.assertEqual(sent[15], 3)
        self.assertEqual(sent[16:19], b"\x01\x02\x03")
        self.assertEqual(self.flash.read_memory(0x603D, 3), b"\x01\x02\x03")

    def test_ack_is_followed_by_settle_delay(self) -> None:
        spi_flash.write_spi(self.session, 0x6089, b"\x80\x00\xF8")
        self.sleep.assert_called_once_with(spi_flash.SPI_WRITE_SETTLE_SEC)

    def test_unrelated_reports_are_skipped(self) -> None:
        def noisy(report: bytes):
            return [stick_report(0x800, 0x800), reply(0x82, 0x02), reply(0x80, 0x11)]

        self.device.responder = noisy
        self.assertEqual(spi_flash.write_spi(self.session, 0x6046, b"\x00"), 1)

    def test_never_acked_write_uses_twenty_attempts(self) -> None:
        self.flash.fail_addresses.add(0x6046)

        with self.assertRaises(SpiWriteFailed) as ctx:
            spi_flash.write_spi(self.session, 0x6046, bytes(9))

        self.assertEqual(ctx.exception.attempts, 20)
        self.assertEqual(len(self.device.writes), 20)
        self.assertEqual(len(self.device.read_timeouts), 20 * 8)
        self.assertTrue(all(t == spi_flash.POLL_TIMEOUT_MS for t in self.device.read_timeouts))
        self.assertEqual(self.sleep.call_count, 20)
        self.assertNotIn(mock.call(spi_flash.SPI_WRITE_SETTLE_SEC), self.sleep.call_args_list)
        self.assertEqual(self.flash.spi_writes, [])

    def test_counter_advances_per_attempt(self) -> None:
        self.flash.fail_addresses.add(0x6046)
        with self.assertRaises(SpiWriteFailed):
            spi_flash.write_spi(self.session, 0x6046, b"\x00")
        self.assertEqual([w[1] for w in self.device.writes], [i & 0x0F for i in range(20)])

    def test_read_error_ends_attempt_and_retries(self) -> None:
        self.device.read_errors = 1
        self.assertEqual(spi_flash.write_spi(self.session, 0x6046, b"\x00"), 2)
        self.assertEqual(len(self.device.writes), 2)

    def test_payload_length_checked_before_sending(self) -> None:
        with self.assertRaises(ValueError):
            spi_flash.write_spi(self.session, 0x6046, bytes(26))
        with self.assertRaises(ValueError):
            spi_flash.write_spi(self.session, 0x6046, b"")
        self.assertEqual(self.device.writes, [])


class ReadSpiTests(SpiFlashTestCase):
    def test_read_spi_returns_data(self) -> None:
        self.flash.load(0x603D, FACTORY_LEFT)
        self.assertEqual(spi_flash.read_spi(self.session, 0x603D, 9), FACTORY_LEFT)
        sent = self.device.writes[0]
        self.assertEqual(sent[10], 0x10)
        self.assertEqual(sent[11:16], bytes([0x3D, 0x60, 0x00, 0x00, 0x09]))

    def test_reply_for_other_address_is_ignored(self) -> None:
        def wrong_address(report: bytes):
            return [reply(0x90, 0x10, bytes([0x00, 0x00, 0x00, 0x00, 0x09]) + bytes(9))]

        self.device.responder = wrong_address
        with self.assertRaises(SpiReadFailed):
            spi_flash.read_spi(self.session, 0x603D, 9)
        self.assertEqual(len(self.device.writes), 20)

    def test_read_stick_calibration_decodes_factory_records(self) -> None:
        self.flash.load(0x603D, FACTORY_LEFT)
        self.flash.load(0x6046, FACTORY_RIGHT)

        left, right = spi_flash.read_stick_calibration(self.session)

        expected = StickCalibrationRecord(xmin=0x100, xcenter=0x800, xmax=0xF00,
                                          ymin=0x100, ycenter=0x800, ymax=0xF00)
        self.assertEqual(left, expected)
        self.assertEqual(right, expected)


class DeviceInfoTests(SpiFlashTestCase):
    def test_device_info_parsed(self) -> None:
        info = spi_flash.read_device_info(self.session)
        self.assertEqual(info.firmware, "3.8B")
        self.assertEqual(info.mac, "98:B6:E9:12:34:AB")
        self.assertIs(info.reported_identity, ControllerIdentity.PRO)
        self.assertEqual(self.device.writes[0][10], 0x02)

    def test_single_digit_minor_is_zero_padded(self) -> None:
        self.flash.device_info = device_info_reply(major=0x04, minor=0x07, device_type=0x01)
        info = spi_flash.read_device_info(self.session)
        self.assertEqual(info.firmware, "4.07")
        self.assertIs(info.reported_identity, ControllerIdentity.LEFT)

    def test_reported_type_is_compared_with_opened_identity(self) -> None:
        self.flash.device_info = device_info_reply(device_type=0x02)
        info = spi_flash.read_device_info(self.session)
        self.assertTrue(info.identity_mismatch(ControllerIdentity.PRO))
        self.assertFalse(info.identity_mismatch(ControllerIdentity.RIGHT))
        self.assertFalse(spi_flash.DeviceInfo("3.8B", "00:00:00:00:00:00").identity_mismatch(ControllerIdentity.PRO))

    def test_device_info_unavailable_after_all_attempts(self) -> None:
        self.flash.device_info = None
        with self.assertRaises(DeviceInfoUnavailable):
            spi_flash.read_device_info(self.session)
        self.assertEqual(len(self.device.writes), 20)

    def test_short_reply_is_not_accepted(self) -> None:
        self.flash.device_info = device_info_reply()[:0x15]
        with self.assertRaises(DeviceInfoUnavailable):
            spi_flash.read_device_info(self.session)


class InputTests(SpiFlashTestCase):
    def test_enable_standard_input_is_fire_and_forget(self) -> None:
        spi_flash.enable_standard_input(self.session)

        self.assertEqual(len(self.device.writes), 1)
        self.assertEqual(self.device.writes[0][10:12], b"\x03\x30")
        self.assertEqual(self.device.read_timeouts, [])
        self.sleep.assert_called_once_with(spi_flash.INPUT_MODE_SETTLE_SEC)

    def test_read_stick_sample_keeps_latest_report(self) -> None:
        self.device.queue(stick_report(0x100, 0x200), stick_report(0x300, 0x400),
                          stick_report(0x500, 0x600, 0x700, 0x800))

        sample = spi_flash.read_stick_sample(self.session)

        self.assertEqual(sample, StickSample(0x500, 0x600, 0x700, 0x800))
        self.assertEqual(len(self.device.reads), 0)
        self.assertNotIn(spi_flash.STICK_FALLBACK_TIMEOUT_MS, self.device.read_timeouts)

    def test_short_reports_are_skipped_while_draining(self) -> None:
        self.device.queue(stick_report(0x111, 0x222), b"\x21\x00\x00")
        self.assertEqual(spi_flash.read_stick_sample(self.session), StickSample(0x111, 0x222))

    def test_empty_buffer_falls_back_to_timed_read(self) -> None:
        self.device.queue(b"", stick_report(0x123, 0x456))

        sample = spi_flash.read_stick_sample(self.session)

        self.assertEqual(sample.lx, 0x123)
        self.assertEqual(self.device.read_timeouts, [0, spi_flash.STICK_FALLBACK_TIMEOUT_MS])

    def test_no_data_raises(self) -> None:
        with self.assertRaises(NoStickData):
            spi_flash.read_stick_sample(self.session)

    def test_short_fallback_report_raises(self) -> None:
        self.device.queue(b"", b"\x30\x00\x00\x00")
        with self.assertRaises(NoStickData):
            spi_flash.read_stick_sample(self.session)


if __name__ == "__main__":
    unittest.main()
