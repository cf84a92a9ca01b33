from __future__ import annotations

import json
import os
import tempfile
import unittest
from unittest import mock

import settings


class SettingsTests(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        self.dir = os.path.join(self.tmp.name, "joycal")
        patcher = mock.patch.object(settings, "_storage_dir", return_value=self.dir)
        patcher.start()
        self.addCleanup(patcher.stop)

    def write_settings(self, text: str) -> None:
        os.makedirs(self.dir, exist_ok=True)
        with open(os.path.join(self.dir, "settings.json"), "w") as f:
            f.write(text)

    def test_defaults_without_file(self) -> None:
        self.assertEqual(settings.load_settings(), settings.DEFAULT_SETTINGS)
        self.assertIsNone(settings.get_last_connected())

    def test_save_and_load(self) -> None:
        stored = dict(settings.DEFAULT_SETTINGS, deadzone_mode="diagonal", outer_deadzone=False)
        settings.save_settings(stored)
        self.assertEqual(settings.load_settings(), stored)

    def test_unknown_keys_are_dropped(self) -> None:
        settings.save_settings(dict(settings.DEFAULT_SETTINGS, theme="dark"))
        with open(os.path.join(self.dir, "settings.json")) as f:
            self.assertNotIn("theme", json.load(f))

    def test_corrupt_file_falls_back_to_defaults(self) -> None:
        self.write_settings("{not json")
        self.assertEqual(settings.load_settings(), settings.DEFAULT_SETTINGS)
        self.write_settings("[1, 2, 3]")
        self.assertEqual(settings.load_settings(), settings.DEFAULT_SETTINGS)

    def test_invalid_values_are_replaced(self) -> None:
        self.write_settings(json.dumps({"deadzone_mode": "square", "poll_interval": "fast"}))
        loaded = settings.load_settings()
        self.assertEqual(loaded["deadzone_mode"], "axis")
        self.assertEqual(loaded["poll_interval"], settings.DEFAULT_SETTINGS["poll_interval"])

    def test_poll_interval_has_floor(self) -> None:
        self.write_settings(json.dumps({"poll_interval": 0}))
        self.assertEqual(settings.load_settings()["poll_interval"], 0.001)

    def test_last_connected_round_trip(self) -> None:
        settings.set_last_connected("PRO", firmware="3.8B", mac="98:B6:E9:12:34:AB")
        self.assertEqual(settings.get_last_connected(),
                         {"identity": "PRO", "firmware": "3.8B", "mac": "98:B6:E9:12:34:AB"})


if __name__ == "__main__":
    unittest.main()
