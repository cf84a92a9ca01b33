"""
Build script for JoyCal (Switch controller stick calibration).

Usage:
  pip install -e .              # Install the joycal command
  pip install -e .[test]        # Plus test dependencies
  python setup.py py2app        # Build macOS .app (requires py2app; VERSION=1.0.0 to set version)

The plist (CFBundleVersion, NSHumanReadableCopyright) controls the About dialog.
"""

import os
import sys
from setuptools import setup

# Version - set VERSION=1.0.0 when building
VERSION = os.environ.get("VERSION", "1.0.0")
COPYRIGHT = "Copyright © 2026 JoyCal contributors"  # Shown in About dialog

APP = ["main.py"]
MODULES = [
    "main",
    "axis_remap",
    "calibration",
    "errors",
    "hid_session",
    "settings",
    "spi_flash",
    "stick_codec",
    "wizard",
]

BUILD_APP = {}
if "py2app" in sys.argv:
    OPTIONS = {"py2app": {
        "argv_emulation": False,
        "packages": ["usb"],
        "includes": ["hid"],  # hid is C extension (.so); include so it goes to lib-dynload
        "excludes": ["test", "unittest", "tkinter"],
        "plist": {
            "CFBundleName": "JoyCal",
            "CFBundleDisplayName": "JoyCal Stick Calibration",
            "CFBundleIdentifier": "com.joycal.calibrator",
            "CFBundleVersion": VERSION,
            "CFBundleShortVersionString": VERSION,
            "NSHumanReadableCopyright": COPYRIGHT,
        },
    }}
    BUILD_APP = {"app": APP, "options": OPTIONS, "setup_requires": ["py2app"]}

setup(
    name="joycal",
    version=VERSION,
    description="Switch Joy-Con / Pro Controller stick calibration over HID",
    python_requires=">=3.8",
    py_modules=MODULES,
    install_requires=[
        "hidapi",
        "pyusb",
    ],
    extras_require={
        "test": ["pytest"],
    },
    entry_points={
        "console_scripts": ["joycal=main:main"],
    },
    **BUILD_APP
)
