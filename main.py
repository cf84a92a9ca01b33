#!/usr/bin/env python3
"""
JoyCal - Switch controller stick calibration over HID

Reads live stick data from a Joy-Con or Pro Controller and rewrites the
factory stick calibration in SPI flash with a two-step wizard.
"""

import json
import sys
import threading
import time
from datetime import datetime

import settings as app_settings
from calibration import DeadzoneMode
from errors import (
    CommitFailed,
    ControllerError,
    DeviceNotFound,
    NoStickData,
    PartialCommitError,
    WizardStateError,
)
from hid_session import ControllerIdentity, connect, list_controllers
from spi_flash import enable_standard_input, read_device_info, read_stick_calibration, read_stick_sample
from wizard import CalibrationStep, CalibrationWizard

IDENTITY_CHOICES = {
    'left': ControllerIdentity.LEFT,
    'right': ControllerIdentity.RIGHT,
    'pro': ControllerIdentity.PRO,
}


def format_record(record):
    return (f"X [{record.xmin:03X} {record.xcenter:03X} {record.xmax:03X}]  "
            f"Y [{record.ymin:03X} {record.ycenter:03X} {record.ymax:03X}]")


def format_sample(sample):
    return f"L:({sample.lx:03X},{sample.ly:03X}) R:({sample.rx:03X},{sample.ry:03X})"


class SampleLogger:
    """Append one JSON Lines entry per interval with the raw stick values."""

    def __init__(self, path, interval=1.0):
        self.path = path
        self.interval = interval
        self.last_log_time = 0

    def write_header(self):
        with open(self.path, 'w') as f:
            f.write("# JoyCal stick sample log\n")
            f.write(f"# Started: {datetime.now().isoformat()}\n")
            f.write("# Format: JSON Lines (one JSON object per line)\n\n")

    def log(self, step, sample):
        current_time = time.time()
        if current_time - self.last_log_time < self.interval:
            return
        self.last_log_time = current_time
        entry = {
            'timestamp': datetime.now().isoformat(),
            'step': step.value,
            'sticks': sample._asdict(),
        }
        try:
            with open(self.path, 'a') as f:
                f.write(json.dumps(entry) + '\n')
        except OSError as e:
            print(f"Logging error: {e}", flush=True)


class StickPoller:
    """Polls the wizard at a fixed interval on a daemon thread."""

    def __init__(self, wizard, interval=0.016, on_sample=None, logger=None):
        self.wizard = wizard
        self.interval = interval
        self.on_sample = on_sample
        self.logger = logger
        self.running = False
        self.error = None
        self._thread = None

    def start(self):
        self.running = True
        self._thread = threading.Thread(target=self._run, daemon=True)
        self._thread.start()

    def stop(self):
        self.running = False
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None

    def _run(self):
        while self.running:
            try:
                sample = self.wizard.poll()
                if self.logger:
                    self.logger.log(self.wizard.step, sample)
                if self.on_sample:
                    self.on_sample(self.wizard, sample)
            except NoStickData:
                # Controller quiet this tick
                pass
            except Exception as e:
                self.error = e
                print(f"\n✗ Polling stopped: {e}", flush=True)
                self.running = False
                break
            time.sleep(self.interval)


def show_live(wizard, sample):
    """One-line live display for the current wizard step."""
    parts = [format_sample(sample)]
    ext = wizard.extent
    if wizard.step is CalibrationStep.CENTER:
        if wizard.has_left:
            parts.append(f"L center ({ext.center_lx:03X},{ext.center_ly:03X}) dz {ext.deadzone_l:03X}")
        if wizard.has_right:
            parts.append(f"R center ({ext.center_rx:03X},{ext.center_ry:03X}) dz {ext.deadzone_r:03X}")
    elif wizard.step is CalibrationStep.RANGE:
        if wizard.has_left:
            parts.append(f"L x[{ext.min_lx:03X}-{ext.max_lx:03X}] y[{ext.min_ly:03X}-{ext.max_ly:03X}]")
        if wizard.has_right:
            parts.append(f"R x[{ext.min_rx:03X}-{ext.max_rx:03X}] y[{ext.min_ry:03X}-{ext.max_ry:03X}]")
    elif wizard.step in (CalibrationStep.REVIEW, CalibrationStep.DONE):
        for name, (x, y) in wizard.preview(sample).items():
            parts.append(f"{name} {x * 100:5.1f}% {y * 100:5.1f}%")
    print(f"\r{' | '.join(parts):<110}", end='', flush=True)


def ask_yes_no(prompt, default=True):
    suffix = " [Y/n] " if default else " [y/N] "
    answer = input(prompt + suffix).strip().lower()
    if not answer:
        return default
    return answer.startswith('y')


def print_device_info(info, identity):
    if info is None:
        print("  ⚠️  Device info unavailable")
        return
    print(f"  Firmware: {info.firmware} | MAC: {info.mac}")
    if info.identity_mismatch(identity):
        print(f"  ⚠️  Controller reports itself as {info.reported_identity.label}, "
              f"opened as {identity.label}")


def show_last_connected():
    try:
        last = app_settings.get_last_connected()
    except OSError:
        return
    if not last or not last.get('identity'):
        return
    identity = ControllerIdentity.__members__.get(last['identity'])
    label = identity.label if identity else last['identity']
    details = ", ".join(f"{k} {last[k]}" for k in ('firmware', 'mac') if last.get(k))
    print(f"Last connected: {label}" + (f" ({details})" if details else ""))


def cmd_list():
    controllers = list_controllers()
    if not controllers:
        print("No supported controllers found")
        return 1
    for c in controllers:
        link = "USB" if c['usb'] else "Bluetooth"
        print(f"  {c['identity'].label:<24} {link:<10} serial={c['serial'] or '-'}  path={c['path']}")
    return 0


def cmd_info(identity, debug):
    try:
        session = connect(identity, debug=debug)
    except ControllerError as e:
        print(f"✗ {e}")
        return 1
    with session:
        print(f"✓ Connected: {session.identity.label}")
        try:
            print_device_info(read_device_info(session), session.identity)
        except ControllerError as e:
            print(f"  ✗ {e}")
        try:
            left, right = read_stick_calibration(session)
            if session.identity.has_left:
                print(f"  Left stick:  {format_record(left)}")
            if session.identity.has_right:
                print(f"  Right stick: {format_record(right)}")
        except ControllerError as e:
            print(f"  ✗ Could not read stick calibration: {e}")
    return 0


def cmd_monitor(identity, interval, debug):
    try:
        session = connect(identity, debug=debug)
    except ControllerError as e:
        print(f"✗ {e}")
        return 1
    with session:
        print(f"✓ Connected: {session.identity.label}")
        try:
            enable_standard_input(session)
            print("Move the sticks. Press Ctrl+C to stop.\n")
            while True:
                try:
                    sample = read_stick_sample(session)
                    print(f"\r{format_sample(sample):<60}", end='', flush=True)
                except NoStickData:
                    pass
                time.sleep(interval)
        except KeyboardInterrupt:
            print()
        except ControllerError as e:
            print(f"\n✗ {e}")
            return 1
    return 0


def run_phase(wizard, prompt):
    """Wait for Enter, then advance; repeat if no samples were seen yet."""
    while True:
        input()
        try:
            wizard.advance()
            return
        except WizardStateError as e:
            print(f"\n⚠️  {e}. Move the sticks, then press Enter.", flush=True)
            print(prompt, flush=True)


def cmd_calibrate(identity, conf, outer_choice, log_file, debug):
    mode = DeadzoneMode(conf['deadzone_mode'])
    wizard = CalibrationWizard(deadzone_mode=mode, debug=debug)
    show_last_connected()
    try:
        wizard.connect(identity)
    except DeviceNotFound as e:
        print(f"✗ {e}")
        print("  Connect a Joy-Con or Pro Controller via Bluetooth or USB and try again.")
        return 1
    except ControllerError as e:
        print(f"✗ {e}")
        return 1

    info = wizard.device_info
    print(f"✓ Connected: {wizard.identity.label}")
    print_device_info(info, wizard.identity)
    try:
        app_settings.set_last_connected(wizard.identity.name,
                                        info.firmware if info else None,
                                        info.mac if info else None)
    except OSError as e:
        print(f"  ⚠️  Could not save last connected controller: {e}")

    try:
        left, right = read_stick_calibration(wizard.session)
        print("  Current calibration:")
        if wizard.has_left:
            print(f"    Left:  {format_record(left)}")
        if wizard.has_right:
            print(f"    Right: {format_record(right)}")
    except ControllerError as e:
        print(f"  ⚠️  Could not read current calibration: {e}")

    logger = None
    if log_file:
        logger = SampleLogger(log_file)
        try:
            logger.write_header()
            print(f"Logging to: {log_file} (every {logger.interval:.0f}s)")
        except OSError as e:
            print(f"Error creating log file: {e}")
            logger = None

    poller = StickPoller(wizard, interval=conf['poll_interval'], on_sample=show_live, logger=logger)
    try:
        input("\nPress Enter to start the calibration wizard...")
        wizard.start()
        poller.start()

        prompt = ("\nStep 1: Center & Deadzone\n"
                  "  Gently wiggle the sticks around the center within the slack area.\n"
                  "  Do NOT touch the outer rim. Press Enter when done.")
        print(prompt, flush=True)
        run_phase(wizard, prompt)
        print(f"\n  ✓ Deadzone: left {wizard.left_deadzone:03X} right {wizard.right_deadzone:03X}")

        prompt = ("\nStep 2: Range Calibration\n"
                  "  Slowly spin each stick around the OUTER RIM 3 times. Press Enter when done.")
        print(prompt, flush=True)
        run_phase(wizard, prompt)

        poller.stop()
        print()
        if outer_choice is None:
            print("\nStep 3: Outer Deadzone")
            print("  A small outer deadzone prevents undershooting but increases error slightly.")
            outer = ask_yes_no("  Add an outer deadzone? (recommended)", default=conf['outer_deadzone'])
        else:
            outer = outer_choice
        wizard.choose_outer_deadzone(outer)

        print("\nReview Calibration")
        if wizard.has_left:
            print(f"  Left:  {format_record(wizard.left)}  deadzone {wizard.left_deadzone:03X}")
        if wizard.has_right:
            print(f"  Right: {format_record(wizard.right)}  deadzone {wizard.right_deadzone:03X}")
        print("  Move the sticks to check the calibrated output, then press Enter.")
        poller.start()
        input()
        poller.stop()

        while True:
            answer = input("\nType WRITE to write the calibration to the controller (anything else aborts): ")
            if answer.strip() != "WRITE":
                print("Aborted, nothing written.")
                return 0
            print("Writing calibration...", flush=True)
            try:
                written = wizard.commit()
            except PartialCommitError as e:
                print(f"✗ {e}")
                print(f"  ⚠️  Already written: {', '.join(e.written)}. The controller now holds a mixed calibration.")
            except CommitFailed as e:
                print(f"✗ {e}")
                print("  Nothing was written.")
            else:
                print(f"✓ Written: {', '.join(written)}")
                print("\nCalibration complete! Disconnect and reconnect your controller to apply changes.")
                return 0
            if not ask_yes_no("Retry?", default=True):
                return 1
    except KeyboardInterrupt:
        print("\n\n🛑 Stopped")
        return 1
    except ControllerError as e:
        print(f"\n✗ {e}")
        return 1
    finally:
        poller.stop()
        wizard.close()


def save_choices(conf, outer_choice):
    """Persist the deadzone choices given on the command line."""
    if outer_choice is not None:
        conf['outer_deadzone'] = outer_choice
    try:
        app_settings.save_settings(conf)
        print(f"✓ Settings saved (deadzone {conf['deadzone_mode']}, "
              f"outer deadzone {'on' if conf['outer_deadzone'] else 'off'})")
    except OSError as e:
        print(f"⚠️  Could not save settings: {e}")


def main(argv=None):
    import argparse

    conf = app_settings.load_settings()

    parser = argparse.ArgumentParser(description='Switch controller stick calibration')
    modes = parser.add_mutually_exclusive_group()
    modes.add_argument('--list', dest='mode', action='store_const', const='list',
                       help='List attached controllers and exit')
    modes.add_argument('--info', dest='mode', action='store_const', const='info',
                       help='Show firmware, MAC and current stick calibration')
    modes.add_argument('--monitor', dest='mode', action='store_const', const='monitor',
                       help='Show raw stick values until Ctrl+C')
    modes.add_argument('--calibrate', dest='mode', action='store_const', const='calibrate',
                       help='Run the calibration wizard (default)')
    parser.add_argument('--identity', choices=sorted(IDENTITY_CHOICES),
                        help='Only connect to this controller type (default: first of left, right, pro)')
    deadzone = parser.add_mutually_exclusive_group()
    deadzone.add_argument('--axis-deadzone', dest='deadzone_mode', action='store_const',
                          const=DeadzoneMode.AXIS.value,
                          help='Derive the deadzone from the X axis extent (default)')
    deadzone.add_argument('--diagonal-deadzone', dest='deadzone_mode', action='store_const',
                          const=DeadzoneMode.DIAGONAL.value,
                          help='Derive the deadzone from the extent diagonal instead of the X axis')
    outer = parser.add_mutually_exclusive_group()
    outer.add_argument('--outer-deadzone', dest='outer', action='store_const', const=True,
                       help='Add the outer deadzone without asking')
    outer.add_argument('--no-outer-deadzone', dest='outer', action='store_const', const=False,
                       help='Skip the outer deadzone without asking')
    parser.add_argument('--save-settings', action='store_true',
                        help='Remember the deadzone options given here as the new defaults')
    parser.add_argument('--debug', action='store_true', help='Print protocol retries and written payloads')
    parser.add_argument('--log', type=str, help='Log file path (stick values every second, JSON Lines)')
    parser.add_argument('--version', action='version', version=f'%(prog)s {app_settings.VERSION}')
    args = parser.parse_args(argv)

    debug = args.debug or bool(conf['debug'])
    identity = IDENTITY_CHOICES.get(args.identity)
    if args.deadzone_mode:
        conf['deadzone_mode'] = args.deadzone_mode
    if args.save_settings:
        save_choices(conf, args.outer)

    if args.mode == 'list':
        return cmd_list()
    if args.mode == 'info':
        return cmd_info(identity, debug)
    if args.mode == 'monitor':
        return cmd_monitor(identity, conf['poll_interval'], debug)

    print("JoyCal - Switch Stick Calibration")
    print("=" * 70)
    return cmd_calibrate(identity, conf, args.outer, args.log, debug)


if __name__ == "__main__":
    sys.exit(main())
