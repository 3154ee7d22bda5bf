"""
Attendance Device - Main Entry Point

Runs the identity resolution and offline-sync engine against a backend,
using the console sensor as the capture device.
"""

import argparse
import dataclasses
import os
import sys
from pathlib import Path

from .backend_client import sanitize_url
from .config import Config, load_config
from .device_loop import AttendanceDevice
from .logging_config import get_logger, setup_logging
from .sensor import ConsoleSensor

logger = get_logger(__name__)


def _load_local_env() -> None:
    """Load environment variables from attendance_device/.env if present."""
    env_path = Path(__file__).resolve().parent / '.env'
    if not env_path.exists():
        return

    for raw_line in env_path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith('#') or '=' not in line:
            continue
        key, value = line.split('=', 1)
        os.environ.setdefault(key.strip(), value.strip())


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description='Attendance Device - identity resolution and offline sync'
    )

    parser.add_argument(
        '--backend-url',
        type=str,
        help='Backend API URL (or set BACKEND_URL)'
    )

    parser.add_argument(
        '--device-id',
        type=str,
        help='Device identifier used in logs (or set DEVICE_ID)'
    )

    parser.add_argument(
        '--data-dir',
        type=str,
        help='Directory for the mapping table and attendance log (or set DATA_DIR)'
    )

    parser.add_argument(
        '--debug',
        action='store_true',
        help='Enable debug logging'
    )

    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> Config:
    """Apply command line overrides on top of the environment configuration."""
    config = load_config()
    overrides = {}

    if args.backend_url:
        overrides['backend_url'] = args.backend_url.rstrip('/')
    if args.device_id:
        overrides['device_id'] = args.device_id
    if args.data_dir:
        overrides['data_dir'] = args.data_dir
    if args.debug:
        overrides['debug_mode'] = True

    return dataclasses.replace(config, **overrides)


def main(argv=None) -> None:
    """Main entry point."""
    _load_local_env()
    args = parse_args(argv)
    config = build_config(args)

    setup_logging(config.device_id, config.debug_mode)

    logger.info('=' * 60)
    logger.info('Attendance Device')
    logger.info('=' * 60)
    logger.info(f'Backend: {sanitize_url(config.backend_url)}')
    logger.info(f'Data dir: {config.data_dir}')
    logger.info(f'Slots: {config.slot_capacity}, templates/user: {config.templates_per_user}')
    logger.info(f'Sync interval: {config.sync_interval_seconds}s')
    logger.info('=' * 60)

    sensor = ConsoleSensor()
    device = AttendanceDevice(config, sensor)

    try:
        device.restore()
        # Bench sensor only knows the templates the device has mapped
        sensor.stored_slots.update(entry.local_slot_id for entry in device.cache.entries())
        device.run()

    except KeyboardInterrupt:
        logger.info('Received keyboard interrupt, shutting down...')
        sys.exit(0)
    except Exception as e:
        logger.error(f'Fatal error: {e}', exc_info=True)
        sys.exit(1)


if __name__ == '__main__':
    main()
