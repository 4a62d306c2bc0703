#!/usr/bin/env python3
"""NUT driver enumerator command line.

Usage:
    nut-driver-enumerator [--config UPSCONF] [--framework {systemd,smf}] [ACTION]

Without an action, one reconciliation pass runs and the exit status reports
its outcome:
    0   nothing to do (or changed, with REPORT_RESTART_42=no)
    42  instances changed and now match; the data server should restart
    13  instances changed but still do not match
    1   invalid inputs, unknown service framework, failed lookup
    2   device configuration missing, empty or malformed

Environment:
    NUT_CONFPATH, UPSCONF, SERVICE_FRAMEWORK, AUTO_START, REPORT_RESTART_42
    NUT_ENUMERATOR_SETTINGS, NUT_ENUMERATOR_AUDIT_DIR, NUT_ENUMERATOR_LOG_LEVEL
"""
import argparse
import logging
import os
import sys
import time
from pathlib import Path
from typing import Callable, Optional

from .backends import BackendError, UnknownBackend, create_backend
from .config.catalog import DeviceCatalog
from .config.settings import EnumeratorSettings, SettingsError, parse_interval
from .config.store import ConfigError, KeyNotFound, SectionNotFound, UpsConfReader
from .reconcile import (
    EXIT_CONFIG,
    EXIT_INVALID,
    EXIT_OK,
    EXIT_UNMATCHED,
    InstanceMapper,
    MappingNotFound,
    ReconcileEngine,
)
from .utils.audit_log import AUDIT_FILE_NAME, DEFAULT_AUDIT_DIR, get_recent_changes, setup_audit_logging
from .utils.commands import CommandError, CommandRunner
from .utils.logging_config import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="nut-driver-enumerator",
        description="Keep NUT driver service instances in sync with ups.conf",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Reconcile once (typically from a path/config watcher)
    nut-driver-enumerator

    # Keep reconciling every 30 seconds
    nut-driver-enumerator --daemon 30

    # Which unit runs the driver for "ups1"?
    nut-driver-enumerator --get-service-for-device ups1
""",
    )

    actions = parser.add_mutually_exclusive_group()
    actions.add_argument("--reconfigure", action="store_true",
                         help="Unregister all instances, then register them anew")
    actions.add_argument("--daemon", nargs="?", type=int, const=0, metavar="SECONDS",
                         help="Reconcile repeatedly (default interval from settings)")
    actions.add_argument("--list-devices", action="store_true",
                         help="List configured device sections")
    actions.add_argument("--list-services", action="store_true",
                         help="List registered driver units (full names)")
    actions.add_argument("--list-instances", action="store_true",
                         help="List registered driver instance identifiers")
    actions.add_argument("--get-service-for-device", metavar="DEVICE",
                         help="Print the unit registered for a device")
    actions.add_argument("--get-device-for-service", metavar="SERVICE",
                         help="Print the device wrapped by a unit or instance")
    actions.add_argument("--list-services-for-devices", action="store_true",
                         help="Print device<TAB>unit for every registered device")
    actions.add_argument("--show-all-configs", action="store_true",
                         help="Print every device section")
    actions.add_argument("--show-device-config", metavar="DEVICE",
                         help="Print one device section")
    actions.add_argument("--show-device-config-value", nargs=2, metavar=("DEVICE", "KEY"),
                         help="Print one value of a device section")
    actions.add_argument("--get-service-framework", action="store_true",
                         help="Print the detected service framework")
    actions.add_argument("--list-changes", action="store_true",
                         help="Print recent changes from the audit log")

    parser.add_argument("--config", type=Path, help="Device configuration file (ups.conf)")
    parser.add_argument("--settings", type=Path, help="YAML settings file")
    parser.add_argument("--framework", help="Service framework: systemd or smf")
    parser.add_argument("--autostart", dest="auto_start", action=argparse.BooleanOptionalAction,
                        default=None, help="Start new instances and restart the data server")
    parser.add_argument("--report-restart-42", dest="report_restart_42",
                        action=argparse.BooleanOptionalAction, default=None,
                        help="Exit 42 after successful changes")
    parser.add_argument("--audit-dir", type=Path,
                        help="Directory for the JSON audit log of changes")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def resolve_settings(args: argparse.Namespace) -> EnumeratorSettings:
    settings = EnumeratorSettings.load(args.settings)
    if args.config:
        settings.upsconf = args.config
    if args.framework:
        settings.service_framework = args.framework.lower()
    if args.auto_start is not None:
        settings.auto_start = args.auto_start
    if args.report_restart_42 is not None:
        settings.report_restart_42 = args.report_restart_42
    if args.daemon:
        settings.daemon_interval = parse_interval(args.daemon, "--daemon")
    return settings


def audit_dir(args: argparse.Namespace) -> Optional[Path]:
    if args.audit_dir:
        return args.audit_dir
    env_dir = os.environ.get("NUT_ENUMERATOR_AUDIT_DIR")
    return Path(env_dir) if env_dir else None


def show_configuration(args: argparse.Namespace, reader: UpsConfReader) -> int:
    """Answer the queries that only need the device configuration."""
    if args.list_devices:
        for device in DeviceCatalog(reader).load():
            print(device.name)
    elif args.show_all_configs:
        blocks = [section.to_text() for section in reader.sections()]
        print("\n\n".join(blocks))
    elif args.show_device_config:
        print(reader.section_text(args.show_device_config))
    elif args.show_device_config_value:
        device, key = args.show_device_config_value
        print(reader.get_value(device, key))
    return EXIT_OK


def run_daemon(
    engine: ReconcileEngine,
    interval: int,
    sleep: Callable[[float], None] = time.sleep,
    max_passes: Optional[int] = None,
) -> int:
    """Reconcile every interval seconds until interrupted.

    A pass that cannot read the configuration or list instances is logged
    and the loop carries on with the next one.
    """
    logger.info(f"Reconciling every {interval}s")
    passes = 0
    try:
        while True:
            try:
                engine.reconcile()
            except (ConfigError, BackendError) as e:
                logger.error(f"Reconciliation pass failed: {e}")
            passes += 1
            if max_passes is not None and passes >= max_passes:
                return EXIT_OK
            sleep(interval)
    except KeyboardInterrupt:
        logger.info("Daemon interrupted, exiting")
        return EXIT_OK


def main(argv: Optional[list[str]] = None, runner: Optional[CommandRunner] = None) -> int:
    """Main entry point for the enumerator CLI."""
    args = build_parser().parse_args(argv)
    setup_logging(logging.DEBUG if args.verbose else None)

    try:
        settings = resolve_settings(args)
    except SettingsError as e:
        logger.error(str(e))
        return EXIT_INVALID

    if args.list_changes:
        directory = audit_dir(args) or Path(os.path.expanduser(DEFAULT_AUDIT_DIR))
        for record in get_recent_changes(str(directory / AUDIT_FILE_NAME), framework=args.framework):
            print(record.describe())
        return EXIT_OK

    reader = UpsConfReader(settings.upsconf_path)
    catalog = DeviceCatalog(reader)

    try:
        if args.list_devices or args.show_all_configs or args.show_device_config or args.show_device_config_value:
            return show_configuration(args, reader)
    except (SectionNotFound, KeyNotFound) as e:
        logger.error(str(e))
        return EXIT_INVALID
    except ConfigError as e:
        logger.error(str(e))
        return EXIT_CONFIG

    try:
        backend = create_backend(settings, runner=runner)
    except (UnknownBackend, SettingsError) as e:
        logger.error(str(e))
        return EXIT_INVALID

    if args.get_service_framework:
        print(backend.framework)
        return EXIT_OK

    mapper = InstanceMapper(catalog, backend)
    try:
        if args.list_services:
            for unit in backend.list_instances_raw():
                print(unit)
            return EXIT_OK
        if args.list_instances:
            for instance in backend.list_instances():
                print(instance)
            return EXIT_OK
        if args.get_service_for_device:
            print(mapper.service_for_device(args.get_service_for_device))
            return EXIT_OK
        if args.get_device_for_service:
            print(mapper.device_for_service(args.get_device_for_service))
            return EXIT_OK
        if args.list_services_for_devices:
            for device, unit in mapper.mapping():
                print(f"{device}\t{unit}")
            return EXIT_OK
    except (MappingNotFound, SectionNotFound) as e:
        logger.error(str(e))
        return EXIT_INVALID
    except ConfigError as e:
        logger.error(str(e))
        return EXIT_CONFIG
    except CommandError as e:
        logger.error(f"Service manager query failed: {e}")
        return EXIT_UNMATCHED

    directory = audit_dir(args)
    if directory is not None:
        setup_audit_logging(str(directory))

    engine = ReconcileEngine(catalog, backend, auto_start=settings.auto_start)

    if args.daemon is not None:
        return run_daemon(engine, settings.daemon_interval)

    try:
        if args.reconfigure:
            result = engine.reconfigure()
        else:
            result = engine.reconcile()
    except ConfigError as e:
        logger.error(str(e))
        return EXIT_CONFIG
    except BackendError as e:
        logger.error(str(e))
        return EXIT_UNMATCHED

    return result.exit_code(settings.report_restart_42)


if __name__ == "__main__":
    sys.exit(main())
