"""
Command line entry point for gpu-container-helper.

Parses the ``configure`` command, merges it with the configuration file and
runs the configure workflow against the NVML container library.
"""

import argparse
import logging
import os
import sys
from typing import List, Optional

from . import __build_date__, __build_revision__, __version__
from .config import HelperConfig
from .configure import Configurator, ConfigureRequest
from .errors import ConfigureError, LibraryError
from .injectors import load_injector
from .library import Capability
from .nvml import NvmlLibrary
from .requirements import MAX_REQUIREMENTS


logger = logging.getLogger(__name__)

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


class ArgumentParser(argparse.ArgumentParser):
    """Argument parser exiting with status 1 on input errors."""

    def error(self, message):
        self.print_usage(sys.stderr)
        self.exit(1, f"{self.prog}: input error: {message}\n")


class VersionAction(argparse.Action):
    """Print the version banner and exit."""

    def __init__(self, option_strings, dest=argparse.SUPPRESS, default=argparse.SUPPRESS, help=None):
        super().__init__(option_strings=option_strings, dest=dest, default=default,
                         nargs=0, help=help)

    def __call__(self, parser, namespace, values, option_string=None):
        sys.stdout.write(version_banner(parser.prog))
        parser.exit()


def version_banner(prog: str) -> str:
    return (f"{prog} version: {__version__}\n"
            f"build date: {__build_date__ or 'unknown'}\n"
            f"build revision: {__build_revision__ or 'unknown'}\n")


def _pid(value: str) -> int:
    try:
        pid = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid PID: {value}")
    if pid <= 0:
        raise argparse.ArgumentTypeError(f"invalid PID: {value}")
    return pid


def build_parser() -> ArgumentParser:
    """Build the command line parser."""
    parser = ArgumentParser(
        prog='gpu-container-cli',
        description='Command line utility for configuring GPU containers.'
    )
    parser.add_argument('--version', action=VersionAction, help='Print version information and exit')
    parser.add_argument('--debug', '-d', metavar='FILE', help='Log debug information to FILE')
    parser.add_argument('--load-kmods', '-k', action='store_true', help='Load kernel modules')
    parser.add_argument(
        '--config', '-c',
        help='Path to configuration file',
        default=HelperConfig.DEFAULT_CONFIG_PATH
    )

    commands = parser.add_subparsers(dest='command', metavar='COMMAND')
    commands.required = True

    configure = commands.add_parser(
        'configure',
        help='Configure a container with GPU support',
        description='Configure a container with GPU support by exposing device drivers to it. '
                    'The container must be created but not yet started, and the host '
                    'filesystem must still be accessible.'
    )
    configure.add_argument('--pid', '-p', type=_pid, help='Container PID (defaults to the current process)')
    configure.add_argument('--device', '-d', metavar='ID', action='append', default=[],
                           help='Device UUID(s) or index(es) to isolate')
    configure.add_argument('--require', '-r', metavar='EXPR', action='append', default=[],
                           help='Check container requirements')
    configure.add_argument('--compute', '-c', action='store_true', help='Enable compute capability')
    configure.add_argument('--utility', '-u', action='store_true', help='Enable utility capability')
    configure.add_argument('--video', '-v', action='store_true', help='Enable video capability')
    configure.add_argument('--graphic', '-g', action='store_true', help='Enable graphic capability')
    configure.add_argument('--compat32', action='store_true', help='Enable 32bits compatibility')
    configure.add_argument('--no-cgroups', action='store_true', help="Don't use cgroup enforcement")
    configure.add_argument('--no-devbind', action='store_true', help="Don't bind mount devices")
    configure.add_argument('rootfs', metavar='ROOTFS', help='Container root filesystem')

    return parser


def setup_logging(level: str, debug_file: Optional[str] = None) -> None:
    """Configure logging to stderr and, optionally, a debug file."""
    console = logging.StreamHandler(sys.stderr)
    console.setLevel(getattr(logging, level))
    logging.basicConfig(
        level=getattr(logging, level),
        format=LOG_FORMAT,
        handlers=[console]
    )

    if debug_file:
        handler = logging.FileHandler(debug_file)
        handler.setLevel(logging.DEBUG)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        root = logging.getLogger()
        root.addHandler(handler)
        root.setLevel(logging.DEBUG)
        # The injection library reads its debug destination from the environment.
        os.environ['NVC_DEBUG_FILE'] = debug_file


def build_request(args: argparse.Namespace, config: HelperConfig) -> ConfigureRequest:
    """Merge command line arguments with configuration defaults."""
    capabilities = set(config.capabilities)
    for capability in Capability:
        if getattr(args, capability.value):
            capabilities.add(capability)

    return ConfigureRequest(
        rootfs=args.rootfs,
        pid=args.pid,
        devices=','.join(args.device) if args.device else None,
        requirements=list(args.require),
        capabilities=frozenset(capabilities),
        no_cgroups=args.no_cgroups or config.no_cgroups,
        no_devbind=args.no_devbind or config.no_devbind,
        load_kmods=args.load_kmods or config.load_kmods,
    )


def main(argv: Optional[List[str]] = None) -> int:
    """Run the command line and return the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if len(args.require) > MAX_REQUIREMENTS:
        parser.error(f"too many requirements (at most {MAX_REQUIREMENTS})")

    try:
        config = HelperConfig(args.config)
    except ValueError as e:
        print(f"{parser.prog}: input error: {e}", file=sys.stderr)
        return 1

    try:
        setup_logging(config.log_level, args.debug or config.debug_file)
    except OSError as e:
        print(f"{parser.prog}: input error: cannot open debug file: {e}", file=sys.stderr)
        return 1

    if config.found:
        logger.info(f"Loaded configuration from {config.config_path}")
    else:
        logger.warning(f"Config file {config.config_path} not found, using defaults")
    logger.debug(f"Command line: {vars(args)}")

    try:
        request = build_request(args, config)
        library = NvmlLibrary(injector=load_injector(config.injector))
    except (ValueError, LibraryError) as e:
        logger.error(f"input error: {e}")
        return 1

    try:
        Configurator(library).configure(request)
    except ConfigureError as e:
        logger.error(str(e))
        return 1

    return 0


def run() -> None:
    """Entry point function for console script."""
    sys.exit(main())


if __name__ == '__main__':
    run()
