"""
Pastewire - Main entry point for the application.

Created by orpheus497
"""

import argparse
import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from rich.logging import RichHandler

from . import __version__
from .codec import EnvelopeCodec, EnvelopeVariant
from .config import Config
from .constants import (
    CONFIG_FILENAME,
    DEFAULT_DATA_DIR,
    ENVELOPE_VARIANT_DESCRIPTOR,
    ENVELOPE_VARIANT_KEYED,
    LOG_BACKUP_COUNT,
    LOG_DATE_FORMAT,
    LOG_FILENAME,
    LOG_FORMAT,
    LOG_MAX_BYTES,
    LOGS_DIR,
)
from .errors import ConfigError
from .session import Session
from .transport import TcpConnectivity

logger = logging.getLogger(__name__)


def configure_logging(config: Config, data_dir: Path, console: bool, debug: bool = False) -> None:
    """Install log handlers according to the logging config section.

    Console output goes through Rich and is only enabled for the line
    console; the full screen UI would be corrupted by it.
    """
    level_name = "DEBUG" if debug else str(config.get("logging", "level", "INFO")).upper()
    root = logging.getLogger()
    root.setLevel(getattr(logging, level_name, logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    if config.get("logging", "file_logging", True):
        log_dir = data_dir / LOGS_DIR
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_dir / LOG_FILENAME,
            maxBytes=LOG_MAX_BYTES,
            backupCount=LOG_BACKUP_COUNT,
            encoding="utf-8",
        )
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, LOG_DATE_FORMAT))
        root.addHandler(file_handler)

    if console and config.get("logging", "console_logging", True):
        root.addHandler(RichHandler(level=logging.WARNING if not debug else logging.DEBUG, show_path=False))

    if not root.handlers:
        root.addHandler(logging.NullHandler())


def build_session(config: Config) -> Session:
    """Create a Session wired to direct TCP connectivity from config."""
    connectivity = TcpConnectivity(
        host=config.get("network", "host"),
        port=config.get("network", "port"),
        advertise_host=config.get("network", "advertise_host", ""),
        connect_timeout=config.get("network", "connect_timeout"),
        dial_retry_interval=config.get("network", "dial_retry_interval"),
        dial_window=config.get("network", "dial_window"),
    )
    codec = EnvelopeCodec(
        variant=EnvelopeVariant(config.get("protocol", "envelope_variant")),
        strict=config.get("protocol", "strict_envelopes", True),
    )
    return Session(connectivity, codec, gather_timeout=config.get("network", "gather_timeout"))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Pastewire - Copy-paste negotiated peer-to-peer encrypted chat",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pastewire                         # Start the terminal UI
  pastewire --plain                 # Line console instead of the full screen UI
  pastewire --advertise-host 203.0.113.7 --port 5050
                                    # Listen on a forwarded port as initiator
  pastewire --variant descriptor    # Envelopes without keys, keys agreed in-band
  pastewire --write-config          # Write an example config file and exit

Created by orpheus497
        """,
    )

    parser.add_argument("--version", action="version", version=f"Pastewire {__version__}")
    parser.add_argument(
        "--data-dir",
        type=str,
        default=None,
        help=f"Directory for configuration and logs (default: {DEFAULT_DATA_DIR})",
    )
    parser.add_argument("--config", type=str, default=None, help="Configuration file path")
    parser.add_argument("--host", type=str, default=None, help="Address to listen on as initiator")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on as initiator (0 = any)")
    parser.add_argument(
        "--advertise-host",
        type=str,
        default=None,
        help="Extra address to put in the offer, e.g. a public or forwarded address",
    )
    parser.add_argument(
        "--variant",
        choices=(ENVELOPE_VARIANT_KEYED, ENVELOPE_VARIANT_DESCRIPTOR),
        default=None,
        help="Envelope format (default: keyed)",
    )
    parser.add_argument(
        "--lenient",
        action="store_true",
        help="Accept envelopes of the other variant",
    )
    parser.add_argument("--plain", action="store_true", help="Use the line console")
    parser.add_argument("--write-config", action="store_true", help="Write an example config file and exit")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def apply_arguments(config: Config, args: argparse.Namespace) -> None:
    """Command line options override the config file."""
    if args.host is not None:
        config.set("network", "host", args.host)
    if args.port is not None:
        config.set("network", "port", args.port)
    if args.advertise_host is not None:
        config.set("network", "advertise_host", args.advertise_host)
    if args.variant is not None:
        config.set("protocol", "envelope_variant", args.variant)
    if args.lenient:
        config.set("protocol", "strict_envelopes", False)


def main(argv: Optional[list] = None) -> None:
    """Main entry point for Pastewire."""
    args = build_parser().parse_args(argv)

    data_dir = Path(args.data_dir or DEFAULT_DATA_DIR).expanduser().resolve()
    data_dir.mkdir(parents=True, exist_ok=True)
    config_path = Path(args.config).expanduser() if args.config else data_dir / CONFIG_FILENAME

    if args.write_config:
        try:
            Config.create_example(config_path)
        except ConfigError as e:
            print(f"Error: {e.message}", file=sys.stderr)
            sys.exit(1)
        print(f"Wrote example configuration to {config_path}")
        return

    try:
        config = Config(config_path)
        apply_arguments(config, args)
        config.validate()
    except ConfigError as e:
        print(f"Configuration error: {e.message}", file=sys.stderr)
        print(e.hint, file=sys.stderr)
        sys.exit(2)

    configure_logging(config, data_dir, console=args.plain, debug=args.debug)
    logger.info(f"Pastewire {__version__} starting ({config.get('protocol', 'envelope_variant')} envelopes)")

    session = build_session(config)

    if args.plain:
        from .console import PlainConsole

        try:
            asyncio.run(PlainConsole(session).run())
        except KeyboardInterrupt:
            pass
    else:
        from .ui import PastewireApp

        PastewireApp(session, config).run()


if __name__ == "__main__":
    main()
