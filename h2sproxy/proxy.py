import argparse
import logging
import sys
from dataclasses import replace
from logging.handlers import RotatingFileHandler

from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel

from h2sproxy.model.Core.errors import ProfileError
from h2sproxy.model.H2SProxyServer import H2SProxyServer
from h2sproxy.model.Profile import load_profile

LOGO_FIGURE = r"""
 _   _ ____  ____  ____
| | | |___ \/ ___||  _ \ _ __ _____  ___   _
| |_| | __) \___ \| |_) | '__/ _ \ \/ / | | |
|  _  |/ __/ ___) |  __/| | | (_) >  <| |_| |
|_| |_|_____|____/|_|   |_|  \___/_/\_\\__, |
                                       |___/
"""

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

console = Console()


def setup_logging(level: str = "INFO", log_file: str = None) -> logging.Logger:
    """Console logging through rich, plus an optional rotating log file."""
    handlers = [RichHandler(console=console, show_path=False)]
    if log_file:
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=3)
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handlers.append(file_handler)

    logging.basicConfig(level=level.upper(), format="%(message)s", handlers=handlers)
    return logging.getLogger("h2sproxy")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="HTTP to SOCKS5 routing proxy")
    parser.add_argument("--profile", default="./profile.json", help="profile path")
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"], help="log level")
    parser.add_argument("--log-file", default=None, help="also log to this file")
    parser.add_argument("--timeout", type=float, default=None,
                        help="upstream timeout in seconds (default: none)")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    logger = setup_logging(args.log_level, args.log_file)

    try:
        profile = load_profile(args.profile)
    except ProfileError as e:
        logger.error(f"failed to load profile: {e}")
        return 1
    if args.timeout is not None:
        profile = replace(profile, timeout=args.timeout)

    server = H2SProxyServer(profile, logger)
    console.print(Panel(LOGO_FIGURE, border_style="cyan", expand=False))
    console.print(f"H2SProxy server start, listening [{profile.server_addr}]...")
    try:
        server.bind()
    except (OSError, ValueError) as e:
        logger.error(f"H2SProxy server down: {e}")
        return 1
    logger.info(f"Loaded {len(profile.rule_set)} routing rule(s)")
    server.start()
    return 0


if __name__ == "__main__":
    sys.exit(main())
