"""
Command-line entry point: list every server matching the given filters.

Usage:
    masterquery --appid 440 --appid 730
    masterquery --master hl2master.steampowered.com:27011 --filter '\\gamedir\\tf'

Servers are printed to stdout as ip:port, one per line; logging goes to stderr.
"""

import argparse
import sys

from masterquery._version import __version__
from masterquery.client.querier import MasterServerQuerier
from masterquery.config.app_settings import app_config
from masterquery.models.errors import MasterQueryError
from masterquery.models.master_types import ServerPage
from masterquery.util.logging_helper import COMPONENT_LOGGERS, get_logger, level_from_name, setup_logging
from masterquery.util.udp_socket import split_host_port

logger = get_logger(__name__)


def master_address(value: str) -> tuple[str, int]:
    """argparse type for --master: "host:port" with a numeric port."""
    try:
        host, port = split_host_port(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected host:port, got {value!r}")
    if not 0 < port < 65536:
        raise argparse.ArgumentTypeError(f"port out of range: {port}")
    return host, port


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Query a game master server for its server list")
    parser.add_argument(
        "--master",
        type=master_address,
        default=app_config.master.address,
        help=f"Master server host:port (default: {app_config.master.address})",
    )
    parser.add_argument("--appid", type=int, action="append", default=[], help="Filter by app id (repeatable)")
    parser.add_argument(
        "--filter", dest="filters", action="append", default=[], help="Raw filter token, e.g. \\gamedir\\tf"
    )
    parser.add_argument(
        "--timeout", type=float, default=None, help="Seconds to wait for each response (default from config)"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging (hex dumps of every packet)")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    log_level = level_from_name(app_config.logging.level)
    debug_modules = list(COMPONENT_LOGGERS) if args.debug else None
    setup_logging(level=log_level, debug_modules=debug_modules)

    settings = app_config.master
    if args.timeout is not None:
        settings = settings.model_copy(update={"timeout": args.timeout})

    querier = MasterServerQuerier(args.master, settings=settings)
    querier.filter_app_ids(args.appid)
    querier.add_filters(args.filters)

    def print_page(page: ServerPage) -> None:
        for server in page:
            print(server)
        sys.stdout.flush()

    try:
        total = querier.query(print_page)
    except MasterQueryError as e:
        logger.error("Master query failed: %s", e)
        return 1

    print(f"{total} server(s)", file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
