"""Command line tool for reconciling cluster installations."""

import argparse
import asyncio
import logging
import sys
import traceback

from cluster_lifecycle.exceptions import LifecycleException

from . import migrate, run, upgrade

_LOGGER = logging.getLogger(__name__)


def _make_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Command line utility for driving a cluster toward its installation.",
    )
    parser.add_argument(
        "--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
    )

    subparsers = parser.add_subparsers(dest="command", help="Command", required=True)

    run.RunAction.register(subparsers)
    upgrade.UpgradeAction.register(subparsers)
    migrate.MigrateAction.register(subparsers)
    return parser


def main(argv: list[str] | None = None) -> None:
    """cluster-lifecycle command line tool main entry point."""
    parser = _make_parser()
    args = parser.parse_args(argv)

    if args.log_level:
        logging.basicConfig(level=args.log_level)

    action = args.cls()
    try:
        asyncio.run(action.run(**vars(args)))
    except LifecycleException as err:
        if args.log_level == "DEBUG":
            traceback.print_exc(file=sys.stderr)
        print(f"cluster-lifecycle error: {err}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
