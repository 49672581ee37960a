"""Command line action running a data migration."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from cluster_lifecycle.exceptions import InputException
from cluster_lifecycle.registry import (
    REGISTRY_MIGRATION_CONDITION,
    migrate_registry_data,
)

from . import common

_LOGGER = logging.getLogger(__name__)

REGISTRY_DATA = "registry-data"


class MigrateAction:
    """Run a migration against the current installation."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "migrate",
                help="Run a migration",
                description="Run a named migration against the current installation.",
            ),
        )
        common.add_state_flags(args)
        args.add_argument(
            "--migration",
            required=True,
            help=f"Name of the migration to run, one of: {REGISTRY_DATA}",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        state,
        migration: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        if migration != REGISTRY_DATA:
            raise InputException(f"unknown migration: {migration}")
        store = await common.load_state(state)
        installation = await common.current_installation(store)
        try:
            await migrate_registry_data(store, installation)
        finally:
            await store.update_status(installation)
            await common.save_state(state, store)
        condition = installation.status.get_condition(REGISTRY_MIGRATION_CONDITION)
        print(
            f"Registry data migration: {condition.reason if condition else 'unknown'}"
        )
