"""Command line action starting an upgrade to a new installation."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
from typing import cast

from cluster_lifecycle.artifacts import ArtifactDistributor
from cluster_lifecycle.config import UpgradeConfig
from cluster_lifecycle.release import MetadataProvider, OrasArtifactPuller
from cluster_lifecycle.task import task_service_context
from cluster_lifecycle.upgrade import upgrade_cluster

from . import common

_LOGGER = logging.getLogger(__name__)


class UpgradeAction:
    """Upgrade the cluster to a new installation."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "upgrade",
                help="Start an upgrade to a new installation",
                description=(
                    "Create the installation record, wait for airgap artifacts "
                    "and update the controller chart to the new release."
                ),
            ),
        )
        common.add_state_flags(args)
        source = args.add_mutually_exclusive_group(required=True)
        source.add_argument(
            "--installation",
            help="Installation YAML file, or - to read from standard input",
        )
        source.add_argument(
            "--installation-secret",
            help="Secret holding the installation as namespace/name[:key]",
        )
        args.add_argument(
            "--timeout",
            type=float,
            default=UpgradeConfig.timeout,
            help="Seconds to wait for artifacts to reach all nodes",
        )
        args.add_argument(
            "--interval",
            type=float,
            default=UpgradeConfig.interval,
            help="Seconds between artifact checks",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        state,
        installation: str | None,
        installation_secret: str | None,
        timeout: float,
        interval: float,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        store = await common.load_state(state)
        if installation_secret:
            record = await common.read_installation_secret(store, installation_secret)
        else:
            record = await common.read_installation_file(installation or "-")

        with task_service_context():
            try:
                result = await upgrade_cluster(
                    store,
                    record,
                    MetadataProvider(store),
                    ArtifactDistributor(store),
                    OrasArtifactPuller(),
                    UpgradeConfig(interval=interval, timeout=timeout),
                )
            finally:
                await common.save_state(state, store)
        print(f"Upgrade to {result.version} started for installation {result.name}")
