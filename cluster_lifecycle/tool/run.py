"""Command line action running the reconciliation loop."""

from argparse import ArgumentParser, _SubParsersAction as SubParsersAction
import logging
import os
from typing import cast

from cluster_lifecycle.config import RUNNING_VERSION_ENV, ReconcilerConfig
from cluster_lifecycle.metrics import HttpReporter
from cluster_lifecycle.reconciler import InstallationReconciler
from cluster_lifecycle.release import MetadataProvider, OrasArtifactPuller
from cluster_lifecycle.task import task_service_context

from . import common

_LOGGER = logging.getLogger(__name__)


class RunAction:
    """Run the installation controller."""

    @classmethod
    def register(
        cls, subparsers: SubParsersAction  # type: ignore[type-arg]
    ) -> ArgumentParser:
        """Register the subparser commands."""
        args = cast(
            ArgumentParser,
            subparsers.add_parser(
                "run",
                help="Reconcile installations against the cluster",
                description=(
                    "Run the reconciliation loop against the cluster snapshot, "
                    "saving the snapshot after every cycle."
                ),
            ),
        )
        common.add_state_flags(args)
        args.add_argument(
            "--once",
            action="store_true",
            help="Run a single reconciliation cycle and exit",
        )
        args.add_argument(
            "--requeue-after",
            type=float,
            default=ReconcilerConfig.requeue_after,
            help="Seconds between cycles when nothing changes",
        )
        args.add_argument(
            "--cycle-timeout",
            type=float,
            default=ReconcilerConfig.cycle_timeout,
            help="Deadline in seconds for a single cycle",
        )
        args.add_argument(
            "--running-version",
            default=os.environ.get(RUNNING_VERSION_ENV, ""),
            help=f"Release version of the running controller (default ${RUNNING_VERSION_ENV})",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        state,
        once: bool,
        requeue_after: float,
        cycle_timeout: float,
        running_version: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        store = await common.load_state(state)
        config = ReconcilerConfig(
            requeue_after=requeue_after,
            cycle_timeout=cycle_timeout,
            running_version=running_version,
        )
        reconciler = InstallationReconciler(
            store,
            MetadataProvider(store),
            OrasArtifactPuller(),
            HttpReporter(),
            config,
        )

        async def _save() -> None:
            await common.save_state(state, store)

        with task_service_context() as task_service:
            try:
                await reconciler.run(once=once, after_cycle=_save)
            finally:
                await task_service.wait_for_background()
