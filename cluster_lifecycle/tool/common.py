"""Flags and helpers shared by the command line actions."""

from argparse import ArgumentParser
import logging
import pathlib
import sys
from typing import cast

import aiofiles
import yaml

from cluster_lifecycle.exceptions import InputException, ObjectNotFoundError
from cluster_lifecycle.manifest import Installation, NamedResource, Secret
from cluster_lifecycle.reconciler import select_authoritative
from cluster_lifecycle.state import InstallationState
from cluster_lifecycle.store import InMemoryStore, Store, read_snapshot, write_snapshot

_LOGGER = logging.getLogger(__name__)

DEFAULT_SECRET_KEY = "installation.yaml"


def add_state_flags(args: ArgumentParser) -> None:
    """Add the flag naming the cluster snapshot file."""
    args.add_argument(
        "--state",
        help="Cluster snapshot YAML file, rewritten with the resulting cluster state",
        type=pathlib.Path,
        required=True,
    )


async def load_state(path: pathlib.Path) -> InMemoryStore:
    _LOGGER.debug("Loading cluster state from %s", path)
    return await read_snapshot(path)


async def save_state(path: pathlib.Path, store: InMemoryStore) -> None:
    _LOGGER.debug("Saving cluster state to %s", path)
    await write_snapshot(path, store)


def parse_installation(content: str, source: str) -> Installation:
    """Parse an installation record document."""
    try:
        return cast(Installation, Installation.parse_yaml(content))
    except (yaml.YAMLError, ValueError, LookupError, TypeError) as err:
        raise InputException(f"Invalid installation in {source}: {err}") from err


async def read_installation_file(path: str) -> Installation:
    """Read an installation record from a file, `-` reads standard input."""
    if path == "-":
        return parse_installation(sys.stdin.read(), "standard input")
    try:
        async with aiofiles.open(path) as installation_file:
            content = await installation_file.read()
    except OSError as err:
        raise InputException(f"Unable to read installation file {path}: {err}") from err
    return parse_installation(content, path)


def parse_secret_ref(value: str) -> tuple[NamedResource, str]:
    """Parse a `namespace/name[:key]` secret reference."""
    ref, _, key = value.partition(":")
    namespace, sep, name = ref.partition("/")
    if not sep or not namespace or not name:
        raise InputException(
            f"Invalid secret reference '{value}', expected namespace/name[:key]"
        )
    return NamedResource(Secret.kind, namespace, name), key or DEFAULT_SECRET_KEY


async def read_installation_secret(store: Store, value: str) -> Installation:
    """Read an installation record stored in a secret."""
    resource_id, key = parse_secret_ref(value)
    try:
        secret = await store.get_object(resource_id, Secret)
    except ObjectNotFoundError as err:
        raise InputException(f"Secret {resource_id.namespaced_name} not found") from err
    if (content := secret.string_data.get(key)) is None:
        raise InputException(
            f"Secret {resource_id.namespaced_name} has no key {key}"
        )
    return parse_installation(content, f"secret {resource_id.namespaced_name}")


async def current_installation(store: Store) -> Installation:
    """Return the authoritative active installation record."""
    records = [
        record
        for record in await store.list_objects(Installation)
        if record.status.state != InstallationState.OBSOLETE
    ]
    if not records:
        raise InputException("No active installations found")
    installation, _ = select_authoritative(records)
    return installation
