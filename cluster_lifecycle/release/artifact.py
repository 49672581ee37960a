"""Pull artifacts from the registry running inside the cluster."""

from abc import ABC, abstractmethod
import asyncio
from dataclasses import dataclass
import logging
from pathlib import Path
import tempfile

import aiofiles
from oras.client import OrasClient

from cluster_lifecycle.exceptions import (
    AlreadyExistsError,
    MetadataException,
    MetadataFetchError,
    ObjectNotFoundError,
)
from cluster_lifecycle.manifest import ConfigMap, Installation
from cluster_lifecycle.store import Store

from .metadata import METADATA_KEY, local_metadata_id

__all__ = [
    "ArtifactPuller",
    "OrasArtifactPuller",
    "RegistryAuth",
    "copy_version_metadata",
]

_LOGGER = logging.getLogger(__name__)

VERSION_METADATA_FILE = "version-metadata.json"


@dataclass(frozen=True)
class RegistryAuth:
    """Credentials for the internal registry."""

    username: str
    password: str


class ArtifactPuller(ABC):
    """Downloads the files of an OCI artifact."""

    @abstractmethod
    async def pull(self, location: str, outdir: Path) -> None:
        """Download the artifact at `location` into `outdir`."""


class OrasArtifactPuller(ArtifactPuller):
    """Pulls artifacts with the oras client."""

    def __init__(self, auth: RegistryAuth | None = None, insecure: bool = True) -> None:
        self._auth = auth
        self._insecure = insecure

    async def pull(self, location: str, outdir: Path) -> None:
        client = OrasClient(insecure=self._insecure)
        if self._auth:
            hostname = location.split("/", 1)[0]
            _LOGGER.info("Using authentication for registry %s", hostname)
            client.login(
                hostname=hostname,
                username=self._auth.username,
                password=self._auth.password,
            )
        _LOGGER.info("Pulling artifact %s", location)
        try:
            res = await asyncio.to_thread(
                client.pull, target=location, outdir=str(outdir)
            )
        except Exception as err:
            raise MetadataFetchError(
                f"Failed to pull artifact {location}: {err}"
            ) from err
        _LOGGER.debug("Downloaded artifact files: %s", res)


async def copy_version_metadata(
    store: Store, installation: Installation, puller: ArtifactPuller, namespace: str
) -> None:
    """Make sure the metadata of the installation version is stored in the cluster.

    The metadata is pulled from the internal registry and written to a config
    map, which is later read instead of the public metadata endpoint. Nothing
    happens when the config map already exists.
    """
    artifacts = installation.spec.artifacts
    if artifacts is None or not installation.version:
        _LOGGER.info("Skipping version metadata copy for %s", installation.name)
        return

    resource_id = local_metadata_id(installation.version, namespace)
    try:
        await store.get_object(resource_id, ConfigMap)
        return
    except ObjectNotFoundError:
        pass

    if not artifacts.embedded_cluster_metadata:
        raise MetadataException(
            f"Installation {installation.name} has no metadata artifact location"
        )
    with tempfile.TemporaryDirectory() as tmpdir:
        await puller.pull(artifacts.embedded_cluster_metadata, Path(tmpdir))
        path = Path(tmpdir) / VERSION_METADATA_FILE
        try:
            async with aiofiles.open(str(path)) as metadata_file:
                content = await metadata_file.read()
        except FileNotFoundError as err:
            raise MetadataException(
                f"Artifact {artifacts.embedded_cluster_metadata} has no {VERSION_METADATA_FILE}"
            ) from err

    config_map = ConfigMap(
        name=resource_id.name,
        namespace=resource_id.namespace,
        data={METADATA_KEY: content},
    )
    try:
        await store.create_object(config_map)
    except AlreadyExistsError:
        _LOGGER.debug("Version metadata %s created concurrently", resource_id)
        return
    _LOGGER.info("Copied version metadata to %s", resource_id)
