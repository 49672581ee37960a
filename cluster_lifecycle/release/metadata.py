"""Release metadata: the add-on set, component versions and protected values of a release.

Metadata is resolved per installation version either from the public metadata
endpoint or, for airgapped installations, from a config map previously copied
into the cluster. Results are cached for the lifetime of the process.
"""

import asyncio
import copy
from dataclasses import dataclass, field
import json
import logging
import threading
from typing import Any

import aiohttp
from mashumaro import field_options
from slugify import slugify

from cluster_lifecycle.config import MetadataConfig
from cluster_lifecycle.exceptions import (
    MetadataException,
    MetadataFetchError,
    ObjectNotFoundError,
)
from cluster_lifecycle.manifest import (
    BaseManifest,
    ConfigMap,
    HelmExtensions,
    Installation,
    NamedResource,
)
from cluster_lifecycle.store import Store

__all__ = [
    "ReleaseMetadata",
    "MetadataCache",
    "MetadataProvider",
    "local_metadata_id",
    "normalize_version",
]

_LOGGER = logging.getLogger(__name__)

METADATA_KEY = "metadata.json"
KUBERNETES_COMPONENT = "Kubernetes"


def normalize_version(version: str) -> str:
    """Strip the leading `v` so `v1.2.3` and `1.2.3` refer to the same release."""
    return version.removeprefix("v")


def local_metadata_id(version: str, namespace: str) -> NamedResource:
    """Identity of the config map holding the metadata of an airgapped release."""
    slug = slugify(normalize_version(version), lowercase=True, separator="-")
    return NamedResource(ConfigMap.kind, namespace, f"version-metadata-{slug}")


@dataclass
class ReleaseMetadata(BaseManifest):
    """Metadata published for a release."""

    versions: dict[str, str] | None = field(
        default=None, metadata=field_options(alias="Versions")
    )
    """Component versions, e.g. the Kubernetes distribution version."""

    k0s_sha: str = field(default="", metadata=field_options(alias="K0sSHA"))
    """Checksum of the cluster distribution binary."""

    configs: HelmExtensions | None = field(
        default=None, metadata=field_options(alias="Configs")
    )
    """The default add-on set of the release."""

    builtin_configs: dict[str, HelmExtensions] | None = field(
        default=None, metadata=field_options(alias="BuiltinConfigs")
    )
    """Add-on sets enabled by installation features, keyed by feature."""

    protected: dict[str, list[str]] | None = field(
        default=None, metadata=field_options(alias="Protected")
    )
    """Value paths preserved across upgrades, keyed by chart name."""

    class Config(BaseManifest.Config):
        serialize_by_alias = True

    @classmethod
    def parse_json(cls, content: str) -> "ReleaseMetadata":
        """Parse a metadata document."""
        try:
            doc: Any = json.loads(content)
        except json.JSONDecodeError as err:
            raise MetadataException(f"Unable to parse release metadata: {err}") from err
        if not isinstance(doc, dict):
            raise MetadataException("Release metadata is not a JSON object")
        try:
            return cls.from_dict(doc)
        except (ValueError, LookupError, TypeError) as err:
            raise MetadataException(f"Invalid release metadata: {err}") from err

    @property
    def kubernetes_version(self) -> str:
        """The Kubernetes distribution version of the release."""
        return (self.versions or {}).get(KUBERNETES_COMPONENT, "")


class MetadataCache:
    """Process wide cache of release metadata keyed by version.

    Entries are copied on the way in and on the way out so callers can freely
    mutate what they get back while merging.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._entries: dict[str, ReleaseMetadata] = {}

    def get(self, version: str) -> ReleaseMetadata | None:
        with self._lock:
            entry = self._entries.get(normalize_version(version))
            return copy.deepcopy(entry) if entry is not None else None

    def put(self, version: str, metadata: ReleaseMetadata) -> None:
        with self._lock:
            self._entries[normalize_version(version)] = copy.deepcopy(metadata)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)


class MetadataProvider:
    """Resolves the release metadata for an installation."""

    def __init__(
        self,
        store: Store,
        cache: MetadataCache | None = None,
        config: MetadataConfig | None = None,
    ) -> None:
        self._store = store
        self._cache = cache or MetadataCache()
        self._config = config or MetadataConfig()

    async def metadata_for(self, installation: Installation) -> ReleaseMetadata:
        """Return the metadata for the version the installation points to."""
        if not (version := installation.version):
            raise MetadataException(
                f"Installation {installation.name} does not specify a version"
            )
        if (cached := self._cache.get(version)) is not None:
            return cached
        if installation.spec.airgap:
            metadata = await self._local_metadata(version)
        else:
            metadata = await self._remote_metadata(
                version, installation.spec.metrics_base_url
            )
        self._cache.put(version, metadata)
        return metadata

    async def _remote_metadata(self, version: str, base_url: str) -> ReleaseMetadata:
        url = (
            f"{base_url.rstrip('/')}/embedded-cluster-public-files/metadata/"
            f"v{normalize_version(version)}.json"
        )
        _LOGGER.info("Fetching release metadata from %s", url)
        timeout = aiohttp.ClientTimeout(total=self._config.request_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.get(url) as response:
                    if response.status >= 500:
                        raise MetadataFetchError(
                            f"Failed to fetch release metadata from {url}: "
                            f"server returned status {response.status}"
                        )
                    if response.status != 200:
                        raise MetadataException(
                            f"Failed to fetch release metadata from {url}: "
                            f"unexpected status {response.status}"
                        )
                    content = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            raise MetadataFetchError(
                f"Failed to fetch release metadata from {url}: {err}"
            ) from err
        return ReleaseMetadata.parse_json(content)

    async def _local_metadata(self, version: str) -> ReleaseMetadata:
        resource_id = local_metadata_id(version, self._config.namespace)
        _LOGGER.info("Reading release metadata from %s", resource_id)
        try:
            config_map = await self._store.get_object(resource_id, ConfigMap)
        except ObjectNotFoundError as err:
            raise MetadataException(
                f"Release metadata for version {version} not found in the cluster"
            ) from err
        if (content := config_map.data.get(METADATA_KEY)) is None:
            raise MetadataException(
                f"Config map {resource_id.namespaced_name} has no {METADATA_KEY} key"
            )
        return ReleaseMetadata.parse_json(content)
