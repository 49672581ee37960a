"""Release metadata resolution and airgap metadata distribution."""

from .artifact import (
    ArtifactPuller,
    OrasArtifactPuller,
    RegistryAuth,
    copy_version_metadata,
)
from .metadata import (
    MetadataCache,
    MetadataProvider,
    ReleaseMetadata,
    local_metadata_id,
    normalize_version,
)

__all__ = [
    "ArtifactPuller",
    "OrasArtifactPuller",
    "RegistryAuth",
    "copy_version_metadata",
    "MetadataCache",
    "MetadataProvider",
    "ReleaseMetadata",
    "local_metadata_id",
    "normalize_version",
]
