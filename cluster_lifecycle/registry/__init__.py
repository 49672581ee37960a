"""Registry storage for high-availability airgapped installations."""

from .migrate import (
    REGISTRY_MIGRATION_CONDITION,
    has_registry_migrated,
    migrate_registry_data,
)
from .credentials import (
    REGISTRY_S3_SECRET_CONDITION,
    SEAWEEDFS_S3_SECRET_CONDITION,
    ensure_secrets,
)

__all__ = [
    "REGISTRY_MIGRATION_CONDITION",
    "REGISTRY_S3_SECRET_CONDITION",
    "SEAWEEDFS_S3_SECRET_CONDITION",
    "has_registry_migrated",
    "migrate_registry_data",
    "ensure_secrets",
]
