"""Object storage credentials shared by the HA registry and its storage backend.

The storage backend reads its identities from a JSON document in a secret and
the registry reads the admin key pair from a second secret. Secret names and
namespaces come from the built-in add-on sets of the release.
"""

from dataclasses import dataclass, field
import json
import logging
import secrets
import string
from typing import Any

from mashumaro import field_options

from cluster_lifecycle.exceptions import (
    AlreadyExistsError,
    LifecycleException,
    ObjectNotFoundError,
    ValuesException,
)
from cluster_lifecycle.manifest import (
    CONDITION_FALSE,
    CONDITION_TRUE,
    BaseManifest,
    Chart,
    Condition,
    Installation,
    NamedResource,
    Secret,
)
from cluster_lifecycle.release import ReleaseMetadata
from cluster_lifecycle.store import Store
from cluster_lifecycle.values import get_path, parse_path, parse_values

__all__ = [
    "ensure_secrets",
    "SeaweedfsConfig",
    "SEAWEEDFS_S3_SECRET_CONDITION",
    "REGISTRY_S3_SECRET_CONDITION",
]

_LOGGER = logging.getLogger(__name__)

SEAWEEDFS_S3_SECRET_CONDITION = "SeaweedfsS3SecretReady"
REGISTRY_S3_SECRET_CONDITION = "RegistryS3SecretReady"

SEAWEEDFS_CONFIG_KEY = "seaweedfs_s3_config"
ADMIN_IDENTITY = "anvAdmin"
READ_ONLY_IDENTITY = "anvReadOnly"

_ALPHABET = string.ascii_letters + string.digits


def _random_string(length: int) -> str:
    return "".join(secrets.choice(_ALPHABET) for _ in range(length))


@dataclass
class Credential(BaseManifest):
    access_key: str = field(metadata=field_options(alias="accessKey"))
    secret_key: str = field(metadata=field_options(alias="secretKey"))

    class Config(BaseManifest.Config):
        serialize_by_alias = True

    @classmethod
    def generate(cls) -> "Credential":
        return cls(access_key=_random_string(20), secret_key=_random_string(40))


@dataclass
class Identity(BaseManifest):
    name: str
    credentials: list[Credential] = field(default_factory=list)
    actions: list[str] = field(default_factory=list)


@dataclass
class SeaweedfsConfig(BaseManifest):
    """Identities accepted by the object storage S3 gateway."""

    identities: list[Identity] = field(default_factory=list)

    def credentials(self, name: str) -> Credential | None:
        for identity in self.identities:
            if identity.name == name and identity.credentials:
                return identity.credentials[0]
        return None

    def ensure_identity(self, name: str, actions: list[str]) -> bool:
        """Add an identity with fresh keys if it is missing, returning True if added."""
        if self.credentials(name) is not None:
            return False
        self.identities.append(
            Identity(name=name, credentials=[Credential.generate()], actions=actions)
        )
        return True


def _builtin_chart(metadata: ReleaseMetadata, config_name: str) -> Chart:
    builtin = (metadata.builtin_configs or {}).get(config_name)
    if builtin is None:
        raise LifecycleException(f"Release has no built-in add-on set {config_name}")
    if not builtin.charts:
        raise LifecycleException(f"Built-in add-on set {config_name} has no charts")
    return builtin.charts[0]


def _secret_id(chart: Chart, path: str) -> NamedResource:
    """Return the secret referenced by a chart value."""
    values = parse_values(chart.values, f"chart {chart.name} values")
    found, name = get_path(values, parse_path(path))
    if not found or not name or not isinstance(name, str):
        raise ValuesException(f"Chart {chart.name} has no secret reference at {path}")
    return NamedResource(Secret.kind, chart.target_ns, name)


async def _get_secret(store: Store, resource_id: NamedResource) -> Secret | None:
    try:
        return await store.get_object(resource_id, Secret)
    except ObjectNotFoundError:
        return None


async def _write_secret(
    store: Store, existing: Secret | None, secret: Secret
) -> None:
    if existing is None:
        try:
            await store.create_object(secret)
            _LOGGER.info("Created secret %s", secret.resource_id)
            return
        except AlreadyExistsError:
            existing = await store.get_object(secret.resource_id, Secret)
    existing.string_data = secret.string_data
    existing.labels.update(secret.labels)
    await store.update_object(existing)
    _LOGGER.info("Updated secret %s", secret.resource_id)


def _load_config(secret: Secret | None) -> SeaweedfsConfig:
    if secret is None or SEAWEEDFS_CONFIG_KEY not in secret.string_data:
        return SeaweedfsConfig()
    try:
        doc: Any = json.loads(secret.string_data[SEAWEEDFS_CONFIG_KEY])
        return SeaweedfsConfig.from_dict(doc)
    except (ValueError, LookupError, TypeError) as err:
        _LOGGER.error(
            "Storage config in %s is unreadable, regenerating: %s",
            secret.resource_id,
            err,
        )
        return SeaweedfsConfig()


async def _ensure_seaweedfs_secret(
    store: Store, installation: Installation, metadata: ReleaseMetadata
) -> SeaweedfsConfig:
    chart = _builtin_chart(metadata, "seaweedfs")
    resource_id = _secret_id(chart, "filer.s3.existingConfigSecret")
    existing = await _get_secret(store, resource_id)
    config = _load_config(existing)
    changed = config.ensure_identity(ADMIN_IDENTITY, ["Admin", "Read", "Write"])
    changed = config.ensure_identity(READ_ONLY_IDENTITY, ["Read"]) or changed
    if changed:
        await _write_secret(
            store,
            existing,
            Secret(
                name=resource_id.name,
                namespace=resource_id.namespace,
                labels={"embedded-cluster/installation": installation.name},
                string_data={
                    SEAWEEDFS_CONFIG_KEY: json.dumps(config.to_dict(), sort_keys=True)
                },
            ),
        )
    return config


async def _ensure_registry_secret(
    store: Store, metadata: ReleaseMetadata, config: SeaweedfsConfig
) -> None:
    if (admin := config.credentials(ADMIN_IDENTITY)) is None:
        raise LifecycleException(f"Storage credentials for {ADMIN_IDENTITY} not found")
    chart = _builtin_chart(metadata, "registry-ha")
    resource_id = _secret_id(chart, "secrets.s3.secretRef")
    existing = await _get_secret(store, resource_id)
    data = {"s3AccessKey": admin.access_key, "s3SecretKey": admin.secret_key}
    if existing is not None and existing.string_data == data:
        return
    await _write_secret(
        store,
        existing,
        Secret(name=resource_id.name, namespace=resource_id.namespace, string_data=data),
    )


def _secret_condition(
    installation: Installation, condition_type: str, err: Exception | None
) -> None:
    installation.status.set_condition(
        Condition(
            type=condition_type,
            status=CONDITION_FALSE if err else CONDITION_TRUE,
            reason="SecretFailed" if err else "SecretReady",
            message=str(err) if err else "",
            observed_generation=installation.generation,
        )
    )


async def ensure_secrets(
    store: Store, installation: Installation, metadata: ReleaseMetadata
) -> None:
    """Create or refresh the storage and registry credential secrets.

    Existing keys are kept, only missing identities are generated. The outcome
    of each secret is recorded as a condition on the installation status.

    Raises:
        LifecycleException: If either secret could not be written.
    """
    try:
        config = await _ensure_seaweedfs_secret(store, installation, metadata)
    except LifecycleException as err:
        _secret_condition(installation, SEAWEEDFS_S3_SECRET_CONDITION, err)
        raise LifecycleException(f"Failed to ensure storage secret: {err}") from err
    _secret_condition(installation, SEAWEEDFS_S3_SECRET_CONDITION, None)

    try:
        await _ensure_registry_secret(store, metadata, config)
    except LifecycleException as err:
        _secret_condition(installation, REGISTRY_S3_SECRET_CONDITION, err)
        raise LifecycleException(f"Failed to ensure registry secret: {err}") from err
    _secret_condition(installation, REGISTRY_S3_SECRET_CONDITION, None)
