"""Typed representation of the cluster objects the controller reads and writes.

Every object held in the store is a `Resource`: a dataclass carrying the
identity and bookkeeping metadata the store needs (name, namespace, resource
version, creation time) plus a typed body. Objects serialize to and from
plain dictionaries and YAML with mashumaro so they can be persisted in a
snapshot file or loaded from an installation file.
"""

from dataclasses import dataclass, field
import datetime
import logging
from typing import Any, ClassVar

from mashumaro import DataClassDictMixin, field_options
from mashumaro.codecs.yaml import yaml_decode, yaml_encode
from mashumaro.config import BaseConfig

from .exceptions import InputException
from .state import InstallationState, KUBERNETES_INSTALLED_STATES, can_transition

__all__ = [
    "NamedResource",
    "Resource",
    "Installation",
    "InstallationSpec",
    "InstallationStatus",
    "Condition",
    "NodeStatus",
    "Chart",
    "Repository",
    "HelmExtensions",
    "ClusterConfig",
    "ChartObject",
    "Plan",
    "Job",
    "Node",
    "ConfigMap",
    "Secret",
]

_LOGGER = logging.getLogger(__name__)


INSTALLATION_KIND = "Installation"
CLUSTER_CONFIG_KIND = "ClusterConfig"
CHART_KIND = "Chart"
PLAN_KIND = "Plan"
JOB_KIND = "Job"
NODE_KIND = "Node"
CONFIG_MAP_KIND = "ConfigMap"
SECRET_KIND = "Secret"

CONDITION_TRUE = "True"
CONDITION_FALSE = "False"

MAX_REASON_LENGTH = 1024


def _parse_timestamp(value: Any) -> datetime.datetime | None:
    """Accept both ISO strings and timestamps already decoded by the YAML loader."""
    if value is None or isinstance(value, datetime.datetime):
        return value
    try:
        return datetime.datetime.fromisoformat(str(value))
    except ValueError as err:
        raise InputException(f"Invalid timestamp '{value}': {err}") from err


def _timestamp_field() -> Any:
    return field(
        default=None, metadata=field_options(deserialize=_parse_timestamp)
    )


def now() -> datetime.datetime:
    """Return the current time in UTC."""
    return datetime.datetime.now(datetime.timezone.utc)


@dataclass
class BaseManifest(DataClassDictMixin):
    """Base class for all manifest objects."""

    @classmethod
    def parse_yaml(cls, content: str) -> "BaseManifest":
        """Parse a serialized manifest."""
        return yaml_decode(content, cls)

    def yaml(self) -> str:
        """Return a YAML string representation of the object."""
        return yaml_encode(self, self.__class__)  # type: ignore[return-value]

    class Config(BaseConfig):
        omit_none = True


@dataclass(frozen=True, order=True)
class NamedResource:
    """Identifier for a cluster object."""

    kind: str
    namespace: str | None
    name: str

    @property
    def namespaced_name(self) -> str:
        if self.namespace:
            return f"{self.namespace}/{self.name}"
        return self.name

    def __str__(self) -> str:
        """Return the kind and namespaced name concatenated as an id."""
        return f"{self.kind}/{self.namespaced_name}"


@dataclass(kw_only=True)
class Resource(BaseManifest):
    """An object with identity that can be held in the store."""

    kind: ClassVar[str]

    name: str
    """The name of the object."""

    namespace: str | None = None
    """The namespace of the object, None for cluster scoped objects."""

    labels: dict[str, str] = field(default_factory=dict)
    """Labels attached to the object."""

    annotations: dict[str, str] = field(default_factory=dict)
    """Annotations attached to the object."""

    resource_version: int = 0
    """Version of the stored object, bumped by the store on every write."""

    generation: int = 0
    """Generation of the object spec."""

    creation_timestamp: datetime.datetime | None = _timestamp_field()
    """Time the object was created in the store."""

    @property
    def resource_id(self) -> NamedResource:
        """Identifier used as the store key for this object."""
        return NamedResource(self.kind, self.namespace, self.name)

    @property
    def created_at(self) -> float:
        """Creation time as a POSIX timestamp, -inf if unknown."""
        if self.creation_timestamp is None:
            return float("-inf")
        return self.creation_timestamp.timestamp()


# Add-on declarations. These use the key names of the add-on agent so the same
# documents can be read from release metadata and from the cluster declaration.


@dataclass
class Chart(BaseManifest):
    """A chart in an add-on set."""

    name: str
    """Release name of the chart."""

    chart_name: str = field(default="", metadata=field_options(alias="chartname"))
    """The chart reference, e.g. a repository/chart name or an OCI url."""

    version: str = ""
    """The chart version."""

    values: str = ""
    """YAML value document for the chart."""

    target_ns: str = field(default="", metadata=field_options(alias="targetNS"))
    """Namespace the chart is installed into."""

    timeout: str | None = None
    """Install timeout."""

    order: int = 0
    """Priority of the chart, lower values are installed first."""

    class Config(BaseManifest.Config):
        serialize_by_alias = True


@dataclass
class Repository(BaseManifest):
    """A chart repository in an add-on set."""

    name: str
    url: str = ""
    ca_file: str | None = field(default=None, metadata=field_options(alias="caFile"))
    cert_file: str | None = field(
        default=None, metadata=field_options(alias="certFile")
    )
    key_file: str | None = field(default=None, metadata=field_options(alias="keyFile"))
    insecure: bool | None = None
    username: str | None = None
    password: str | None = None

    class Config(BaseManifest.Config):
        serialize_by_alias = True


@dataclass
class HelmExtensions(BaseManifest):
    """The add-on set: charts, repositories and the install concurrency."""

    charts: list[Chart] = field(default_factory=list)
    repositories: list[Repository] = field(default_factory=list)
    concurrency_level: int = field(
        default=0, metadata=field_options(alias="concurrencyLevel")
    )

    class Config(BaseManifest.Config):
        serialize_by_alias = True

    def chart(self, name: str) -> Chart | None:
        """Return the chart with the given name if present."""
        for chart in self.charts:
            if chart.name == name:
                return chart
        return None


@dataclass
class Extensions(BaseManifest):
    """Cluster extensions."""

    helm: HelmExtensions | None = None


@dataclass
class Network(BaseManifest):
    """Cluster network settings."""

    service_cidr: str | None = field(
        default=None, metadata=field_options(alias="serviceCIDR")
    )

    class Config(BaseManifest.Config):
        serialize_by_alias = True


# Installation record


@dataclass
class BuiltInExtension(BaseManifest):
    """An unsupported value override for a chart."""

    name: str
    values: str = ""


@dataclass
class UnsupportedOverrides(BaseManifest):
    """Overrides applied on top of everything else."""

    builtin_extensions: list[BuiltInExtension] = field(default_factory=list)


@dataclass
class InstallationConfig(BaseManifest):
    """The desired release and add-on overrides."""

    version: str = ""
    """The desired release version."""

    extensions: Extensions = field(default_factory=Extensions)
    """User supplied charts, repositories and concurrency cap."""

    unsupported_overrides: UnsupportedOverrides = field(
        default_factory=UnsupportedOverrides
    )


@dataclass
class ArtifactsLocation(BaseManifest):
    """Locations of the airgap artifacts in the internal registry."""

    images: str = ""
    helm_charts: str = ""
    embedded_cluster_binary: str = ""
    embedded_cluster_metadata: str = ""


@dataclass
class Proxy(BaseManifest):
    """Proxy settings propagated to add-ons."""

    http_proxy: str = ""
    https_proxy: str = ""
    no_proxy: str = ""


@dataclass
class LicenseInfo(BaseManifest):
    """License derived feature flags."""

    is_disaster_recovery_supported: bool = False


@dataclass
class InstallationSpec(BaseManifest):
    """Desired state of an installation."""

    cluster_id: str = ""
    metrics_base_url: str = ""
    airgap: bool = False
    high_availability: bool = False
    binary_name: str = ""
    config: InstallationConfig | None = None
    artifacts: ArtifactsLocation | None = None
    proxy: Proxy | None = None
    network: Network | None = None
    license_info: LicenseInfo = field(default_factory=LicenseInfo)


@dataclass
class NodeStatus(BaseManifest):
    """The last observed configuration hash of a node."""

    name: str
    hash: str


@dataclass
class Condition(BaseManifest):
    """A named flag on the installation status."""

    type: str
    status: str
    reason: str = ""
    message: str = ""
    observed_generation: int = 0
    last_transition_time: datetime.datetime | None = _timestamp_field()


@dataclass
class InstallationStatus(BaseManifest):
    """Observed state of an installation."""

    state: InstallationState = InstallationState.UNSET
    reason: str = ""
    node_statuses: list[NodeStatus] = field(default_factory=list)
    conditions: list[Condition] = field(default_factory=list)

    def set_state(self, state: InstallationState, reason: str = "") -> bool:
        """Move the record to a new state, refusing transitions that are not allowed.

        Returns True if the state was applied.
        """
        if not can_transition(self.state, state):
            _LOGGER.warning(
                "Refusing installation state transition %s -> %s (%s)",
                self.state or "<unset>",
                state or "<unset>",
                reason,
            )
            return False
        if self.state != state:
            _LOGGER.info("Installation state %s -> %s: %s", self.state, state, reason)
        self.state = state
        self.reason = reason
        return True

    @property
    def kubernetes_installed(self) -> bool:
        """True once the cluster version upgrade has completed."""
        return self.state in KUBERNETES_INSTALLED_STATES

    def get_condition(self, condition_type: str) -> Condition | None:
        for condition in self.conditions:
            if condition.type == condition_type:
                return condition
        return None

    def is_condition_true(self, condition_type: str) -> bool:
        condition = self.get_condition(condition_type)
        return condition is not None and condition.status == CONDITION_TRUE

    def set_condition(self, condition: Condition) -> None:
        """Add or replace a condition, keeping the transition time if unchanged."""
        existing = self.get_condition(condition.type)
        if existing is not None and existing.status == condition.status:
            condition.last_transition_time = existing.last_transition_time
        elif condition.last_transition_time is None:
            condition.last_transition_time = now()
        self.conditions = [
            c for c in self.conditions if c.type != condition.type
        ] + [condition]


@dataclass(kw_only=True)
class Installation(Resource):
    """A desired-state record for one lifecycle attempt."""

    kind: ClassVar[str] = INSTALLATION_KIND

    spec: InstallationSpec = field(default_factory=InstallationSpec)
    status: InstallationStatus = field(default_factory=InstallationStatus)

    @property
    def version(self) -> str:
        """The desired release version, empty if none is set."""
        if self.spec.config is None:
            return ""
        return self.spec.config.version

    @property
    def user_helm(self) -> HelmExtensions | None:
        """The user supplied add-on overrides."""
        if self.spec.config is None:
            return None
        return self.spec.config.extensions.helm


# Other cluster objects


@dataclass
class ClusterConfigSpec(BaseManifest):
    network: Network | None = None
    extensions: Extensions | None = None


@dataclass(kw_only=True)
class ClusterConfig(Resource):
    """The cluster declaration consumed by the add-on agent."""

    kind: ClassVar[str] = CLUSTER_CONFIG_KIND

    spec: ClusterConfigSpec = field(default_factory=ClusterConfigSpec)

    @property
    def helm(self) -> HelmExtensions:
        """The applied add-on set, empty if none has been declared."""
        if self.spec.extensions is None or self.spec.extensions.helm is None:
            return HelmExtensions()
        return self.spec.extensions.helm


@dataclass
class ChartObjectSpec(BaseManifest):
    chart_name: str = ""
    release_name: str = ""
    version: str = ""
    values: str = ""
    namespace: str = ""
    timeout: str | None = None
    order: int = 0


@dataclass
class ChartObjectStatus(BaseManifest):
    release_name: str = ""
    version: str = ""
    app_version: str = ""
    error: str = ""


@dataclass(kw_only=True)
class ChartObject(Resource):
    """A chart applied by the add-on agent, with its live status."""

    kind: ClassVar[str] = CHART_KIND

    spec: ChartObjectSpec = field(default_factory=ChartObjectSpec)
    status: ChartObjectStatus = field(default_factory=ChartObjectStatus)

    @property
    def release_name(self) -> str:
        return self.status.release_name or self.spec.release_name


@dataclass
class PlatformResource(BaseManifest):
    url: str
    sha256: str | None = None


@dataclass
class PlanCommandTargets(BaseManifest):
    controllers: list[str] = field(default_factory=list)
    workers: list[str] = field(default_factory=list)


@dataclass
class K0sUpdateCommand(BaseManifest):
    version: str
    targets: PlanCommandTargets = field(default_factory=PlanCommandTargets)
    platforms: dict[str, PlatformResource] = field(default_factory=dict)


@dataclass
class AirgapUpdateCommand(BaseManifest):
    version: str
    workers: list[str] = field(default_factory=list)
    platforms: dict[str, PlatformResource] = field(default_factory=dict)


@dataclass
class PlanCommand(BaseManifest):
    k0s_update: K0sUpdateCommand | None = None
    airgap_update: AirgapUpdateCommand | None = None


@dataclass
class PlanStatus(BaseManifest):
    state: str = ""


@dataclass(kw_only=True)
class Plan(Resource):
    """An upgrade plan executed by the upgrade agent."""

    kind: ClassVar[str] = PLAN_KIND

    id: str = ""
    timestamp: str = ""
    commands: list[PlanCommand] = field(default_factory=list)
    status: PlanStatus = field(default_factory=PlanStatus)


@dataclass
class JobCondition(BaseManifest):
    type: str
    status: str = CONDITION_TRUE
    message: str = ""


@dataclass
class JobStatus(BaseManifest):
    active: int = 0
    succeeded: int = 0
    failed: int = 0
    conditions: list[JobCondition] = field(default_factory=list)


@dataclass(kw_only=True)
class Job(Resource):
    """A batch job, used to copy artifacts to nodes and migrate data."""

    kind: ClassVar[str] = JOB_KIND

    spec: dict[str, Any] = field(default_factory=dict)
    status: JobStatus = field(default_factory=JobStatus)

    def failed_condition(self) -> JobCondition | None:
        """Return the Failed condition if it is set."""
        for condition in self.status.conditions:
            if condition.type == "Failed" and condition.status == CONDITION_TRUE:
                return condition
        return None


@dataclass(kw_only=True)
class Node(Resource):
    """A cluster node."""

    kind: ClassVar[str] = NODE_KIND

    kubelet_version: str = ""


@dataclass(kw_only=True)
class ConfigMap(Resource):
    """A ConfigMap is an API object used to store data in key-value pairs."""

    kind: ClassVar[str] = CONFIG_MAP_KIND

    data: dict[str, str] = field(default_factory=dict)


@dataclass(kw_only=True)
class Secret(Resource):
    """A Secret contains a small amount of sensitive data."""

    kind: ClassVar[str] = SECRET_KIND

    string_data: dict[str, str] = field(default_factory=dict)
