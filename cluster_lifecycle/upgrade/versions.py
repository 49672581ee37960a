"""Version parsing for the cluster distribution."""

from packaging.version import InvalidVersion, Version

__all__ = [
    "InvalidVersion",
    "K0S_MARKER",
    "parse_server_version",
    "kubernetes_version_from_k0s",
    "should_upgrade",
]

K0S_MARKER = "+k0s"


def _public(value: str) -> Version:
    return Version(Version(value).public)


def parse_server_version(value: str) -> Version:
    """Parse the version reported by the cluster API server, e.g. `v1.29.1+k0s`.

    Raises:
        InvalidVersion: If the version can not be parsed.
    """
    return _public(value)


def kubernetes_version_from_k0s(value: str) -> Version:
    """Return the Kubernetes version of a distribution version.

    A distribution version like `v1.29.1+k0s.1` carries its own build number
    after the marker, the API server reports only `v1.29.1+k0s`.

    Raises:
        InvalidVersion: If the marker is missing or the version can not be parsed.
    """
    if (index := value.find(K0S_MARKER)) == -1:
        raise InvalidVersion(f"Version '{value}' has no {K0S_MARKER} marker")
    return _public(value[: index + len(K0S_MARKER)])


def should_upgrade(
    running: Version, desired: Version, desired_k0s: str, previous_k0s: str
) -> bool:
    """Return True if the cluster distribution needs to be upgraded.

    Equal Kubernetes versions may still carry different distribution builds,
    which is detected by comparing with the version of the previous record.
    """
    if desired > running:
        return True
    if desired < running:
        return False
    return bool(previous_k0s) and desired_k0s != previous_k0s
