"""Tests for the cluster-lifecycle command line tool."""

import asyncio
from collections.abc import Callable
from pathlib import Path

import pytest

from cluster_lifecycle.manifest import Installation, Job, Secret
from cluster_lifecycle.state import InstallationState
from cluster_lifecycle.store import InMemoryStore, read_snapshot, write_snapshot
from cluster_lifecycle.tool.cli import main


@pytest.fixture(name="state")
def state_fixture(
    tmp_path: Path, make_installation: Callable[..., Installation]
) -> Path:
    """A snapshot with a single installation without a release version."""

    async def _write(path: Path) -> None:
        store = InMemoryStore()
        await store.create_object(make_installation(version=""))
        await write_snapshot(path, store)

    path = tmp_path / "cluster.yaml"
    asyncio.run(_write(path))
    return path


def _load(path: Path) -> InMemoryStore:
    return asyncio.run(read_snapshot(path))


def _installations(path: Path) -> list[Installation]:
    return asyncio.run(_load(path).list_objects(Installation))


def test_run_once(state: Path) -> None:
    """Test a single cycle is run and the snapshot is rewritten."""
    main(["run", "--state", str(state), "--once"])
    [installation] = _installations(state)
    assert installation.status.state == InstallationState.INSTALLED
    assert installation.status.reason == "Installed"


def test_missing_state_file(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    with pytest.raises(SystemExit) as err:
        main(["run", "--state", str(tmp_path / "missing.yaml"), "--once"])
    assert err.value.code == 1
    assert "cluster-lifecycle error: Unable to read snapshot file" in (
        capsys.readouterr().err
    )


def test_migrate_registry_data(
    state: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    """Test the migration job is created and the progress saved."""
    main(["migrate", "--state", str(state), "--migration", "registry-data"])
    assert "Registry data migration: MigrationJobInProgress" in capsys.readouterr().out

    store = _load(state)
    [job] = asyncio.run(store.list_objects(Job))
    assert job.name == "registry-data-migration"
    [installation] = asyncio.run(store.list_objects(Installation))
    condition = installation.status.get_condition("RegistryMigrationStatus")
    assert condition is not None
    assert condition.reason == "MigrationJobInProgress"


def test_unknown_migration(state: Path, capsys: pytest.CaptureFixture[str]) -> None:
    with pytest.raises(SystemExit) as err:
        main(["migrate", "--state", str(state), "--migration", "foo"])
    assert err.value.code == 1
    assert "cluster-lifecycle error: unknown migration: foo" in capsys.readouterr().err


def test_upgrade_without_version(
    state: Path,
    tmp_path: Path,
    make_installation: Callable[..., Installation],
    capsys: pytest.CaptureFixture[str],
) -> None:
    """Test the new record is kept in the snapshot when the upgrade fails."""
    installation_file = tmp_path / "installation.yaml"
    installation_file.write_text(
        make_installation(name="20240601120000", version="").yaml()
    )
    with pytest.raises(SystemExit) as err:
        main(
            [
                "upgrade",
                "--state",
                str(state),
                "--installation",
                str(installation_file),
            ]
        )
    assert err.value.code == 1
    assert "does not specify a version" in capsys.readouterr().err
    assert sorted(record.name for record in _installations(state)) == [
        "20240501120000",
        "20240601120000",
    ]


def test_upgrade_missing_secret(
    state: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    with pytest.raises(SystemExit) as err:
        main(
            [
                "upgrade",
                "--state",
                str(state),
                "--installation-secret",
                "embedded-cluster/upgrade",
            ]
        )
    assert err.value.code == 1
    assert (
        "cluster-lifecycle error: Secret embedded-cluster/upgrade not found"
        in capsys.readouterr().err
    )


def test_invalid_installation_file(
    state: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    installation_file = tmp_path / "installation.yaml"
    installation_file.write_text("spec: [unclosed\n")
    with pytest.raises(SystemExit):
        main(
            [
                "upgrade",
                "--state",
                str(state),
                "--installation",
                str(installation_file),
            ]
        )
    assert "Invalid installation in" in capsys.readouterr().err


def test_snapshot_secret_is_preserved(state: Path) -> None:
    """Test objects the cycle does not touch survive a rewrite of the snapshot."""

    async def _add_secret() -> None:
        store = await read_snapshot(state)
        await store.create_object(
            Secret(name="other", namespace="default", string_data={"a": "b"})
        )
        await write_snapshot(state, store)

    asyncio.run(_add_secret())
    main(["run", "--state", str(state), "--once"])
    [secret] = asyncio.run(_load(state).list_objects(Secret))
    assert secret.string_data == {"a": "b"}
