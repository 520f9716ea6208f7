"""Shared test fixtures for pvestore tests."""
import pytest

from fakes import GIB, FakeHostState, make_config, make_host


@pytest.fixture
def state():
    """A pve3 node with the installer layout on /dev/sda and nothing else."""
    host_state = FakeHostState(node="pve3")
    host_state.add_system_disk("/dev/sda")
    return host_state


@pytest.fixture
def host(state):
    return make_host(state)


@pytest.fixture
def config():
    return make_config()


@pytest.fixture
def fresh_disk(state):
    """One blank 4 TB spinning disk at /dev/sdb."""
    return state.add_disk("/dev/sdb", size_bytes=4000 * GIB)


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch, tmp_path):
    """Keep every test away from /etc/pvestore and stray PVESTORE_* variables."""
    import os

    for name in list(os.environ):
        if name.startswith("PVESTORE_"):
            monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("PVESTORE_CONFIG", str(tmp_path / "absent.yml"))
