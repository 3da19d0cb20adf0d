"""Test configuration and fixtures."""

import itertools
from typing import Dict, List
from unittest.mock import AsyncMock

import docker
import pytest
from docker.errors import APIError, DockerException, NotFound

from bitbucket_pool.config import Settings
from bitbucket_pool.managers.container_manager import ContainerManager
from bitbucket_pool.managers.pool_manager import PoolManager
from bitbucket_pool.models.members import StartupProgress, StartupStatus
from bitbucket_pool.repositories.members import NameEncodedMemberRepository
from bitbucket_pool.utils.bitbucket_client import BitbucketClient


class FakeContainer:
    """In-memory stand-in for ``docker.models.containers.Container``."""

    def __init__(self, engine, container_id, name, image, port_bindings, mounts, status="created"):
        self._engine = engine
        self.id = container_id
        self.name = name
        self.status = status
        self.attrs = {
            "Name": f"/{name}",
            "Config": {"Image": image},
            "HostConfig": {"PortBindings": port_bindings},
            "Mounts": mounts,
        }

    def start(self):
        self.status = "running"

    def stop(self, timeout=None):
        self.status = "exited"

    def rename(self, name):
        if any(c.name == name for c in list(self._engine.containers.items.values())):
            raise APIError(f"Conflict. The container name {name!r} is already in use")
        self.name = name
        self.attrs["Name"] = f"/{name}"

    def remove(self, v=False, force=False):
        if self.status == "running" and not force:
            raise APIError("You cannot remove a running container")
        self._engine.containers.items.pop(self.id, None)


class FakeContainers:
    def __init__(self, engine):
        self._engine = engine
        self.items: Dict[str, FakeContainer] = {}
        self._ids = itertools.count(1)

    def list(self, all=False, ignore_removed=False):
        containers = list(self.items.values())
        if not all:
            containers = [c for c in containers if c.status == "running"]
        return containers

    def get(self, container_id):
        try:
            return self.items[container_id]
        except KeyError:
            raise NotFound(f"No such container: {container_id}") from None

    def create(
        self, image, name, detach=True, environment=None, mounts=None, ports=None, network=None
    ):
        if any(c.name == name for c in list(self.items.values())):
            raise APIError(f"Conflict. The container name {name!r} is already in use")

        port_bindings = {
            container_port: [{"HostIp": host_ip, "HostPort": str(host_port)}]
            for container_port, (host_ip, host_port) in (ports or {}).items()
        }
        mount_attrs = []
        for mount in mounts or []:
            self._engine.volumes.items.add(mount["Source"])
            mount_attrs.append(
                {"Type": mount["Type"], "Name": mount["Source"], "Destination": mount["Target"]}
            )

        container = FakeContainer(
            self._engine,
            f"c{next(self._ids):04d}",
            name,
            image,
            port_bindings,
            mount_attrs,
        )
        container.environment = environment
        container.network = network
        self.items[container.id] = container
        return container


class FakeVolume:
    def __init__(self, volumes, name):
        self._volumes = volumes
        self.name = name

    def remove(self, force=False):
        self._volumes.items.discard(self.name)


class FakeVolumes:
    def __init__(self):
        self.items = set()

    def get(self, name):
        if name not in self.items:
            raise NotFound(f"No such volume: {name}")
        return FakeVolume(self, name)


class FakeNetwork:
    def __init__(self, name):
        self.id = f"net-{name}"
        self.name = name


class FakeNetworks:
    def __init__(self):
        self.items: List[FakeNetwork] = []

    def list(self, names=None):
        return [n for n in self.items if names is None or n.name in names]

    def create(self, name, driver=None):
        network = FakeNetwork(name)
        self.items.append(network)
        return network


class FakeImages:
    def __init__(self):
        self.pulled: List[str] = []

    def pull(self, repository, tag=None):
        self.pulled.append(f"{repository}:{tag}")


class FakeDockerClient:
    """In-memory Docker engine covering the calls the pool makes."""

    def __init__(self):
        self.containers = FakeContainers(self)
        self.volumes = FakeVolumes()
        self.networks = FakeNetworks()
        self.images = FakeImages()

    def ping(self):
        return True

    def seed(self, name, status="running", http_port=32768, ssh_port=32769):
        """Add an existing container, as if left behind by an earlier run."""
        container = self.containers.create(
            image="atlassian/bitbucket-server:latest",
            name=name,
            ports={"7990/tcp": ("0.0.0.0", http_port), "7999/tcp": ("0.0.0.0", ssh_port)},
        )
        container.status = status
        return container


def make_started_status() -> StartupStatus:
    """Startup status of a fully started Bitbucket."""
    return StartupStatus(
        state="STARTED",
        progress=StartupProgress(message="Bitbucket is ready", percentage=100),
    )


@pytest.fixture
def settings(tmp_path):
    """Create settings suitable for fast tests."""
    addon = tmp_path / "snake.jar"
    addon.write_bytes(b"PK\x03\x04jar")
    license_file = tmp_path / "license.txt"
    license_file.write_text("AAAB-LICENSE", encoding="utf-8")

    return Settings(
        _env_file=None,
        prefix="bbtest",
        max_pool_size=3,
        initial_pool_size=1,
        lease_duration_s=3600,
        reclaim_interval_s=0.01,
        bootstrap_retry_s=0.0,
        bootstrap_max_attempts=2,
        startup_poll_interval_s=0.001,
        startup_timeout_s=1.0,
        addon_path=str(addon),
        license_path=str(license_file),
    )


@pytest.fixture
def fake_docker():
    """Create an in-memory Docker client."""
    return FakeDockerClient()


@pytest.fixture
def container_manager(fake_docker, settings):
    """Create ContainerManager backed by the in-memory Docker client."""
    return ContainerManager(fake_docker, settings)


@pytest.fixture
def repository(container_manager, settings):
    """Create member repository over the in-memory Docker client."""
    return NameEncodedMemberRepository(container_manager, settings)


@pytest.fixture
def bitbucket_client():
    """Create a Bitbucket client mock whose instances start immediately."""
    client = AsyncMock(spec=BitbucketClient)
    client.get_startup_status.return_value = make_started_status()
    client.get_upm_token.return_value = "upm-token-1"
    client.install_addon.return_value = '{"status": "installed"}'
    client.set_addon_license.return_value = None
    return client


@pytest.fixture
def pool_manager(container_manager, repository, bitbucket_client, settings):
    """Create PoolManager wired to in-memory collaborators."""
    return PoolManager(container_manager, repository, bitbucket_client, settings)


@pytest.fixture(scope="session")
def docker_available():
    """Check if Docker daemon is available."""
    try:
        client = docker.from_env()
        client.ping()
        client.close()
        return True
    except DockerException:
        return False


@pytest.fixture
def require_docker(docker_available):
    """Skip test if Docker is not available."""
    if not docker_available:
        pytest.skip("Docker daemon not available - skipping integration test")
