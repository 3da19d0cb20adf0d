"""Unit tests for ContainerManager."""

from unittest.mock import MagicMock

import pytest
from docker.errors import APIError, DockerException, NotFound
from requests.exceptions import ConnectionError as RequestsConnectionError

from bitbucket_pool.managers.container_manager import ContainerManager
from bitbucket_pool.utils.exceptions import DockerAPIError, MemberNotFoundError


async def _create(container_manager, name="bbtest-1000001---new"):
    return await container_manager.create(
        name=name,
        image="atlassian/bitbucket-server:8.9",
        http_port=40001,
        ssh_port=40002,
        volume_name="bbtest-volume-1",
    )


@pytest.mark.asyncio
async def test_create_pulls_and_configures_container(container_manager, fake_docker, settings):
    """Test create pulls the image and wires ports, volume, env and network."""
    container = await _create(container_manager)

    assert fake_docker.images.pulled == ["atlassian/bitbucket-server:8.9"]
    assert container.attrs["HostConfig"]["PortBindings"] == {
        "7990/tcp": [{"HostIp": "0.0.0.0", "HostPort": "40001"}],
        "7999/tcp": [{"HostIp": "0.0.0.0", "HostPort": "40002"}],
    }
    assert container.attrs["Mounts"][0]["Name"] == "bbtest-volume-1"
    assert container.attrs["Mounts"][0]["Destination"] == settings.data_path
    assert container.environment == {
        "ELASTICSEARCH_ENABLED": "false",
        "JVM_SUPPORT_RECOMMENDED_ARGS": "",
    }
    assert container.network == "bbtest-network"
    assert container.status == "created"


@pytest.mark.asyncio
async def test_pull_image_without_tag(container_manager, fake_docker):
    """Test an untagged image is pulled as latest."""
    await container_manager.pull_image("registry:5000/atlassian/bitbucket-server")

    assert fake_docker.images.pulled == ["registry:5000/atlassian/bitbucket-server:latest"]


@pytest.mark.asyncio
async def test_list_by_prefix_includes_stopped(container_manager, fake_docker):
    """Test listing matches the prefix anywhere in the name and includes exited containers."""
    fake_docker.seed("bbtest-1000001---new", status="running")
    fake_docker.seed("bbtest-1000002---new", status="exited")
    fake_docker.seed("other-1000003---new", status="running")

    containers = await container_manager.list_by_prefix("bbtest")

    assert sorted(c.name for c in containers) == ["bbtest-1000001---new", "bbtest-1000002---new"]


@pytest.mark.asyncio
async def test_get_not_found(container_manager):
    """Test a missing container raises MemberNotFoundError."""
    with pytest.raises(MemberNotFoundError) as exc_info:
        await container_manager.get("missing")

    assert exc_info.value.member_id == "missing"


@pytest.mark.asyncio
async def test_start_stop_rename(container_manager):
    """Test lifecycle calls reach the container."""
    container = await _create(container_manager)

    await container_manager.start(container.id)
    assert container.status == "running"

    await container_manager.rename(container.id, "bbtest-1000001---allocated")
    assert container.name == "bbtest-1000001---allocated"

    await container_manager.stop(container.id)
    assert container.status == "exited"


@pytest.mark.asyncio
async def test_remove_deletes_container_and_volume(container_manager, fake_docker):
    """Test remove deletes the container and its named volume."""
    container = await _create(container_manager)
    assert "bbtest-volume-1" in fake_docker.volumes.items

    await container_manager.remove(container.id)

    assert container.id not in fake_docker.containers.items
    assert "bbtest-volume-1" not in fake_docker.volumes.items


@pytest.mark.asyncio
async def test_remove_volume_missing_is_ignored(container_manager):
    """Test removing an absent volume is not an error."""
    await container_manager.remove_volume("never-created")


@pytest.mark.asyncio
async def test_ensure_network_is_idempotent(container_manager, fake_docker):
    """Test the network is created once."""
    await container_manager.ensure_network("bbtest-network")
    await container_manager.ensure_network("bbtest-network")

    assert [n.name for n in fake_docker.networks.items] == ["bbtest-network"]


@pytest.mark.asyncio
async def test_list_api_error_is_wrapped(settings):
    """Test Docker API errors surface as DockerAPIError."""
    docker_client = MagicMock()
    docker_client.containers.list.side_effect = APIError("daemon unavailable")
    manager = ContainerManager(docker_client, settings)

    with pytest.raises(DockerAPIError) as exc_info:
        await manager.list_by_prefix("bbtest")

    assert isinstance(exc_info.value.original_error, APIError)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error",
    [
        DockerException("Error while fetching server API version"),
        RequestsConnectionError("Connection aborted: connection refused"),
    ],
)
async def test_daemon_connection_errors_are_wrapped(settings, error):
    """Test an unreachable daemon surfaces as DockerAPIError with its text."""
    docker_client = MagicMock()
    docker_client.containers.get.side_effect = error
    manager = ContainerManager(docker_client, settings)

    with pytest.raises(DockerAPIError) as exc_info:
        await manager.get("c0001")

    assert exc_info.value.original_error is error
    assert str(error) in str(exc_info.value)


@pytest.mark.asyncio
async def test_create_api_error_is_wrapped(settings):
    """Test a failed create surfaces as DockerAPIError."""
    docker_client = MagicMock()
    docker_client.containers.create.side_effect = APIError("name conflict")
    manager = ContainerManager(docker_client, settings)

    with pytest.raises(DockerAPIError):
        await manager.create(
            name="bbtest-1---new",
            image="atlassian/bitbucket-server:latest",
            http_port=1,
            ssh_port=2,
            volume_name="v",
        )


@pytest.mark.asyncio
async def test_remove_tolerates_concurrent_removal(settings):
    """Test a container vanishing during remove is not an error."""
    container = MagicMock()
    container.attrs = {"Mounts": []}
    container.remove.side_effect = NotFound("gone")
    docker_client = MagicMock()
    docker_client.containers.get.return_value = container
    manager = ContainerManager(docker_client, settings)

    await manager.remove("c1")

    container.remove.assert_called_once_with(v=True, force=True)


@pytest.mark.asyncio
async def test_stop_uses_configured_timeout(settings):
    """Test stop passes the configured grace period."""
    container = MagicMock()
    docker_client = MagicMock()
    docker_client.containers.get.return_value = container
    manager = ContainerManager(docker_client, settings)

    await manager.stop("c1")

    container.stop.assert_called_once_with(timeout=settings.stop_timeout_s)
