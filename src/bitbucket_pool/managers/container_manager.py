"""Container lifecycle manager for Docker operations."""

import asyncio
from typing import List

from docker import DockerClient
from docker.errors import NotFound
from docker.models.containers import Container as DockerContainer
from docker.types import Mount

from bitbucket_pool.config import Settings, get_settings
from bitbucket_pool.utils import get_logger
from bitbucket_pool.utils.docker_client import DOCKER_ERRORS, get_docker_client
from bitbucket_pool.utils.exceptions import DockerAPIError, MemberNotFoundError

logger = get_logger(__name__)


class ContainerManager:
    """Thin async wrapper over the Docker SDK for pool containers.

    Every SDK call is blocking, so it runs in a worker thread.
    """

    def __init__(
        self,
        docker_client: DockerClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize container manager.

        Args:
            docker_client: Docker client (defaults to the global client)
            settings: Settings (defaults to the cached settings)
        """
        self.settings = settings or get_settings()
        self.docker_client: DockerClient = docker_client or get_docker_client()

    async def list_by_prefix(self, prefix: str) -> List[DockerContainer]:
        """
        List containers whose name contains the prefix, in any state.

        Args:
            prefix: Name prefix to match

        Returns:
            Matching Docker containers

        Raises:
            DockerAPIError: If the container list cannot be read
        """
        try:
            containers = await asyncio.to_thread(
                self.docker_client.containers.list, all=True, ignore_removed=True
            )
        except DOCKER_ERRORS as e:
            logger.error(
                "Docker API error listing containers",
                extra={"prefix": prefix, "error": str(e)},
            )
            raise DockerAPIError(f"unable to get container list by prefix {prefix}: {e}", e) from e

        return [c for c in containers if c.name and prefix in c.name]

    async def get(self, container_id: str) -> DockerContainer:
        """
        Get a container by ID.

        Args:
            container_id: Docker container ID

        Returns:
            Docker container

        Raises:
            MemberNotFoundError: If the container does not exist
            DockerAPIError: If Docker operations fail
        """
        try:
            return await asyncio.to_thread(self.docker_client.containers.get, container_id)
        except NotFound as e:
            raise MemberNotFoundError(container_id) from e
        except DOCKER_ERRORS as e:
            logger.error(
                "Docker API error getting container",
                extra={"container_id": container_id, "error": str(e)},
            )
            raise DockerAPIError(f"unable to get container {container_id}: {e}", e) from e

    async def pull_image(self, image: str) -> None:
        """
        Pull an image.

        Args:
            image: Image reference including tag

        Raises:
            DockerAPIError: If the pull fails
        """
        repository, _, tag = image.rpartition(":")
        if not repository or "/" in tag:
            repository, tag = image, "latest"

        logger.info("Pulling image", extra={"image": image})
        try:
            await asyncio.to_thread(self.docker_client.images.pull, repository, tag=tag)
        except DOCKER_ERRORS as e:
            logger.error("Docker API error pulling image", extra={"image": image, "error": str(e)})
            raise DockerAPIError(f"unable to pull image {image}: {e}", e) from e

    async def create(
        self,
        name: str,
        image: str,
        http_port: int,
        ssh_port: int,
        volume_name: str,
    ) -> DockerContainer:
        """
        Pull the image and create a Bitbucket container.

        Args:
            name: Container name
            image: Image reference including tag
            http_port: Host port for Bitbucket HTTP
            ssh_port: Host port for Bitbucket SSH
            volume_name: Named volume mounted as the Bitbucket home

        Returns:
            Created (not started) container

        Raises:
            DockerAPIError: If Docker operations fail
        """
        await self.pull_image(image)

        try:
            container: DockerContainer = await asyncio.to_thread(
                self.docker_client.containers.create,
                image=image,
                name=name,
                detach=True,
                environment={
                    "ELASTICSEARCH_ENABLED": self.settings.elasticsearch_enabled,
                    "JVM_SUPPORT_RECOMMENDED_ARGS": self.settings.jvm_support_recommended_args,
                },
                mounts=[Mount(target=self.settings.data_path, source=volume_name, type="volume")],
                ports={
                    f"{self.settings.http_container_port}/tcp": ("0.0.0.0", http_port),
                    f"{self.settings.ssh_container_port}/tcp": ("0.0.0.0", ssh_port),
                },
                network=self.settings.resolved_network_name,
            )
        except DOCKER_ERRORS as e:
            logger.error(
                "Docker API error creating container",
                extra={"container_name": name, "error": str(e)},
            )
            raise DockerAPIError(f"unable to create container {name}: {e}", e) from e

        logger.info(
            "Docker container created",
            extra={
                "container_id": container.id,
                "container_name": name,
                "image": image,
                "volume_name": volume_name,
                "http_port": http_port,
                "ssh_port": ssh_port,
            },
        )
        return container

    async def start(self, container_id: str) -> None:
        """
        Start a container.

        Raises:
            MemberNotFoundError: If container not found
            DockerAPIError: If Docker operations fail
        """
        container = await self.get(container_id)
        try:
            await asyncio.to_thread(container.start)
        except DOCKER_ERRORS as e:
            logger.error(
                "Docker API error starting container",
                extra={"container_id": container_id, "error": str(e)},
            )
            raise DockerAPIError(f"unable to start container {container_id}: {e}", e) from e

        logger.info("Docker container started", extra={"container_id": container_id})

    async def stop(self, container_id: str) -> None:
        """
        Stop a container gracefully.

        Raises:
            MemberNotFoundError: If container not found
            DockerAPIError: If Docker operations fail
        """
        container = await self.get(container_id)
        try:
            await asyncio.to_thread(container.stop, timeout=self.settings.stop_timeout_s)
        except DOCKER_ERRORS as e:
            logger.error(
                "Docker API error stopping container",
                extra={"container_id": container_id, "error": str(e)},
            )
            raise DockerAPIError(f"unable to stop container {container_id}: {e}", e) from e

        logger.info("Docker container stopped", extra={"container_id": container_id})

    async def rename(self, container_id: str, new_name: str) -> None:
        """
        Rename a container.

        Raises:
            MemberNotFoundError: If container not found
            DockerAPIError: If Docker operations fail
        """
        container = await self.get(container_id)
        try:
            await asyncio.to_thread(container.rename, new_name)
        except DOCKER_ERRORS as e:
            logger.error(
                "Docker API error renaming container",
                extra={"container_id": container_id, "new_name": new_name, "error": str(e)},
            )
            raise DockerAPIError(f"unable to rename container {container_id}: {e}", e) from e

        logger.info(
            "Docker container renamed",
            extra={"container_id": container_id, "new_name": new_name},
        )

    async def remove(self, container_id: str) -> None:
        """
        Force-remove a container together with its named volumes.

        Raises:
            MemberNotFoundError: If container not found
            DockerAPIError: If Docker operations fail
        """
        container = await self.get(container_id)
        volume_names = [
            mount["Name"]
            for mount in container.attrs.get("Mounts") or []
            if mount.get("Type") == "volume" and mount.get("Name")
        ]

        try:
            await asyncio.to_thread(container.remove, v=True, force=True)
        except NotFound:
            logger.info("Container already removed", extra={"container_id": container_id})
        except DOCKER_ERRORS as e:
            logger.error(
                "Docker API error removing container",
                extra={"container_id": container_id, "error": str(e)},
            )
            raise DockerAPIError(f"unable to remove container {container_id}: {e}", e) from e

        for volume_name in volume_names:
            await self.remove_volume(volume_name)

        logger.info(
            "Docker container removed",
            extra={"container_id": container_id, "volumes": volume_names},
        )

    async def remove_volume(self, volume_name: str) -> None:
        """
        Remove a named volume; a missing volume is not an error.

        Raises:
            DockerAPIError: If Docker operations fail
        """
        try:
            volume = await asyncio.to_thread(self.docker_client.volumes.get, volume_name)
            await asyncio.to_thread(volume.remove, force=True)
        except NotFound:
            return
        except DOCKER_ERRORS as e:
            logger.error(
                "Docker API error removing volume",
                extra={"volume_name": volume_name, "error": str(e)},
            )
            raise DockerAPIError(f"unable to remove volume {volume_name}: {e}", e) from e

        logger.info("Volume removed", extra={"volume_name": volume_name})

    async def ensure_network(self, name: str) -> None:
        """
        Create a bridge network unless one with this name already exists.

        Raises:
            DockerAPIError: If Docker operations fail
        """
        try:
            existing = await asyncio.to_thread(self.docker_client.networks.list, names=[name])
            if any(network.name == name for network in existing):
                logger.info("Network already exists", extra={"network_name": name})
                return

            network = await asyncio.to_thread(
                self.docker_client.networks.create, name, driver="bridge"
            )
        except DOCKER_ERRORS as e:
            logger.error(
                "Docker API error creating network",
                extra={"network_name": name, "error": str(e)},
            )
            raise DockerAPIError(f"unable to create network {name}: {e}", e) from e

        logger.info(
            "Network created",
            extra={"network_name": name, "network_id": network.id},
        )
