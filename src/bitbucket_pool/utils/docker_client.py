"""Process-wide Docker client for the Bitbucket pool."""

import docker
from docker import DockerClient
from docker.errors import DockerException
from requests.exceptions import RequestException

from bitbucket_pool.config import Settings, get_settings
from bitbucket_pool.utils import get_logger

logger = get_logger(__name__)

# A daemon that is down surfaces as a requests error, not a DockerException
DOCKER_ERRORS = (DockerException, RequestException)


def connect(settings: Settings) -> DockerClient:
    """
    Open and verify a Docker client.

    Uses ``docker_host`` when configured, otherwise Docker's usual
    environment detection (DOCKER_HOST, the local socket).

    Args:
        settings: Settings

    Returns:
        Connected DockerClient

    Raises:
        DockerException: If the daemon cannot be reached
    """
    if settings.docker_host:
        client = docker.DockerClient(base_url=settings.docker_host)
    else:
        client = docker.from_env()

    try:
        client.ping()
        version = client.version()
    except DOCKER_ERRORS:
        client.close()
        raise

    logger.info(
        "Connected to Docker daemon",
        extra={
            "docker_host": settings.docker_host or "environment",
            "docker_version": version.get("Version"),
            "api_version": version.get("ApiVersion"),
        },
    )
    return client


def is_reachable(client: DockerClient) -> bool:
    """Ping the daemon; any failure counts as unreachable."""
    try:
        return bool(client.ping())
    except DOCKER_ERRORS as e:
        logger.warning("Docker ping failed", extra={"error": str(e)})
        return False


class DockerClientManager:
    """Holds the single Docker client shared by every manager."""

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()
        self._client: DockerClient | None = None

    def get_client(self) -> DockerClient:
        """
        Return the shared client, connecting on first use.

        Raises:
            DockerException: If unable to connect to Docker daemon
        """
        if self._client is None:
            try:
                self._client = connect(self.settings)
            except DockerException as e:
                logger.error("Failed to connect to Docker daemon", extra={"error": str(e)})
                raise
        return self._client

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
            logger.info("Docker client closed")


_docker_manager: DockerClientManager | None = None


def get_docker_client(settings: Settings | None = None) -> DockerClient:
    """
    Get the process-wide Docker client.

    Args:
        settings: Settings used on first connect (defaults to the cached settings)

    Returns:
        DockerClient instance
    """
    global _docker_manager
    if _docker_manager is None:
        _docker_manager = DockerClientManager(settings)
    return _docker_manager.get_client()


def close_docker_client() -> None:
    """Close the process-wide Docker client, if one was opened."""
    global _docker_manager
    if _docker_manager is not None:
        _docker_manager.close()
        _docker_manager = None
