"""Provisioning of new Bitbucket pool members."""

import asyncio
import re
import time
from pathlib import Path

from docker.models.containers import Container as DockerContainer

from bitbucket_pool.config import Settings, get_settings
from bitbucket_pool.managers.capacity_manager import CapacityManager
from bitbucket_pool.managers.container_manager import ContainerManager
from bitbucket_pool.models.members import Member, StartupStatus
from bitbucket_pool.repositories.base import MemberRepository
from bitbucket_pool.utils import get_logger
from bitbucket_pool.utils.bitbucket_client import BitbucketClient
from bitbucket_pool.utils.exceptions import (
    CapacityExceededError,
    ConfigurationError,
    InvalidVersionError,
    StillStartingError,
)
from bitbucket_pool.utils.metrics_collector import get_metrics_collector
from bitbucket_pool.utils.name_codec import generate_name, generate_volume_name
from bitbucket_pool.utils.ports import reserve_port_pair

logger = get_logger(__name__)

VERSION_PATTERN = re.compile(r"^\d+\.\d+(\.\d+)?$")


def resolve_image(image: str, version: str) -> str:
    """
    Map a configured Bitbucket version to an image reference.

    Args:
        image: Image repository
        version: 'latest' or MAJOR.MINOR[.PATCH]

    Returns:
        Image reference with tag

    Raises:
        InvalidVersionError: For any other version string
    """
    if version == "latest" or VERSION_PATTERN.match(version):
        return f"{image}:{version}"
    raise InvalidVersionError(version)


class ProvisioningManager:
    """Creates, starts, validates and licenses new pool members."""

    def __init__(
        self,
        container_manager: ContainerManager,
        repository: MemberRepository,
        capacity: CapacityManager,
        bitbucket_client: BitbucketClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize provisioning manager.

        Args:
            container_manager: Docker wrapper
            repository: Member repository
            capacity: Capacity guard
            bitbucket_client: Bitbucket API client (built from settings if omitted)
            settings: Settings (defaults to the cached settings)
        """
        self.settings = settings or get_settings()
        self.container_manager = container_manager
        self.repository = repository
        self.capacity = capacity
        self.bitbucket_client = bitbucket_client or BitbucketClient(
            self.settings.app_username,
            self.settings.app_password,
            timeout=self.settings.startup_request_timeout_s,
        )
        self.metrics = get_metrics_collector()

    def base_url(self, http_port: int) -> str:
        """Base URL of a member's Bitbucket HTTP endpoint."""
        return f"http://{self.settings.app_host}:{http_port}"

    async def provision(self) -> Member:
        """
        Provision a new, unclaimed pool member.

        Returns:
            The ready member, with status ``new``

        Raises:
            CapacityExceededError: If the pool is at its ceiling
            InvalidVersionError: If the configured version is not usable
            ConfigurationError: If add-on or license paths are missing
            StillStartingError: If Bitbucket does not start before the deadline
            CollaboratorError: If Docker or Bitbucket calls fail
        """
        started_at = time.monotonic()

        try:
            container, http_port = await self._create_and_start()
        except CapacityExceededError:
            self.metrics.record_provision("capacity_exceeded")
            raise
        except Exception:
            self.metrics.record_provision("failure")
            raise

        try:
            base_url = self.base_url(http_port)
            await self.validate_startup(base_url, container.id)
            await self.install_addon_and_license(base_url)
            member = await self.repository.get(container.id)
        except (Exception, asyncio.CancelledError):
            self.metrics.record_provision("failure")
            await self._rollback(container.id)
            raise

        duration = time.monotonic() - started_at
        self.metrics.record_provision("success", duration)
        logger.info(
            "Member provisioned",
            extra={
                "container_id": member.id,
                "container_name": member.name,
                "http_port": member.http_port,
                "ssh_port": member.ssh_port,
                "duration_s": round(duration, 1),
            },
        )
        return member

    async def _create_and_start(self) -> tuple[DockerContainer, int]:
        async with self.capacity.reservation_lock:
            exceeded, current = await self.capacity.exceeds(self.settings.max_pool_size)
            if exceeded:
                logger.warning(
                    "Container limit reached, not provisioning",
                    extra={"current": current, "limit": self.settings.max_pool_size},
                )
                raise CapacityExceededError(self.settings.max_pool_size, current)

            image = resolve_image(self.settings.image, self.settings.app_version)
            self._require_install_paths()

            name = generate_name(self.settings.prefix)
            http_port, ssh_port = reserve_port_pair()
            logger.info(
                "Creating container",
                extra={
                    "container_name": name,
                    "image": image,
                    "http_port": http_port,
                    "ssh_port": ssh_port,
                },
            )

            container = await self.container_manager.create(
                name=name,
                image=image,
                http_port=http_port,
                ssh_port=ssh_port,
                volume_name=generate_volume_name(self.settings.prefix),
            )

        try:
            await self.container_manager.start(container.id)
        except (Exception, asyncio.CancelledError):
            await self._rollback(container.id)
            raise

        return container, http_port

    def _require_install_paths(self) -> None:
        if not self.settings.addon_path:
            raise ConfigurationError("addon_path is not configured (set POOL_ADDON_PATH)")
        if not self.settings.license_path:
            raise ConfigurationError("license_path is not configured (set POOL_LICENSE_PATH)")

    async def validate_startup(self, base_url: str, container_id: str) -> StartupStatus:
        """
        Poll Bitbucket until it reports STARTED.

        Args:
            base_url: Member base URL
            container_id: Container ID, for logging

        Returns:
            The final startup status

        Raises:
            StillStartingError: If the deadline passes first
            BitbucketAPIError: On a non-transient transport or decode error
        """
        logger.info(
            "Validating startup status",
            extra={"container_id": container_id, "url": base_url},
        )

        loop = asyncio.get_running_loop()
        deadline = loop.time() + self.settings.startup_timeout_s
        last: StartupStatus | None = None

        while True:
            if loop.time() >= deadline:
                raise StillStartingError(
                    base_url,
                    self.settings.startup_timeout_s,
                    state=last.state if last else None,
                    message=last.progress.message if last else None,
                )

            await asyncio.sleep(self.settings.startup_poll_interval_s)
            status = await self.bitbucket_client.get_startup_status(base_url)
            if status is None:
                continue

            if last is None or status.progress.message != last.progress.message:
                logger.info(
                    "Startup progress",
                    extra={
                        "container_id": container_id,
                        "percentage": status.progress.percentage,
                        "state": status.state,
                        "progress_message": status.progress.message,
                    },
                )
            last = status

            if status.is_started:
                return status

    async def install_addon_and_license(self, base_url: str) -> None:
        """
        Install the add-on and submit its license.

        Args:
            base_url: Member base URL

        Raises:
            ConfigurationError: If paths are missing or the license is unreadable
            BitbucketAPIError: If a plugin manager call fails
        """
        self._require_install_paths()

        logger.info("Receiving upm token", extra={"url": base_url})
        token = await self.bitbucket_client.get_upm_token(base_url)

        logger.info(
            "Installing addon",
            extra={"url": base_url, "addon_path": self.settings.addon_path},
        )
        result = await self.bitbucket_client.install_addon(
            base_url, token, self.settings.addon_path
        )
        logger.info("Addon installed", extra={"url": base_url, "result": result})

        try:
            license_text = Path(self.settings.license_path).read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigurationError(
                f"unable to read license file {self.settings.license_path}: {e}"
            ) from e

        await self.bitbucket_client.set_addon_license(
            base_url, self.settings.addon_key, license_text
        )
        logger.info(
            "License set",
            extra={"url": base_url, "addon_key": self.settings.addon_key},
        )

    async def _rollback(self, container_id: str) -> None:
        logger.warning(
            "Provisioning failed, removing container",
            extra={"container_id": container_id},
        )
        try:
            await self.container_manager.remove(container_id)
        except Exception as e:
            logger.error(
                "Failed to remove half-provisioned container",
                extra={"container_id": container_id, "error": str(e)},
            )
