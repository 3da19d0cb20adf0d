"""Pool facade used by the HTTP layer and process startup."""

from typing import List

from bitbucket_pool.config import Settings, get_settings
from bitbucket_pool.managers.allocation_manager import AllocationManager
from bitbucket_pool.managers.capacity_manager import CapacityManager
from bitbucket_pool.managers.container_manager import ContainerManager
from bitbucket_pool.managers.provisioning_manager import ProvisioningManager
from bitbucket_pool.managers.reclaim_manager import ReclaimManager
from bitbucket_pool.models.members import Member
from bitbucket_pool.repositories.base import MemberRepository
from bitbucket_pool.utils import get_logger
from bitbucket_pool.utils.bitbucket_client import BitbucketClient
from bitbucket_pool.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


class PoolManager:
    """Entry point for every pool operation."""

    def __init__(
        self,
        container_manager: ContainerManager,
        repository: MemberRepository,
        bitbucket_client: BitbucketClient | None = None,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize pool manager and the managers it coordinates.

        Args:
            container_manager: Docker wrapper
            repository: Member repository
            bitbucket_client: Bitbucket API client (built from settings if omitted)
            settings: Settings (defaults to the cached settings)
        """
        self.settings = settings or get_settings()
        self.container_manager = container_manager
        self.repository = repository
        self.capacity = CapacityManager(repository)
        self.provisioning = ProvisioningManager(
            container_manager,
            repository,
            self.capacity,
            bitbucket_client=bitbucket_client,
            settings=self.settings,
        )
        self.allocation = AllocationManager(repository, self.provisioning, settings=self.settings)
        self.reclaim = ReclaimManager(container_manager, repository)
        self.metrics = get_metrics_collector()

    async def list_all(self) -> List[Member]:
        """
        List every pool member.

        Returns:
            List of members
        """
        return await self.repository.list_all()

    async def get_by_id(self, member_id: str) -> Member:
        """
        Get a member by container ID.

        Raises:
            MemberNotFoundError: If no pool member has this ID
        """
        return await self.repository.get(member_id)

    async def remove_by_id(self, member_id: str) -> None:
        """
        Stop and remove a member regardless of its claim status.

        Raises:
            MemberNotFoundError: If no pool member has this ID
            UnexpectedRuntimeStateError: If it is neither running nor exited
            DockerAPIError: If Docker operations fail
        """
        logger.info("Removing container by id", extra={"container_id": member_id})

        member = await self.repository.get(member_id)
        await self.reclaim.teardown(member.id)
        self.metrics.record_reclaimed("requested")

        logger.info(
            "Container removed",
            extra={"container_id": member.id, "container_name": member.name},
        )

    async def create_explicit(self) -> Member:
        """
        Provision a new member without claiming it.

        Returns:
            The new member, with status ``new``
        """
        return await self.provisioning.provision()

    async def allocate(self) -> Member:
        """
        Hand out a claimed member, provisioning one if none are free.

        Returns:
            A claimed member
        """
        return await self.allocation.get_or_provision()

    async def ensure_initial(self, target: int | None = None) -> int:
        """
        Provision unclaimed members until the pool holds ``target`` containers.

        Args:
            target: Desired container count (defaults to initial_pool_size)

        Returns:
            Number of members created
        """
        target = self.settings.initial_pool_size if target is None else target

        logger.info("Validating number of existing containers", extra={"target": target})
        exceeded, current = await self.capacity.exceeds(target)
        if exceeded:
            logger.info(
                "Initial containers already created",
                extra={"target": target, "current": current},
            )
            return 0

        missing = target - current
        logger.info("Creating initial containers", extra={"count": missing})
        for _ in range(missing):
            await self.provisioning.provision()

        logger.info("Initial containers successfully created", extra={"count": missing})
        return missing

    async def reclaim_expired(self) -> dict:
        """
        Run one reclaim pass.

        Returns:
            Dictionary with reclaim statistics
        """
        return await self.reclaim.reclaim_expired()

    async def create_network(self) -> None:
        """Ensure the shared pool network exists."""
        await self.container_manager.ensure_network(self.settings.resolved_network_name)
