"""Allocation of pool members to callers."""

import asyncio
from datetime import datetime, timezone
from typing import Dict, Optional

from bitbucket_pool.config import Settings, get_settings
from bitbucket_pool.managers.provisioning_manager import ProvisioningManager
from bitbucket_pool.models.members import Member, MemberStatus
from bitbucket_pool.repositories.base import MemberRepository
from bitbucket_pool.utils import get_logger
from bitbucket_pool.utils.exceptions import MemberNotFoundError
from bitbucket_pool.utils.metrics_collector import get_metrics_collector

logger = get_logger(__name__)


class AllocationManager:
    """Hands out free members, provisioning new ones when none are free."""

    def __init__(
        self,
        repository: MemberRepository,
        provisioning: ProvisioningManager,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize allocation manager.

        Args:
            repository: Member repository
            provisioning: Provisioner used when the pool has nothing free
            settings: Settings (defaults to the cached settings)
        """
        self.settings = settings or get_settings()
        self.repository = repository
        self.provisioning = provisioning
        self.metrics = get_metrics_collector()
        self._locks: Dict[str, asyncio.Lock] = {}

    def _get_lock(self, member_id: str) -> asyncio.Lock:
        """Get or create lock for member ID."""
        if member_id not in self._locks:
            self._locks[member_id] = asyncio.Lock()
        return self._locks[member_id]

    def _prune_locks(self, live_ids: set[str]) -> None:
        for member_id in list(self._locks):
            if member_id not in live_ids and not self._locks[member_id].locked():
                del self._locks[member_id]

    async def get_free(self) -> Optional[Member]:
        """
        Find a free member without claiming it.

        Returns:
            The first member with status ``new``, or None if there is none
        """
        members = await self.repository.list_all()
        self._prune_locks({m.id for m in members})

        for member in members:
            if member.status is MemberStatus.NEW:
                return member

        logger.debug("No free member in pool")
        return None

    async def claim(self, member_id: str) -> Optional[Member]:
        """
        Claim a member if it is still free.

        The member is re-read under a per-member lock, so two concurrent
        callers never both claim it.

        Args:
            member_id: Container ID

        Returns:
            The claimed member, or None if it had already been claimed
        """
        async with self._get_lock(member_id):
            expires_at = datetime.now(timezone.utc) + self.settings.lease_duration
            member = await self.repository.claim_if_free(member_id, expires_at)

        if member is not None:
            logger.info(
                "Member claimed",
                extra={
                    "container_id": member.id,
                    "container_name": member.name,
                    "expires_at": member.expires_at.isoformat() if member.expires_at else None,
                },
            )
        return member

    async def _claim_any_free(self) -> Optional[Member]:
        members = await self.repository.list_all()
        self._prune_locks({m.id for m in members})

        for candidate in members:
            if candidate.status is not MemberStatus.NEW:
                continue
            try:
                member = await self.claim(candidate.id)
            except MemberNotFoundError:
                # Removed between listing and claiming
                continue
            if member is not None:
                return member
        return None

    async def get_or_provision(self) -> Member:
        """
        Hand out a usable member: a free one if any, otherwise a new one.

        Provisioning can take several minutes.

        Returns:
            A claimed member

        Raises:
            CapacityExceededError: If nothing is free and the pool is full
            PoolError: If provisioning fails
        """
        while True:
            member = await self._claim_any_free()
            if member is not None:
                self.metrics.record_allocation("pool")
                return member

            logger.info("No free member, provisioning a new one")
            provisioned = await self.provisioning.provision()

            member = await self.claim(provisioned.id)
            if member is not None:
                self.metrics.record_allocation("provisioned")
                return member

            logger.info(
                "Provisioned member was claimed by another request, retrying",
                extra={"container_id": provisioned.id},
            )
