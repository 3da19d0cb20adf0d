"""Reclaiming of pool members whose lease has expired."""

from datetime import datetime, timezone
from typing import List, Tuple

from bitbucket_pool.managers.container_manager import ContainerManager
from bitbucket_pool.models.members import Member, MemberStatus
from bitbucket_pool.repositories.base import MemberRepository
from bitbucket_pool.utils import get_logger
from bitbucket_pool.utils.exceptions import (
    MemberNotFoundError,
    NameDecodeError,
    UnexpectedRuntimeStateError,
)
from bitbucket_pool.utils.metrics_collector import get_metrics_collector
from bitbucket_pool.utils.name_codec import decode_expiry

logger = get_logger(__name__)

RUNNING_STATE = "running"
EXITED_STATE = "exited"


class ReclaimManager:
    """Tears down members, either because their lease expired or on request."""

    def __init__(
        self,
        container_manager: ContainerManager,
        repository: MemberRepository,
    ) -> None:
        """
        Initialize reclaim manager.

        Args:
            container_manager: Docker wrapper
            repository: Member repository
        """
        self.container_manager = container_manager
        self.repository = repository
        self.metrics = get_metrics_collector()

    async def teardown(self, member_id: str) -> None:
        """
        Stop a member if it is running, then remove it and its volume.

        Args:
            member_id: Container ID

        Raises:
            MemberNotFoundError: If the container does not exist
            UnexpectedRuntimeStateError: If it is neither running nor exited
            DockerAPIError: If Docker operations fail
        """
        container = await self.container_manager.get(member_id)
        state = container.status

        if state == RUNNING_STATE:
            await self.container_manager.stop(member_id)
        elif state != EXITED_STATE:
            raise UnexpectedRuntimeStateError(member_id, state)

        await self.container_manager.remove(member_id)

    def find_expired(self, members: List[Member], now: datetime) -> Tuple[List[Member], int]:
        """
        Select allocated members whose expiry is before ``now``.

        Members whose name carries no readable expiry are logged and left out.

        Args:
            members: Candidate members
            now: Current time, truncated to whole seconds

        Returns:
            Tuple of (expired members, number of members skipped as unreadable)
        """
        expired = []
        undecodable = 0
        for member in members:
            if member.status is not MemberStatus.ALLOCATED:
                continue

            try:
                expires_at = decode_expiry(member.name)
            except NameDecodeError as e:
                logger.warning(
                    "Skipping member with unreadable expiry",
                    extra={
                        "container_id": member.id,
                        "container_name": member.name,
                        "error": str(e),
                    },
                )
                self.metrics.record_reclaim_skipped("undecodable")
                undecodable += 1
                continue

            if now > expires_at:
                expired.append(member)

        return expired, undecodable

    async def reclaim_expired(self) -> dict:
        """
        Run one reclaim pass over the pool.

        Returns:
            Dictionary with reclaim statistics

        Raises:
            DockerAPIError: If the pool cannot be listed
        """
        members = await self.repository.list_all()
        allocated = [m for m in members if m.status is MemberStatus.ALLOCATED]

        self.metrics.set_pool_members(MemberStatus.NEW.value, len(members) - len(allocated))
        self.metrics.set_pool_members(MemberStatus.ALLOCATED.value, len(allocated))

        stats = {
            "allocated": len(allocated),
            "expired": 0,
            "reclaimed": 0,
            "skipped": 0,
            "errors": 0,
        }
        if not allocated:
            return stats

        now = datetime.now(timezone.utc).replace(microsecond=0)
        expired, stats["skipped"] = self.find_expired(allocated, now)
        stats["expired"] = len(expired)
        if not expired:
            return stats

        logger.info("Removing expired members", extra={"count": len(expired)})

        for member in expired:
            try:
                await self.teardown(member.id)
            except MemberNotFoundError:
                logger.info(
                    "Expired member already gone",
                    extra={"container_id": member.id},
                )
                continue
            except UnexpectedRuntimeStateError as e:
                logger.warning(
                    "Skipping expired member in unexpected state",
                    extra={"container_id": member.id, "state": e.state},
                )
                self.metrics.record_reclaim_skipped("unexpected_state")
                stats["skipped"] += 1
                continue
            except Exception as e:
                logger.error(
                    "Failed to remove expired member",
                    extra={"container_id": member.id, "error": str(e)},
                )
                self.metrics.record_reclaim_skipped("error")
                stats["errors"] += 1
                continue

            self.metrics.record_reclaimed("expired")
            stats["reclaimed"] += 1
            logger.info(
                "Expired member removed",
                extra={
                    "container_id": member.id,
                    "container_name": member.name,
                    "expires_at": member.expires_at.isoformat() if member.expires_at else None,
                },
            )

        logger.info("Reclaim pass completed", extra=stats)
        return stats
