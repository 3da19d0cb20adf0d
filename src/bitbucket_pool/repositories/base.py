"""Base repository interface for pool member state."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List

from bitbucket_pool.models.members import Member, MemberStatus


class MemberRepository(ABC):
    """Store of pool member records keyed by container ID.

    Implementations decide where status and expiry live; callers only see
    ``Member`` records.
    """

    @abstractmethod
    async def list_all(self) -> List[Member]:
        """
        List every pool member, in any state.

        Returns:
            List of members
        """

    async def list_by_status(self, status: MemberStatus) -> List[Member]:
        """
        List pool members with the given claim status.

        Args:
            status: Claim status to filter by

        Returns:
            List of members
        """
        return [member for member in await self.list_all() if member.status is status]

    async def count(self) -> int:
        """Count pool members, including stopped ones not yet reclaimed."""
        return len(await self.list_all())

    @abstractmethod
    async def get(self, member_id: str) -> Member:
        """
        Get a member by container ID.

        Args:
            member_id: Container ID

        Returns:
            Member

        Raises:
            MemberNotFoundError: If the member does not exist
        """

    @abstractmethod
    async def claim_if_free(self, member_id: str, expires_at: datetime) -> Member | None:
        """
        Mark a member allocated until ``expires_at`` if it is still free.

        Args:
            member_id: Container ID
            expires_at: Claim expiry

        Returns:
            The claimed member, or None if the member was no longer free
        """
