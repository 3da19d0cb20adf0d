"""Capacity guard for the pool's container ceilings."""

import asyncio

from bitbucket_pool.repositories.base import MemberRepository
from bitbucket_pool.utils import get_logger

logger = get_logger(__name__)


class CapacityManager:
    """Counts pool containers against configured ceilings.

    Counting goes through the repository, so stopped members that have not
    been reclaimed yet still take up room.
    """

    def __init__(self, repository: MemberRepository) -> None:
        """
        Initialize capacity manager.

        Args:
            repository: Member repository
        """
        self.repository = repository
        # Held across check-then-create so provisions in this process cannot
        # overshoot the ceiling. Other processes on the same daemon can.
        self.reservation_lock = asyncio.Lock()

    async def count_matching(self) -> int:
        """
        Count prefix-matching containers in any state.

        Returns:
            Number of pool containers
        """
        return await self.repository.count()

    async def exceeds(self, ceiling: int) -> tuple[bool, int]:
        """
        Check whether the pool is at or above a ceiling.

        Args:
            ceiling: Ceiling to compare against

        Returns:
            Tuple of (at or above ceiling, current count)
        """
        current = await self.count_matching()
        exceeded = current >= ceiling
        logger.debug(
            "Capacity checked",
            extra={"current": current, "ceiling": ceiling, "exceeded": exceeded},
        )
        return exceeded, current
