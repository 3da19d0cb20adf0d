"""Repository layer for pool member state."""

from .base import MemberRepository
from .members import NameEncodedMemberRepository

__all__ = ["MemberRepository", "NameEncodedMemberRepository"]
