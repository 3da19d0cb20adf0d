"""Data models for the Bitbucket pool."""

from .members import Member, MemberStatus, StartupProgress, StartupStatus

__all__ = ["Member", "MemberStatus", "StartupProgress", "StartupStatus"]
