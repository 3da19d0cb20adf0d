"""Pool member and Bitbucket startup models."""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class MemberStatus(str, Enum):
    """Claim status of a pool member, as encoded in its name."""

    NEW = "new"
    ALLOCATED = "allocated"


class Member(BaseModel):
    """A pool member: one Bitbucket Server container."""

    id: str = Field(..., description="Docker container ID")
    name: str = Field(..., description="Container name, carrying status and expiry")
    image: str = Field(..., description="Image the container was created from")
    status: MemberStatus = Field(..., description="Claim status derived from the name")
    expires_at: datetime | None = Field(
        None, description="Claim expiry (UTC); only set for allocated members"
    )
    state: str = Field(..., description="Runtime state reported by Docker")
    http_port: int | None = Field(None, description="Host port bound to Bitbucket HTTP")
    ssh_port: int | None = Field(None, description="Host port bound to Bitbucket SSH")
    username: str = Field(..., description="Bitbucket admin username")
    password: str = Field(..., description="Bitbucket admin password")

    @property
    def is_free(self) -> bool:
        """Whether the member can be claimed."""
        return self.status is MemberStatus.NEW


class StartupProgress(BaseModel):
    """Progress block of the Bitbucket startup status."""

    message: str = ""
    percentage: int = 0


class StartupStatus(BaseModel):
    """Response of Bitbucket's ``/system/startup`` endpoint."""

    state: str
    progress: StartupProgress = Field(default_factory=StartupProgress)

    @property
    def is_started(self) -> bool:
        """Whether Bitbucket reports it has finished starting."""
        return self.state == "STARTED"
