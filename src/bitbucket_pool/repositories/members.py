"""Member repository that keeps member state in Docker container names."""

from datetime import datetime
from typing import List

from docker.models.containers import Container as DockerContainer

from bitbucket_pool.config import Settings, get_settings
from bitbucket_pool.managers.container_manager import ContainerManager
from bitbucket_pool.models.members import Member, MemberStatus
from bitbucket_pool.utils import get_logger
from bitbucket_pool.utils.exceptions import MemberNotFoundError, NameDecodeError
from bitbucket_pool.utils.name_codec import decode_expiry, derive_status, encode_claim

from .base import MemberRepository

logger = get_logger(__name__)


class NameEncodedMemberRepository(MemberRepository):
    """Repository reading and writing member state through container names.

    Names follow ``<prefix>-<randomID>---<status>[--<expiryStamp>]`` and are
    compatible with pools created by earlier deployments.
    """

    def __init__(
        self,
        container_manager: ContainerManager,
        settings: Settings | None = None,
    ) -> None:
        """
        Initialize member repository.

        Args:
            container_manager: Docker wrapper used for reads and renames
            settings: Settings (defaults to the cached settings)
        """
        self.container_manager = container_manager
        self.settings = settings or get_settings()

    def to_member(self, container: DockerContainer) -> Member:
        """
        Build a member record from a Docker container.

        An allocated member whose expiry cannot be decoded is returned with
        ``expires_at`` unset.

        Args:
            container: Docker container

        Returns:
            Member
        """
        name = container.name
        status = derive_status(name)

        expires_at = None
        if status is MemberStatus.ALLOCATED:
            try:
                expires_at = decode_expiry(name)
            except NameDecodeError:
                expires_at = None

        attrs = container.attrs or {}
        bindings = (attrs.get("HostConfig") or {}).get("PortBindings") or {}

        return Member(
            id=container.id,
            name=name,
            image=(attrs.get("Config") or {}).get("Image", ""),
            status=status,
            expires_at=expires_at,
            state=container.status,
            http_port=_host_port(bindings, self.settings.http_container_port),
            ssh_port=_host_port(bindings, self.settings.ssh_container_port),
            username=self.settings.app_username,
            password=self.settings.app_password,
        )

    async def list_all(self) -> List[Member]:
        containers = await self.container_manager.list_by_prefix(self.settings.prefix)
        return [self.to_member(c) for c in containers]

    async def get(self, member_id: str) -> Member:
        container = await self.container_manager.get(member_id)
        if self.settings.prefix not in (container.name or ""):
            raise MemberNotFoundError(member_id)
        return self.to_member(container)

    async def claim_if_free(self, member_id: str, expires_at: datetime) -> Member | None:
        member = await self.get(member_id)
        if not member.is_free:
            logger.info(
                "Member no longer free, not claiming",
                extra={"container_id": member_id, "container_name": member.name},
            )
            return None

        await self.container_manager.rename(member_id, encode_claim(member.name, expires_at))
        return await self.get(member_id)


def _host_port(bindings: dict, container_port: int) -> int | None:
    entries = bindings.get(f"{container_port}/tcp") or []
    for entry in entries:
        host_port = entry.get("HostPort")
        if host_port:
            return int(host_port)
    return None
