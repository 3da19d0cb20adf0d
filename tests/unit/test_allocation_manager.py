"""Unit tests for AllocationManager."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from bitbucket_pool.managers.allocation_manager import AllocationManager
from bitbucket_pool.managers.capacity_manager import CapacityManager
from bitbucket_pool.managers.provisioning_manager import ProvisioningManager
from bitbucket_pool.models.members import MemberStatus
from bitbucket_pool.utils.exceptions import CapacityExceededError


@pytest.fixture
def allocation(container_manager, repository, bitbucket_client, settings):
    """Create AllocationManager with a real provisioner over the in-memory engine."""
    provisioning = ProvisioningManager(
        container_manager,
        repository,
        CapacityManager(repository),
        bitbucket_client=bitbucket_client,
        settings=settings,
    )
    return AllocationManager(repository, provisioning, settings=settings)


@pytest.mark.asyncio
async def test_get_free_returns_unclaimed(allocation, fake_docker):
    """Test get_free skips allocated members."""
    fake_docker.seed("bbtest-1000001---allocated--2030-Jan-2-03.04.05")
    free = fake_docker.seed("bbtest-1000002---new")

    member = await allocation.get_free()

    assert member is not None
    assert member.id == free.id


@pytest.mark.asyncio
async def test_get_free_empty(allocation, fake_docker):
    """Test get_free returns None when nothing is free."""
    fake_docker.seed("bbtest-1000001---allocated--2030-Jan-2-03.04.05")

    assert await allocation.get_free() is None


@pytest.mark.asyncio
async def test_claim_sets_lease_expiry(allocation, fake_docker, settings):
    """Test a claim expires one lease after now, at second resolution."""
    container = fake_docker.seed("bbtest-1000001---new")
    before = datetime.now(timezone.utc).replace(microsecond=0)

    member = await allocation.claim(container.id)

    after = datetime.now(timezone.utc)
    assert member is not None
    assert member.status is MemberStatus.ALLOCATED
    assert before + settings.lease_duration <= member.expires_at
    assert member.expires_at <= after + settings.lease_duration


@pytest.mark.asyncio
async def test_claim_twice_returns_none(allocation, fake_docker):
    """Test a member cannot be claimed twice."""
    container = fake_docker.seed("bbtest-1000001---new")

    assert await allocation.claim(container.id) is not None
    assert await allocation.claim(container.id) is None


@pytest.mark.asyncio
async def test_get_or_provision_prefers_free_member(allocation, fake_docker, bitbucket_client):
    """Test a free member is handed out without provisioning."""
    container = fake_docker.seed("bbtest-1000001---new")

    member = await allocation.get_or_provision()

    assert member.id == container.id
    assert member.status is MemberStatus.ALLOCATED
    bitbucket_client.get_startup_status.assert_not_awaited()


@pytest.mark.asyncio
async def test_get_or_provision_falls_back_to_provisioning(allocation, fake_docker):
    """Test a new member is provisioned and claimed when nothing is free."""
    fake_docker.seed("bbtest-1000001---allocated--2030-Jan-2-03.04.05")

    member = await allocation.get_or_provision()

    assert member.status is MemberStatus.ALLOCATED
    assert member.expires_at > datetime.now(timezone.utc) + timedelta(minutes=59)
    assert len(fake_docker.containers.items) == 2


@pytest.mark.asyncio
async def test_get_or_provision_pool_full(allocation, fake_docker):
    """Test allocation fails when nothing is free and the pool is full."""
    for i in range(3):
        fake_docker.seed(f"bbtest-100000{i}---allocated--2030-Jan-2-03.04.05")

    with pytest.raises(CapacityExceededError):
        await allocation.get_or_provision()


@pytest.mark.asyncio
async def test_concurrent_allocations_get_distinct_members(allocation, fake_docker):
    """Test concurrent callers never receive the same member."""
    fake_docker.seed("bbtest-1000001---new")
    fake_docker.seed("bbtest-1000002---new")

    members = await asyncio.gather(*(allocation.get_or_provision() for _ in range(3)))

    ids = [m.id for m in members]
    assert len(set(ids)) == 3
    assert all(m.status is MemberStatus.ALLOCATED for m in members)
    assert len(fake_docker.containers.items) == 3


@pytest.mark.asyncio
async def test_claim_locks_dropped_for_removed_members(
    allocation, container_manager, repository
):
    """Test locks of removed members do not accumulate across allocations."""
    for _ in range(5):
        member = await allocation.get_or_provision()
        await container_manager.remove(member.id)
        assert len(allocation._locks) <= 1

    member = await allocation.get_or_provision()

    live_ids = {m.id for m in await repository.list_all()}
    assert live_ids == {member.id}
    assert set(allocation._locks) == live_ids
