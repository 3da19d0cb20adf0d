"""Manager modules for pool business logic."""

from .allocation_manager import AllocationManager
from .capacity_manager import CapacityManager
from .container_manager import ContainerManager
from .pool_manager import PoolManager
from .pool_supervisor import PoolSupervisor
from .provisioning_manager import ProvisioningManager, resolve_image
from .reclaim_manager import ReclaimManager

__all__ = [
    "AllocationManager",
    "CapacityManager",
    "ContainerManager",
    "PoolManager",
    "PoolSupervisor",
    "ProvisioningManager",
    "ReclaimManager",
    "resolve_image",
]
