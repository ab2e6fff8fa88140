# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tier provisioners

One provisioner per tier, created in start order (RAM, disk swap,
compressed RAM).
"""

from typing import Dict, Mapping, Optional

from ..resources import TierResource
from ..tiers import Tier
from .base import ResourceProvisioner
from .disk_swap import DiskSwapProvisioner
from .ram import RamProvisioner
from .zram import ZramProvisioner

PROVISION_ORDER = (Tier.RAM, Tier.DISK_SWAP, Tier.COMPRESSED_RAM)
TEARDOWN_ORDER = (Tier.COMPRESSED_RAM, Tier.DISK_SWAP, Tier.RAM)


def build_provisioners(
    config,
    host,
    resources: Optional[Mapping[Tier, TierResource]] = None,
) -> Dict[Tier, ResourceProvisioner]:
    """Create provisioners for every tier, adopting previously recorded resources"""
    resources = resources or {}
    tiers = config.tiers
    return {
        Tier.RAM: RamProvisioner(host, resources.get(Tier.RAM)),
        Tier.DISK_SWAP: DiskSwapProvisioner(
            host,
            resources.get(Tier.DISK_SWAP),
            default_size=tiers.swap_size_bytes,
            swap_file=config.paths.swap_file,
            priority=tiers.disk_swap_priority,
            compression_algorithm=tiers.low_compression,
        ),
        Tier.COMPRESSED_RAM: ZramProvisioner(
            host,
            resources.get(Tier.COMPRESSED_RAM),
            default_size=tiers.zram_size_bytes,
            preferred_algorithm=tiers.medium_compression,
            fallback_algorithm=tiers.low_compression,
            priority=tiers.zram_priority,
        ),
    }


__all__ = [
    "ResourceProvisioner",
    "RamProvisioner",
    "DiskSwapProvisioner",
    "ZramProvisioner",
    "PROVISION_ORDER",
    "TEARDOWN_ORDER",
    "build_provisioners",
]
