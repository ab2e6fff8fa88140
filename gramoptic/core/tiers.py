# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Workspace -> memory tier policy.

    Workspaces 1-3  -> RAM             (no compression, highest performance)
    Workspaces 4-6  -> DISK_SWAP       (low compression on disk)
    Workspaces 7+   -> COMPRESSED_RAM  (medium compression in RAM)

Anything that is not a positive integer is undetermined and ``tier_for``
returns ``None``; callers skip the reconciliation step in that case.
"""

from enum import Enum
from typing import Any, Optional

# Workspace value the focus source reports when the compositor can't be read
UNKNOWN_WORKSPACE = None


class Tier(Enum):
    """Memory backing tier"""

    RAM = "ram"
    DISK_SWAP = "disk_swap"
    COMPRESSED_RAM = "compressed_ram"

    @property
    def rank(self) -> int:
        return _RANKS[self]

    @property
    def label(self) -> str:
        return _LABELS[self]

    @property
    def workspaces(self) -> str:
        return _WORKSPACES[self]

    def describe(self, workspace: int) -> str:
        """Log line describing what the tier means for a workspace"""
        return _DESCRIPTIONS[self].format(workspace=workspace)


_RANKS = {Tier.RAM: 1, Tier.DISK_SWAP: 2, Tier.COMPRESSED_RAM: 3}

_LABELS = {
    Tier.RAM: "RAM (Tier 1)",
    Tier.DISK_SWAP: "Disk Swap (Tier 2 - Low Compression)",
    Tier.COMPRESSED_RAM: "ZRAM (Tier 3 - Medium Compression)",
}

_WORKSPACES = {Tier.RAM: "1-3", Tier.DISK_SWAP: "4-6", Tier.COMPRESSED_RAM: "7-9"}

_DESCRIPTIONS = {
    Tier.RAM: "Workspace {workspace}: Prioritizing RAM (Tier 1) for optimal performance",
    Tier.DISK_SWAP: "Workspace {workspace}: Using disk swap (Tier 2) with low compression algorithm",
    Tier.COMPRESSED_RAM: "Workspace {workspace}: Using ZRAM (Tier 3) with medium compression",
}


def is_valid_workspace(workspace: Any) -> bool:
    """True for positive integers (bools excluded)"""
    return (
        isinstance(workspace, int)
        and not isinstance(workspace, bool)
        and workspace >= 1
    )


class TierPolicy:
    """
    Pure mapping from workspace id to tier.

    Bounds are inclusive upper limits for the RAM and disk-swap tiers;
    everything above ``disk_swap_max`` is compressed RAM, including ids
    beyond 9.
    """

    def __init__(self, ram_max: int = 3, disk_swap_max: int = 6):
        if not 1 <= ram_max < disk_swap_max:
            raise ValueError(
                f"Invalid tier bounds: ram_max={ram_max}, disk_swap_max={disk_swap_max}"
            )
        self.ram_max = ram_max
        self.disk_swap_max = disk_swap_max

    def tier_for(self, workspace: Any) -> Optional[Tier]:
        if not is_valid_workspace(workspace):
            return None
        if workspace <= self.ram_max:
            return Tier.RAM
        if workspace <= self.disk_swap_max:
            return Tier.DISK_SWAP
        return Tier.COMPRESSED_RAM


_default_policy = TierPolicy()


def tier_for(workspace: Any) -> Optional[Tier]:
    """Tier for ``workspace`` under the default 1-3 / 4-6 / 7+ policy"""
    return _default_policy.tier_for(workspace)
