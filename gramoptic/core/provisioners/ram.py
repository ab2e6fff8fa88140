# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""Pure RAM tier (workspaces 1-3). Nothing to set up, this is the kernel default."""

from datetime import datetime
from typing import Optional

from ..resources import ResourceState, TierResource
from ..tiers import Tier
from .base import ResourceProvisioner


class RamProvisioner(ResourceProvisioner):
    tier = Tier.RAM

    def _satisfies(self, current: TierResource, size: Optional[int]) -> bool:
        return True

    def _provision(self, size: Optional[int]) -> TierResource:
        self.logger.info(
            "Workspaces 1-3 remain in pure RAM (no compression, highest performance)"
        )
        return TierResource(
            kind=self.tier,
            state=ResourceState.ACTIVE,
            provisioned_at=datetime.now(),
        )

    def _teardown(self, current: TierResource):
        pass

    def _refresh(self, recorded: TierResource) -> TierResource:
        return recorded
