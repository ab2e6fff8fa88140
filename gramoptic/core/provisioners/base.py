# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Base provisioner

Every tier implements the same idempotent lifecycle:

- provision(size): no-op if already ACTIVE with at least ``size`` capacity,
  re-provision (teardown + provision) if a strictly larger size is asked for
- a recorded identifier that still holds host resources while inactive
  (e.g. a device swapped off externally) is released before re-provisioning
- teardown(): succeeds trivially when nothing is provisioned; on a partial
  failure the resource is left TEARDOWN_FAILED and TeardownPartialFailure
  is raised
- status(): snapshot verified against the live host
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

from ..exceptions import TeardownPartialFailure
from ..resources import ResourceState, TierResource, format_size
from ..tiers import Tier


class ResourceProvisioner(ABC):
    """Lifecycle of one tier's backing store"""

    tier: Tier

    def __init__(
        self,
        host=None,
        resource: Optional[TierResource] = None,
        default_size: Optional[int] = None,
    ):
        self.host = host
        self.default_size = default_size
        if resource is not None and resource.kind != self.tier:
            raise ValueError(
                f"{self.__class__.__name__} can't adopt a {resource.kind.value} resource"
            )
        self.resource = resource or TierResource.unprovisioned(self.tier)
        self.logger = logging.getLogger(f"gramoptic.provisioners.{self.tier.value}")

    # ------------------------------------------------------------------
    # Public lifecycle
    # ------------------------------------------------------------------

    def provision(self, size: Optional[int] = None) -> TierResource:
        """Create and activate the backing store"""
        if size is None:
            size = self.default_size

        current = self.status()
        if current.is_active:
            if self._satisfies(current, size):
                self.logger.debug(
                    f"{self.tier.value} already active ({format_size(current.capacity)})"
                )
                return current
            self.logger.info(
                f"Resizing {self.tier.value} from {format_size(current.capacity)} "
                f"to {format_size(size)}"
            )
            self.teardown()
        elif current.state == ResourceState.TEARDOWN_FAILED or (
            current.identifier and self._has_footprint(current)
        ):
            # Release what the recorded identifier still holds before replacing it
            self.teardown()

        self.resource = self._provision(size)
        return self.resource

    def teardown(self) -> TierResource:
        """Deactivate and remove the backing store"""
        current = self.status()
        if current.state == ResourceState.UNPROVISIONED and not self._has_footprint(current):
            self.resource = TierResource.unprovisioned(self.tier)
            return self.resource

        try:
            self._teardown(current)
        except TeardownPartialFailure:
            self.resource = current.with_state(ResourceState.TEARDOWN_FAILED)
            raise

        self.resource = TierResource.unprovisioned(self.tier)
        return self.resource

    def status(self) -> TierResource:
        """Read-only snapshot of the resource"""
        self.resource = self._refresh(self.resource)
        return self.resource

    # ------------------------------------------------------------------
    # Tier hooks
    # ------------------------------------------------------------------

    def _satisfies(self, current: TierResource, size: Optional[int]) -> bool:
        if size is None:
            return True
        return current.capacity is not None and current.capacity >= size

    def _has_footprint(self, current: TierResource) -> bool:
        """Whether something is left on the host even though nothing is active"""
        return False

    @abstractmethod
    def _provision(self, size: Optional[int]) -> TierResource:
        """Provision from scratch; must leave nothing half-active on failure"""

    @abstractmethod
    def _teardown(self, current: TierResource):
        """Release the host footprint; raise TeardownPartialFailure if it can't"""

    @abstractmethod
    def _refresh(self, recorded: TierResource) -> TierResource:
        """Reconcile the recorded resource with the live host"""
