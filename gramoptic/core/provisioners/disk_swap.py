# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Disk swap tier (workspaces 4-6)

A dedicated swap file at a fixed path, activated with a priority lower
than the compressed RAM tier but higher than the system's own swap.

Provision:
    1. reuse the file if it is already large enough, else (re)create it
       (checks free space first)
    2. chmod 600, mkswap
    3. swapon -p <priority>

Teardown:
    swapoff (always, even if the table says it's inactive), then rm.
"""

from datetime import datetime
from pathlib import Path
from typing import Optional

from ..exceptions import (
    GramOpticError,
    ProvisioningError,
    ProvisioningStep,
    ResourceExhaustedError,
    TeardownPartialFailure,
)
from ..resources import ResourceState, TierResource, format_size
from ..tiers import Tier
from .base import ResourceProvisioner

DEFAULT_SWAP_FILE = Path("/swap/gram-optic-workspace46.swap")


class DiskSwapProvisioner(ResourceProvisioner):
    tier = Tier.DISK_SWAP

    def __init__(
        self,
        host=None,
        resource: Optional[TierResource] = None,
        default_size: Optional[int] = None,
        swap_file: Path = DEFAULT_SWAP_FILE,
        priority: int = 50,
        compression_algorithm: Optional[str] = "lz4",
    ):
        super().__init__(host, resource, default_size)
        self.swap_file = Path(swap_file).expanduser().resolve()
        self.priority = priority
        self.compression_algorithm = compression_algorithm

    @property
    def identifier(self) -> str:
        return str(self.swap_file)

    def _fail(self, message: str, step: ProvisioningStep, cause: Exception = None):
        return ProvisioningError(
            message, tier=self.tier.value, step=step, cause=cause,
            details={"path": self.identifier},
        )

    def _provision(self, size: Optional[int]) -> TierResource:
        if not size:
            raise self._fail("No size given for disk swap", ProvisioningStep.ALLOCATION)

        self.logger.info("Setting up disk swap for workspaces 4-6 (low compression on disk)")

        existing = self.host.file_size(self.swap_file)
        created = False

        if existing is not None and existing >= size:
            self.logger.info(
                f"Reusing existing swap file {self.swap_file} ({format_size(existing)})"
            )
        else:
            if existing is not None:
                self.logger.info(
                    f"Swap file {self.swap_file} is smaller than {format_size(size)}, recreating"
                )
                self._remove_file(ProvisioningStep.ALLOCATION)

            available = self.host.disk_free(self.swap_file.parent)
            if available < size:
                raise ResourceExhaustedError(
                    f"Not enough free disk space for {format_size(size)} swap file "
                    f"({format_size(available)} available)",
                    tier=self.tier.value,
                    step=ProvisioningStep.ALLOCATION,
                    required=size,
                    available=available,
                )

            self.logger.info(f"Creating swap file of size {format_size(size)}...")
            try:
                self.host.make_dirs(self.swap_file.parent)
                created = True
                self.host.allocate_file(self.swap_file, size)
                self.host.chmod(self.swap_file, "600")
            except GramOpticError as e:
                self._discard(created)
                raise self._fail(
                    f"Failed to create swap file {self.swap_file}",
                    ProvisioningStep.ALLOCATION,
                    cause=e,
                ) from e

        try:
            self.host.mkswap(self.identifier)
        except GramOpticError as e:
            self._discard(created)
            raise self._fail(
                f"Failed to format {self.swap_file} as swap", ProvisioningStep.FORMAT, cause=e
            ) from e

        try:
            self.host.swapon(self.identifier, self.priority)
        except GramOpticError as e:
            if self.identifier in self.host.active_swaps():
                try:
                    self.host.swapoff(self.identifier)
                except GramOpticError as undo:
                    self.logger.error(f"Could not deactivate {self.swap_file}: {undo}")
            self._discard(created)
            raise self._fail(
                f"Failed to activate {self.swap_file}", ProvisioningStep.ACTIVATION, cause=e
            ) from e

        self.logger.info(f"Disk swap for workspaces 4-6 configured at {self.swap_file}")
        return TierResource(
            kind=self.tier,
            identifier=self.identifier,
            capacity=self.host.file_size(self.swap_file) or size,
            compression_algorithm=self.compression_algorithm,
            priority=self.priority,
            state=ResourceState.ACTIVE,
            provisioned_at=datetime.now(),
        )

    def _discard(self, created: bool):
        """Remove a file this provision created; logs instead of masking the provisioning error"""
        if not created:
            return
        try:
            self.host.remove(self.swap_file)
        except GramOpticError as e:
            self.logger.error(f"Could not remove partially created {self.swap_file}: {e}")

    def _remove_file(self, step: ProvisioningStep):
        try:
            self.host.remove(self.swap_file)
        except GramOpticError as e:
            raise self._fail(f"Failed to remove {self.swap_file}", step, cause=e) from e

    def _has_footprint(self, current: TierResource) -> bool:
        return self.host.file_size(self.swap_file) is not None

    def _teardown(self, current: TierResource):
        try:
            self.host.swapoff(self.identifier)
        except GramOpticError as e:
            if self.identifier in self.host.active_swaps():
                raise TeardownPartialFailure(
                    f"Failed to deactivate {self.swap_file}",
                    tier=self.tier.value,
                    identifier=self.identifier,
                    cause=e,
                ) from e
            # Already inactive

        if self.host.file_size(self.swap_file) is None:
            return
        try:
            self.host.remove(self.swap_file)
        except GramOpticError as e:
            raise TeardownPartialFailure(
                f"Failed to remove {self.swap_file}",
                tier=self.tier.value,
                identifier=self.identifier,
                cause=e,
            ) from e
        self.logger.info(f"Disk swap {self.swap_file} removed")

    def _refresh(self, recorded: TierResource) -> TierResource:
        if recorded.state == ResourceState.TEARDOWN_FAILED and self._has_footprint(recorded):
            return recorded

        area = self.host.active_swaps().get(self.identifier)
        if area is not None:
            return TierResource(
                kind=self.tier,
                identifier=self.identifier,
                capacity=self.host.file_size(self.swap_file) or recorded.capacity,
                compression_algorithm=self.compression_algorithm,
                priority=area.priority,
                state=ResourceState.ACTIVE,
                usage=area.used,
                provisioned_at=recorded.provisioned_at,
            )
        return TierResource.unprovisioned(self.tier)
