# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Compressed RAM tier (workspaces 7-9)

A zram device hot-added from the kernel pool, formatted as swap and
activated with the highest priority of the three tiers.

The device id is whatever ``hot_add`` returns; another process may grab
ids concurrently, so the recorded id is the only one teardown targets.
"""

import errno
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from ..exceptions import (
    DependencyMissingError,
    GramOpticError,
    ProvisioningError,
    ProvisioningStep,
    ResourceExhaustedError,
    TeardownPartialFailure,
)
from ..resources import ResourceState, TierResource
from ..tiers import Tier
from .base import ResourceProvisioner

ZRAM_CONTROL = Path("/sys/class/zram-control")
HOT_ADD = ZRAM_CONTROL / "hot_add"
HOT_REMOVE = ZRAM_CONTROL / "hot_remove"
SYS_BLOCK = Path("/sys/block")

_EXHAUSTED_ERRNOS = (errno.ENOSPC, errno.ENOMEM, errno.E2BIG)
_EXHAUSTED_MESSAGES = ("no space left", "cannot allocate memory")


def parse_algorithms(text: str) -> Tuple[List[str], Optional[str]]:
    """
    Parse ``comp_algorithm`` contents.

    "lzo lzo-rle lz4 [zstd]" -> (["lzo", "lzo-rle", "lz4", "zstd"], "zstd")
    """
    available: List[str] = []
    current = None
    for token in text.split():
        name = token.strip("[]")
        if not name:
            continue
        if token.startswith("["):
            current = name
        available.append(name)
    return available, current


def choose_algorithm(advertised: str, preference: Sequence[str]) -> Optional[str]:
    """First preferred algorithm the device supports, else its current one"""
    available, current = parse_algorithms(advertised)
    for name in preference:
        if name in available:
            return name
    return current


def _is_exhausted(error: Exception) -> bool:
    if isinstance(error, OSError) and error.errno in _EXHAUSTED_ERRNOS:
        return True
    return any(msg in str(error).lower() for msg in _EXHAUSTED_MESSAGES)


class ZramProvisioner(ResourceProvisioner):
    tier = Tier.COMPRESSED_RAM

    def __init__(
        self,
        host=None,
        resource: Optional[TierResource] = None,
        default_size: Optional[int] = None,
        preferred_algorithm: str = "zstd",
        fallback_algorithm: str = "lz4",
        priority: int = 100,
    ):
        super().__init__(host, resource, default_size)
        self.preferred_algorithm = preferred_algorithm
        self.fallback_algorithm = fallback_algorithm
        self.priority = priority

    @staticmethod
    def device_path(device_id: str) -> str:
        return f"/dev/zram{device_id}"

    @staticmethod
    def sysfs_path(device_id: str) -> Path:
        return SYS_BLOCK / f"zram{device_id}"

    def _fail(self, message: str, step: ProvisioningStep, cause: Exception = None, **details):
        return ProvisioningError(
            message, tier=self.tier.value, step=step, cause=cause, details=details
        )

    # ------------------------------------------------------------------
    # Provision
    # ------------------------------------------------------------------

    def _provision(self, size: Optional[int]) -> TierResource:
        if not size:
            raise self._fail("No size given for zram", ProvisioningStep.CONFIGURE)

        self.logger.info("Setting up zram for workspaces 7-9 (medium compression in RAM)")

        self._load_module()
        device_id = self._allocate_device()

        step = ProvisioningStep.CONFIGURE
        try:
            algorithm = self._select_algorithm(device_id)
            self.host.write_text(self.sysfs_path(device_id) / "disksize", str(size))

            step = ProvisioningStep.FORMAT
            self.host.mkswap(self.device_path(device_id))

            step = ProvisioningStep.ACTIVATION
            self.host.swapon(self.device_path(device_id), self.priority)
        except (GramOpticError, OSError) as e:
            self._rollback(device_id)
            raise self._fail(
                f"Failed to set up zram{device_id} ({step.value})",
                step,
                cause=e,
                device=device_id,
            ) from e

        self.logger.info(
            f"zram{device_id} device for workspaces 7-9 configured with medium compression"
        )
        return TierResource(
            kind=self.tier,
            identifier=device_id,
            capacity=size,
            compression_algorithm=algorithm,
            priority=self.priority,
            state=ResourceState.ACTIVE,
            provisioned_at=datetime.now(),
        )

    def _load_module(self):
        if self.host.exists(HOT_ADD):
            return
        if not self.host.which("modprobe"):
            raise DependencyMissingError(
                "modprobe is required for zram functionality",
                dependency="modprobe",
                tier=self.tier.value,
                step=ProvisioningStep.MODULE_LOAD,
            )
        try:
            self.host.run(["modprobe", "zram"], privileged=True)
        except GramOpticError as e:
            raise self._fail(
                "Failed to load zram module", ProvisioningStep.MODULE_LOAD, cause=e
            ) from e
        if not self.host.exists(HOT_ADD):
            raise DependencyMissingError(
                f"{HOT_ADD} not available after loading zram",
                dependency="zram-control",
                tier=self.tier.value,
                step=ProvisioningStep.MODULE_LOAD,
            )

    def _allocate_device(self) -> str:
        try:
            raw = self.host.read_text(HOT_ADD, privileged=True)
        except (GramOpticError, OSError) as e:
            if _is_exhausted(e):
                raise ResourceExhaustedError(
                    "zram device pool exhausted",
                    tier=self.tier.value,
                    step=ProvisioningStep.DEVICE_ALLOCATION,
                    cause=e,
                ) from e
            raise self._fail(
                "Failed to allocate zram device", ProvisioningStep.DEVICE_ALLOCATION, cause=e
            ) from e

        device_id = raw.strip()
        if not device_id.isdigit():
            raise self._fail(
                f"Unexpected hot_add response: {raw!r}",
                ProvisioningStep.DEVICE_ALLOCATION,
            )
        return device_id

    def _select_algorithm(self, device_id: str) -> Optional[str]:
        path = self.sysfs_path(device_id) / "comp_algorithm"
        advertised = self.host.read_text(path)
        algorithm = choose_algorithm(
            advertised, [self.preferred_algorithm, self.fallback_algorithm]
        )
        if algorithm is None:
            raise self._fail(
                f"zram{device_id} advertises no compression algorithm",
                ProvisioningStep.CONFIGURE,
            )

        self.host.write_text(path, algorithm)
        if algorithm == self.preferred_algorithm:
            self.logger.info(f"Using {algorithm} compression for zram{device_id}")
        else:
            self.logger.info(
                f"Using {algorithm} compression for zram{device_id} "
                f"({self.preferred_algorithm} not available)"
            )
        return algorithm

    def _rollback(self, device_id: str):
        """Undo a partial provision; errors are logged so the provisioning failure surfaces"""
        device = self.device_path(device_id)
        try:
            if device in self.host.active_swaps():
                self.host.swapoff(device)
            self.host.write_text(HOT_REMOVE, device_id)
        except (GramOpticError, OSError) as e:
            self.logger.error(f"Rollback of zram{device_id} incomplete: {e}")

    # ------------------------------------------------------------------
    # Teardown / status
    # ------------------------------------------------------------------

    def _has_footprint(self, current: TierResource) -> bool:
        return bool(current.identifier) and self.host.exists(
            self.sysfs_path(current.identifier)
        )

    def _teardown(self, current: TierResource):
        device_id = current.identifier
        if not device_id or not self.host.exists(self.sysfs_path(device_id)):
            self.logger.info("zram device already removed")
            return

        device = self.device_path(device_id)
        try:
            self.host.swapoff(device)
        except GramOpticError as e:
            if device in self.host.active_swaps():
                raise TeardownPartialFailure(
                    f"Failed to deactivate {device}",
                    tier=self.tier.value,
                    identifier=device_id,
                    cause=e,
                ) from e

        if not self.host.exists(HOT_REMOVE):
            return
        try:
            self.host.write_text(HOT_REMOVE, device_id)
        except (GramOpticError, OSError) as e:
            if self.host.exists(self.sysfs_path(device_id)):
                raise TeardownPartialFailure(
                    f"Failed to release zram{device_id}",
                    tier=self.tier.value,
                    identifier=device_id,
                    cause=e,
                ) from e
        self.logger.info(f"zram{device_id} released")

    def _refresh(self, recorded: TierResource) -> TierResource:
        device_id = recorded.identifier
        if not device_id or not self.host.exists(self.sysfs_path(device_id)):
            return TierResource.unprovisioned(self.tier)

        if recorded.state == ResourceState.TEARDOWN_FAILED:
            return recorded

        area = self.host.active_swaps().get(self.device_path(device_id))
        if area is None:
            # Device still allocated but swapped off externally; keep the id for teardown
            return TierResource(kind=self.tier, identifier=device_id)

        sysfs = self.sysfs_path(device_id)
        capacity = self._read_int(sysfs / "disksize")
        algorithm = recorded.compression_algorithm
        try:
            _, current = parse_algorithms(self.host.read_text(sysfs / "comp_algorithm"))
            algorithm = current or algorithm
        except OSError:
            pass

        return TierResource(
            kind=self.tier,
            identifier=device_id,
            capacity=capacity if capacity else recorded.capacity,
            compression_algorithm=algorithm,
            priority=area.priority,
            state=ResourceState.ACTIVE,
            usage=self._memory_used(sysfs),
            provisioned_at=recorded.provisioned_at,
        )

    def _read_int(self, path: Path) -> Optional[int]:
        try:
            return int(self.host.read_text(path).split()[0])
        except (OSError, ValueError, IndexError):
            return None

    def _memory_used(self, sysfs: Path) -> Optional[int]:
        # mm_stat: orig_data_size compr_data_size mem_used_total ...
        try:
            fields = self.host.read_text(sysfs / "mm_stat").split()
            return int(fields[2])
        except (OSError, ValueError, IndexError):
            return self._read_int(sysfs / "mem_used_total")

