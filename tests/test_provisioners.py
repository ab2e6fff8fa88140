# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tests for the tier provisioners against an in-memory host

Tests:
- RAM tier lifecycle
- Disk swap: create, reuse, resize, rollback, teardown
- zram: module load, device allocation, algorithm fallback, rollback, teardown
- Partial teardown failures
"""

import errno

import pytest

from gramoptic.core.exceptions import (
    DependencyMissingError,
    ProvisioningError,
    ProvisioningStep,
    ResourceExhaustedError,
    TeardownPartialFailure,
)
from gramoptic.core.provisioners import (
    PROVISION_ORDER,
    TEARDOWN_ORDER,
    DiskSwapProvisioner,
    RamProvisioner,
    ZramProvisioner,
    build_provisioners,
)
from gramoptic.core.resources import ResourceState, TierResource
from gramoptic.core.tiers import Tier

GIB = 1024**3


@pytest.fixture
def disk(fake_host, swap_file):
    return DiskSwapProvisioner(fake_host, swap_file=swap_file, priority=50)


@pytest.fixture
def zram(fake_host):
    return ZramProvisioner(fake_host, priority=100)


# =============================================================================
# RAM
# =============================================================================


def test_ram_lifecycle():
    ram = RamProvisioner()
    assert ram.status().state == ResourceState.UNPROVISIONED

    resource = ram.provision()
    assert resource.is_active
    assert resource.identifier is None
    assert ram.provision() == resource

    assert ram.teardown().state == ResourceState.UNPROVISIONED


def test_provisioner_rejects_foreign_resource():
    with pytest.raises(ValueError):
        RamProvisioner(resource=TierResource.unprovisioned(Tier.DISK_SWAP))


# =============================================================================
# Disk swap
# =============================================================================


def test_disk_swap_provision(disk, fake_host, swap_file):
    resource = disk.provision(GIB)

    assert resource.is_active
    assert resource.identifier == str(swap_file)
    assert resource.capacity == GIB
    assert resource.priority == 50
    assert resource.compression_algorithm == "lz4"
    assert fake_host.swaps[str(swap_file)].priority == 50
    assert ("chmod", str(swap_file), "600") in fake_host.calls


def test_disk_swap_provision_is_idempotent(disk, fake_host):
    first = disk.provision(GIB)
    second = disk.provision(GIB)

    assert second.identifier == first.identifier
    assert fake_host.count("dd") == 1
    assert fake_host.count("swapon") == 1


def test_disk_swap_smaller_request_keeps_current(disk, fake_host):
    disk.provision(2 * GIB)
    resource = disk.provision(GIB)

    assert resource.capacity == 2 * GIB
    assert fake_host.count("dd") == 1


def test_disk_swap_resize(disk, fake_host, swap_file):
    disk.provision(GIB)
    resource = disk.provision(2 * GIB)

    assert resource.is_active
    assert resource.capacity == 2 * GIB
    assert fake_host.count("swapoff") == 1
    assert fake_host.count("dd") == 2
    assert fake_host.swaps[str(swap_file)].size == 2 * GIB


def test_disk_swap_reuses_existing_file(disk, fake_host, swap_file):
    fake_host.files[str(swap_file)] = 4 * GIB

    resource = disk.provision(GIB)

    assert resource.is_active
    assert fake_host.count("dd") == 0
    assert fake_host.count("mkswap") == 1


def test_disk_swap_path_is_canonical(fake_host, tmp_path):
    provisioner = DiskSwapProvisioner(
        fake_host, swap_file=tmp_path / "swap" / ".." / "gram-optic.swap"
    )
    canonical = str((tmp_path / "gram-optic.swap").resolve())

    assert provisioner.identifier == canonical
    provisioner.provision(GIB)
    assert canonical in fake_host.swaps
    assert provisioner.status().is_active


def test_disk_swap_uses_default_size(fake_host, swap_file):
    provisioner = DiskSwapProvisioner(fake_host, default_size=GIB, swap_file=swap_file)
    assert provisioner.provision().capacity == GIB


def test_disk_swap_not_enough_space(disk, fake_host, swap_file):
    fake_host.free_space = GIB // 2

    with pytest.raises(ResourceExhaustedError) as exc_info:
        disk.provision(GIB)

    assert exc_info.value.step == ProvisioningStep.ALLOCATION
    assert exc_info.value.required == GIB
    assert exc_info.value.available == GIB // 2
    assert str(swap_file) not in fake_host.files


def test_disk_swap_allocation_failure_discards_file(disk, fake_host, swap_file):
    fake_host.fail("chmod")

    with pytest.raises(ProvisioningError) as exc_info:
        disk.provision(GIB)

    assert exc_info.value.step == ProvisioningStep.ALLOCATION
    assert str(swap_file) not in fake_host.files


def test_disk_swap_format_failure(disk, fake_host, swap_file):
    fake_host.fail("mkswap")

    with pytest.raises(ProvisioningError) as exc_info:
        disk.provision(GIB)

    assert exc_info.value.step == ProvisioningStep.FORMAT
    assert fake_host.swaps == {}
    assert str(swap_file) not in fake_host.files


def test_disk_swap_activation_failure(disk, fake_host, swap_file):
    fake_host.fail("swapon")

    with pytest.raises(ProvisioningError) as exc_info:
        disk.provision(GIB)

    assert exc_info.value.step == ProvisioningStep.ACTIVATION
    assert exc_info.value.tier == "disk_swap"
    assert fake_host.swaps == {}
    assert disk.status().state == ResourceState.UNPROVISIONED


def test_disk_swap_teardown(disk, fake_host, swap_file):
    disk.provision(GIB)

    resource = disk.teardown()

    assert resource.state == ResourceState.UNPROVISIONED
    assert fake_host.swaps == {}
    assert str(swap_file) not in fake_host.files


def test_disk_swap_teardown_is_idempotent(disk, fake_host):
    assert disk.teardown().state == ResourceState.UNPROVISIONED
    disk.provision(GIB)
    disk.teardown()
    disk.teardown()
    assert fake_host.count("rm") == 1


def test_disk_swap_teardown_removes_inactive_leftover(disk, fake_host, swap_file):
    fake_host.files[str(swap_file)] = GIB

    disk.teardown()

    assert str(swap_file) not in fake_host.files


def test_disk_swap_partial_teardown(disk, fake_host, swap_file):
    disk.provision(GIB)
    fake_host.fail("swapoff")

    with pytest.raises(TeardownPartialFailure) as exc_info:
        disk.teardown()

    assert exc_info.value.identifier == str(swap_file)
    assert disk.resource.state == ResourceState.TEARDOWN_FAILED
    assert disk.status().state == ResourceState.TEARDOWN_FAILED

    # Retried on the next teardown once the area is released
    del fake_host.failures["swapoff"]
    assert disk.teardown().state == ResourceState.UNPROVISIONED
    assert str(swap_file) not in fake_host.files


# =============================================================================
# zram
# =============================================================================


def test_zram_provision(zram, fake_host):
    resource = zram.provision(2 * GIB)

    assert resource.is_active
    assert resource.identifier == "0"
    assert resource.capacity == 2 * GIB
    assert resource.compression_algorithm == "zstd"
    assert resource.priority == 100
    assert fake_host.devices["0"].current == "zstd"
    assert fake_host.devices["0"].disksize == 2 * GIB
    assert fake_host.swaps["/dev/zram0"].priority == 100


def test_zram_status_reads_device(zram, fake_host):
    zram.provision(GIB)

    resource = zram.status()

    assert resource.is_active
    assert resource.capacity == GIB
    assert resource.compression_algorithm == "zstd"
    assert resource.usage == 4096


def test_zram_falls_back_to_lz4(fake_host):
    fake_host.zram_algorithms = ["lzo", "lz4"]
    zram = ZramProvisioner(fake_host)

    resource = zram.provision(GIB)

    assert resource.compression_algorithm == "lz4"
    assert fake_host.devices["0"].current == "lz4"


def test_zram_keeps_device_default_when_nothing_preferred(fake_host):
    fake_host.zram_algorithms = ["lzo", "lzo-rle"]
    zram = ZramProvisioner(fake_host)

    assert zram.provision(GIB).compression_algorithm == "lzo"


def test_zram_provision_is_idempotent(zram, fake_host):
    first = zram.provision(GIB)
    second = zram.provision(GIB)

    assert second.identifier == first.identifier
    assert fake_host.count("hot_add") == 1
    assert len(fake_host.devices) == 1


def test_zram_resize(zram, fake_host):
    zram.provision(GIB)
    resource = zram.provision(2 * GIB)

    assert resource.capacity == 2 * GIB
    assert len(fake_host.devices) == 1
    assert fake_host.count("hot_remove") == 1
    assert list(fake_host.swaps) == [f"/dev/zram{resource.identifier}"]


def test_zram_only_touches_own_device(zram, fake_host):
    """Devices allocated by someone else are never released"""
    fake_host.read_text("/sys/class/zram-control/hot_add", privileged=True)

    resource = zram.provision(GIB)
    assert resource.identifier == "1"

    zram.teardown()
    assert list(fake_host.devices) == ["0"]


def test_zram_loads_module(zram, fake_host):
    fake_host.zram_loaded = False

    assert zram.provision(GIB).is_active
    assert ("modprobe", "zram") in fake_host.calls


def test_zram_without_modprobe(zram, fake_host):
    fake_host.zram_loaded = False
    fake_host.missing_commands.append("modprobe")

    with pytest.raises(DependencyMissingError) as exc_info:
        zram.provision(GIB)

    assert exc_info.value.step == ProvisioningStep.MODULE_LOAD
    assert exc_info.value.dependency == "modprobe"


def test_zram_module_load_failure(zram, fake_host):
    fake_host.zram_loaded = False
    fake_host.fail("modprobe")

    with pytest.raises(ProvisioningError) as exc_info:
        zram.provision(GIB)

    assert exc_info.value.step == ProvisioningStep.MODULE_LOAD


def test_zram_pool_exhausted(fake_host):
    fake_host.pool_size = 0
    zram = ZramProvisioner(fake_host)

    with pytest.raises(ResourceExhaustedError) as exc_info:
        zram.provision(GIB)

    assert exc_info.value.step == ProvisioningStep.DEVICE_ALLOCATION


def test_zram_allocation_failure(zram, fake_host):
    fake_host.fail("hot_add", OSError(errno.EACCES, "Permission denied"))

    with pytest.raises(ProvisioningError) as exc_info:
        zram.provision(GIB)

    assert not isinstance(exc_info.value, ResourceExhaustedError)
    assert exc_info.value.step == ProvisioningStep.DEVICE_ALLOCATION


@pytest.mark.parametrize(
    "operation,step",
    [
        ("disksize", ProvisioningStep.CONFIGURE),
        ("mkswap", ProvisioningStep.FORMAT),
        ("swapon", ProvisioningStep.ACTIVATION),
    ],
)
def test_zram_failure_rolls_back(zram, fake_host, operation, step):
    fake_host.fail(operation)

    with pytest.raises(ProvisioningError) as exc_info:
        zram.provision(GIB)

    assert exc_info.value.step == step
    assert fake_host.devices == {}
    assert fake_host.swaps == {}
    assert zram.status().state == ResourceState.UNPROVISIONED


def test_zram_teardown(zram, fake_host):
    zram.provision(GIB)

    resource = zram.teardown()

    assert resource.state == ResourceState.UNPROVISIONED
    assert fake_host.devices == {}
    assert fake_host.swaps == {}


def test_zram_teardown_is_idempotent(zram, fake_host):
    assert zram.teardown().state == ResourceState.UNPROVISIONED
    zram.provision(GIB)
    zram.teardown()
    zram.teardown()
    assert fake_host.count("hot_remove") == 1


def test_zram_teardown_after_external_swapoff(zram, fake_host):
    zram.provision(GIB)
    del fake_host.swaps["/dev/zram0"]

    assert zram.status().state == ResourceState.UNPROVISIONED
    zram.teardown()
    assert fake_host.devices == {}


def test_zram_reprovision_releases_recorded_device(zram, fake_host):
    """A device swapped off behind our back is released, not leaked"""
    zram.provision(GIB)
    fake_host.swapoff("/dev/zram0")

    resource = zram.provision(GIB)

    assert resource.is_active
    assert list(fake_host.devices) == [resource.identifier]
    assert fake_host.count("hot_remove") == 1

    zram.teardown()
    assert fake_host.devices == {}


def test_zram_partial_teardown(zram, fake_host):
    zram.provision(GIB)
    fake_host.fail("swapoff")

    with pytest.raises(TeardownPartialFailure) as exc_info:
        zram.teardown()

    assert exc_info.value.identifier == "0"
    assert zram.status().state == ResourceState.TEARDOWN_FAILED
    assert "0" in fake_host.devices


def test_zram_adopts_recorded_resource(fake_host):
    first = ZramProvisioner(fake_host)
    recorded = first.provision(GIB)

    second = ZramProvisioner(fake_host, resource=recorded)
    assert second.status().is_active
    second.teardown()
    assert fake_host.devices == {}


# =============================================================================
# Wiring
# =============================================================================


def test_build_provisioners(config, fake_host, swap_file):
    provisioners = build_provisioners(config, fake_host)

    assert set(provisioners) == set(PROVISION_ORDER)
    assert PROVISION_ORDER == tuple(reversed(TEARDOWN_ORDER))
    assert provisioners[Tier.DISK_SWAP].swap_file == swap_file
    assert provisioners[Tier.DISK_SWAP].default_size == 4 * GIB
    assert provisioners[Tier.COMPRESSED_RAM].default_size == 2 * GIB
    assert provisioners[Tier.COMPRESSED_RAM].preferred_algorithm == "zstd"
    assert provisioners[Tier.COMPRESSED_RAM].fallback_algorithm == "lz4"
