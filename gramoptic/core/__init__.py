# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Gram-Optic Core

Tier policy, resource records, host access, focus sources and the
per-tier provisioners.
"""

from .config import GramOpticConfig, get_config, load_config, reload_config
from .exceptions import (
    ConfigError,
    DependencyMissingError,
    ExternalQueryFailure,
    GramOpticError,
    InvalidSizeError,
    ProcessControlError,
    ProvisioningError,
    ProvisioningStep,
    ResourceExhaustedError,
    TeardownPartialFailure,
)
from .focus import FocusSource, HyprlandFocusSource
from .host import HostSystem
from .provisioners import (
    DiskSwapProvisioner,
    RamProvisioner,
    ResourceProvisioner,
    ZramProvisioner,
    build_provisioners,
)
from .resources import ResourceState, TierResource, format_size, parse_size
from .tiers import UNKNOWN_WORKSPACE, Tier, TierPolicy, tier_for

__all__ = [
    # Config
    "GramOpticConfig",
    "get_config",
    "load_config",
    "reload_config",
    # Errors
    "GramOpticError",
    "ConfigError",
    "InvalidSizeError",
    "ProvisioningError",
    "ProvisioningStep",
    "DependencyMissingError",
    "ResourceExhaustedError",
    "TeardownPartialFailure",
    "ExternalQueryFailure",
    "ProcessControlError",
    # Policy and records
    "Tier",
    "TierPolicy",
    "tier_for",
    "UNKNOWN_WORKSPACE",
    "TierResource",
    "ResourceState",
    "parse_size",
    "format_size",
    # Host and focus
    "HostSystem",
    "FocusSource",
    "HyprlandFocusSource",
    # Provisioners
    "ResourceProvisioner",
    "RamProvisioner",
    "DiskSwapProvisioner",
    "ZramProvisioner",
    "build_provisioners",
]
