# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Tier resource records and capacity tokens.

A TierResource is the snapshot of one provisioned backing store. It is
persisted in the supervisor's state record between control commands, so it
round-trips through plain dicts.
"""

import re
from dataclasses import dataclass, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union

from .exceptions import InvalidSizeError
from .tiers import Tier

_UNITS = {"": 1, "K": 1024, "M": 1024**2, "G": 1024**3, "T": 1024**4}

_SIZE_RE = re.compile(r"^\s*(\d+)\s*([KMGT]?)(?:I?B)?\s*$", re.IGNORECASE)


def parse_size(token: Union[str, int]) -> int:
    """
    Parse a capacity token into bytes.

    Accepts ``4096``, ``512M``, ``2G``, ``2GB``, ``2GiB`` (binary units).
    """
    if isinstance(token, bool):
        raise InvalidSizeError(f"Invalid size: {token!r}", token=token)
    if isinstance(token, int):
        value = token
    else:
        match = _SIZE_RE.match(str(token))
        if not match:
            raise InvalidSizeError(f"Invalid size: {token!r}", token=token)
        value = int(match.group(1)) * _UNITS[match.group(2).upper()]

    if value <= 0:
        raise InvalidSizeError(f"Size must be positive: {token!r}", token=token)
    return value


def format_size(size: Optional[int]) -> str:
    """Render bytes using the largest exact binary unit"""
    if size is None:
        return "-"
    for suffix in ("T", "G", "M", "K"):
        unit = _UNITS[suffix]
        if size >= unit and size % unit == 0:
            return f"{size // unit}{suffix}"
    return str(size)


class ResourceState(Enum):
    """Lifecycle state of a tier resource"""

    UNPROVISIONED = "unprovisioned"
    ACTIVE = "active"
    TEARDOWN_FAILED = "teardown_failed"


@dataclass(frozen=True)
class TierResource:
    """One tier's backing store"""

    kind: Tier
    identifier: Optional[str] = None
    capacity: Optional[int] = None
    compression_algorithm: Optional[str] = None
    priority: Optional[int] = None
    state: ResourceState = ResourceState.UNPROVISIONED
    usage: Optional[int] = None
    provisioned_at: Optional[datetime] = None

    @property
    def is_active(self) -> bool:
        return self.state == ResourceState.ACTIVE

    @classmethod
    def unprovisioned(cls, kind: Tier) -> "TierResource":
        return cls(kind=kind)

    def with_state(self, state: ResourceState, **changes) -> "TierResource":
        return replace(self, state=state, **changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind.value,
            "identifier": self.identifier,
            "capacity": self.capacity,
            "compression_algorithm": self.compression_algorithm,
            "priority": self.priority,
            "state": self.state.value,
            "usage": self.usage,
            "provisioned_at": (
                self.provisioned_at.isoformat() if self.provisioned_at else None
            ),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TierResource":
        provisioned_at = data.get("provisioned_at")
        return cls(
            kind=Tier(data["kind"]),
            identifier=data.get("identifier"),
            capacity=data.get("capacity"),
            compression_algorithm=data.get("compression_algorithm"),
            priority=data.get("priority"),
            state=ResourceState(data.get("state", ResourceState.UNPROVISIONED.value)),
            usage=data.get("usage"),
            provisioned_at=(
                datetime.fromisoformat(provisioned_at) if provisioned_at else None
            ),
        )
