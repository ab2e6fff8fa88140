# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Supervisor state record

The short-lived control command and the long-lived daemon coordinate only
through this file: daemon pid (plus its create time, to spot pid reuse)
and the last known resource of every tier. Only the supervisor writes it,
and every write replaces the whole file atomically.
"""

import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from ..core.exceptions import GramOpticError
from ..core.resources import TierResource
from ..core.tiers import Tier

logger = logging.getLogger("gramoptic.state")

STATE_FILENAME = "state.json"


@dataclass
class SupervisorState:
    """Persisted runtime state"""

    daemon_pid: Optional[int] = None
    daemon_create_time: Optional[float] = None
    resources: Dict[Tier, TierResource] = field(default_factory=dict)
    updated_at: Optional[datetime] = None

    def resource(self, tier: Tier) -> TierResource:
        return self.resources.get(tier) or TierResource.unprovisioned(tier)

    def clear_daemon(self):
        self.daemon_pid = None
        self.daemon_create_time = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "daemon_pid": self.daemon_pid,
            "daemon_create_time": self.daemon_create_time,
            "resources": {
                tier.value: resource.to_dict()
                for tier, resource in self.resources.items()
            },
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SupervisorState":
        updated_at = data.get("updated_at")
        return cls(
            daemon_pid=data.get("daemon_pid"),
            daemon_create_time=data.get("daemon_create_time"),
            resources={
                Tier(key): TierResource.from_dict(value)
                for key, value in (data.get("resources") or {}).items()
            },
            updated_at=datetime.fromisoformat(updated_at) if updated_at else None,
        )


class StateStore:
    """
    JSON state record under the configured state directory.

    Usage:
        store = StateStore(config.paths.state_dir)
        state = store.load()
        state.daemon_pid = 1234
        store.save(state)
    """

    def __init__(self, state_dir: Path):
        self.state_dir = Path(state_dir)
        self.path = self.state_dir / STATE_FILENAME

    def load(self) -> SupervisorState:
        """Load the record; a missing or unreadable file is an empty state"""
        if not self.path.exists():
            return SupervisorState()
        try:
            with open(self.path, "r") as f:
                return SupervisorState.from_dict(json.load(f))
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Ignoring unreadable state file {self.path}: {e}")
            return SupervisorState()

    def save(self, state: SupervisorState):
        """Atomically replace the record"""
        state.updated_at = datetime.now()
        try:
            self.state_dir.mkdir(parents=True, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(
                dir=self.state_dir, prefix=".state-", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w") as f:
                    json.dump(state.to_dict(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                os.replace(tmp_path, self.path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        except OSError as e:
            raise GramOpticError(
                f"Could not save state to {self.path}", cause=e
            ) from e

    def clear(self):
        """Remove the record"""
        if self.path.exists():
            self.path.unlink()
