# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Focus sources

A focus source answers two questions about the compositor:

- current_workspace(): the active workspace id, or None when it can't be
  determined (compositor unreachable, malformed reply, non-positive id)
- windows_on(workspace): pids of the clients on a workspace

Query failures never escape; they are logged at debug level and reported
as None / an empty list.
"""

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, List, Optional, Sequence

from .exceptions import ExternalQueryFailure
from .tiers import is_valid_workspace

logger = logging.getLogger("gramoptic.focus")


class FocusSource(ABC):
    """Source of the active workspace"""

    @abstractmethod
    async def current_workspace(self) -> Optional[int]:
        """Active workspace id, or None if unknown"""

    @abstractmethod
    async def windows_on(self, workspace: int) -> List[int]:
        """Process ids of the windows on ``workspace``"""


def _as_int(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def parse_active_workspace(data: Any) -> Optional[int]:
    """Workspace id from ``activeworkspace -j`` output (``id``, else ``workspaceId``)"""
    if not isinstance(data, dict):
        return None
    value = data.get("id")
    if value is None:
        value = data.get("workspaceId")
    workspace = _as_int(value)
    return workspace if is_valid_workspace(workspace) else None


def parse_client_pids(data: Any, workspace: int) -> List[int]:
    """Pids of clients whose ``workspace.id`` matches, from ``clients -j`` output"""
    if not isinstance(data, list):
        return []
    pids: List[int] = []
    for client in data:
        if not isinstance(client, dict):
            continue
        membership = client.get("workspace")
        if not isinstance(membership, dict):
            continue
        if _as_int(membership.get("id")) != workspace:
            continue
        pid = _as_int(client.get("pid"))
        if pid is not None and pid > 0:
            pids.append(pid)
    return pids


class HyprlandFocusSource(FocusSource):
    """Focus source backed by ``hyprctl``"""

    def __init__(self, hyprctl: str = "hyprctl", timeout: float = 5.0):
        self.hyprctl = hyprctl
        self.timeout = timeout

    @classmethod
    def from_config(cls, config) -> "HyprlandFocusSource":
        return cls(
            hyprctl=config.system.hyprctl,
            timeout=min(config.system.command_timeout, config.daemon.poll_interval * 2),
        )

    async def _query(self, args: Sequence[str]) -> Any:
        """Run ``hyprctl <args> -j`` and decode the JSON reply"""
        try:
            proc = await asyncio.create_subprocess_exec(
                self.hyprctl,
                *args,
                "-j",
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise ExternalQueryFailure(f"{self.hyprctl} not available", cause=e) from e

        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), self.timeout)
        except asyncio.TimeoutError as e:
            proc.kill()
            await proc.wait()
            raise ExternalQueryFailure(
                f"{self.hyprctl} {' '.join(args)} timed out after {self.timeout}s"
            ) from e

        if proc.returncode != 0:
            raise ExternalQueryFailure(
                f"{self.hyprctl} {' '.join(args)} exited with {proc.returncode}",
                details={"stderr": stderr.decode(errors="replace").strip()},
            )

        try:
            return json.loads(stdout.decode(errors="replace"))
        except json.JSONDecodeError as e:
            raise ExternalQueryFailure(
                f"Malformed reply from {self.hyprctl} {' '.join(args)}", cause=e
            ) from e

    async def current_workspace(self) -> Optional[int]:
        try:
            data = await self._query(["activeworkspace"])
        except ExternalQueryFailure as e:
            logger.debug(f"Workspace query failed: {e}")
            return None
        return parse_active_workspace(data)

    async def windows_on(self, workspace: int) -> List[int]:
        try:
            data = await self._query(["clients"])
        except ExternalQueryFailure as e:
            logger.debug(f"Client query failed: {e}")
            return []
        return parse_client_pids(data, workspace)
