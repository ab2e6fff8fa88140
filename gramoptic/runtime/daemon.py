# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Workspace monitoring daemon.

Polls the focus source at a fixed interval and records which tier the
active workspace prefers. Recording is observational: the three tiers stay
provisioned and active the whole time, nothing is re-prioritized here.

    ┌──────────────┐  current_workspace()  ┌─────────────┐
    │ FocusSource  │ ────────────────────▶ │    tick     │
    └──────────────┘                       │  tier_for() │──▶ TransitionEvent ──▶ log
                                           └─────────────┘
                                      sleep(poll_interval) / stop event

Usage:
    python -m gramoptic.runtime.daemon [--config FILE]
"""

import asyncio
import logging
import signal
import sys
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Deque, Dict, List, Optional

import click

from ..core.config import GramOpticConfig, load_config
from ..core.focus import FocusSource, HyprlandFocusSource
from ..core.logger import setup_logging_from_config
from ..core.tiers import Tier, TierPolicy

logger = logging.getLogger("gramoptic.daemon")


class DaemonStatus(Enum):
    """Daemon run state"""

    RUNNING = "running"
    STOPPED = "stopped"


@dataclass(frozen=True)
class TransitionEvent:
    """A change of the active workspace and the tier it prefers"""

    from_tier: Optional[Tier]
    to_tier: Tier
    workspace: int
    previous_workspace: Optional[int]
    timestamp: datetime

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_tier": self.from_tier.value if self.from_tier else None,
            "to_tier": self.to_tier.value,
            "workspace": self.workspace,
            "previous_workspace": self.previous_workspace,
            "timestamp": self.timestamp.isoformat(),
        }


TransitionCallback = Callable[[TransitionEvent], None]


class ReconciliationDaemon:
    """
    Polling loop over a focus source.

    Args:
        focus: Where the active workspace comes from
        policy: Workspace -> tier mapping
        poll_interval: Seconds between ticks
        history_size: Transitions kept in ``history``
    """

    def __init__(
        self,
        focus: FocusSource,
        policy: Optional[TierPolicy] = None,
        poll_interval: float = 2.0,
        history_size: int = 256,
    ):
        if poll_interval <= 0:
            raise ValueError("poll_interval must be positive")
        self.focus = focus
        self.policy = policy or TierPolicy()
        self.poll_interval = poll_interval

        self.status = DaemonStatus.STOPPED
        self.previous_workspace: Optional[int] = None
        self.transition_count = 0
        self.history: Deque[TransitionEvent] = deque(maxlen=history_size)

        self._subscribers: List[TransitionCallback] = []
        self._stop_requested = False
        self._stop_event: Optional[asyncio.Event] = None

    @property
    def running(self) -> bool:
        return self.status == DaemonStatus.RUNNING

    @property
    def current_tier(self) -> Optional[Tier]:
        return self.policy.tier_for(self.previous_workspace)

    def subscribe(self, callback: TransitionCallback):
        """Call ``callback`` with every transition"""
        self._subscribers.append(callback)

    def unsubscribe(self, callback: TransitionCallback):
        if callback in self._subscribers:
            self._subscribers.remove(callback)

    async def tick(self) -> Optional[TransitionEvent]:
        """One observation; returns the transition if the workspace changed"""
        try:
            workspace = await self.focus.current_workspace()
        except Exception as e:
            logger.warning(f"Focus query raised, skipping tick: {e}")
            return None

        tier = self.policy.tier_for(workspace)
        if tier is None or workspace == self.previous_workspace:
            return None

        event = TransitionEvent(
            from_tier=self.policy.tier_for(self.previous_workspace),
            to_tier=tier,
            workspace=workspace,
            previous_workspace=self.previous_workspace,
            timestamp=datetime.now(),
        )

        previous = "" if self.previous_workspace is None else self.previous_workspace
        logger.info(f"Workspace changed from {previous} to {workspace}")
        logger.info(tier.describe(workspace))

        self.previous_workspace = workspace
        self.transition_count += 1
        self.history.append(event)
        self._notify(event)
        return event

    def _notify(self, event: TransitionEvent):
        for callback in list(self._subscribers):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Transition subscriber failed: {e}", exc_info=True)

    async def run(self):
        """Poll until stop() is called"""
        if self.running:
            return

        self._stop_event = asyncio.Event()
        if self._stop_requested:
            self._stop_event.set()

        self.status = DaemonStatus.RUNNING
        logger.info("Workspace monitoring daemon started")
        try:
            while not self._stop_event.is_set():
                await self.tick()
                try:
                    await asyncio.wait_for(
                        self._stop_event.wait(), timeout=self.poll_interval
                    )
                except asyncio.TimeoutError:
                    pass
        finally:
            self.status = DaemonStatus.STOPPED
            self._stop_requested = False
            logger.info("Workspace monitoring daemon stopped")

    def stop(self):
        """Request a cooperative stop; takes effect between ticks"""
        self._stop_requested = True
        if self._stop_event is not None:
            self._stop_event.set()

    def get_status(self) -> Dict[str, Any]:
        tier = self.current_tier
        return {
            "status": self.status.value,
            "workspace": self.previous_workspace,
            "tier": tier.value if tier else None,
            "transitions": self.transition_count,
            "poll_interval": self.poll_interval,
        }


# =============================================================================
# Process Entry Point
# =============================================================================


def build_daemon(config: GramOpticConfig) -> ReconciliationDaemon:
    return ReconciliationDaemon(
        focus=HyprlandFocusSource.from_config(config),
        poll_interval=config.daemon.poll_interval,
        history_size=config.daemon.history_size,
    )


async def serve(daemon: ReconciliationDaemon):
    """Run ``daemon`` with SIGTERM/SIGINT mapped to a cooperative stop"""
    loop = asyncio.get_running_loop()
    if sys.platform != "win32":
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, daemon.stop)
    try:
        await daemon.run()
    finally:
        if sys.platform != "win32":
            for sig in (signal.SIGTERM, signal.SIGINT):
                loop.remove_signal_handler(sig)


def run_daemon(config: GramOpticConfig):
    """Blocking entry point used by the spawned daemon process"""
    setup_logging_from_config(config, console=False)
    asyncio.run(serve(build_daemon(config)))


@click.command()
@click.option(
    "--config", "config_file", type=click.Path(path_type=Path), help="Config file"
)
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"], case_sensitive=False),
    help="Override the configured log level",
)
def main(config_file: Optional[Path], log_level: Optional[str]):
    """Run the workspace monitoring daemon in the foreground."""
    config = load_config(config_file)
    if log_level:
        config.observability.log_level = log_level.upper()
    run_daemon(config)


if __name__ == "__main__":
    main()
