# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Gram-Optic Supervisor

Lifecycle control for the three tiers and the monitoring daemon:

- start(size):   provision RAM, disk swap, compressed RAM (in that order,
                 continuing past failures), then spawn the daemon
- stop():        terminate the daemon, tear down compressed RAM then disk swap
- restart(size): stop, pause, start
- status():      aggregate report, never raises for missing pieces

Every lifecycle transition is written to the state record before moving on,
so a later control command picks up exactly what was left behind.
"""

import logging
import subprocess
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import psutil

from ..core.config import GramOpticConfig
from ..core.exceptions import GramOpticError, ProcessControlError
from ..core.host import HostSystem
from ..core.provisioners import (
    PROVISION_ORDER,
    TEARDOWN_ORDER,
    ResourceProvisioner,
    build_provisioners,
)
from ..core.resources import ResourceState, TierResource, parse_size
from ..core.tiers import Tier
from .state import StateStore, SupervisorState

logger = logging.getLogger("gramoptic.supervisor")

DAEMON_MODULE = "gramoptic.runtime.daemon"

Spawner = Callable[[Sequence[str]], psutil.Popen]


# =============================================================================
# Reports
# =============================================================================


@dataclass
class TierOutcome:
    """Result of provisioning or tearing down one tier"""

    tier: Tier
    ok: bool
    resource: TierResource
    error: Optional[str] = None
    error_type: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tier": self.tier.value,
            "ok": self.ok,
            "resource": self.resource.to_dict(),
            "error": self.error,
            "error_type": self.error_type,
        }


@dataclass
class DaemonInfo:
    """Observed state of the monitoring daemon"""

    running: bool
    pid: Optional[int] = None
    stale_record: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"running": self.running, "pid": self.pid, "stale_record": self.stale_record}


@dataclass
class LifecycleReport:
    """Aggregate result of start/stop/restart"""

    action: str
    outcomes: List[TierOutcome] = field(default_factory=list)
    daemon: DaemonInfo = field(default_factory=lambda: DaemonInfo(running=False))
    daemon_error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.daemon_error is None and all(o.ok for o in self.outcomes)

    @property
    def failed_tiers(self) -> List[Tier]:
        return [o.tier for o in self.outcomes if not o.ok]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "action": self.action,
            "ok": self.ok,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "daemon": self.daemon.to_dict(),
            "daemon_error": self.daemon_error,
        }


@dataclass
class StatusReport:
    """Snapshot of every tier, the daemon and system memory"""

    resources: Dict[Tier, TierResource]
    daemon: DaemonInfo
    memory: Dict[str, int] = field(default_factory=dict)
    errors: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "tiers": {
                tier.value: resource.to_dict() for tier, resource in self.resources.items()
            },
            "daemon": self.daemon.to_dict(),
            "memory": self.memory,
            "errors": self.errors,
        }


# =============================================================================
# Supervisor
# =============================================================================


def _spawn_detached(command: Sequence[str]) -> psutil.Popen:
    return psutil.Popen(
        list(command),
        stdin=subprocess.DEVNULL,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
        close_fds=True,
    )


class Supervisor:
    """
    Foreground lifecycle controller.

    Args:
        config: Loaded configuration
        host: Host access (defaults to the real host)
        store: State record (defaults to ``<state_dir>/state.json``)
        config_file: Passed on to the spawned daemon
        daemon_command: Command line of the daemon process
        spawner: Starts the daemon command detached from this process
    """

    def __init__(
        self,
        config: GramOpticConfig,
        host=None,
        store: Optional[StateStore] = None,
        config_file: Optional[Path] = None,
        daemon_command: Optional[Sequence[str]] = None,
        spawner: Optional[Spawner] = None,
    ):
        self.config = config
        self.host = host or HostSystem.from_config(config)
        self.store = store or StateStore(config.paths.state_dir)
        self.config_file = config_file
        self.daemon_command = list(daemon_command) if daemon_command else None
        self._spawn = spawner or _spawn_detached

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _provisioners(self, state: SupervisorState) -> Dict[Tier, ResourceProvisioner]:
        return build_provisioners(self.config, self.host, state.resources)

    def _daemon_cmdline(self) -> List[str]:
        if self.daemon_command:
            return list(self.daemon_command)
        cmd = [sys.executable, "-m", DAEMON_MODULE]
        if self.config_file:
            cmd += ["--config", str(self.config_file)]
        cmd += ["--log-level", self.config.observability.log_level]
        return cmd

    def _record(self, state: SupervisorState, tier: Tier, resource: TierResource):
        state.resources[tier] = resource
        self.store.save(state)

    def daemon_info(self, state: Optional[SupervisorState] = None) -> DaemonInfo:
        """Verify the recorded daemon is alive (same pid and create time)"""
        state = state or self.store.load()
        pid = state.daemon_pid
        if not pid:
            return DaemonInfo(running=False)

        try:
            proc = psutil.Process(pid)
            same_process = (
                state.daemon_create_time is None
                or abs(proc.create_time() - state.daemon_create_time) < 0.01
            )
            alive = same_process and proc.status() != psutil.STATUS_ZOMBIE
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            alive = False

        if alive:
            return DaemonInfo(running=True, pid=pid)
        return DaemonInfo(running=False, pid=pid, stale_record=True)

    # ------------------------------------------------------------------
    # Daemon process control
    # ------------------------------------------------------------------

    def _start_daemon(self, state: SupervisorState) -> DaemonInfo:
        info = self.daemon_info(state)
        if info.running:
            logger.info(f"Monitoring daemon already running with PID {info.pid}")
            return info

        logger.info("Starting workspace monitoring daemon")
        cmd = self._daemon_cmdline()
        try:
            proc = self._spawn(cmd)
        except OSError as e:
            raise ProcessControlError(f"Could not spawn daemon: {e}", cause=e) from e

        time.sleep(self.config.daemon.startup_grace)
        if proc.poll() is not None:
            raise ProcessControlError(
                f"Daemon exited during startup with code {proc.returncode}",
                pid=proc.pid,
            )

        state.daemon_pid = proc.pid
        state.daemon_create_time = proc.create_time()
        self.store.save(state)
        logger.info(f"Monitoring daemon started with PID {proc.pid}")
        return DaemonInfo(running=True, pid=proc.pid)

    def _stop_daemon(self, pid: int):
        """SIGTERM, wait, one SIGKILL; raises ProcessControlError if still alive"""
        timeout = self.config.daemon.stop_timeout
        try:
            proc = psutil.Process(pid)
            proc.terminate()
            try:
                proc.wait(timeout=timeout)
                return
            except psutil.TimeoutExpired:
                logger.warning(f"Daemon {pid} ignored SIGTERM, killing")

            proc.kill()
            try:
                proc.wait(timeout=timeout)
            except psutil.TimeoutExpired as e:
                raise ProcessControlError(
                    f"Daemon {pid} did not exit after SIGKILL", pid=pid, cause=e
                ) from e
        except psutil.NoSuchProcess:
            return
        except psutil.AccessDenied as e:
            raise ProcessControlError(
                f"Not permitted to stop daemon {pid}", pid=pid, cause=e
            ) from e

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self, size: Union[str, int, None] = None) -> LifecycleReport:
        """
        Provision every tier and launch the daemon.

        A failing tier does not stop the others, and tiers that did come up
        are left active. The report lists what failed.

        Raises:
            InvalidSizeError: ``size`` is not a capacity token
        """
        size_bytes = parse_size(size) if size is not None else None
        state = self.store.load()
        provisioners = self._provisioners(state)
        report = LifecycleReport(action="start")

        for tier in PROVISION_ORDER:
            provisioner = provisioners[tier]
            try:
                resource = provisioner.provision(
                    None if tier == Tier.RAM else size_bytes
                )
                report.outcomes.append(TierOutcome(tier, True, resource))
            except (GramOpticError, OSError) as e:
                logger.error(f"{tier.label} setup failed: {e}")
                report.outcomes.append(
                    TierOutcome(
                        tier,
                        False,
                        provisioner.resource,
                        error=str(e),
                        error_type=e.__class__.__name__,
                    )
                )
            self._record(state, tier, provisioner.resource)

        try:
            report.daemon = self._start_daemon(state)
        except ProcessControlError as e:
            logger.error(str(e))
            report.daemon_error = str(e)

        if report.ok:
            logger.info("Gram-Optic system started successfully")
        else:
            failed = ", ".join(t.value for t in report.failed_tiers) or "daemon"
            logger.error(f"Gram-Optic system started with errors ({failed})")
        return report

    def stop(self) -> LifecycleReport:
        """Terminate the daemon and tear down the swap tiers"""
        logger.info("Stopping gram-optic system")
        state = self.store.load()
        report = LifecycleReport(action="stop")

        info = self.daemon_info(state)
        if info.running:
            try:
                self._stop_daemon(info.pid)
                state.clear_daemon()
            except ProcessControlError as e:
                logger.error(str(e))
                report.daemon_error = str(e)
                report.daemon = info
        else:
            state.clear_daemon()
        self.store.save(state)

        provisioners = self._provisioners(state)
        for tier in TEARDOWN_ORDER:
            provisioner = provisioners[tier]
            try:
                resource = provisioner.teardown()
                report.outcomes.append(TierOutcome(tier, True, resource))
            except (GramOpticError, OSError) as e:
                logger.error(f"{tier.label} teardown failed: {e}")
                report.outcomes.append(
                    TierOutcome(
                        tier,
                        False,
                        provisioner.resource,
                        error=str(e),
                        error_type=e.__class__.__name__,
                    )
                )
            self._record(state, tier, provisioner.resource)

        if report.ok and all(
            r.state == ResourceState.UNPROVISIONED for r in state.resources.values()
        ):
            self.store.clear()

        logger.info("Gram-optic system stopped")
        return report

    def restart(self, size: Union[str, int, None] = None) -> LifecycleReport:
        """stop, let swapoff settle, start"""
        if size is not None:
            parse_size(size)
        stopped = self.stop()
        time.sleep(self.config.daemon.restart_pause)
        started = self.start(size)
        return LifecycleReport(
            action="restart",
            outcomes=stopped.outcomes + started.outcomes,
            daemon=started.daemon,
            daemon_error=started.daemon_error or stopped.daemon_error,
        )

    def status(self) -> StatusReport:
        """Aggregate report; absent tiers are reported, not raised"""
        state = self.store.load()
        provisioners = self._provisioners(state)
        resources: Dict[Tier, TierResource] = {}
        errors: Dict[str, str] = {}

        for tier in PROVISION_ORDER:
            provisioner = provisioners[tier]
            try:
                resources[tier] = provisioner.status()
            except (GramOpticError, OSError) as e:
                logger.debug(f"Status of {tier.value} unavailable: {e}")
                resources[tier] = state.resource(tier)
                errors[tier.value] = str(e)

        try:
            memory = self.host.swap_totals()
        except (GramOpticError, OSError) as e:
            memory = {}
            errors["memory"] = str(e)

        return StatusReport(
            resources=resources,
            daemon=self.daemon_info(state),
            memory=memory,
            errors=errors,
        )
