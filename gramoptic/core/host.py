# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Host access for tier provisioning.

All kernel-facing work (swap table, sysfs, swap commands, backing files)
goes through HostSystem so provisioners stay testable against a fake host.
Privileged operations are prefixed with ``sudo`` when the process is not
root.
"""

import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional, Sequence

import psutil

from .exceptions import CommandError, CommandTimeoutError, DependencyMissingError

logger = logging.getLogger("gramoptic.host")

PROC_SWAPS = Path("/proc/swaps")


class SwapArea(NamedTuple):
    """One row of the kernel swap table (sizes in bytes)"""

    path: str
    type: str
    size: int
    used: int
    priority: int


def parse_proc_swaps(text: str) -> Dict[str, SwapArea]:
    """
    Parse /proc/swaps into {path: SwapArea}.

    Filename  Type  Size  Used  Priority
    /dev/zram0  partition  2097148  0  100
    """
    swaps: Dict[str, SwapArea] = {}
    for line in text.splitlines()[1:]:
        fields = line.split()
        if len(fields) < 5:
            continue
        # Paths with spaces are escaped as \040 by the kernel
        path = fields[0].replace("\\040", " ")
        try:
            swaps[path] = SwapArea(
                path=path,
                type=fields[1],
                size=int(fields[2]) * 1024,
                used=int(fields[3]) * 1024,
                priority=int(fields[4]),
            )
        except ValueError:
            continue
    return swaps


class HostSystem:
    """
    Real host implementation.

    Args:
        use_sudo: "auto" (sudo when not root), "always" or "never"
        command_timeout: Upper bound in seconds for each external command
    """

    def __init__(self, use_sudo: str = "auto", command_timeout: float = 30.0):
        self.command_timeout = command_timeout
        if use_sudo == "always":
            self.sudo = True
        elif use_sudo == "never":
            self.sudo = False
        else:
            self.sudo = os.geteuid() != 0

    @classmethod
    def from_config(cls, config) -> "HostSystem":
        return cls(
            use_sudo=config.system.use_sudo,
            command_timeout=config.system.command_timeout,
        )

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def which(self, name: str) -> Optional[str]:
        return shutil.which(name)

    def run(
        self,
        args: Sequence[str],
        input: Optional[str] = None,
        check: bool = True,
        privileged: bool = False,
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        """
        Run a command with a bounded wait.

        Raises:
            DependencyMissingError: executable not found
            CommandTimeoutError: command exceeded the timeout
            CommandError: non-zero exit status and check=True
        """
        cmd: List[str] = list(args)
        if privileged and self.sudo:
            cmd = ["sudo"] + cmd
        timeout = timeout or self.command_timeout

        logger.debug(f"Running command: {' '.join(cmd)}")
        try:
            result = subprocess.run(
                cmd,
                input=input,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except FileNotFoundError as e:
            raise DependencyMissingError(
                f"{cmd[0]} not found", dependency=cmd[0], cause=e
            ) from e
        except subprocess.TimeoutExpired as e:
            raise CommandTimeoutError(
                f"Command timed out after {timeout}s: {' '.join(cmd)}",
                timeout=timeout,
                command=cmd,
            ) from e

        if check and result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise CommandError(
                stderr or f"Command failed with exit code {result.returncode}",
                command=cmd,
                returncode=result.returncode,
                stderr=stderr,
            )
        return result

    # ------------------------------------------------------------------
    # Files and sysfs
    # ------------------------------------------------------------------

    def exists(self, path: Path) -> bool:
        return Path(path).exists()

    def read_text(self, path: Path, privileged: bool = False) -> str:
        if privileged and self.sudo:
            return self.run(["cat", str(path)], privileged=True).stdout
        return Path(path).read_text()

    def write_text(self, path: Path, value: str, privileged: bool = True):
        """Write a value the way ``echo value | sudo tee path`` does"""
        if privileged and self.sudo:
            self.run(["tee", str(path)], input=f"{value}\n", privileged=True)
            return
        with open(path, "w") as f:
            f.write(f"{value}\n")

    def file_size(self, path: Path) -> Optional[int]:
        try:
            return Path(path).stat().st_size
        except FileNotFoundError:
            return None

    def disk_free(self, path: Path) -> int:
        """Free bytes on the filesystem that holds (or would hold) ``path``"""
        probe = Path(path)
        while not probe.exists() and probe != probe.parent:
            probe = probe.parent
        return psutil.disk_usage(str(probe)).free

    def make_dirs(self, path: Path):
        if Path(path).is_dir():
            return
        self.run(["mkdir", "-p", str(path)], privileged=True)

    def allocate_file(self, path: Path, size: int):
        """Write ``size`` bytes of zeros (swap files must not have holes)"""
        mib = max(1, -(-size // (1024 * 1024)))
        self.run(
            ["dd", "if=/dev/zero", f"of={path}", "bs=1M", f"count={mib}"],
            privileged=True,
            timeout=max(self.command_timeout, mib / 50),
        )

    def chmod(self, path: Path, mode: str):
        self.run(["chmod", mode, str(path)], privileged=True)

    def remove(self, path: Path):
        self.run(["rm", "-f", str(path)], privileged=True)

    # ------------------------------------------------------------------
    # Swap subsystem
    # ------------------------------------------------------------------

    def active_swaps(self) -> Dict[str, SwapArea]:
        try:
            return parse_proc_swaps(PROC_SWAPS.read_text())
        except OSError as e:
            logger.debug(f"Could not read {PROC_SWAPS}: {e}")
            return {}

    def mkswap(self, path: str):
        self.run(["mkswap", path], privileged=True)

    def swapon(self, path: str, priority: int):
        self.run(["swapon", "-p", str(priority), path], privileged=True)

    def swapoff(self, path: str):
        self.run(["swapoff", path], privileged=True)

    def swap_totals(self) -> Dict[str, int]:
        swap = psutil.swap_memory()
        memory = psutil.virtual_memory()
        return {
            "swap_total": swap.total,
            "swap_used": swap.used,
            "swap_free": swap.free,
            "memory_total": memory.total,
            "memory_available": memory.available,
        }
