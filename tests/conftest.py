# Copyright 2025 Ilya Makarov
#
# Licensed under the Business Source License 1.1
# Change Date: 2028-11-05
# Change License: Apache License 2.0

"""
Shared fixtures

FakeHost stands in for HostSystem: it keeps an in-memory zram device pool,
swap table and file set, records every mutating call, and can be told to
fail any operation.
"""

import errno
import logging
import re
import subprocess
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

import psutil
import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gramoptic.core.config import GramOpticConfig
from gramoptic.core.exceptions import CommandError
from gramoptic.core.host import SwapArea
from gramoptic.core.logger import ROOT_LOGGER
from gramoptic.core.provisioners.zram import HOT_ADD, HOT_REMOVE

SLEEP_COMMAND = [sys.executable, "-c", "import time; time.sleep(30)"]

_SYSFS_RE = re.compile(r"^/sys/block/zram(\d+)(?:/(\w+))?$")


@dataclass
class FakeZramDevice:
    algorithms: List[str]
    current: str
    disksize: int = 0
    mem_used: int = 4096


@dataclass
class FakeHost:
    """In-memory host"""

    zram_loaded: bool = True
    zram_algorithms: List[str] = field(
        default_factory=lambda: ["lzo", "lzo-rle", "lz4", "zstd"]
    )
    pool_size: int = 4
    free_space: int = 64 * 1024**3
    missing_commands: List[str] = field(default_factory=list)
    failures: Dict[str, Exception] = field(default_factory=dict)

    devices: Dict[str, FakeZramDevice] = field(default_factory=dict)
    files: Dict[str, int] = field(default_factory=dict)
    swaps: Dict[str, SwapArea] = field(default_factory=dict)
    calls: List[tuple] = field(default_factory=list)

    # ------------------------------------------------------------------
    # Failure injection
    # ------------------------------------------------------------------

    def fail(self, operation: str, error: Optional[Exception] = None):
        self.failures[operation] = error or CommandError(
            f"{operation} failed", command=[operation], returncode=1
        )

    def _check(self, operation: str, *args):
        self.calls.append((operation,) + args)
        error = self.failures.get(operation)
        if error is not None:
            raise error

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    # ------------------------------------------------------------------
    # HostSystem interface
    # ------------------------------------------------------------------

    def which(self, name: str) -> Optional[str]:
        if name in self.missing_commands:
            return None
        return f"/usr/bin/{name}"

    def run(self, args, input=None, check=True, privileged=False, timeout=None):
        args = list(args)
        self._check(args[0], *args[1:])
        if args[:2] == ["modprobe", "zram"]:
            self.zram_loaded = True
        return subprocess.CompletedProcess(args, 0, "", "")

    def exists(self, path) -> bool:
        path = str(path)
        if path in (str(HOT_ADD), str(HOT_REMOVE)):
            return self.zram_loaded
        match = _SYSFS_RE.match(path)
        if match:
            return match.group(1) in self.devices
        return path in self.files

    def read_text(self, path, privileged: bool = False) -> str:
        path = str(path)
        if path == str(HOT_ADD):
            self._check("hot_add")
            return self._hot_add()

        match = _SYSFS_RE.match(path)
        if not match or match.group(1) not in self.devices:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", path)
        device = self.devices[match.group(1)]
        attribute = match.group(2)
        if attribute == "comp_algorithm":
            return " ".join(
                f"[{name}]" if name == device.current else name
                for name in device.algorithms
            ) + "\n"
        if attribute == "disksize":
            return f"{device.disksize}\n"
        if attribute == "mm_stat":
            return f"8192 2048 {device.mem_used} 0 {device.mem_used} 0 0 0 0\n"
        raise FileNotFoundError(errno.ENOENT, "No such file or directory", path)

    def write_text(self, path, value: str, privileged: bool = True):
        path = str(path)
        if path == str(HOT_REMOVE):
            self._check("hot_remove", value)
            if f"/dev/zram{value}" in self.swaps:
                raise CommandError("tee: /sys/class/zram-control/hot_remove: Device or resource busy")
            self.devices.pop(value, None)
            return

        match = _SYSFS_RE.match(path)
        if not match or match.group(1) not in self.devices:
            raise FileNotFoundError(errno.ENOENT, "No such file or directory", path)
        device = self.devices[match.group(1)]
        attribute = match.group(2)
        self._check(attribute, value)
        if attribute == "comp_algorithm":
            if value not in device.algorithms:
                raise CommandError(f"tee: {path}: Invalid argument")
            device.current = value
        elif attribute == "disksize":
            device.disksize = int(value)

    def file_size(self, path) -> Optional[int]:
        return self.files.get(str(path))

    def disk_free(self, path) -> int:
        return self.free_space

    def make_dirs(self, path):
        self._check("mkdir", str(path))

    def allocate_file(self, path, size: int):
        self._check("dd", str(path), size)
        mib = 1024 * 1024
        self.files[str(path)] = -(-size // mib) * mib

    def chmod(self, path, mode: str):
        self._check("chmod", str(path), mode)

    def remove(self, path):
        self._check("rm", str(path))
        self.files.pop(str(path), None)

    def active_swaps(self) -> Dict[str, SwapArea]:
        return dict(self.swaps)

    def mkswap(self, path: str):
        self._check("mkswap", path)

    def swapon(self, path: str, priority: int):
        self._check("swapon", path, priority)
        if path in self.swaps:
            raise CommandError(f"swapon: {path}: Device or resource busy")
        self.swaps[path] = SwapArea(
            path=path,
            type="partition" if path.startswith("/dev/") else "file",
            size=self._backing_size(path),
            used=0,
            priority=priority,
        )

    def swapoff(self, path: str):
        self._check("swapoff", path)
        if path not in self.swaps:
            raise CommandError(f"swapoff: {path}: Invalid argument")
        del self.swaps[path]

    def swap_totals(self) -> Dict[str, int]:
        total = sum(area.size for area in self.swaps.values())
        return {
            "swap_total": total,
            "swap_used": 0,
            "swap_free": total,
            "memory_total": 16 * 1024**3,
            "memory_available": 8 * 1024**3,
        }

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _hot_add(self) -> str:
        for index in range(self.pool_size):
            device_id = str(index)
            if device_id not in self.devices:
                self.devices[device_id] = FakeZramDevice(
                    algorithms=list(self.zram_algorithms),
                    current=self.zram_algorithms[0],
                )
                return f"{device_id}\n"
        raise OSError(errno.ENOSPC, "No space left on device")

    def _backing_size(self, path: str) -> int:
        if path.startswith("/dev/zram"):
            return self.devices[path[len("/dev/zram"):]].disksize
        return self.files.get(path, 0)


class TrackingSpawner:
    """Starts daemon commands as children and remembers them for cleanup"""

    def __init__(self):
        self.processes = []

    def __call__(self, command):
        proc = psutil.Popen(list(command))
        self.processes.append(proc)
        return proc

    def cleanup(self):
        for proc in self.processes:
            try:
                proc.kill()
                proc.wait(timeout=5)
            except psutil.NoSuchProcess:
                pass


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def fake_host():
    """In-memory host with the zram module loaded"""
    return FakeHost()


@pytest.fixture
def swap_file(tmp_path):
    return tmp_path / "swap" / "gram-optic-workspace46.swap"


@pytest.fixture
def config(tmp_path, swap_file):
    """Configuration rooted in a temporary directory with short daemon timings"""
    return GramOpticConfig(
        paths={
            "state_dir": str(tmp_path / "state"),
            "log_file": str(tmp_path / "gram-optic.log"),
            "fallback_log_file": str(tmp_path / "fallback.log"),
            "swap_file": str(swap_file),
        },
        daemon={
            "poll_interval": 0.05,
            "stop_timeout": 2.0,
            "startup_grace": 0.2,
            "restart_pause": 0.0,
        },
        observability={"console": False},
    )


@pytest.fixture(autouse=True)
def reset_logging():
    """Undo setup_logging() so each test starts with a propagating logger"""
    yield
    logger = logging.getLogger(ROOT_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
