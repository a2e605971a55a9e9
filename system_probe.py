#!/usr/bin/env python3
# system_probe.py
"""
One-shot readers for cgroup limits, container usage counters and
filesystem capacity. Missing cgroup files are the normal case on a bare
host: every reader falls back to host-wide values from psutil.
"""

import logging
import os
from pathlib import Path
from typing import Iterable, Optional, Tuple

import psutil

from models import CgroupVersion, ResourceLimits

logger = logging.getLogger(__name__)

DEFAULT_PROC_ROOT = '/proc'
DEFAULT_CGROUP_ROOT = '/sys/fs/cgroup'

# cgroup v1 reports an unlimited memory limit as a page-aligned LONG_MAX
UNLIMITED_MEMORY_SENTINEL = 2 ** 62


def clk_tck() -> int:
    """Kernel clock ticks per second (CLK_TCK)"""
    try:
        value = os.sysconf('SC_CLK_TCK')
        if value > 0:
            return value
    except (ValueError, OSError, AttributeError):
        pass
    return 100


def host_cpu_count() -> float:
    return float(psutil.cpu_count(logical=True) or 1)


def host_memory_total() -> int:
    return int(psutil.virtual_memory().total)


def host_memory_used() -> int:
    vm = psutil.virtual_memory()
    return int(vm.total - vm.available)


def host_cpu_usage_ns() -> int:
    """Cumulative busy CPU time of the whole host, in nanoseconds"""
    times = psutil.cpu_times()
    busy = times.user + times.system + getattr(times, 'nice', 0.0)
    busy += getattr(times, 'irq', 0.0) + getattr(times, 'softirq', 0.0)
    return int(busy * 1_000_000_000)


class SystemProbe:
    """Reads container limits and counters from cgroup v1/v2 control files"""

    def __init__(self, proc_root=DEFAULT_PROC_ROOT, cgroup_root=DEFAULT_CGROUP_ROOT):
        self.proc_root = Path(proc_root)
        self.cgroup_root = Path(cgroup_root)

    def _read_text(self, relative: str) -> Optional[str]:
        try:
            return (self.cgroup_root / relative).read_text().strip()
        except OSError as e:
            logger.debug(f"[SystemProbe] Cannot read {relative}: {e}")
            return None

    def _read_int(self, relative: str) -> Optional[int]:
        raw = self._read_text(relative)
        if raw is None:
            return None
        try:
            return int(raw.split()[0])
        except (ValueError, IndexError):
            return None

    def detect_cgroup_version(self) -> CgroupVersion:
        """Inspect the mount table; anything unreadable counts as v1"""
        try:
            mounts = (self.proc_root / 'mounts').read_text()
        except OSError:
            return CgroupVersion.V1
        return CgroupVersion.V2 if 'cgroup2' in mounts else CgroupVersion.V1

    def read_cpu_limit(self, version: CgroupVersion) -> float:
        quota = period = None
        if version is CgroupVersion.V2:
            raw = self._read_text('cpu.max')
            if raw:
                parts = raw.split()
                try:
                    quota = int(parts[0])
                    period = int(parts[1])
                except (ValueError, IndexError):
                    # "max 100000" means no quota
                    quota = period = None
        else:
            quota = self._read_int('cpu/cpu.cfs_quota_us')
            period = self._read_int('cpu/cpu.cfs_period_us')
            if period is None:
                period = 100000

        if quota is not None and period and quota > 0 and period > 0:
            return quota / period
        return host_cpu_count()

    def read_memory_limit(self, version: CgroupVersion) -> int:
        if version is CgroupVersion.V2:
            limit = self._read_int('memory.max')  # "max" parses to None
        else:
            limit = self._read_int('memory/memory.limit_in_bytes')

        if limit is None or limit <= 0 or limit >= UNLIMITED_MEMORY_SENTINEL:
            return host_memory_total()
        return limit

    def read_memory_usage(self, version: CgroupVersion) -> int:
        if version is CgroupVersion.V2:
            usage = self._read_int('memory.current')
        else:
            usage = self._read_int('memory/memory.usage_in_bytes')
        if usage is None:
            return host_memory_used()
        return usage

    def read_resource_limits(self, version: CgroupVersion) -> ResourceLimits:
        return ResourceLimits(
            cpu_limit_cores=self.read_cpu_limit(version),
            memory_limit_bytes=self.read_memory_limit(version),
        )

    def read_container_cpu_usage_ns(self, version: CgroupVersion) -> int:
        """Cumulative CPU time consumed by the container, in nanoseconds"""
        if version is CgroupVersion.V2:
            raw = self._read_text('cpu.stat')
            if raw:
                for line in raw.splitlines():
                    parts = line.split()
                    if len(parts) == 2 and parts[0] == 'usage_usec':
                        try:
                            return int(parts[1]) * 1000
                        except ValueError:
                            break
        else:
            usage = self._read_int('cpuacct/cpuacct.usage')
            if usage is not None:
                return usage
        return host_cpu_usage_ns()

    def read_filesystem_capacity(self, path) -> Optional[Tuple[int, int]]:
        """
        Get block usage of the filesystem holding `path`.

        Returns:
            (total_bytes, used_bytes) or None if the path cannot be queried
        """
        try:
            usage = psutil.disk_usage(str(path))
        except (OSError, ValueError) as e:
            logger.debug(f"[SystemProbe] disk usage unavailable for {path}: {e}")
            return None
        return int(usage.total), int(usage.used)

    def read_storage(self, paths: Iterable[str]) -> Tuple[int, int]:
        """Probe each path in order and return the first capacity found"""
        for path in paths:
            if not path:
                continue
            capacity = self.read_filesystem_capacity(path)
            if capacity is not None:
                return capacity
        return 0, 0
