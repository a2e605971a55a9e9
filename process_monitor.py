#!/usr/bin/env python3
# process_monitor.py
"""
Process-level sampling via psutil
Lists visible processes and attributes CPU and memory to each of them
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import FrozenSet, List, Optional

import psutil

from models import ProcessSample, ProcessTimes, SamplerState, clamp_percent
from system_probe import clk_tck
from uid_policy import is_uid_allowed

logger = logging.getLogger(__name__)

DEFAULT_PROC_MAX = 8192
UNKNOWN_COMMAND = '(unknown)'


class _RawProcess:
    """What psutil said about one PID, before any delta math"""
    __slots__ = ('pid', 'uid', 'ppid', 'command', 'jiffies', 'rss_bytes')

    def __init__(self, pid, uid, ppid, command, jiffies, rss_bytes):
        self.pid = pid
        self.uid = uid
        self.ppid = ppid
        self.command = command
        self.jiffies = jiffies
        self.rss_bytes = rss_bytes


class ProcessEnumerator:
    """Enumerates processes and tracks per-PID CPU ticks between cycles"""

    def __init__(self, proc_max=DEFAULT_PROC_MAX, ticks_per_second=None, max_workers=16):
        """
        Args:
            proc_max: Maximum number of samples returned per cycle
            ticks_per_second: CLK_TCK override (defaults to sysconf)
            max_workers: Threads used for per-PID reads
        """
        self.proc_max = max(1, int(proc_max))
        self.clk_tck = ticks_per_second or clk_tck()
        self.max_workers = max(1, int(max_workers))

    def list_pids(self) -> List[int]:
        try:
            return sorted(psutil.pids())
        except OSError as e:
            logger.warning(f"[ProcessMonitor] Cannot list processes: {e}")
            return []

    def read_uid(self, proc) -> Optional[int]:
        try:
            return proc.uids().real
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return None

    def read_command(self, proc) -> str:
        """Full command line; kernel threads and zombies fall back to the short name"""
        try:
            parts = [p for p in proc.cmdline() if p]
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            parts = []
        if parts:
            return ' '.join(parts)
        try:
            return proc.name() or UNKNOWN_COMMAND
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            return UNKNOWN_COMMAND

    def _to_jiffies(self, cpu_times) -> int:
        return int(round((cpu_times.user + cpu_times.system) * self.clk_tck))

    def _read_process(self, proc, uid) -> Optional[_RawProcess]:
        try:
            with proc.oneshot():
                ppid = proc.ppid()
                jiffies = self._to_jiffies(proc.cpu_times())
                rss_bytes = int(proc.memory_info().rss)
                command = self.read_command(proc)
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            return None
        return _RawProcess(proc.pid, uid, ppid, command, jiffies, rss_bytes)

    def _cpu_percent(self, raw: _RawProcess, now_ms: int, cpu_limit_cores: float,
                     state: SamplerState) -> Optional[float]:
        prev = state.per_process.get(raw.pid)
        if prev is None:
            return None
        delta_seconds = (now_ms - prev.timestamp_ms) / 1000.0
        if delta_seconds <= 0:
            return None
        cpu_seconds = (raw.jiffies - prev.jiffies) / self.clk_tck
        return clamp_percent((cpu_seconds / delta_seconds) * 100.0 / max(cpu_limit_cores, 1e-6))

    def list_process_samples(self, now_ms: int, cpu_limit_cores: float, memory_limit_bytes: int,
                             allowed_uids: Optional[FrozenSet[int]], state: SamplerState) -> List[ProcessSample]:
        """
        Sample every visible process.

        `state.per_process` is updated in place: every sampled PID gets its
        current ticks recorded and PIDs missing from this listing are removed.

        Returns:
            Samples sorted by CPU% then memory, both descending, capped at proc_max
        """
        pids = self.list_pids()

        candidates = []
        for pid in pids:
            try:
                proc = psutil.Process(pid)
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                continue
            uid = self.read_uid(proc)
            if allowed_uids is not None and not is_uid_allowed(uid, allowed_uids):
                continue
            candidates.append((proc, uid))

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            raws = list(pool.map(lambda item: self._read_process(*item), candidates))

        samples = []
        for raw in raws:
            if raw is None:
                continue  # exited mid-read
            cpu_percent = self._cpu_percent(raw, now_ms, cpu_limit_cores, state)
            state.per_process[raw.pid] = ProcessTimes(jiffies=raw.jiffies, timestamp_ms=now_ms)
            memory_percent = None
            if memory_limit_bytes > 0:
                memory_percent = clamp_percent(raw.rss_bytes / memory_limit_bytes * 100.0)
            samples.append(ProcessSample(
                pid=raw.pid,
                ppid=raw.ppid,
                uid=raw.uid,
                command=raw.command,
                cpu_percent=cpu_percent,
                memory_bytes=raw.rss_bytes,
                memory_percent=memory_percent,
            ))

        seen = set(pids)
        stale = [pid for pid in state.per_process if pid not in seen]
        for pid in stale:
            del state.per_process[pid]
        if stale:
            logger.debug(f"[ProcessMonitor] Dropped state for {len(stale)} exited processes")

        samples.sort(key=ProcessSample.sort_key, reverse=True)
        return samples[:self.proc_max]
