#!/usr/bin/env python3
# snapshot_assembler.py
"""
Builds the immutable per-cycle MetricsSnapshot
"""

import logging
import pwd
from typing import Dict, Iterable, Sequence

from models import (
    ContainerUsage,
    MetricsSnapshot,
    ProcessSample,
    ResourceLimits,
    SamplerState,
    clamp_percent,
)

logger = logging.getLogger(__name__)


def resolve_uid_names(uids: Iterable[int]) -> Dict[str, str]:
    """
    Map UIDs to account names with a single pass over the account database.
    UIDs without an account (or when the database is unreadable) map to
    their decimal string.
    """
    wanted = set(uids)
    names = {}
    if wanted:
        try:
            for entry in pwd.getpwall():
                if entry.pw_uid in wanted and str(entry.pw_uid) not in names:
                    names[str(entry.pw_uid)] = entry.pw_name
        except Exception as e:
            logger.debug(f"[Snapshot] Account database unavailable: {e}")
    for uid in wanted:
        names.setdefault(str(uid), str(uid))
    return names


def compute_container_cpu_percent(usage_ns: int, now_ms: int, cpu_limit_cores: float,
                                  state: SamplerState) -> float:
    """
    Container CPU% from the cumulative usage counter.

    Compares against the previous cycle stored in `state` and then records
    the current reading. The first cycle has nothing to compare to and
    reports 0.0.
    """
    percent = 0.0
    if state.last_container_timestamp_ms > 0:
        delta_usage_ns = usage_ns - state.last_container_usage_ns
        delta_time_ns = (now_ms - state.last_container_timestamp_ms) * 1_000_000
        if delta_time_ns > 0:
            percent = (delta_usage_ns / delta_time_ns) * 100.0 / max(cpu_limit_cores, 1e-6)
    state.last_container_usage_ns = usage_ns
    state.last_container_timestamp_ms = now_ms
    return clamp_percent(percent)


def build_container_usage(cpu_percent: float, memory_usage_bytes: int, memory_limit_bytes: int,
                          storage_total_bytes: int, storage_used_bytes: int) -> ContainerUsage:
    memory_percent = 0.0
    if memory_limit_bytes > 0:
        memory_percent = memory_usage_bytes / memory_limit_bytes * 100.0
    storage_percent = 0.0
    if storage_total_bytes > 0:
        storage_percent = storage_used_bytes / storage_total_bytes * 100.0
    return ContainerUsage(
        cpu_usage_percent=clamp_percent(cpu_percent),
        memory_usage_bytes=int(memory_usage_bytes),
        memory_usage_percent=clamp_percent(memory_percent),
        storage_total_bytes=int(storage_total_bytes),
        storage_used_bytes=int(storage_used_bytes),
        storage_usage_percent=clamp_percent(storage_percent),
    )


def assemble_snapshot(timestamp_ms: int, limits: ResourceLimits, usage: ContainerUsage,
                      processes: Sequence[ProcessSample], resolver=resolve_uid_names) -> MetricsSnapshot:
    uids = {p.uid for p in processes if p.uid is not None}
    return MetricsSnapshot(
        timestamp_ms=timestamp_ms,
        limits=limits,
        usage=usage,
        uid_name_map=resolver(uids),
        processes=tuple(processes),
    )
