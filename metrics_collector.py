#!/usr/bin/env python3
# metrics_collector.py
"""
One collection cycle: probe the container, sample processes, assemble the
snapshot, persist it and check thresholds.
"""

import logging
import os
import time
from typing import Callable, Optional

from alert_manager import ThresholdEvaluator
from config_store import EngineConfig
from metrics_store import SNAPSHOT_TTL_SECONDS
from models import MetricsSnapshot, SamplerState
from process_monitor import ProcessEnumerator
from snapshot_assembler import (
    assemble_snapshot,
    build_container_usage,
    compute_container_cpu_percent,
    resolve_uid_names,
)
from system_probe import SystemProbe
from uid_policy import build_allowed_uids

logger = logging.getLogger(__name__)


def _current_ms() -> int:
    return int(time.time() * 1000)


class MetricsCollector:
    """
    Runs collection cycles.

    Holds the SamplerState; callers must not run two cycles at once
    (MetricsDaemon serializes them).
    """

    def __init__(self, probe: SystemProbe, enumerator: ProcessEnumerator, settings, store,
                 evaluator: Optional[ThresholdEvaluator], engine: EngineConfig,
                 own_uid: Optional[int] = None, clock: Callable[[], int] = _current_ms,
                 uid_resolver=resolve_uid_names):
        self.probe = probe
        self.enumerator = enumerator
        self.settings = settings
        self.store = store
        self.evaluator = evaluator
        self.engine = engine
        self.clock = clock
        self.uid_resolver = uid_resolver
        self.state = SamplerState()
        own_uid = os.getuid() if own_uid is None else own_uid
        self.allowed_uids = build_allowed_uids(engine.proc_mode, engine.proc_uids, own_uid)

        if self.allowed_uids is None:
            logger.info("[Collector] Process visibility: all UIDs")
        else:
            logger.info(f"[Collector] Process visibility: UIDs {sorted(self.allowed_uids)}")

    def collect_once(self, now_ms: Optional[int] = None) -> MetricsSnapshot:
        """
        Run a single cycle.

        Exceptions from assembly or persistence propagate; the caller decides
        whether the cycle is skipped.
        """
        version = self.probe.detect_cgroup_version()
        limits = self.probe.read_resource_limits(version)
        memory_usage = self.probe.read_memory_usage(version)
        usage_ns = self.probe.read_container_cpu_usage_ns(version)

        now = self.clock() if now_ms is None else now_ms
        cpu_percent = compute_container_cpu_percent(usage_ns, now, limits.cpu_limit_cores, self.state)

        storage_total, storage_used = self.probe.read_storage([self.engine.storage_path, '/'])
        usage = build_container_usage(
            cpu_percent, memory_usage, limits.memory_limit_bytes, storage_total, storage_used)

        processes = self.enumerator.list_process_samples(
            now, limits.cpu_limit_cores, limits.memory_limit_bytes, self.allowed_uids, self.state)

        snapshot = assemble_snapshot(now, limits, usage, processes, resolver=self.uid_resolver)
        if self.store is not None:
            self.store.save_snapshot(snapshot, ttl=SNAPSHOT_TTL_SECONDS)

        logger.info(
            f"[Collector] {version.value} CPU:{usage.cpu_usage_percent:.2f}% "
            f"MEM:{usage.memory_usage_percent:.2f}% STOR:{usage.storage_usage_percent:.2f}% "
            f"procs:{len(snapshot.processes)}"
        )

        if self.evaluator is not None:
            try:
                self.evaluator.evaluate(
                    usage.cpu_usage_percent,
                    usage.memory_usage_percent,
                    usage.storage_usage_percent,
                    self.settings.get_threshold_config(),
                    now,
                )
            except Exception as e:
                logger.error(f"[Collector] Threshold check failed: {e}")

        return snapshot
