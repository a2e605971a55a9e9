#!/usr/bin/env python3
# models.py
"""
Data model for the metrics sampler
Snapshots, process samples, alert/webhook settings and the sampler state
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Tuple


class CgroupVersion(Enum):
    V1 = "v1"
    V2 = "v2"


class Resource(Enum):
    CPU = "cpu"
    MEMORY = "memory"
    STORAGE = "storage"


WEBHOOK_METHODS = ("GET", "POST", "PUT", "PATCH")
SNAPSHOT_PREFIX = "metrics:"

_TRUE_STRINGS = frozenset({"true", "1", "yes", "on"})
_FALSE_STRINGS = frozenset({"false", "0", "no", "off", ""})


def parse_bool(value) -> bool:
    """
    Settings flag to bool. Accepts real booleans, 0/1 and the usual
    string spellings; anything else raises ValueError.
    """
    if isinstance(value, bool):
        return value
    if isinstance(value, int) and value in (0, 1):
        return bool(value)
    if isinstance(value, str):
        text = value.strip().lower()
        if text in _TRUE_STRINGS:
            return True
        if text in _FALSE_STRINGS:
            return False
    raise ValueError(f"Not a boolean: {value!r}")


def clamp_percent(value: float) -> float:
    """Clamp a percentage into [0, 100]; NaN becomes 0."""
    if value != value:
        return 0.0
    return min(100.0, max(0.0, float(value)))


@dataclass(frozen=True)
class ResourceLimits:
    cpu_limit_cores: float
    memory_limit_bytes: int

    def to_dict(self) -> dict:
        return {
            'cpu_limit_cores': self.cpu_limit_cores,
            'memory_limit_bytes': self.memory_limit_bytes,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ResourceLimits":
        return cls(
            cpu_limit_cores=float(data['cpu_limit_cores']),
            memory_limit_bytes=int(data['memory_limit_bytes']),
        )


@dataclass(frozen=True)
class ContainerUsage:
    cpu_usage_percent: float
    memory_usage_bytes: int
    memory_usage_percent: float
    storage_total_bytes: int
    storage_used_bytes: int
    storage_usage_percent: float

    def to_dict(self) -> dict:
        return {
            'cpu_usage_percent': self.cpu_usage_percent,
            'memory_usage_bytes': self.memory_usage_bytes,
            'memory_usage_percent': self.memory_usage_percent,
            'storage_total_bytes': self.storage_total_bytes,
            'storage_used_bytes': self.storage_used_bytes,
            'storage_usage_percent': self.storage_usage_percent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ContainerUsage":
        return cls(
            cpu_usage_percent=float(data['cpu_usage_percent']),
            memory_usage_bytes=int(data['memory_usage_bytes']),
            memory_usage_percent=float(data['memory_usage_percent']),
            storage_total_bytes=int(data['storage_total_bytes']),
            storage_used_bytes=int(data['storage_used_bytes']),
            storage_usage_percent=float(data['storage_usage_percent']),
        )


@dataclass(frozen=True)
class ProcessSample:
    pid: int
    ppid: int
    uid: Optional[int]
    command: str
    cpu_percent: Optional[float]  # None on first observation of the PID
    memory_bytes: int
    memory_percent: Optional[float]

    def sort_key(self) -> Tuple[float, int]:
        return (self.cpu_percent or 0.0, self.memory_bytes)

    def to_dict(self) -> dict:
        return {
            'pid': self.pid,
            'ppid': self.ppid,
            'uid': self.uid,
            'command': self.command,
            'cpu_percent': self.cpu_percent,
            'memory_bytes': self.memory_bytes,
            'memory_percent': self.memory_percent,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "ProcessSample":
        uid = data.get('uid')
        cpu = data.get('cpu_percent')
        mem = data.get('memory_percent')
        return cls(
            pid=int(data['pid']),
            ppid=int(data['ppid']),
            uid=int(uid) if uid is not None else None,
            command=data['command'],
            cpu_percent=float(cpu) if cpu is not None else None,
            memory_bytes=int(data['memory_bytes']),
            memory_percent=float(mem) if mem is not None else None,
        )


@dataclass(frozen=True)
class MetricsSnapshot:
    """One collection cycle's view of the container. Built once, never mutated."""
    timestamp_ms: int
    limits: ResourceLimits
    usage: ContainerUsage
    uid_name_map: Dict[str, str]
    processes: Tuple[ProcessSample, ...]

    @property
    def key(self) -> str:
        return f"{SNAPSHOT_PREFIX}{self.timestamp_ms}"

    def to_dict(self) -> dict:
        return {
            'timestamp': self.timestamp_ms,
            'limits': self.limits.to_dict(),
            'usage': self.usage.to_dict(),
            'uid_name_map': dict(self.uid_name_map),
            'processes': [p.to_dict() for p in self.processes],
        }

    @classmethod
    def from_dict(cls, data: dict) -> "MetricsSnapshot":
        return cls(
            timestamp_ms=int(data['timestamp']),
            limits=ResourceLimits.from_dict(data['limits']),
            usage=ContainerUsage.from_dict(data['usage']),
            uid_name_map={str(k): str(v) for k, v in data.get('uid_name_map', {}).items()},
            processes=tuple(ProcessSample.from_dict(p) for p in data.get('processes', [])),
        )

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> "MetricsSnapshot":
        return cls.from_dict(json.loads(raw))


@dataclass(frozen=True)
class ThresholdConfig:
    cpu_percent: float = 80.0
    memory_percent: float = 80.0
    storage_percent: float = 80.0
    enabled: bool = False

    def threshold_for(self, resource: Resource) -> float:
        return {
            Resource.CPU: self.cpu_percent,
            Resource.MEMORY: self.memory_percent,
            Resource.STORAGE: self.storage_percent,
        }[resource]

    @classmethod
    def from_dict(cls, data: dict) -> "ThresholdConfig":
        defaults = cls()
        return cls(
            cpu_percent=float(data.get('cpu', defaults.cpu_percent)),
            memory_percent=float(data.get('memory', defaults.memory_percent)),
            storage_percent=float(data.get('storage', defaults.storage_percent)),
            enabled=parse_bool(data.get('enabled', defaults.enabled)),
        )


@dataclass(frozen=True)
class WebhookConfig:
    id: str
    name: str
    url: str
    method: str = "POST"
    headers: Dict[str, str] = field(default_factory=dict)
    body_template: str = ""
    enabled: bool = True

    @classmethod
    def from_dict(cls, data: dict) -> "WebhookConfig":
        method = str(data.get('method', 'POST')).upper()
        if method not in WEBHOOK_METHODS:
            raise ValueError(f"Unsupported webhook method: {method}")
        if not data.get('url'):
            raise ValueError("Webhook url is required")
        return cls(
            id=str(data.get('id', '')),
            name=str(data.get('name') or data['url']),
            url=str(data['url']),
            method=method,
            headers={str(k): str(v) for k, v in (data.get('headers') or {}).items()},
            body_template=str(data.get('body') or ''),
            enabled=parse_bool(data.get('enabled', True)),
        )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'name': self.name,
            'url': self.url,
            'method': self.method,
            'headers': dict(self.headers),
            'body': self.body_template,
            'enabled': self.enabled,
        }


@dataclass(frozen=True)
class WebhookHistoryEntry:
    id: str
    timestamp_ms: int
    webhook_name: str
    webhook_url: str
    method: str
    status_code: Optional[int]
    success: bool
    reason: str
    response_time_ms: int
    error: Optional[str] = None

    def to_dict(self) -> dict:
        data = {
            'id': self.id,
            'timestamp': self.timestamp_ms,
            'webhookName': self.webhook_name,
            'webhookUrl': self.webhook_url,
            'method': self.method,
            'statusCode': self.status_code,
            'success': self.success,
            'reason': self.reason,
            'responseTime': self.response_time_ms,
        }
        if self.error is not None:
            data['error'] = self.error
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "WebhookHistoryEntry":
        return cls(
            id=data['id'],
            timestamp_ms=int(data['timestamp']),
            webhook_name=data['webhookName'],
            webhook_url=data['webhookUrl'],
            method=data['method'],
            status_code=data.get('statusCode'),
            success=bool(data['success']),
            reason=data['reason'],
            response_time_ms=int(data['responseTime']),
            error=data.get('error'),
        )


@dataclass
class ProcessTimes:
    jiffies: int
    timestamp_ms: int


@dataclass
class SamplerState:
    """
    Delta-measurement state carried between collection cycles.

    Owned by the collection loop; only one cycle may touch it at a time.
    """
    last_container_usage_ns: int = 0
    last_container_timestamp_ms: int = 0
    per_process: Dict[int, ProcessTimes] = field(default_factory=dict)
