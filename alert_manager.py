#!/usr/bin/env python3
# alert_manager.py
"""
Threshold Alert Manager - checks container usage against thresholds
and fires webhook notifications, at most once per cooldown per resource
"""

import logging
from typing import Dict, List, Optional

from alert_config import NOTIFICATION_COOLDOWN_MS
from models import Resource, ThresholdConfig

logger = logging.getLogger(__name__)


class NotificationCooldown:
    """Last notification time per resource; lives for the life of the process"""

    def __init__(self, cooldown_ms=NOTIFICATION_COOLDOWN_MS):
        self.cooldown_ms = cooldown_ms
        self.last_notified_at: Dict[Resource, int] = {}

    def is_ready(self, resource: Resource, now_ms: int) -> bool:
        last = self.last_notified_at.get(resource)
        if last is None:
            return True
        return now_ms - last >= self.cooldown_ms

    def mark(self, resource: Resource, now_ms: int):
        self.last_notified_at[resource] = now_ms


class ThresholdEvaluator:
    def __init__(self, dispatcher, cooldown: Optional[NotificationCooldown] = None):
        """
        Args:
            dispatcher: object with send_threshold_notification(resource, value, threshold)
            cooldown: cooldown tracker (a fresh one if omitted)
        """
        self.dispatcher = dispatcher
        self.cooldown = cooldown or NotificationCooldown()

    def evaluate(self, cpu_percent: float, memory_percent: float, storage_percent: float,
                 config: ThresholdConfig, now_ms: int) -> List[Resource]:
        """
        Check all three resources independently.

        Returns:
            The resources a notification was sent for this cycle
        """
        if not config.enabled:
            return []

        current = {
            Resource.CPU: cpu_percent,
            Resource.MEMORY: memory_percent,
            Resource.STORAGE: storage_percent,
        }
        notified = []
        for resource in Resource:
            value = current[resource]
            threshold = config.threshold_for(resource)
            if value < threshold:
                continue
            if self._handle_threshold_alert(resource, value, threshold, now_ms):
                notified.append(resource)
        return notified

    def _handle_threshold_alert(self, resource: Resource, value: float, threshold: float, now_ms: int) -> bool:
        if not self.cooldown.is_ready(resource, now_ms):
            logger.debug(f"[ALERT] {resource.value} at {value:.1f}% suppressed (cooldown)")
            return False

        logger.info(f"[ALERT] {resource.value} threshold breached: {value:.1f}% >= {threshold}%")
        # marked before sending; a failed delivery still waits out the cooldown
        self.cooldown.mark(resource, now_ms)
        try:
            self.dispatcher.send_threshold_notification(resource, value, threshold)
        except Exception as e:
            logger.error(f"[ALERT] Notification for {resource.value} failed: {e}")
        return True
