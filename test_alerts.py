#!/usr/bin/env python3
# test_alerts.py
"""
Tests for threshold evaluation and notification cooldowns
Run: pytest test_alerts.py
"""

from unittest.mock import Mock

from alert_manager import NotificationCooldown, ThresholdEvaluator
from models import Resource, ThresholdConfig

MINUTE_MS = 60 * 1000


def make_evaluator():
    dispatcher = Mock()
    return ThresholdEvaluator(dispatcher), dispatcher


def test_cpu_cooldown_sequence():
    evaluator, dispatcher = make_evaluator()
    config = ThresholdConfig(cpu_percent=80, enabled=True)
    t0 = 1_000_000

    assert evaluator.evaluate(85.0, 0, 0, config, t0) == [Resource.CPU]
    assert evaluator.evaluate(90.0, 0, 0, config, t0 + MINUTE_MS) == []
    assert evaluator.evaluate(90.0, 0, 0, config, t0 + 6 * MINUTE_MS) == [Resource.CPU]

    assert dispatcher.send_threshold_notification.call_count == 2
    dispatcher.send_threshold_notification.assert_called_with(Resource.CPU, 90.0, 80.0)


def test_disabled_thresholds_never_notify():
    evaluator, dispatcher = make_evaluator()
    config = ThresholdConfig(enabled=False)
    assert evaluator.evaluate(100.0, 100.0, 100.0, config, 0) == []
    dispatcher.send_threshold_notification.assert_not_called()


def test_resources_are_independent():
    evaluator, dispatcher = make_evaluator()
    config = ThresholdConfig(cpu_percent=50, memory_percent=50, storage_percent=50, enabled=True)

    assert evaluator.evaluate(60.0, 10.0, 10.0, config, 0) == [Resource.CPU]
    # CPU is cooling down, memory is not
    assert evaluator.evaluate(60.0, 60.0, 10.0, config, MINUTE_MS) == [Resource.MEMORY]
    assert evaluator.evaluate(60.0, 60.0, 70.0, config, 2 * MINUTE_MS) == [Resource.STORAGE]


def test_threshold_is_inclusive():
    evaluator, _ = make_evaluator()
    config = ThresholdConfig(storage_percent=80, enabled=True)
    assert evaluator.evaluate(0, 0, 80.0, config, 0) == [Resource.STORAGE]


def test_dropping_below_threshold_does_not_reset_cooldown():
    evaluator, _ = make_evaluator()
    config = ThresholdConfig(cpu_percent=80, enabled=True)
    evaluator.evaluate(85.0, 0, 0, config, 0)
    evaluator.evaluate(10.0, 0, 0, config, MINUTE_MS)
    assert evaluator.evaluate(85.0, 0, 0, config, 2 * MINUTE_MS) == []
    assert evaluator.evaluate(85.0, 0, 0, config, 5 * MINUTE_MS) == [Resource.CPU]


def test_dispatch_failure_still_starts_cooldown():
    dispatcher = Mock()
    dispatcher.send_threshold_notification.side_effect = RuntimeError("boom")
    evaluator = ThresholdEvaluator(dispatcher)
    config = ThresholdConfig(cpu_percent=80, enabled=True)
    assert evaluator.evaluate(90.0, 0, 0, config, 0) == [Resource.CPU]
    assert evaluator.evaluate(90.0, 0, 0, config, MINUTE_MS) == []


def test_cooldown_tracker():
    cooldown = NotificationCooldown(cooldown_ms=1000)
    assert cooldown.is_ready(Resource.MEMORY, 0)
    cooldown.mark(Resource.MEMORY, 0)
    assert not cooldown.is_ready(Resource.MEMORY, 999)
    assert cooldown.is_ready(Resource.MEMORY, 1000)
    assert cooldown.is_ready(Resource.CPU, 1)
