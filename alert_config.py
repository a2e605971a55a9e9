#!/usr/bin/env python3
# alert_config.py
"""
Alert threshold configuration for container monitoring
Thresholds themselves live in the settings file; these are the fixed parts.
"""

# Minimum time between two notifications for the same resource
NOTIFICATION_COOLDOWN_MS = 5 * 60 * 1000

DEFAULT_THRESHOLDS = {
    'cpu': 80,
    'memory': 80,
    'storage': 80,
    'enabled': False,
}

WEBHOOK_TIMEOUT_SECONDS = 10

# Message templates, formatted with resource label, value and threshold
ALERT_MESSAGES = {
    'alert': "{label} threshold exceeded",
    'message': "{label} usage ({value:.1f}%) has exceeded the threshold of {threshold}%",
    'reason': "{label} threshold exceeded: {value:.1f}%",
}

TEST_REASON = "Manual test"
TEST_ALERT = "Test notification"
TEST_MESSAGE = "This is a test notification from containerwatch"
