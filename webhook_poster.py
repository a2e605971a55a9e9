#!/usr/bin/env python3
"""
Webhook Poster
Renders templated notification requests and sends them to every enabled
webhook, recording each attempt in the webhook history
"""

import logging
import re
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List

import requests
from requests.structures import CaseInsensitiveDict

from alert_config import (
    ALERT_MESSAGES,
    TEST_ALERT,
    TEST_MESSAGE,
    TEST_REASON,
    WEBHOOK_TIMEOUT_SECONDS,
)
from models import Resource, WebhookConfig, WebhookHistoryEntry

logger = logging.getLogger(__name__)

TEMPLATE_KEYS = frozenset({'timestamp', 'alert', 'resource', 'currentValue', 'threshold', 'message'})
BODY_METHODS = frozenset({'POST', 'PUT', 'PATCH'})
USER_AGENT = 'containerwatch/1.0'

_PLACEHOLDER_RE = re.compile(r'\{\{(\w+)\}\}')


def format_number(value) -> str:
    """80.0 -> '80', 85.5 -> '85.5'"""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def render_template(template: str, payload: Dict[str, object]) -> str:
    """
    Substitute {{key}} placeholders for the known payload keys.
    Anything else, including unknown {{placeholders}}, is left verbatim.
    """
    def _replace(match):
        key = match.group(1)
        if key in TEMPLATE_KEYS and key in payload:
            value = payload[key]
            return format_number(value) if isinstance(value, (int, float)) else str(value)
        return match.group(0)

    return _PLACEHOLDER_RE.sub(_replace, template)


def _now_ms() -> int:
    return int(time.time() * 1000)


def build_threshold_payload(resource: Resource, value: float, threshold: float) -> Dict[str, object]:
    label = resource.value.upper()
    return {
        'timestamp': _now_ms(),
        'alert': ALERT_MESSAGES['alert'].format(label=label),
        'resource': resource.value,
        'currentValue': value,
        'threshold': threshold,
        'message': ALERT_MESSAGES['message'].format(
            label=label, value=value, threshold=format_number(float(threshold))),
    }


class WebhookDispatcher:
    """
    Sends webhook notifications.

    Features:
    - Per-webhook isolation (one failure never blocks another)
    - Hard request timeout
    - Every attempt recorded in the history sink
    """

    def __init__(self, settings, history=None, timeout=WEBHOOK_TIMEOUT_SECONDS, max_workers=8):
        """
        Args:
            settings: object with get_webhook_configs() -> list of WebhookConfig
            history: sink with append(WebhookHistoryEntry), optional
            timeout: Request timeout (seconds)
            max_workers: Webhooks delivered concurrently
        """
        self.settings = settings
        self.history = history
        self.timeout = timeout
        self.max_workers = max(1, int(max_workers))

    def send_threshold_notification(self, resource: Resource, value: float,
                                    threshold: float) -> List[WebhookHistoryEntry]:
        webhooks = [w for w in self.settings.get_webhook_configs() if w.enabled]
        if not webhooks:
            logger.debug("[Webhook] No enabled webhooks, nothing to send")
            return []

        payload = build_threshold_payload(resource, value, threshold)
        reason = ALERT_MESSAGES['reason'].format(label=resource.value.upper(), value=value)
        return self.dispatch_all(webhooks, payload, reason)

    def dispatch_all(self, webhooks: List[WebhookConfig], payload, reason) -> List[WebhookHistoryEntry]:
        """Run every webhook and wait for all of them; never short-circuits"""
        workers = min(self.max_workers, len(webhooks)) or 1
        with ThreadPoolExecutor(max_workers=workers) as pool:
            futures = [pool.submit(self.execute_webhook, w, payload, reason) for w in webhooks]
            return [f.result() for f in futures]

    def test_webhook(self, config: WebhookConfig) -> WebhookHistoryEntry:
        """Send a synthetic notification, bypassing thresholds and cooldown"""
        payload = {
            'timestamp': _now_ms(),
            'alert': TEST_ALERT,
            'resource': Resource.CPU.value,
            'currentValue': 0,
            'threshold': 0,
            'message': TEST_MESSAGE,
        }
        return self.execute_webhook(config, payload, TEST_REASON)

    def build_request(self, config: WebhookConfig, payload):
        """
        Returns:
            (headers, body or None) ready to send
        """
        headers = CaseInsensitiveDict(config.headers)
        headers.setdefault('User-Agent', USER_AGENT)
        body = render_template(config.body_template, payload) if config.body_template else ''
        if body and config.method in BODY_METHODS:
            headers.setdefault('Content-Type', 'application/json')
            return headers, body
        return headers, None

    def execute_webhook(self, config: WebhookConfig, payload, reason: str) -> WebhookHistoryEntry:
        """
        Send one webhook request and record the outcome.

        Any HTTP response counts as delivered; only transport failures
        (timeout, DNS, refused connection) are unsuccessful.
        """
        start = time.monotonic()
        status_code = None
        error = None

        try:
            headers, body = self.build_request(config, payload)
            # one request per call; deliveries run on several threads at once
            response = requests.request(
                config.method,
                config.url,
                headers=dict(headers),
                data=body.encode('utf-8') if body is not None else None,
                timeout=self.timeout,
            )
            status_code = response.status_code
            if response.status_code >= 400:
                logger.warning(f"[Webhook] {config.name} returned status {response.status_code}")
            else:
                logger.info(f"[Webhook] ✓ {config.name} delivered ({response.status_code})")

        except requests.exceptions.Timeout:
            error = f"Request timed out after {self.timeout}s"
            logger.warning(f"[Webhook] ✗ Timeout sending to {config.name}")

        except requests.exceptions.ConnectionError as e:
            error = f"Connection error: {e}"
            logger.warning(f"[Webhook] ✗ Connection issue sending to {config.name}: {e}")

        except requests.exceptions.RequestException as e:
            error = f"Request error: {e}"
            logger.error(f"[Webhook] ✗ Request exception for {config.name}: {e}")

        except Exception as e:
            error = str(e)
            logger.error(f"[Webhook] ✗ Unexpected error for {config.name}: {e}")

        elapsed_ms = int((time.monotonic() - start) * 1000)
        now = _now_ms()
        entry = WebhookHistoryEntry(
            id=f"{now}-{uuid.uuid4().hex[:9]}",
            timestamp_ms=now,
            webhook_name=config.name,
            webhook_url=config.url,
            method=config.method,
            status_code=status_code,
            success=status_code is not None,
            reason=reason,
            response_time_ms=elapsed_ms,
            error=error,
        )
        self._record(entry)
        return entry

    def _record(self, entry: WebhookHistoryEntry):
        if self.history is None:
            return
        try:
            self.history.append(entry)
        except Exception as e:
            logger.error(f"[Webhook] Could not record history entry: {e}")

