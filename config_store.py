#!/usr/bin/env python3
"""
Configuration Store Module
Settings file management (thresholds, webhooks, collection interval) with
defaults, plus the environment-derived engine configuration
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping, Optional

from alert_config import DEFAULT_THRESHOLDS
from models import ThresholdConfig, WebhookConfig
from process_monitor import DEFAULT_PROC_MAX

logger = logging.getLogger(__name__)

DEFAULT_SETTINGS_FILE = Path('/etc/containerwatch/settings.json')

MIN_INTERVAL_SECONDS = 1
MAX_INTERVAL_SECONDS = 3600

# Default configuration (fallback when the settings file is missing)
DEFAULT_CONFIG = {
    'collection': {
        'intervalSeconds': 5,
    },
    'thresholds': dict(DEFAULT_THRESHOLDS),
    'webhooks': {
        'configs': [],
    },
}


def clamp_interval(value, default=DEFAULT_CONFIG['collection']['intervalSeconds']) -> int:
    try:
        seconds = int(value)
    except (TypeError, ValueError):
        return default
    return min(MAX_INTERVAL_SECONDS, max(MIN_INTERVAL_SECONDS, seconds))


@dataclass(frozen=True)
class EngineConfig:
    proc_max: int = DEFAULT_PROC_MAX
    proc_mode: str = 'all'
    proc_uids: Optional[str] = None
    storage_path: str = '/config'
    interval_override: Optional[int] = None


def load_engine_config(environ: Optional[Mapping[str, str]] = None) -> EngineConfig:
    """Read PROC_MAX, PROC_MODE, PROC_UIDS, STORAGE_PATH and COLLECTION_INTERVAL"""
    env = os.environ if environ is None else environ

    try:
        proc_max = max(1, int(env.get('PROC_MAX', DEFAULT_PROC_MAX)))
    except ValueError:
        logger.warning(f"[Config] Invalid PROC_MAX {env.get('PROC_MAX')!r}, using {DEFAULT_PROC_MAX}")
        proc_max = DEFAULT_PROC_MAX

    interval = env.get('COLLECTION_INTERVAL')
    proc_uids = (env.get('PROC_UIDS') or '').strip() or None

    return EngineConfig(
        proc_max=proc_max,
        proc_mode=(env.get('PROC_MODE') or 'all').strip().lower(),
        proc_uids=proc_uids,
        storage_path=env.get('STORAGE_PATH') or '/config',
        interval_override=clamp_interval(interval) if interval else None,
    )


class ConfigStore:
    """Settings file with defaults, resolved into typed objects on every load"""

    def __init__(self, settings_file=None):
        self.settings_file = Path(settings_file) if settings_file else DEFAULT_SETTINGS_FILE
        self.config = self._deep_copy(DEFAULT_CONFIG)
        self._mtime = None
        self._thresholds = ThresholdConfig()
        self._webhooks: List[WebhookConfig] = []
        self.load()

    def load(self):
        """Load configuration from the settings file over the defaults"""
        self.config = self._deep_copy(DEFAULT_CONFIG)
        if self.settings_file.exists():
            try:
                with open(self.settings_file, 'r') as f:
                    self._deep_merge(self.config, json.load(f))
                self._mtime = self.settings_file.stat().st_mtime
                logger.info(f"[Config] Loaded settings from {self.settings_file}")
            except (OSError, json.JSONDecodeError) as e:
                logger.error(f"[Config] Failed to load settings: {e}")
        else:
            self._mtime = None
            logger.info(f"[Config] No settings file at {self.settings_file}, using defaults")
        self._resolve()

    def _resolve(self):
        try:
            self._thresholds = ThresholdConfig.from_dict(self.config.get('thresholds') or {})
        except (TypeError, ValueError) as e:
            logger.error(f"[Config] Invalid thresholds, using defaults: {e}")
            self._thresholds = ThresholdConfig()

        webhooks = []
        for i, raw in enumerate(self.get('webhooks.configs', []) or []):
            try:
                webhook = WebhookConfig.from_dict(raw)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning(f"[Config] Skipping webhook #{i}: {e}")
                continue
            webhooks.append(webhook)
        self._webhooks = webhooks

    def maybe_reload(self) -> bool:
        """
        Reload if the settings file changed on disk.

        Returns:
            True if settings were reloaded
        """
        try:
            mtime = self.settings_file.stat().st_mtime
        except OSError:
            mtime = None
        if mtime == self._mtime:
            return False
        self.load()
        return True

    def get(self, key_path: str, default: Any = None) -> Any:
        """
        Get configuration value by dot-notation path
        Example: get('thresholds.cpu')
        """
        value = self.config
        for key in key_path.split('.'):
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default
        return value

    def set(self, key_path: str, value: Any):
        """
        Set configuration value by dot-notation path
        Example: set('thresholds.enabled', True)
        """
        keys = key_path.split('.')
        config = self.config
        for key in keys[:-1]:
            if key not in config:
                config[key] = {}
            config = config[key]
        config[keys[-1]] = value
        self._resolve()
        logger.info(f"[Config] Updated: {key_path} = {value}")

    def save(self):
        """Save current configuration to the settings file"""
        try:
            self.settings_file.parent.mkdir(parents=True, exist_ok=True)
            with open(self.settings_file, 'w') as f:
                json.dump(self.config, f, indent=2)
            self._mtime = self.settings_file.stat().st_mtime
            logger.info(f"[Config] Saved settings to {self.settings_file}")
        except OSError as e:
            logger.error(f"[Config] Failed to save settings: {e}")

    def get_threshold_config(self) -> ThresholdConfig:
        return self._thresholds

    def get_webhook_configs(self) -> List[WebhookConfig]:
        return list(self._webhooks)

    def get_webhook_config(self, webhook_id: str) -> Optional[WebhookConfig]:
        for webhook in self._webhooks:
            if webhook.id == webhook_id:
                return webhook
        return None

    def get_collection_interval(self) -> int:
        return clamp_interval(self.get('collection.intervalSeconds'))

    def get_all(self) -> dict:
        """Get entire configuration (for debugging/display)"""
        return self._deep_copy(self.config)

    def _deep_merge(self, base: dict, updates: dict):
        """Deep merge updates into base dictionary"""
        for key, value in updates.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def _deep_copy(self, obj):
        """Deep copy a dictionary"""
        return json.loads(json.dumps(obj))
