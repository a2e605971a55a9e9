#!/usr/bin/env python3
# metrics_daemon.py
import argparse
import logging
import os
import signal
import sys
import threading
import time
import traceback
from logging.handlers import RotatingFileHandler

import psutil
from flask import Flask, jsonify, request
from flask_cors import CORS

from alert_manager import ThresholdEvaluator
from config_store import ConfigStore, load_engine_config
from metrics_collector import MetricsCollector
from metrics_store import SNAPSHOT_PREFIX, MetricsStore, WebhookHistory
from models import WebhookConfig
from process_monitor import ProcessEnumerator
from system_probe import DEFAULT_CGROUP_ROOT, DEFAULT_PROC_ROOT, SystemProbe
from webhook_poster import WebhookDispatcher

DAEMON_VERSION = "1.0.0"
DAEMON_START_TIME = time.time()

# -------- CONFIGURATION & defaults --------
DEFAULT_LOG_FILE = "/var/log/containerwatch.log"
DEFAULT_DB_PATH = "/var/lib/containerwatch/metrics.db"
DEFAULT_CONTROL_HOST = "127.0.0.1"
DEFAULT_CONTROL_PORT = 8760
DEFAULT_METRICS_LIMIT = 200
MAX_METRICS_LIMIT = 2000

logger = logging.getLogger('containerwatch')


def setup_logging(log_file=DEFAULT_LOG_FILE, level=logging.INFO):
    """Rotating file log plus console; console only if the file can't be opened"""
    root = logging.getLogger()
    root.setLevel(level)
    try:
        os.makedirs(os.path.dirname(log_file) or '.', exist_ok=True)
        handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root.addHandler(handler)
        console = logging.StreamHandler()
        console.setFormatter(logging.Formatter('[%(levelname)s] %(message)s'))
        root.addHandler(console)
    except Exception as e:
        logging.basicConfig(level=level, format='[%(levelname)s] %(message)s')
        logger.error(f"Could not create log file {log_file}: {e}")


# -------- Daemon class --------
class MetricsDaemon:
    def __init__(self, collector: MetricsCollector, settings: ConfigStore, store=None,
                 history=None, dispatcher=None, interval_override=None):
        self.collector = collector
        self.settings = settings
        self.store = store
        self.history = history
        self.dispatcher = dispatcher
        self.interval_override = interval_override
        self._stop_flag = threading.Event()
        self._cycle_lock = threading.Lock()
        self._thread = None
        self.cycles_run = 0
        self.cycles_failed = 0
        self.cycles_skipped = 0
        self.last_cycle_at = None

    @property
    def interval(self) -> int:
        if self.interval_override:
            return self.interval_override
        return self.settings.get_collection_interval()

    def start(self):
        logger.info(f"Starting metrics collection (interval: {self.interval}s)")
        self._thread = threading.Thread(target=self._collection_loop, daemon=True, name='MetricsCollector')
        self._thread.start()

    def stop(self):
        self._stop_flag.set()
        if self._thread:
            self._thread.join(timeout=5)

    def run_cycle(self) -> bool:
        """
        Run one collection cycle unless one is already in progress.

        Returns:
            True if a cycle ran to completion
        """
        if not self._cycle_lock.acquire(blocking=False):
            self.cycles_skipped += 1
            logger.warning("[Daemon] Previous collection cycle still running, skipping this tick")
            return False
        try:
            self.settings.maybe_reload()
            self.collector.collect_once()
            self.cycles_run += 1
            self.last_cycle_at = time.time()
            return True
        except Exception:
            self.cycles_failed += 1
            logger.exception("[Daemon] Metrics collection cycle failed")
            return False
        finally:
            self._cycle_lock.release()

    def _collection_loop(self):
        """Cycles run back to back with `interval` seconds between them"""
        logger.info("[Daemon] Collection loop started")
        while not self._stop_flag.is_set():
            ran = self.run_cycle()
            if ran and self.store is not None and self.cycles_run % 720 == 0:
                self.store.delete_expired()
            self._stop_flag.wait(timeout=self.interval)
        logger.info("[Daemon] Collection loop stopped")

    def get_status(self):
        return {
            'version': DAEMON_VERSION,
            'uptime_seconds': int(time.time() - DAEMON_START_TIME),
            'interval_seconds': self.interval,
            'cycles_run': self.cycles_run,
            'cycles_failed': self.cycles_failed,
            'cycles_skipped': self.cycles_skipped,
            'last_cycle_at': self.last_cycle_at,
            'running': self._thread is not None and self._thread.is_alive(),
        }


def make_app(daemon: MetricsDaemon):
    app = Flask(__name__)
    CORS(app)

    @app.route("/api/health", methods=["GET"])
    def health_check():
        return jsonify({'status': 'healthy', **daemon.get_status()})

    @app.route("/api/metrics", methods=["GET"])
    def get_metrics():
        if daemon.store is None:
            return jsonify({'success': False, 'error': 'No metrics store configured'}), 503
        try:
            limit = int(request.args.get('limit', DEFAULT_METRICS_LIMIT))
            since = int(request.args.get('since', 0))
        except ValueError:
            return jsonify({'success': False, 'error': 'limit and since must be integers'}), 400
        limit = max(1, min(limit, MAX_METRICS_LIMIT))
        snapshots = daemon.store.latest_snapshots(limit=limit, since=since or None)
        return jsonify({'success': True, 'metrics': [s.to_dict() for s in snapshots]})

    @app.route("/api/metrics/cache", methods=["GET"])
    def get_metrics_cache_info():
        if daemon.store is None:
            return jsonify({'success': False, 'error': 'No metrics store configured'}), 503
        return jsonify({'success': True, **daemon.store.info()})

    @app.route("/api/metrics/cache", methods=["DELETE"])
    def clear_metrics_cache():
        if daemon.store is None:
            return jsonify({'success': False, 'error': 'No metrics store configured'}), 503
        deleted = daemon.store.clear_prefix(SNAPSHOT_PREFIX)
        logger.info(f"[Daemon] Cleared {deleted} cached snapshots")
        return jsonify({'success': True, 'deletedCount': deleted})

    @app.route("/api/collect", methods=["POST"])
    def trigger_collection():
        skipped_before = daemon.cycles_skipped
        ran = daemon.run_cycle()
        if daemon.cycles_skipped > skipped_before:
            return jsonify({'success': False, 'skipped': True}), 409
        return jsonify({'success': ran})

    @app.route("/api/webhooks/history", methods=["GET"])
    def get_webhook_history():
        if daemon.history is None:
            return jsonify({'success': True, 'history': []})
        return jsonify({'success': True, 'history': [e.to_dict() for e in daemon.history.list()]})

    @app.route("/api/webhooks/history", methods=["DELETE"])
    def clear_webhook_history():
        if daemon.history is not None:
            daemon.history.clear()
        return jsonify({'success': True})

    @app.route("/api/webhooks/test", methods=["POST"])
    def test_webhook():
        if daemon.dispatcher is None:
            return jsonify({'success': False, 'error': 'Webhooks not configured'}), 503
        data = request.get_json(silent=True)
        if data is None:
            data = {}
        if not isinstance(data, dict):
            return jsonify({'success': False, 'error': 'Request body must be a JSON object'}), 400
        if 'id' in data and 'url' not in data:
            config = daemon.settings.get_webhook_config(str(data['id']))
            if config is None:
                return jsonify({'success': False, 'error': f"Unknown webhook id {data['id']}"}), 404
        else:
            try:
                config = WebhookConfig.from_dict(data)
            except (KeyError, TypeError, ValueError) as e:
                return jsonify({'success': False, 'error': str(e)}), 400
        entry = daemon.dispatcher.test_webhook(config)
        return jsonify({'success': entry.success, 'result': entry.to_dict()})

    return app


def build_daemon(args) -> MetricsDaemon:
    engine = load_engine_config()
    settings = ConfigStore(args.settings_file)
    store = MetricsStore(args.db_path)
    history = WebhookHistory(store)
    dispatcher = WebhookDispatcher(settings, history=history)
    evaluator = ThresholdEvaluator(dispatcher)
    probe = SystemProbe(proc_root=args.proc_root, cgroup_root=args.cgroup_root)
    if args.proc_root != DEFAULT_PROC_ROOT:
        psutil.PROCFS_PATH = args.proc_root
    enumerator = ProcessEnumerator(proc_max=engine.proc_max)
    collector = MetricsCollector(probe, enumerator, settings, store, evaluator, engine)
    interval = args.interval or engine.interval_override
    return MetricsDaemon(collector, settings, store=store, history=history,
                         dispatcher=dispatcher, interval_override=interval)


# -------- CLI / Entrypoint --------
def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Container metrics sampler with threshold webhooks")
    parser.add_argument("--settings-file", "-s", help="Path to settings JSON (thresholds, webhooks, interval)")
    parser.add_argument("--db-path", default=DEFAULT_DB_PATH, help=f"SQLite metrics store (default: {DEFAULT_DB_PATH})")
    parser.add_argument("--log-file", default=DEFAULT_LOG_FILE, help=f"Log file (default: {DEFAULT_LOG_FILE})")
    parser.add_argument("--interval", "-i", type=int, choices=range(1, 3601), metavar="SECONDS",
                        help="Collection interval in seconds, 1-3600 (overrides settings)")
    parser.add_argument("--control-host", default=DEFAULT_CONTROL_HOST, help="Control API bind address")
    parser.add_argument("--control-port", "-p", type=int, default=DEFAULT_CONTROL_PORT, help="Control API port")
    parser.add_argument("--no-api", action="store_true", help="Run without the control API")
    parser.add_argument("--once", action="store_true", help="Run a single collection cycle and exit")
    parser.add_argument("--test-webhook", metavar="ID", help="Send a test notification to webhook ID and exit")
    parser.add_argument("--proc-root", default=DEFAULT_PROC_ROOT, help=argparse.SUPPRESS)
    parser.add_argument("--cgroup-root", default=DEFAULT_CGROUP_ROOT, help=argparse.SUPPRESS)
    parser.add_argument("--debug", action="store_true", help="Verbose logging")
    return parser.parse_args(argv)


def _log_fatal(title, e):
    logger.critical("=" * 60)
    logger.critical(f"❌ FATAL: {title}")
    logger.critical("=" * 60)
    logger.critical(f"Error: {e}")
    logger.critical(f"Type: {type(e).__name__}")
    logger.critical("Stack trace:")
    for line in traceback.format_exc().split('\n'):
        if line:
            logger.critical(line)
    logger.critical("=" * 60)


def main(argv=None):
    args = parse_args(argv)
    setup_logging(args.log_file, logging.DEBUG if args.debug else logging.INFO)

    try:
        logger.info("=" * 60)
        logger.info(f"containerwatch starting - version {DAEMON_VERSION}")
        logger.info("=" * 60)
        daemon = build_daemon(args)
    except Exception as e:
        _log_fatal("Daemon failed to initialize", e)
        return 1

    if args.test_webhook:
        config = daemon.settings.get_webhook_config(args.test_webhook)
        if config is None:
            logger.error(f"Unknown webhook id: {args.test_webhook}")
            return 2
        entry = daemon.dispatcher.test_webhook(config)
        logger.info(f"Test webhook {config.name}: status={entry.status_code} success={entry.success}")
        return 0 if entry.success else 1

    if args.once:
        ok = daemon.run_cycle()
        return 0 if ok else 1

    def _handle_signal(signum, frame):
        logger.info(f"Received signal {signum}, shutting down")
        daemon.stop()
        sys.exit(0)

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    daemon.start()
    logger.info("✅ Daemon initialization complete")

    try:
        if args.no_api:
            while not daemon._stop_flag.wait(timeout=3600):
                pass
        else:
            app = make_app(daemon)
            logger.info(f"Control HTTP endpoint: http://{args.control_host}:{args.control_port}")
            app.run(host=args.control_host, port=args.control_port)
    except KeyboardInterrupt:
        logger.info("Daemon interrupted by user")
    except Exception as e:
        _log_fatal("Daemon crashed during runtime", e)
        return 1
    finally:
        logger.info("Shutting down daemon...")
        daemon.stop()
        logger.info("Daemon stopped")
    return 0


if __name__ == "__main__":
    sys.exit(main())
