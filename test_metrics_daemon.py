#!/usr/bin/env python3
"""
Tests for the daemon cycle guard, control API and CLI
Run: pytest test_metrics_daemon.py
"""

import json
import threading
from dataclasses import replace
from unittest.mock import Mock

import pytest

from config_store import ConfigStore
from metrics_daemon import MetricsDaemon, make_app, parse_args
from metrics_store import MetricsStore, WebhookHistory
from test_metrics_store import make_entry
from test_snapshot import make_snapshot


@pytest.fixture
def daemon(tmp_path, settings_file):
    settings_file.write_text(json.dumps({'webhooks': {'configs': [
        {'id': 'ops', 'name': 'Ops', 'url': 'http://ops.example', 'body': '{}'},
    ]}}))
    store = MetricsStore(tmp_path / 'metrics.db')
    dispatcher = Mock()
    dispatcher.test_webhook.return_value = make_entry(1)
    return MetricsDaemon(Mock(), ConfigStore(settings_file), store=store,
                         history=WebhookHistory(store), dispatcher=dispatcher)


@pytest.fixture
def client(daemon):
    return make_app(daemon).test_client()


def test_health(client):
    data = client.get('/api/health').get_json()
    assert data['status'] == 'healthy'
    assert data['interval_seconds'] == 5
    assert data['running'] is False


def test_metrics_latest_window_in_ascending_order(daemon, client):
    base = make_snapshot()
    for offset in (10_000, 0, 5000):
        daemon.store.save_snapshot(replace(base, timestamp_ms=base.timestamp_ms + offset))

    data = client.get('/api/metrics?limit=2').get_json()
    assert data['success'] is True
    assert [m['timestamp'] for m in data['metrics']] == [base.timestamp_ms + 5000, base.timestamp_ms + 10_000]

    since = base.timestamp_ms + 1
    data = client.get(f'/api/metrics?since={since}').get_json()
    assert [m['timestamp'] for m in data['metrics']] == [base.timestamp_ms + 5000, base.timestamp_ms + 10_000]

    assert client.get('/api/metrics?limit=abc').status_code == 400
    assert client.get('/api/metrics?since=yesterday').status_code == 400


def test_metrics_cache_info_and_clear(daemon, client):
    base = make_snapshot()
    daemon.store.save_snapshot(base)
    daemon.store.save_snapshot(replace(base, timestamp_ms=base.timestamp_ms + 5000))
    daemon.history.append(make_entry(1))

    info = client.get('/api/metrics/cache').get_json()
    assert info['count'] == 2
    assert info['estimatedSize'] > 0
    assert info['oldestTimestamp'] == base.timestamp_ms
    assert info['newestTimestamp'] == base.timestamp_ms + 5000

    assert client.delete('/api/metrics/cache').get_json() == {'success': True, 'deletedCount': 2}
    assert client.get('/api/metrics').get_json()['metrics'] == []
    # webhook history lives in the same store and survives
    assert len(client.get('/api/webhooks/history').get_json()['history']) == 1


def test_webhook_history_list_and_clear(daemon, client):
    daemon.history.append(make_entry(1))
    daemon.history.append(make_entry(2, success=False))

    history = client.get('/api/webhooks/history').get_json()['history']
    assert [h['id'] for h in history] == ['id-2', 'id-1']
    assert history[0]['statusCode'] is None

    assert client.delete('/api/webhooks/history').status_code == 200
    assert client.get('/api/webhooks/history').get_json()['history'] == []


def test_webhook_test_by_id(daemon, client):
    resp = client.post('/api/webhooks/test', json={'id': 'ops'})
    assert resp.status_code == 200
    assert resp.get_json()['success'] is True
    config = daemon.dispatcher.test_webhook.call_args[0][0]
    assert config.url == 'http://ops.example'

    assert client.post('/api/webhooks/test', json={'id': 'nope'}).status_code == 404


def test_webhook_test_inline_config(daemon, client):
    resp = client.post('/api/webhooks/test', json={'url': 'http://adhoc.example', 'method': 'PUT'})
    assert resp.status_code == 200
    config = daemon.dispatcher.test_webhook.call_args[0][0]
    assert config.method == 'PUT'

    assert client.post('/api/webhooks/test', json={'url': 'http://x', 'method': 'TRACE'}).status_code == 400


def test_webhook_test_rejects_non_object_body(daemon, client):
    assert client.post('/api/webhooks/test', json=[1, 2]).status_code == 400
    assert client.post('/api/webhooks/test', json='ops').status_code == 400
    daemon.dispatcher.test_webhook.assert_not_called()


def test_collect_endpoint_runs_a_cycle(daemon, client):
    data = client.post('/api/collect').get_json()
    assert data == {'success': True}
    daemon.collector.collect_once.assert_called_once()
    assert daemon.cycles_run == 1


def test_overlapping_cycle_is_skipped(daemon, client):
    started = threading.Event()
    release = threading.Event()

    def slow_cycle():
        started.set()
        release.wait(timeout=5)

    daemon.collector.collect_once.side_effect = slow_cycle
    worker = threading.Thread(target=daemon.run_cycle)
    worker.start()
    assert started.wait(timeout=5)

    assert daemon.run_cycle() is False
    resp = client.post('/api/collect')
    assert resp.status_code == 409

    release.set()
    worker.join(timeout=5)
    assert daemon.cycles_skipped == 2
    assert daemon.cycles_run == 1


def test_failed_cycle_is_logged_not_raised(daemon, caplog):
    daemon.collector.collect_once.side_effect = RuntimeError("cgroup exploded")
    assert daemon.run_cycle() is False
    assert daemon.cycles_failed == 1
    assert "collection cycle failed" in caplog.text
    # the lock is released for the next cycle
    daemon.collector.collect_once.side_effect = None
    assert daemon.run_cycle() is True


def test_parse_args():
    args = parse_args(['--interval', '30', '--once', '--db-path', '/tmp/m.db', '--no-api'])
    assert args.interval == 30
    assert args.once is True
    assert args.no_api is True
    assert args.db_path == '/tmp/m.db'
    assert args.control_host == '127.0.0.1'

    with pytest.raises(SystemExit):
        parse_args(['--interval', '0'])
