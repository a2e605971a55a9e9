"""
Shared pytest fixtures: fake /proc and cgroup trees under tmp_path, and a
fake psutil process table
"""

import contextlib
import os
import sys
from collections import namedtuple
from pathlib import Path

import psutil
import pytest

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

Uids = namedtuple('Uids', 'real effective saved')
CpuTimes = namedtuple('CpuTimes', 'user system children_user children_system')
MemInfo = namedtuple('MemInfo', 'rss vms')


class FakeProc:
    """The bits of /proc that SystemProbe reads directly"""

    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def set_mounts(self, text):
        (self.root / 'mounts').write_text(text)


class FakeProcess:
    """Stands in for psutil.Process; reads the table on every call"""

    def __init__(self, table, pid):
        if pid not in table.entries:
            raise psutil.NoSuchProcess(pid)
        self.table = table
        self.pid = pid

    def _entry(self, field=None):
        entry = self.table.entries.get(self.pid)
        if entry is None or entry.get('gone'):
            raise psutil.NoSuchProcess(self.pid)
        value = entry.get(field)
        if isinstance(value, Exception):
            raise value
        return value

    @contextlib.contextmanager
    def oneshot(self):
        yield

    def uids(self):
        uid = self._entry('uid')
        return Uids(uid, uid, uid)

    def ppid(self):
        return self._entry('ppid')

    def name(self):
        return self._entry('name')

    def cmdline(self):
        return list(self._entry('cmdline'))

    def cpu_times(self):
        return CpuTimes(self._entry('user'), self._entry('system'), 0.0, 0.0)

    def memory_info(self):
        return MemInfo(self._entry('rss'), self._entry('rss') * 2)


class FakeProcessTable:
    def __init__(self):
        self.entries = {}

    def add(self, pid, uid=1000, ppid=1, name='bash', cmdline=None, user=0.0, system=0.0,
            rss=1024 * 1024):
        self.entries[pid] = {
            'uid': uid, 'ppid': ppid, 'name': name,
            'cmdline': [name] if cmdline is None else cmdline,
            'user': user, 'system': system, 'rss': rss,
        }
        return self.entries[pid]

    def set_times(self, pid, user, system=0.0):
        self.entries[pid].update(user=user, system=system)

    def remove(self, pid):
        del self.entries[pid]

    def vanish(self, pid):
        """Still listed, but gone by the time it is read"""
        self.entries[pid]['gone'] = True

    def pids(self):
        return list(self.entries)

    def process(self, pid):
        return FakeProcess(self, pid)


class FakeCgroup:
    def __init__(self, root: Path):
        self.root = root
        self.root.mkdir(parents=True, exist_ok=True)

    def write(self, relative, content):
        path = self.root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)


@pytest.fixture
def fake_proc(tmp_path):
    return FakeProc(tmp_path / 'proc')


@pytest.fixture
def processes(monkeypatch):
    table = FakeProcessTable()
    monkeypatch.setattr(psutil, 'pids', table.pids)
    monkeypatch.setattr(psutil, 'Process', table.process)
    return table


@pytest.fixture
def fake_cgroup(tmp_path):
    return FakeCgroup(tmp_path / 'cgroup')


@pytest.fixture
def settings_file(tmp_path):
    return tmp_path / 'settings.json'
