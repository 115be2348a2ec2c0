import shutil, sqlite3
from dataclasses import replace
from datetime import datetime, timedelta
from pathlib import Path
import pytest
from config.settings import BackupConfig
from bwbackup.lib.tools import ToolResult


def make_db(path: Path, rows=('alice', 'bob')):
    conn = sqlite3.connect(str(path))
    conn.execute('CREATE TABLE users (name TEXT)')
    conn.executemany('INSERT INTO users VALUES (?)', [(r,) for r in rows])
    conn.commit(); conn.close()


def read_names(path: Path):
    conn = sqlite3.connect(str(path))
    try:
        return [r[0] for r in conn.execute('SELECT name FROM users ORDER BY name')]
    finally:
        conn.close()


def copy_snapshot(source: Path, dest: Path) -> ToolResult:
    """Byte-for-byte stand-in for the sqlite hot copy."""
    if not source.is_file():
        return ToolResult(False, f'{source} missing')
    shutil.copyfile(source, dest)
    return ToolResult(True)


class Clock:
    """Advances one second per call so archive names never collide."""
    def __init__(self, start=datetime(2026, 1, 2, 3, 4, 5)):
        self.now = start
    def __call__(self):
        self.now += timedelta(seconds=1)
        return self.now


class FakeTransport:
    def __init__(self, ok=True, fail_attachments=False):
        self.ok = ok; self.fail_attachments = fail_attachments; self.sent = []
    def send(self, subject, body, attachment=None):
        self.sent.append((subject, body, attachment))
        if not self.ok or (attachment is not None and self.fail_attachments):
            return ToolResult(False, 'smtp down')
        return ToolResult(True)


class FakeSync:
    def __init__(self, remotes=(), failing=(), configured=True, list_ok=True):
        self.remotes = list(remotes); self.failing = set(failing)
        self.configured = configured; self.list_ok = list_ok; self.calls = []
    def list_remotes(self):
        if not self.list_ok:
            return ToolResult(False, 'bad config'), []
        return ToolResult(True, '\n'.join(self.remotes)), list(self.remotes)
    def sync(self, local_dir, remote):
        self.calls.append((local_dir, remote))
        if any(remote.startswith(f) for f in self.failing):
            return ToolResult(False, f'cannot reach {remote}')
        return ToolResult(True)


class FakeController:
    def __init__(self, available=True, stop_ok=True, start_ok=True):
        self._available = available; self.stop_ok = stop_ok; self.start_ok = start_ok; self.calls = []
    def available(self):
        return self._available
    def stop(self, service):
        self.calls.append(('stop', service))
        return ToolResult(self.stop_ok, '' if self.stop_ok else 'no such container')
    def start(self, service):
        self.calls.append(('start', service))
        return ToolResult(self.start_ok, '' if self.start_ok else 'start failed')


class FakeInput:
    def __init__(self, interactive=False, secret=''):
        self.interactive = interactive; self.secret = secret; self.prompts = 0
    def is_interactive(self):
        return self.interactive
    def read_secret(self, prompt):
        self.prompts += 1
        return self.secret


@pytest.fixture
def vault(tmp_path: Path) -> Path:
    """A populated data directory: database, attachments, sends, config, RSA keys."""
    data = tmp_path / 'data'
    (data / 'attachments' / 'cipher1').mkdir(parents=True)
    (data / 'attachments' / 'cipher1' / 'file.bin').write_bytes(b'\x00attachment\xff')
    (data / 'sends' / 's1').mkdir(parents=True)
    (data / 'sends' / 's1' / 'send.txt').write_text('send body')
    (data / 'config.json').write_text('{"domain": "https://vault.example"}')
    (data / 'rsa_key.pem').write_text('PRIVATE')
    (data / 'rsa_key.pub.pem').write_text('PUBLIC')
    make_db(data / 'db.sqlite3')
    (tmp_path / '.env').write_text('ADMIN_TOKEN=abc\n')
    return data


@pytest.fixture
def config(vault: Path) -> BackupConfig:
    return BackupConfig(
        data_dir=vault,
        env_file=vault.parent / '.env',
        log_file=vault.parent / 'backup.log',
        service_name='vaultwarden',
    )


@pytest.fixture
def scratch_root(tmp_path: Path, monkeypatch) -> Path:
    """Redirect tempfile so scratch directories can be inspected."""
    import tempfile
    root = tmp_path / 'scratch'
    root.mkdir()
    monkeypatch.setattr(tempfile, 'tempdir', str(root))
    return root


def with_config(cfg: BackupConfig, **changes) -> BackupConfig:
    return replace(cfg, **changes)
