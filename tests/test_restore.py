import tarfile
from datetime import datetime
import pytest
import bwbackup.lib.restore as restore_mod
from bwbackup.lib.errors import RestoreFatalError
from bwbackup.lib.restore import RestoreOrchestrator
from bwbackup.lib.snapshot import SnapshotBuilder
from conftest import Clock, FakeController, FakeInput, copy_snapshot, make_db, read_names, with_config


# one clock for the module: safety snapshots must not reuse a source archive's name
CLOCK = Clock()


def _builder(cfg):
    return SnapshotBuilder(cfg, snapshot=copy_snapshot, clock=CLOCK)


def _orchestrator(cfg, controller=None, secret=None):
    return RestoreOrchestrator(cfg, _builder(cfg), secret or FakeInput(), controller=controller)


def _fresh_target(tmp_path, config):
    target = tmp_path / 'target'
    target.mkdir()
    return with_config(config, data_dir=target / 'data', env_file=target / '.env')


def test_round_trip_into_fresh_target(config, tmp_path, scratch_root):
    archive = _builder(config).build()
    target = _fresh_target(tmp_path, config)
    report = _orchestrator(target, controller=FakeController()).restore(archive.path)
    assert (target.data_dir / 'db.sqlite3').read_bytes() == (config.data_dir / 'db.sqlite3').read_bytes()
    got = target.data_dir / 'attachments' / 'cipher1' / 'file.bin'
    assert got.read_bytes() == (config.data_dir / 'attachments' / 'cipher1' / 'file.bin').read_bytes()
    assert (target.data_dir / 'sends' / 's1' / 'send.txt').read_text() == 'send body'
    assert (target.data_dir / 'rsa_key.pem').read_text() == 'PRIVATE'
    assert set(report.restored) >= {'db.sqlite3', 'attachments', 'sends', 'config.json', 'rsa_key.pem', 'rsa_key.pub.pem'}
    # nothing live existed, so the safety snapshot could not be taken
    assert report.safety_archive is None and any('Safety snapshot' in w for w in report.warnings)
    assert list(scratch_root.iterdir()) == []


def test_restore_replaces_live_state_and_takes_safety_snapshot(config):
    archive = _builder(config).build()
    (config.data_dir / 'db.sqlite3').unlink()
    make_db(config.data_dir / 'db.sqlite3', rows=('mallory',))
    (config.data_dir / 'attachments' / 'cipher1' / 'file.bin').write_bytes(b'tampered')
    (config.data_dir / 'attachments' / 'stray.bin').write_bytes(b'stray')
    (config.data_dir / 'db.sqlite3-wal').write_bytes(b'stale wal')
    controller = FakeController()
    report = _orchestrator(config, controller=controller).restore(archive.path)
    assert read_names(config.data_dir / 'db.sqlite3') == ['alice', 'bob']
    assert not (config.data_dir / 'db.sqlite3-wal').exists()
    assert (config.data_dir / 'attachments' / 'cipher1' / 'file.bin').read_bytes() == b'\x00attachment\xff'
    assert not (config.data_dir / 'attachments' / 'stray.bin').exists()
    assert report.safety_archive is not None and report.safety_archive.path.exists()
    assert report.safety_archive.path != archive.path
    assert controller.calls == [('stop', 'vaultwarden'), ('start', 'vaultwarden')]
    assert report.service_stopped and report.service_restarted
    assert report.warnings == []


def test_missing_archive_is_fatal_and_touches_nothing(config, tmp_path):
    before = (config.data_dir / 'db.sqlite3').read_bytes()
    controller = FakeController()
    with pytest.raises(RestoreFatalError, match='not found'):
        _orchestrator(config, controller=controller).restore(tmp_path / 'nope.tar.gz')
    assert (config.data_dir / 'db.sqlite3').read_bytes() == before
    assert controller.calls == []
    assert not config.backup_dir.exists()


def test_archive_without_database_is_fatal(config, tmp_path):
    bogus = tmp_path / 'bw_backup_2026-01-01-000000.tar.gz'
    with tarfile.open(bogus, 'w:gz') as tar:
        tar.add(str(config.data_dir / 'config.json'), arcname='data/config.json')
    before = (config.data_dir / 'db.sqlite3').read_bytes()
    controller = FakeController()
    with pytest.raises(RestoreFatalError, match='Could not find database'):
        _orchestrator(config, controller=controller).restore(bogus)
    assert (config.data_dir / 'db.sqlite3').read_bytes() == before
    assert controller.calls == []


def test_corrupt_archive_is_fatal(config, tmp_path, scratch_root):
    bad = tmp_path / 'bw_backup_2026-01-01-000000.tar.gz'
    bad.write_bytes(b'not a tarball')
    with pytest.raises(RestoreFatalError, match='extract'):
        _orchestrator(config).restore(bad)
    assert list(scratch_root.iterdir()) == []


def test_encrypted_archive_without_key_fails_non_interactively(config):
    archive = _builder(with_config(config, encryption_key='k3y')).build()
    secret = FakeInput(interactive=False)
    with pytest.raises(RestoreFatalError, match='non-interactive'):
        _orchestrator(config, secret=secret).restore(archive.path)
    assert secret.prompts == 0


def test_encrypted_archive_with_configured_or_prompted_key(config, tmp_path):
    keyed = with_config(config, encryption_key='k3y')
    archive = _builder(keyed).build()
    target = _fresh_target(tmp_path, keyed)
    _orchestrator(target).restore(archive.path)
    assert read_names(target.data_dir / 'db.sqlite3') == ['alice', 'bob']

    (tmp_path / 'p').mkdir()
    prompted = _fresh_target(tmp_path / 'p', config)
    secret = FakeInput(interactive=True, secret='k3y')
    _orchestrator(prompted, secret=secret).restore(archive.path)
    assert secret.prompts == 1
    assert read_names(prompted.data_dir / 'db.sqlite3') == ['alice', 'bob']


def test_empty_prompted_key_or_wrong_key_is_fatal(config):
    archive = _builder(with_config(config, encryption_key='k3y')).build()
    with pytest.raises(RestoreFatalError, match='No decryption key'):
        _orchestrator(config, secret=FakeInput(interactive=True, secret='')).restore(archive.path)
    with pytest.raises(RestoreFatalError):
        _orchestrator(with_config(config, encryption_key='wrong')).restore(archive.path)


def test_database_swap_failure_is_fatal_and_stops_remaining_categories(config, monkeypatch):
    archive = _builder(config).build()
    (config.data_dir / 'attachments' / 'cipher1' / 'file.bin').write_bytes(b'live')
    before = (config.data_dir / 'db.sqlite3').read_bytes()

    def broken_swap(staged, target, mode=0o644):
        raise OSError('read-only file system')
    monkeypatch.setattr(restore_mod, 'swap_in', broken_swap)
    controller = FakeController()
    with pytest.raises(RestoreFatalError, match='Failed to restore database'):
        _orchestrator(config, controller=controller).restore(archive.path)
    assert (config.data_dir / 'db.sqlite3').read_bytes() == before
    assert not (config.data_dir / 'db.sqlite3.restoring').exists()
    assert (config.data_dir / 'attachments' / 'cipher1' / 'file.bin').read_bytes() == b'live'
    # the service is brought back even though the restore failed
    assert controller.calls == [('stop', 'vaultwarden'), ('start', 'vaultwarden')]


def test_category_failures_are_soft(config, monkeypatch):
    archive = _builder(config).build()
    (config.data_dir / 'config.json').write_text('{}')
    real_replace_tree = restore_mod.replace_tree
    real_replace_file = restore_mod.replace_file

    def flaky_tree(src, target):
        if target.name == 'attachments':
            raise OSError('permission denied')
        real_replace_tree(src, target)

    def flaky_file(src, target):
        if target.name == 'rsa_key.pem':
            raise OSError('permission denied')
        real_replace_file(src, target)
    monkeypatch.setattr(restore_mod, 'replace_tree', flaky_tree)
    monkeypatch.setattr(restore_mod, 'replace_file', flaky_file)
    report = _orchestrator(config, controller=FakeController()).restore(archive.path)
    assert any('attachments' in w for w in report.warnings)
    assert any('rsa_key.pem' in w for w in report.warnings)
    assert 'sends' in report.restored and 'rsa_key.pub.pem' in report.restored
    assert (config.data_dir / 'config.json').read_text() == '{"domain": "https://vault.example"}'


def test_service_controller_soft_failures(config):
    archive = _builder(config).build()
    stuck = FakeController(stop_ok=False)
    report = _orchestrator(config, controller=stuck).restore(archive.path)
    assert stuck.calls == [('stop', 'vaultwarden')]
    assert not report.service_stopped and any('Could not stop' in w for w in report.warnings)

    no_restart = FakeController(start_ok=False)
    report = _orchestrator(config, controller=no_restart).restore(archive.path)
    assert report.service_stopped and not report.service_restarted
    assert any('start it manually' in w for w in report.warnings)

    missing = FakeController(available=False)
    report = _orchestrator(config, controller=missing).restore(archive.path)
    assert missing.calls == [] and any('No service controller' in w for w in report.warnings)
    assert read_names(config.data_dir / 'db.sqlite3') == ['alice', 'bob']


def test_env_file_is_placed_aside_not_overwritten(config):
    cfg = with_config(config, include_env=True)
    archive = _builder(cfg).build()
    cfg.env_file.write_text('ADMIN_TOKEN=changed\n')
    report = _orchestrator(cfg).restore(archive.path)
    assert (cfg.data_dir / '.env.restored').read_text() == 'ADMIN_TOKEN=abc\n'
    assert cfg.env_file.read_text() == 'ADMIN_TOKEN=changed\n'
    assert '.env.restored' in report.restored

    # without the opt-in flag the .env inside the archive is ignored
    (cfg.data_dir / '.env.restored').unlink()
    _orchestrator(config).restore(archive.path)
    assert not (config.data_dir / '.env.restored').exists()


def test_safety_snapshot_in_same_second_keeps_source_archive(config):
    frozen = lambda: datetime(2026, 3, 4, 5, 6, 7)
    builder = SnapshotBuilder(config, snapshot=copy_snapshot, clock=frozen)
    archive = builder.build()
    before = archive.path.read_bytes()
    report = RestoreOrchestrator(config, builder, FakeInput(), controller=FakeController()).restore(archive.path)
    assert report.safety_archive is None
    assert any('already exists' in w for w in report.warnings)
    assert archive.path.read_bytes() == before
    assert read_names(config.data_dir / 'db.sqlite3') == ['alice', 'bob']
