"""CLI commands implemented with click.

- `run <method>[,<method>...]`  build one archive, deliver it to local/email/remote
- `restore <archive>`           restore an archive into the data directory
- `list`                        show archives in the backup directory
"""
from __future__ import annotations
import logging, click
from pathlib import Path
from config.settings import BackupConfig, ConfigError
from bwbackup.lib.dispatch import DestinationDispatcher, parse_methods, run_backup
from bwbackup.lib.errors import RestoreFatalError, ValidationError
from bwbackup.lib.logger import setup_logging
from bwbackup.lib.notify import Notifier
from bwbackup.lib.restore import RestoreOrchestrator
from bwbackup.lib.snapshot import SnapshotBuilder
from bwbackup.lib.tools import DockerServiceController, RcloneSync, SmtpMailTransport, TerminalSecretInput
from bwbackup.lib.utils import list_archives

log = logging.getLogger('bwbackup.cli')


def _notifier(config: BackupConfig) -> Notifier:
	return Notifier(config, SmtpMailTransport(config))


@click.group()
@click.pass_context
def cli(ctx):
	"""Backup and restore agent for a Vaultwarden data directory."""
	try:
		config = BackupConfig.from_env()
	except ConfigError as e:
		raise click.UsageError(str(e))
	setup_logging(config.log_file)
	ctx.obj = config


@cli.command()
@click.argument('methods', nargs=-1, required=True)
@click.pass_obj
def run(config, methods):
	"""Build one archive and deliver it to each METHOD (local, email, remote)."""
	try:
		valid, invalid = parse_methods(','.join(methods))
	except ValidationError as e:
		raise click.BadParameter(str(e), param_hint='METHODS')
	for bad in invalid:
		log.warning('Bad backup method provided: %s', bad)
	notifier = _notifier(config)
	dispatcher = DestinationDispatcher(config, notifier, RcloneSync(config.rclone_conf))
	summary = run_backup(valid, SnapshotBuilder(config), dispatcher, notifier)
	if summary.archive is not None:
		click.echo(summary.describe())
	if not summary.ok:
		click.echo(f"Backup failed; see {config.log_file} for details.", err=True)
		raise SystemExit(1)


@cli.command()
@click.argument('archive', type=click.Path(dir_okay=False, path_type=Path))
@click.pass_obj
def restore(config, archive):
	"""Restore ARCHIVE (a .tar.gz or .tar.gz.aes256 backup) into the data directory."""
	notifier = _notifier(config)
	orchestrator = RestoreOrchestrator(
		config,
		SnapshotBuilder(config),
		TerminalSecretInput(),
		controller=DockerServiceController(),
	)
	try:
		report = orchestrator.restore(archive)
	except RestoreFatalError as e:
		log.error('%s', e)
		notifier.failure('restore failed', f"Restore of {archive} failed:\n\n{e}")
		click.echo('Usage: bwbackup restore <backup_file>', err=True)
		click.echo('Set BACKUP_ENCRYPTION_KEY for encrypted (.aes256) archives when running non-interactively.', err=True)
		raise SystemExit(1)
	if report.warnings:
		click.echo(f"Restore completed with {len(report.warnings)} warning(s):")
		for w in report.warnings:
			click.echo(f"  - {w}")
	else:
		click.echo('Restore completed successfully.')


@cli.command('list')
@click.pass_obj
def list_cmd(config):
	"""List archives in the backup directory, newest first."""
	items = list_archives(config.backup_dir, config.archive_prefix)
	if not items:
		click.echo(f"No backups in {config.backup_dir}")
		return
	for a in items:
		flag = ' (encrypted)' if a.encrypted else ''
		click.echo(f"{a.name}  {a.path.stat().st_size} bytes{flag}")
