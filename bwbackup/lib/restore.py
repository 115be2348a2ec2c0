"""Restore a previously built archive into the live data directory.

Order: validate input, resolve the decryption key, extract to a scratch dir,
take a safety snapshot, stop the service, replace state one category at a
time, clean up, restart the service. Only input, key, extraction and the
database swap are fatal; everything else is recorded as a warning.
"""
from __future__ import annotations
import logging, shutil, tempfile
from pathlib import Path
from typing import Callable, Optional, Protocol
from config.settings import (
	BackupConfig, ARCHIVE_DATA_PREFIX, ARCHIVE_ENV_NAME, DB_NAME, RESTORED_ENV_NAME, RSA_KEY_PREFIX
)
from .crypto import CryptoError, DecryptingReader
from .errors import RestoreFatalError, SnapshotError
from .snapshot import SnapshotBuilder
from .tools import TarArchiver, ToolError, ToolResult, check_database
from .utils import Archive, RestoreReport, remove_path, replace_file, replace_tree, stage_file, swap_in

log = logging.getLogger(__name__)

ENV_NOTICE = """
---------------------------------------------------------------------------------
IMPORTANT: .ENV FILE NOTICE
---------------------------------------------------------------------------------

The .env file cannot be automatically restored while Docker Compose is running.
A copy of the restored .env file has been placed at:
  {restored}

To complete the restoration process manually:

1. Review the differences between your current .env and the restored version:
   diff {live} {restored}

2. To fully apply the restored .env:
   a. Stop all services: docker-compose down
   b. Replace your .env file: cp {restored} {live}
   c. Restart services: docker-compose up -d

NOTE: Only do this if you want to completely replace your current environment settings!
---------------------------------------------------------------------------------"""


class ServiceController(Protocol):
	def available(self) -> bool: ...
	def stop(self, service: str) -> ToolResult: ...
	def start(self, service: str) -> ToolResult: ...


class SecretInput(Protocol):
	def is_interactive(self) -> bool: ...
	def read_secret(self, prompt: str) -> str: ...


class RestoreOrchestrator:
	def __init__(
		self,
		config: BackupConfig,
		builder: SnapshotBuilder,
		secret_input: SecretInput,
		controller: Optional[ServiceController] = None,
		archiver: Optional[TarArchiver] = None,
		check_db: Callable[[Path], ToolResult] = check_database,
	):
		self.config = config
		self.builder = builder
		self.secret_input = secret_input
		self.controller = controller
		self.archiver = archiver or TarArchiver()
		self.check_db = check_db

	def restore(self, path: Path | str) -> RestoreReport:
		source = Path(path)
		if not source.is_file():
			raise RestoreFatalError(f"Backup file {source} not found.")
		log.info('Attempting to restore from %s', source)
		archive = Archive.from_path(source)
		key = self._resolve_key() if archive.encrypted else None

		report = RestoreReport(source=source)
		scratch = Path(tempfile.mkdtemp(prefix='bwrestore-'))
		try:
			self._extract(archive, key, scratch)
			self._safety_snapshot(report)
			report.service_stopped = self._quiesce(report)
			try:
				self._replace_state(scratch, report)
			finally:
				shutil.rmtree(scratch, ignore_errors=True)
				if report.service_stopped:
					report.service_restarted = self._resume(report)
		finally:
			shutil.rmtree(scratch, ignore_errors=True)
		log.info('Restore completed.')
		return report

	# -- steps ----------------------------------------------------------------

	def _resolve_key(self) -> str:
		log.info('Detected encrypted backup file.')
		if self.config.encryption_key:
			log.info('Using encryption key from environment variable.')
			return self.config.encryption_key
		if not self.secret_input.is_interactive():
			raise RestoreFatalError(
				"No encryption key available. Cannot prompt in non-interactive mode.\n"
				"Please provide the key via BACKUP_ENCRYPTION_KEY environment variable."
			)
		key = self.secret_input.read_secret('Enter decryption key')
		if not key:
			raise RestoreFatalError('No decryption key provided.')
		return key

	def _extract(self, archive: Archive, key: Optional[str], scratch: Path) -> None:
		log.info('Decrypting backup file...' if key else 'Extracting backup file...')
		try:
			with open(archive.path, 'rb') as fh:
				stream = DecryptingReader(fh, key) if key else fh
				self.archiver.unpack(stream, scratch)
		except (ToolError, CryptoError, OSError) as e:
			raise RestoreFatalError(f"Failed to decrypt or extract the backup file: {e}")
		db = scratch / DB_NAME
		if not db.is_file():
			raise RestoreFatalError('Could not find database in backup; live data left untouched.')
		res = self.check_db(db)
		if not res.ok:
			raise RestoreFatalError(f"Database in backup failed validation: {res.output}")

	def _safety_snapshot(self, report: RestoreReport) -> None:
		log.info('Creating backup of current state before restoration...')
		try:
			report.safety_archive = self.builder.build()
		except SnapshotError as e:
			report.warn(f"Safety snapshot failed, continuing without it: {e}")

	def _quiesce(self, report: RestoreReport) -> bool:
		service = self.config.service_name
		if self.controller is None or not self.controller.available():
			report.warn(f"No service controller available; restoring while {service} may still be running.")
			log.info('Please stop the %s container manually before continuing, and start it after the restore completes.', service)
			return False
		log.info('Stopping %s container...', service)
		res = self.controller.stop(service)
		if not res.ok:
			report.warn(f"Could not stop {service} container. Restoration may fail if database is in use. {res.output}".rstrip())
			return False
		return True

	def _resume(self, report: RestoreReport) -> bool:
		service = self.config.service_name
		log.info('Starting %s container...', service)
		res = self.controller.start(service)
		if not res.ok:
			report.warn(f"Could not start {service} container. You may need to start it manually. {res.output}".rstrip())
			return False
		return True

	def _replace_state(self, scratch: Path, report: RestoreReport) -> None:
		self._replace_database(scratch / DB_NAME, report)

		log.info('Restoring data files...')
		restored_data = scratch / ARCHIVE_DATA_PREFIX
		live = self.config.data_dir
		for name in ('attachments', 'sends'):
			src = restored_data / name
			if not src.is_dir():
				continue
			try:
				replace_tree(src, live / name)
				report.restored.append(name)
			except OSError as e:
				report.warn(f"Failed to restore {name}: {e}")

		cfg_src = restored_data / 'config.json'
		if cfg_src.is_file():
			try:
				replace_file(cfg_src, live / 'config.json')
				report.restored.append('config.json')
			except OSError as e:
				report.warn(f"Failed to restore config.json: {e}")

		if restored_data.is_dir():
			for key_file in sorted(restored_data.iterdir()):
				if not (key_file.name.startswith(RSA_KEY_PREFIX) and key_file.is_file()):
					continue
				try:
					replace_file(key_file, live / key_file.name)
					report.restored.append(key_file.name)
				except OSError as e:
					report.warn(f"Failed to restore {key_file.name}: {e}")

		env_src = scratch / ARCHIVE_ENV_NAME
		if self.config.include_env and env_src.is_file():
			self._restore_env(env_src, report)

	def _replace_database(self, src: Path, report: RestoreReport) -> None:
		log.info('Restoring database...')
		live = self.config.db_path
		try:
			live.parent.mkdir(parents=True, exist_ok=True)
			staged = stage_file(src, live)
		except OSError as e:
			raise RestoreFatalError(f"Failed to restore database: {e}")
		try:
			swap_in(staged, live)
		except OSError as e:
			staged.unlink(missing_ok=True)
			raise RestoreFatalError(f"Failed to restore database: {e}")
		report.restored.append(DB_NAME)
		log.info('Database restored successfully.')
		# WAL/SHM from the old database must not be replayed onto the new one
		for suffix in ('-wal', '-shm'):
			sidecar = live.with_name(live.name + suffix)
			try:
				remove_path(sidecar)
			except OSError as e:
				report.warn(f"Could not remove stale {sidecar.name}: {e}")

	def _restore_env(self, env_src: Path, report: RestoreReport) -> None:
		restored = self.config.data_dir / RESTORED_ENV_NAME
		try:
			shutil.copy2(env_src, restored)
		except OSError as e:
			report.warn(f"Failed to copy .env to reference location: {e}")
			return
		report.restored.append(RESTORED_ENV_NAME)
		log.info('%s', ENV_NOTICE.format(restored=restored, live=self.config.env_file))
