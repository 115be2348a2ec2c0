"""Build one consistent, optionally encrypted archive of the vault's state.

Steps: hot-copy the database into a scratch directory, collect whichever
ancillary components exist, pack everything into a gzip tar (piped straight
through encryption when a key is configured), then sweep archives older
than the retention window.
"""
from __future__ import annotations
import logging, os, shutil, tempfile, time
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional, Tuple
from config.settings import (
	BackupConfig, ARCHIVE_DATA_PREFIX, ARCHIVE_ENV_NAME, DB_NAME, RSA_KEY_PREFIX
)
from .crypto import CryptoError, EncryptingWriter
from .errors import SnapshotError
from .tools import TarArchiver, ToolError, ToolResult, snapshot_database
from .utils import Archive, archive_name, list_archives

log = logging.getLogger(__name__)

_DAY = 24 * 60 * 60


def _is_dir(p: Path) -> bool:
	return p.is_dir()


def _is_readable_file(p: Path) -> bool:
	return p.is_file() and os.access(p, os.R_OK)


@dataclass(frozen=True)
class Component:
	category: str
	path: Path
	arcname: str
	predicate: Callable[[Path], bool]

	def present(self) -> bool:
		return self.predicate(self.path)


class SnapshotBuilder:
	def __init__(
		self,
		config: BackupConfig,
		snapshot: Callable[[Path, Path], ToolResult] = snapshot_database,
		archiver: Optional[TarArchiver] = None,
		clock: Callable[[], datetime] = datetime.now,
	):
		self.config = config
		self.snapshot = snapshot
		self.archiver = archiver or TarArchiver()
		self.clock = clock

	def candidates(self) -> List[Component]:
		"""Fixed candidate set, evaluated in order; RSA keys expand to one entry per file."""
		data = self.config.data_dir
		prefix = ARCHIVE_DATA_PREFIX
		items = [
			Component('attachments', data / 'attachments', f"{prefix}/attachments", _is_dir),
			Component('sends', data / 'sends', f"{prefix}/sends", _is_dir),
			Component('config', data / 'config.json', f"{prefix}/config.json", _is_readable_file),
		]
		if data.is_dir():
			for key in sorted(p for p in data.iterdir() if p.name.startswith(RSA_KEY_PREFIX)):
				items.append(Component('rsa_key', key, f"{prefix}/{key.name}", _is_readable_file))
		if self.config.include_env:
			items.append(Component('env', self.config.env_file, ARCHIVE_ENV_NAME, _is_readable_file))
		return items

	def collect(self) -> List[Tuple[Path, str]]:
		members = []
		for c in self.candidates():
			if c.present():
				members.append((c.path, c.arcname))
			else:
				log.debug('Skipping %s (%s not present)', c.category, c.path)
		return members

	def build(self) -> Archive:
		"""Produce one archive and prune old ones; raises SnapshotError on failure."""
		cfg = self.config
		cfg.backup_dir.mkdir(parents=True, exist_ok=True)
		encrypted = bool(cfg.encryption_key)
		target = cfg.backup_dir / archive_name(self.clock(), encrypted, cfg.archive_prefix)
		if target.exists():
			raise SnapshotError(f"{target.name} already exists; refusing to overwrite it")
		partial = target.with_name(target.name + '.partial')
		scratch = Path(tempfile.mkdtemp(prefix='bwbackup-'))
		try:
			db_copy = scratch / DB_NAME
			res = self.snapshot(cfg.db_path, db_copy)
			if not res.ok:
				raise SnapshotError(f"Database snapshot failed: {res.output}")
			members = self.collect() + [(db_copy, DB_NAME)]
			try:
				with open(partial, 'wb') as fh:
					if encrypted:
						sink = EncryptingWriter(fh, cfg.encryption_key)
						self.archiver.pack(members, sink)
						sink.finish()
					else:
						self.archiver.pack(members, fh)
				os.replace(partial, target)
			except (ToolError, CryptoError, OSError) as e:
				partial.unlink(missing_ok=True)
				raise SnapshotError(f"Packing {target.name} failed: {e}")
		finally:
			shutil.rmtree(scratch, ignore_errors=True)
		log.info('Backup file created at %s', target)
		self.prune()
		return Archive.from_path(target)

	def prune(self, now: Optional[float] = None) -> List[Path]:
		"""Delete archives whose mtime is older than retention_days. Only touches backup_dir."""
		days = self.config.retention_days
		if days <= 0:
			return []
		cutoff = (time.time() if now is None else now) - days * _DAY
		removed = []
		for archive in list_archives(self.config.backup_dir, self.config.archive_prefix):
			try:
				if archive.path.stat().st_mtime < cutoff:
					archive.path.unlink()
					removed.append(archive.path)
					log.info('Removed expired backup %s', archive.name)
			except OSError as e:
				log.warning('Could not prune %s: %s', archive.name, e)
		return removed
