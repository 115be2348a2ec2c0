"""Utility layer: archive/outcome records and filesystem helpers.

Archive names carry their capture time and encryption marker:
  <prefix>_<YYYY-MM-DD-HHMMSS>.tar.gz[.aes256]
"""
from __future__ import annotations
import os, re, shutil, logging
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional
from config.settings import ARCHIVE_PREFIX, ARCHIVE_SUFFIX, ENCRYPTED_SUFFIX, TIMESTAMP_FORMAT

log = logging.getLogger(__name__)

_NAME_RE = re.compile(
	r'^(?P<prefix>.+)_(?P<stamp>\d{4}-\d{2}-\d{2}-\d{6})' + re.escape(ARCHIVE_SUFFIX) + r'(?P<enc>' + re.escape(ENCRYPTED_SUFFIX) + r')?$'
)

# Delivery statuses; only FAILED counts against the run
OK, DEGRADED, SKIPPED, FAILED = 'ok', 'degraded', 'skipped', 'failed'


def archive_name(captured: datetime, encrypted: bool, prefix: str = ARCHIVE_PREFIX) -> str:
	name = f"{prefix}_{captured.strftime(TIMESTAMP_FORMAT)}{ARCHIVE_SUFFIX}"
	return name + ENCRYPTED_SUFFIX if encrypted else name


def is_encrypted_name(path: Path | str) -> bool:
	return str(path).endswith(ENCRYPTED_SUFFIX)


@dataclass(frozen=True)
class Archive:
	path: Path
	encrypted: bool
	captured: Optional[datetime] = None

	@classmethod
	def from_path(cls, path: Path | str) -> 'Archive':
		"""Describe an archive from its filename; capture time is None for foreign names."""
		p = Path(path)
		m = _NAME_RE.match(p.name)
		captured = datetime.strptime(m.group('stamp'), TIMESTAMP_FORMAT) if m else None
		return cls(path=p, encrypted=is_encrypted_name(p), captured=captured)

	@property
	def name(self) -> str:
		return self.path.name

	@property
	def stem(self) -> str:
		"""Filename without the .tar.gz[.aes256] suffixes."""
		name = self.name
		if name.endswith(ENCRYPTED_SUFFIX):
			name = name[:-len(ENCRYPTED_SUFFIX)]
		if name.endswith(ARCHIVE_SUFFIX):
			name = name[:-len(ARCHIVE_SUFFIX)]
		return name


def is_archive(path: Path, prefix: str = ARCHIVE_PREFIX) -> bool:
	m = _NAME_RE.match(path.name)
	return bool(m) and m.group('prefix') == prefix


def list_archives(backup_dir: Path, prefix: str = ARCHIVE_PREFIX) -> List[Archive]:
	"""Archives in `backup_dir`, newest first."""
	if not backup_dir.is_dir():
		return []
	items = [Archive.from_path(p) for p in backup_dir.iterdir() if p.is_file() and is_archive(p, prefix)]
	return sorted(items, key=lambda a: a.name, reverse=True)


@dataclass
class DeliveryOutcome:
	method: str
	status: str
	detail: str = ''

	@property
	def failed(self) -> bool:
		return self.status == FAILED


@dataclass
class RunSummary:
	archive: Optional[Archive]
	outcomes: List[DeliveryOutcome] = field(default_factory=list)

	@property
	def ok(self) -> bool:
		"""Build succeeded and not every requested destination failed; skipped counts as not failed."""
		if self.archive is None or not self.outcomes:
			return False
		return any(not o.failed for o in self.outcomes)

	def describe(self) -> str:
		lines = [f"{o.method}: {o.status}" + (f" ({o.detail})" if o.detail else '') for o in self.outcomes]
		return '\n'.join(lines) or 'no destinations attempted'


@dataclass
class RestoreReport:
	source: Path
	service_stopped: bool = False
	service_restarted: bool = False
	restored: List[str] = field(default_factory=list)
	warnings: List[str] = field(default_factory=list)
	safety_archive: Optional[Archive] = None

	def warn(self, message: str) -> None:
		log.warning(message)
		self.warnings.append(message)


# --- filesystem helpers used by restore -------------------------------------

def remove_path(path: Path) -> None:
	"""Delete a file, symlink or directory tree; missing paths are ignored."""
	if path.is_symlink() or path.is_file():
		path.unlink()
	elif path.is_dir():
		shutil.rmtree(path)


def replace_tree(source: Path, target: Path) -> None:
	remove_path(target)
	shutil.copytree(source, target)


def replace_file(source: Path, target: Path) -> None:
	remove_path(target)
	shutil.copy2(source, target)


def stage_file(source: Path, target: Path) -> Path:
	"""Copy `source` next to `target` under a temporary name and confirm its size."""
	staged = target.with_name(target.name + '.restoring')
	shutil.copyfile(source, staged)
	if staged.stat().st_size != source.stat().st_size:
		staged.unlink()
		raise OSError(f"short copy while staging {target.name}")
	return staged


def swap_in(staged: Path, target: Path, mode: int = 0o644) -> None:
	os.replace(staged, target)
	os.chmod(target, mode)
