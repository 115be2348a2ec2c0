"""Deliver a built archive to each requested destination.

Every destination is independent: one failing never stops the others, and
the run only fails when the build failed or every destination failed.
"""
from __future__ import annotations
import logging
from pathlib import Path
from typing import Iterable, List, Protocol, Tuple
from config.settings import BackupConfig, METHOD_ALIASES, VALID_METHODS
from .errors import DeliveryError, SnapshotError, ValidationError
from .notify import Notifier
from .snapshot import SnapshotBuilder
from .tools import ToolResult
from .utils import Archive, DeliveryOutcome, RunSummary, OK, DEGRADED, SKIPPED, FAILED

log = logging.getLogger(__name__)


class SyncTool(Protocol):
	configured: bool
	def list_remotes(self) -> Tuple[ToolResult, List[str]]: ...
	def sync(self, local_dir: Path, remote: str) -> ToolResult: ...


def parse_methods(methods: str | Iterable[str]) -> Tuple[List[str], List[str]]:
	"""Split a comma list into (valid, invalid) methods, deduplicated, order kept.

	Raises ValidationError when nothing valid was requested.
	"""
	tokens = methods.split(',') if isinstance(methods, str) else list(methods)
	valid: List[str] = []; invalid: List[str] = []
	for raw in tokens:
		t = raw.strip().lower()
		if not t:
			continue
		t = METHOD_ALIASES.get(t, t)
		if t in VALID_METHODS:
			if t not in valid:
				valid.append(t)
		elif raw.strip() not in invalid:
			invalid.append(raw.strip())
	if not valid:
		shown = ', '.join(invalid) or '(none)'
		raise ValidationError(f"No valid backup method in {shown}; expected one of {', '.join(VALID_METHODS)}")
	return valid, invalid


class DestinationDispatcher:
	def __init__(self, config: BackupConfig, notifier: Notifier, sync: SyncTool):
		self.config = config
		self.notifier = notifier
		self.sync = sync

	def deliver(self, method: str, archive: Archive) -> DeliveryOutcome:
		handler = getattr(self, f"_deliver_{method}", None)
		if handler is None:
			return DeliveryOutcome(method, FAILED, f"unknown method {method}")
		log.info('Running %s backup', method)
		try:
			outcome = handler(archive)
		except DeliveryError as e:
			outcome = DeliveryOutcome(method, FAILED, str(e))
		except Exception as e:
			# other destinations still run
			log.exception('Unexpected error during %s backup', method)
			outcome = DeliveryOutcome(method, FAILED, f"unexpected error: {e}")
		level = logging.ERROR if outcome.failed else logging.INFO
		log.log(level, '%s backup %s%s', method, outcome.status, f": {outcome.detail}" if outcome.detail else '')
		return outcome

	def _deliver_local(self, archive: Archive) -> DeliveryOutcome:
		self.notifier.success('local backup completed', f"Local backup completed: {archive.name}")
		return DeliveryOutcome('local', OK, str(archive.path))

	def _deliver_email(self, archive: Archive) -> DeliveryOutcome:
		res = self.notifier.email_archive(archive)
		if not res.ok:
			raise DeliveryError(res.output)
		return DeliveryOutcome('email', OK, f"sent {archive.name}")

	def _deliver_remote(self, archive: Archive) -> DeliveryOutcome:
		if not self.sync.configured:
			msg = 'Remote sync not configured (BACKUP_RCLONE_CONF missing or empty); skipping'
			self.notifier.success('remote backup skipped', msg)
			return DeliveryOutcome('remote', SKIPPED, msg)
		res, remotes = self.sync.list_remotes()
		if not res.ok:
			msg = f"Could not list remotes: {res.output}"
			self.notifier.failure('remote backup failed', msg)
			raise DeliveryError(msg)
		if not remotes:
			msg = 'No remotes defined in sync configuration; skipping'
			self.notifier.success('remote backup skipped', msg)
			return DeliveryOutcome('remote', SKIPPED, msg)

		# whole backup dir goes to every remote, one after another
		failed: List[str] = []; error_log = ''
		for remote in remotes:
			r = self.sync.sync(self.config.backup_dir, f"{remote}{self.config.rclone_dest}")
			if not r.ok:
				failed.append(remote)
				error_log += f"Sync log with {remote}\n==========\n{r.output}\n==========\n\n"
		total = len(remotes)
		if not failed:
			self.notifier.success('remote backup completed', f"Remote backup completed to {total} remotes")
			return DeliveryOutcome('remote', OK, f"synced to {total} of {total} remotes")
		log.warning('Failed to sync to %d of %d remotes:\n  %s', len(failed), total, error_log)
		self.notifier.failure(f"remote backup failed to {len(failed)} of {total} remotes", error_log)
		status = FAILED if len(failed) == total else DEGRADED
		return DeliveryOutcome('remote', status, f"{total - len(failed)} of {total} remotes succeeded; failed: {', '.join(failed)}")


def run_backup(methods: List[str], builder: SnapshotBuilder, dispatcher: DestinationDispatcher, notifier: Notifier) -> RunSummary:
	"""Build exactly one archive and hand the same one to every method."""
	log.info('Running backup to: %s', ','.join(methods))
	try:
		archive = builder.build()
	except SnapshotError as e:
		log.error('%s', e)
		notifier.failure('backup failed', str(e))
		return RunSummary(archive=None)
	summary = RunSummary(archive=archive)
	for method in methods:
		summary.outcomes.append(dispatcher.deliver(method, archive))
	if not summary.ok:
		notifier.failure('backup failed', f"Every destination failed for {archive.name}\n\n{summary.describe()}")
	return summary
