"""Status e-mails for backup and restore events."""
from __future__ import annotations
import logging
from pathlib import Path
from typing import Optional, Protocol
from config.settings import BackupConfig
from .tools import ToolResult
from .utils import Archive

log = logging.getLogger(__name__)


class MailTransport(Protocol):
	def send(self, subject: str, body: str, attachment: Optional[Path] = None) -> ToolResult: ...


def restore_instructions(archive: Archive) -> str:
	"""Body for an e-mailed archive: how to unpack it (and decrypt it first if needed)."""
	body = (
		"Email backup successful.\n\n"
		"To restore, untar in the Bitwarden data directory:\n"
		f"    tar -zxf {archive.stem}.tar.gz"
	)
	if archive.encrypted:
		body += (
			"\n\nTo decrypt an encrypted backup (.aes256), first decrypt using openssl:\n"
			f"    openssl enc -d -aes256 -salt -pbkdf2 -pass pass:<password> -in {archive.name} -out {archive.stem}.tar.gz"
		)
	return body


class Notifier:
	def __init__(self, config: BackupConfig, transport: MailTransport):
		self.config = config
		self.transport = transport

	def _subject(self, text: str) -> str:
		name = self.config.smtp_from_name
		return f"{name} - {text}" if name else text

	def send(self, subject: str, body: str, attachment: Optional[Path] = None) -> ToolResult:
		"""Unconditional send; used for e-mail delivery of an archive."""
		res = self.transport.send(self._subject(subject), body, attachment)
		if not res.ok:
			log.error('Email error: %s', res.output)
		return res

	def success(self, subject: str, body: str) -> Optional[ToolResult]:
		if not self.config.notify or self.config.notify_failure_only:
			return None
		return self.send(subject, body)

	def failure(self, subject: str, body: str) -> Optional[ToolResult]:
		if not self.config.notify:
			return None
		return self.send(subject, body)

	def email_archive(self, archive: Archive) -> ToolResult:
		return self.send(archive.name, restore_instructions(archive), archive.path)
