"""External collaborators behind narrow interfaces.

Each tool call returns a `ToolResult` (ok flag + captured diagnostic text)
instead of raising, except the archiver which raises ToolError so the
caller can abort a pipeline mid-stream.
"""
from __future__ import annotations
import logging, smtplib, sqlite3, ssl, subprocess, sys, tarfile
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import formataddr
from pathlib import Path
from typing import BinaryIO, Callable, Iterable, List, Optional, Sequence, Tuple
import click
import docker
import docker.errors
from config.settings import BackupConfig

log = logging.getLogger(__name__)


class ToolError(Exception):
	pass


@dataclass
class ToolResult:
	ok: bool
	output: str = ''


def run_command(cmd: Sequence[str]) -> ToolResult:
	"""Run an external command synchronously, capturing stdout+stderr."""
	try:
		proc = subprocess.run(list(cmd), capture_output=True, text=True)
	except OSError as e:
		return ToolResult(False, f"{cmd[0]}: {e}")
	out = '\n'.join(s.strip() for s in (proc.stdout, proc.stderr) if s and s.strip())
	return ToolResult(proc.returncode == 0, out)


# --- database snapshot --------------------------------------------------------

def snapshot_database(source: Path, dest: Path) -> ToolResult:
	"""Consistent hot copy through the sqlite online backup API."""
	if not source.is_file():
		return ToolResult(False, f"database {source} not found")
	try:
		src = sqlite3.connect(f"file:{source}?mode=ro", uri=True)
		try:
			dst = sqlite3.connect(str(dest))
			try:
				src.backup(dst)
			finally:
				dst.close()
		finally:
			src.close()
	except sqlite3.Error as e:
		return ToolResult(False, f"sqlite backup of {source} failed: {e}")
	return ToolResult(True)


def check_database(path: Path) -> ToolResult:
	try:
		conn = sqlite3.connect(f"file:{path}?mode=ro", uri=True)
		try:
			row = conn.execute("PRAGMA quick_check").fetchone()
		finally:
			conn.close()
	except sqlite3.Error as e:
		return ToolResult(False, f"{path.name} is not a usable database: {e}")
	if not row or str(row[0]).lower() != 'ok':
		return ToolResult(False, f"quick_check failed for {path.name}: {row[0] if row else 'no result'}")
	return ToolResult(True)


# --- archiving ---------------------------------------------------------------

class TarArchiver:
	"""gzip-compressed tar streams (tar czf - / tar xzf -)."""

	def pack(self, members: Iterable[Tuple[Path, str]], fileobj: BinaryIO) -> None:
		try:
			with tarfile.open(fileobj=fileobj, mode='w|gz') as tar:
				for path, arcname in members:
					tar.add(str(path), arcname=arcname)
		except (tarfile.TarError, OSError) as e:
			raise ToolError(f"pack failed: {e}")

	def unpack(self, fileobj: BinaryIO, dest_dir: Path) -> None:
		try:
			with tarfile.open(fileobj=fileobj, mode='r|gz') as tar:
				# 'data' rejects absolute paths, '..' and links leaving dest_dir
				tar.extractall(str(dest_dir), filter='data')
		except (tarfile.TarError, OSError, EOFError) as e:
			raise ToolError(f"unpack failed: {e}")


# --- mail --------------------------------------------------------------------

class SmtpMailTransport:
	def __init__(self, config: BackupConfig):
		self.config = config

	def send(self, subject: str, body: str, attachment: Optional[Path] = None) -> ToolResult:
		c = self.config
		if not (c.smtp_host and c.email_to):
			return ToolResult(False, 'SMTP_HOST and BACKUP_EMAIL_TO must be set to send e-mail')
		msg = EmailMessage()
		msg['Subject'] = subject
		msg['From'] = formataddr((c.smtp_from_name, c.smtp_from)) if c.smtp_from_name else c.smtp_from
		msg['To'] = c.email_to
		msg.set_content(body)
		try:
			if attachment is not None:
				msg.add_attachment(attachment.read_bytes(), maintype='application', subtype='octet-stream', filename=attachment.name)
			if c.smtp_security == 'force_tls':
				server = smtplib.SMTP_SSL(c.smtp_host, c.smtp_port, context=ssl.create_default_context())
			else:
				server = smtplib.SMTP(c.smtp_host, c.smtp_port)
			with server:
				if c.smtp_security == 'starttls':
					server.starttls(context=ssl.create_default_context())
				if c.smtp_username:
					server.login(c.smtp_username, c.smtp_password)
				server.send_message(msg)
		# ValueError covers non-ASCII credentials rejected by SMTP.login
		except (smtplib.SMTPException, OSError, ValueError) as e:
			return ToolResult(False, f"Email error: {e}")
		log.info('Sent e-mail (%s) to %s', subject, c.email_to)
		return ToolResult(True)


# --- remote sync -------------------------------------------------------------

class RcloneSync:
	def __init__(self, config_path: Optional[Path], binary: str = 'rclone'):
		self.config_path = config_path
		self.binary = binary

	@property
	def configured(self) -> bool:
		p = self.config_path
		return p is not None and p.is_file() and p.stat().st_size > 0

	def list_remotes(self) -> Tuple[ToolResult, List[str]]:
		res = run_command([self.binary, '--config', str(self.config_path), 'listremotes'])
		if not res.ok:
			return res, []
		return res, [line.strip() for line in res.output.splitlines() if line.strip().endswith(':')]

	def sync(self, local_dir: Path, remote: str) -> ToolResult:
		return run_command([self.binary, '--config', str(self.config_path), 'sync', str(local_dir), remote])


# --- service lifecycle -------------------------------------------------------

class DockerServiceController:
	"""Stop/start the vault container through the Docker Engine API."""

	def __init__(self, client_factory: Callable[[], docker.DockerClient] = docker.from_env, timeout: int = 30):
		self._factory = client_factory
		self._client = None
		self.timeout = timeout

	def _connect(self):
		if self._client is None:
			self._client = self._factory()
		return self._client

	def available(self) -> bool:
		try:
			self._connect().ping()
		except (docker.errors.DockerException, OSError) as e:
			log.debug('Docker daemon not reachable: %s', e)
			return False
		return True

	def stop(self, service: str) -> ToolResult:
		try:
			self._connect().containers.get(service).stop(timeout=self.timeout)
		except docker.errors.NotFound:
			return ToolResult(False, f"container {service} not found")
		except (docker.errors.DockerException, OSError) as e:
			return ToolResult(False, str(e))
		return ToolResult(True)

	def start(self, service: str) -> ToolResult:
		try:
			self._connect().containers.get(service).start()
		except docker.errors.NotFound:
			return ToolResult(False, f"container {service} not found")
		except (docker.errors.DockerException, OSError) as e:
			return ToolResult(False, str(e))
		return ToolResult(True)


# --- secret input ------------------------------------------------------------

class TerminalSecretInput:
	def is_interactive(self) -> bool:
		return sys.stdin.isatty()

	def read_secret(self, prompt: str) -> str:
		return click.prompt(prompt, hide_input=True, default='', show_default=False, err=True)
