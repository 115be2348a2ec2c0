"""Project configuration settings.

Constants live at module level; runtime options are collected once into a
`BackupConfig` built from the environment and handed to each component.
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional
import os

# Layout
DEFAULT_DATA_DIR = "/data"
BACKUP_SUBDIR = "backups"
DB_NAME = "db.sqlite3"
DEFAULT_ENV_FILE = "/.env"
DEFAULT_LOG_FILE = "/var/log/backup.log"
ARCHIVE_PREFIX = "bw_backup"
ARCHIVE_SUFFIX = ".tar.gz"
ENCRYPTED_SUFFIX = ".aes256"
TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"
# Archive member names; data-dir entries are stored under this prefix
ARCHIVE_DATA_PREFIX = "data"
ARCHIVE_ENV_NAME = ".env"
RSA_KEY_PREFIX = "rsa_key"
RESTORED_ENV_NAME = ".env.restored"

# Retention
DEFAULT_RETENTION_DAYS = 30

# Encryption (openssl enc -aes256 -salt -pbkdf2 compatible)
PBKDF2_ITERATIONS = 10_000
SALT_LENGTH = 8
KEY_LENGTH = 32  # AES-256
IV_LENGTH = 16   # AES block size
SALT_MAGIC = b"Salted__"

# Delivery
VALID_METHODS = ("local", "email", "remote")
METHOD_ALIASES = {"rclone": "remote"}
DEFAULT_SMTP_PORT = 587
SMTP_SECURITY_MODES = ("starttls", "force_tls", "off")

# Service lifecycle
DEFAULT_SERVICE_NAME = "bitwarden"

# Logging
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"


class ConfigError(ValueError):
	pass


def _flag(env: Mapping[str, str], name: str) -> bool:
	return env.get(name, "").strip().lower() == "true"


def _int(env: Mapping[str, str], name: str, default: int) -> int:
	raw = env.get(name, "").strip()
	if not raw:
		return default
	try:
		return int(raw)
	except ValueError:
		raise ConfigError(f"{name} must be an integer, got {raw!r}")


@dataclass(frozen=True)
class BackupConfig:
	data_dir: Path = Path(DEFAULT_DATA_DIR)
	env_file: Path = Path(DEFAULT_ENV_FILE)
	log_file: Path = Path(DEFAULT_LOG_FILE)
	include_env: bool = False
	retention_days: int = DEFAULT_RETENTION_DAYS
	encryption_key: Optional[str] = None
	notify: bool = False
	notify_failure_only: bool = False
	smtp_from_name: str = ""
	smtp_from: str = ""
	email_to: str = ""
	smtp_host: str = ""
	smtp_port: int = DEFAULT_SMTP_PORT
	smtp_security: str = "starttls"
	smtp_username: str = ""
	smtp_password: str = ""
	rclone_conf: Optional[Path] = None
	rclone_dest: str = ""
	service_name: str = DEFAULT_SERVICE_NAME
	archive_prefix: str = ARCHIVE_PREFIX

	@property
	def backup_dir(self) -> Path:
		return self.data_dir / BACKUP_SUBDIR

	@property
	def db_path(self) -> Path:
		return self.data_dir / DB_NAME

	@classmethod
	def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> 'BackupConfig':
		"""Read every recognised option from `environ` (defaults to os.environ)."""
		env = os.environ if environ is None else environ
		security = env.get("SMTP_SECURITY", "starttls").strip().lower() or "starttls"
		if security not in SMTP_SECURITY_MODES:
			raise ConfigError(f"SMTP_SECURITY must be one of {', '.join(SMTP_SECURITY_MODES)}")
		rclone_conf = env.get("BACKUP_RCLONE_CONF", "").strip()
		return cls(
			data_dir=Path(env.get("DATA_FOLDER") or DEFAULT_DATA_DIR),
			env_file=Path(env.get("BACKUP_ENV_FILE") or DEFAULT_ENV_FILE),
			log_file=Path(env.get("BACKUP_LOG") or DEFAULT_LOG_FILE),
			include_env=_flag(env, "BACKUP_ENV"),
			retention_days=_int(env, "BACKUP_DAYS", DEFAULT_RETENTION_DAYS),
			encryption_key=env.get("BACKUP_ENCRYPTION_KEY") or None,
			notify=_flag(env, "BACKUP_EMAIL_NOTIFY"),
			notify_failure_only=_flag(env, "BACKUP_EMAIL_NOTIFY_FAILURE_ONLY"),
			smtp_from_name=env.get("SMTP_FROM_NAME", ""),
			smtp_from=env.get("SMTP_FROM", ""),
			email_to=env.get("BACKUP_EMAIL_TO", ""),
			smtp_host=env.get("SMTP_HOST", ""),
			smtp_port=_int(env, "SMTP_PORT", DEFAULT_SMTP_PORT),
			smtp_security=security,
			smtp_username=env.get("SMTP_USERNAME", ""),
			smtp_password=env.get("SMTP_PASSWORD", ""),
			rclone_conf=Path(rclone_conf) if rclone_conf else None,
			rclone_dest=env.get("BACKUP_RCLONE_DEST", ""),
			service_name=env.get("BACKUP_SERVICE_NAME") or DEFAULT_SERVICE_NAME,
		)


__all__ = [
	'DEFAULT_DATA_DIR','BACKUP_SUBDIR','DB_NAME','DEFAULT_ENV_FILE','DEFAULT_LOG_FILE',
	'ARCHIVE_PREFIX','ARCHIVE_SUFFIX','ENCRYPTED_SUFFIX','TIMESTAMP_FORMAT',
	'ARCHIVE_DATA_PREFIX','ARCHIVE_ENV_NAME','RSA_KEY_PREFIX','RESTORED_ENV_NAME',
	'DEFAULT_RETENTION_DAYS','PBKDF2_ITERATIONS','SALT_LENGTH','KEY_LENGTH','IV_LENGTH','SALT_MAGIC',
	'VALID_METHODS','METHOD_ALIASES','DEFAULT_SMTP_PORT','SMTP_SECURITY_MODES',
	'DEFAULT_SERVICE_NAME','LOG_FORMAT','ConfigError','BackupConfig'
]
