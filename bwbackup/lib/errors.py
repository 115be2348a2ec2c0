"""Error hierarchy for backup and restore runs."""
from __future__ import annotations


class BackupError(RuntimeError):
	"""Base exception for backup related failures."""


class ValidationError(BackupError):
	"""Bad arguments; raised before any side effect."""


class SnapshotError(BackupError):
	"""Database snapshot, packing or encryption failed; no archive was kept."""


class DeliveryError(BackupError):
	"""A single destination failed. Never aborts sibling deliveries."""


class RestoreFatalError(BackupError):
	"""Restore cannot continue."""


__all__ = ['BackupError', 'ValidationError', 'SnapshotError', 'DeliveryError', 'RestoreFatalError']
