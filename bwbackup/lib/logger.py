"""Logging setup: durable log file plus stdout/stderr mirrors split by level."""
from __future__ import annotations
import logging, sys
from pathlib import Path
from config.settings import LOG_FORMAT

ROOT_LOGGER = 'bwbackup'


class _QuietFileHandler(logging.FileHandler):
	"""File handler that drops records it cannot write (e.g. disk full)."""

	def handleError(self, record):
		pass


class _QuietStreamHandler(logging.StreamHandler):
	def handleError(self, record):
		pass


class _BelowWarning(logging.Filter):
	def filter(self, record):
		return record.levelno < logging.WARNING


def setup_logging(log_file: Path | None = None, level: int = logging.INFO) -> logging.Logger:
	"""Configure the package logger once; repeated calls replace the handlers.

	INFO goes to stdout, WARNING and above to stderr, and every record is also
	appended to `log_file`. An unopenable log file is skipped rather than fatal.
	"""
	logger = logging.getLogger(ROOT_LOGGER)
	for h in list(logger.handlers):
		logger.removeHandler(h)
		h.close()
	logger.setLevel(level)
	logger.propagate = False
	fmt = logging.Formatter(LOG_FORMAT)

	out = _QuietStreamHandler(sys.stdout)
	out.setLevel(level)
	out.addFilter(_BelowWarning())
	err = _QuietStreamHandler(sys.stderr)
	err.setLevel(logging.WARNING)
	for h in (out, err):
		h.setFormatter(fmt)
		logger.addHandler(h)

	if log_file is not None:
		try:
			Path(log_file).parent.mkdir(parents=True, exist_ok=True)
			fh = _QuietFileHandler(log_file, mode='a', encoding='utf-8')
		except OSError as e:
			logger.warning('Log file %s unavailable (%s); logging to console only', log_file, e)
		else:
			fh.setLevel(level)
			fh.setFormatter(fmt)
			logger.addHandler(fh)
	return logger
