"""Configuration settings and constants for bwbackup.

Everything is defined in `config.settings`; this package re-exports it so
both `from config import BackupConfig` and `from config.settings import
BackupConfig` work. Keep new constants in settings.py.
"""

from .settings import *  # noqa: F401,F403
from .settings import __all__  # noqa: F401
