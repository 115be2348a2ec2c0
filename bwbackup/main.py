"""Program entry point (CLI dispatcher).

The scheduler invokes `bwbackup run <methods>`; operators invoke
`bwbackup restore <archive>`. main remains a thin wrapper.
"""
from __future__ import annotations
from bwbackup.cli.commands import cli

def main():  # pragma: no cover - thin wrapper
	cli()

if __name__ == '__main__':  # pragma: no cover
	main()
