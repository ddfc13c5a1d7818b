"""Allow running as ``python -m backupferry``."""

from backupferry.client.cli import main

main()
