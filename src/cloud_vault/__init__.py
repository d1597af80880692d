"""cloud-vault: upload backups to remote storage and enforce retention."""

__version__ = "0.1.0"
