"""SessionVault: mirror, index and parse assistant conversation logs."""

__version__ = "0.1.0"
