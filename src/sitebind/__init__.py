"""Bind local commands to the live configuration of deployed sites."""

__version__ = "0.1.0"
