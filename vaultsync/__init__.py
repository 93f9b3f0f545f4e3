"""Move vault attachments to object storage and rewrite their links."""

__version__ = "0.1.0"
