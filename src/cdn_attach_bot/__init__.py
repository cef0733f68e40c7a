"""CDN Attach Bot: re-host short-lived CDN links as Discord attachments."""

__version__ = "0.1.0"
