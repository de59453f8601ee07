"""Chat message synchronization and caching engine for WhatsApp instances."""

__version__ = "0.1.0"
