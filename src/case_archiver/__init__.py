"""Case Archiver - Incremental archival of closed case documents to a long-term archive."""

__version__ = "0.1.0"
