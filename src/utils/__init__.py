"""Case Archiver - Shared utilities."""
