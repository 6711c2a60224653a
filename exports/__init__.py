"""
Exports package for location-history archives.

- serializers: document to plain-record conversion
- writers: streaming file writers per format
- storage: archive storage with signed, expiring download URLs
"""

from exports.storage import ArchiveStorage, StoredArchive

__all__ = ["ArchiveStorage", "StoredArchive"]
