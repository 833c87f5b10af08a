"""
cronocam - Back up local photos and videos to Google Photos.

Files are uploaded with the resumable upload protocol and tracked in a
SQLite ledger keyed by content hash, so re-runs never upload the same
bytes twice.
"""

__version__ = "0.1.0"

from cronocam.config import Settings
from cronocam.database import UploadLedger, open_ledger

__all__ = [
    "__version__",
    "Settings",
    "UploadLedger",
    "open_ledger",
]
