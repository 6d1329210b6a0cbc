"""
Resumable Multipart Upload Coordinator.

Plans how large files are split into parts, tracks which parts have been
received and verified, and decides when the assembled object may be
finalized in an S3-compatible object store.
"""

__version__ = "1.0.0"

from upload_coordinator.cli import main

__all__ = ["main", "__version__"]
