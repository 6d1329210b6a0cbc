"""Part checksums.

SHA-256 over the exact bytes of a part, rendered as lower-case hex. The
client computes the same digest locally and echoes it back at commit.

part_etag gives the ETag S3 reports for an unencrypted part, which lets the
client recognise presigned parts that are already stored.
"""

import hashlib

CHECKSUM_ALGORITHM = "sha256"


def sha256_hex(data: bytes) -> str:
    """Return the lower-case hex SHA-256 digest of ``data``."""
    return hashlib.sha256(data).hexdigest()


def part_etag(data: bytes) -> str:
    """ETag S3 assigns to an unencrypted part: its quoted MD5 hex digest."""
    return f'"{hashlib.md5(data).hexdigest()}"'
