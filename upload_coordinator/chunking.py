"""Chunk size policy.

Derives how a file of a given size is split into parts. The policy is a
pure function so that a client can compute exactly the same plan as the
server before uploading anything.

Policy:
- Default chunk size is 5 MiB
- Files of 500 MiB or more use a 16 MiB base instead
- A caller-supplied chunk size replaces the base
- The result is clamped to [256 KiB, 50 MiB]
"""

from dataclasses import dataclass
from typing import Generator, Optional

KIB = 1024
MIB = 1024 * 1024

DEFAULT_CHUNK_SIZE = 5 * MIB
LARGE_FILE_CHUNK_SIZE = 16 * MIB
LARGE_FILE_THRESHOLD = 500 * MIB
MIN_CHUNK_SIZE = 256 * KIB
MAX_CHUNK_SIZE = 50 * MIB


@dataclass(frozen=True)
class ChunkPlan:
    """How a file is divided into parts."""

    chunk_size: int
    total_chunks: int


def count_chunks(file_size: int, chunk_size: int) -> int:
    """Number of parts needed to hold ``file_size`` bytes.

    Equivalent to ``ceil(file_size / chunk_size)`` in integer arithmetic.
    """
    return -(-file_size // chunk_size)


def plan_chunks(file_size: int, desired_chunk_size: Optional[int] = None) -> ChunkPlan:
    """Compute the chunk plan for a file.

    Args:
        file_size: File size in bytes (>= 0).
        desired_chunk_size: Optional chunk size requested by the client.

    Returns:
        ChunkPlan with the clamped chunk size and part count.
    """
    base = LARGE_FILE_CHUNK_SIZE if file_size >= LARGE_FILE_THRESHOLD else DEFAULT_CHUNK_SIZE
    chunk_size = desired_chunk_size if desired_chunk_size is not None else base
    chunk_size = max(MIN_CHUNK_SIZE, min(MAX_CHUNK_SIZE, chunk_size))
    return ChunkPlan(chunk_size=chunk_size, total_chunks=count_chunks(file_size, chunk_size))


def part_size(file_size: int, chunk_size: int, index: int) -> int:
    """Exact byte length of part ``index``.

    Every part is ``chunk_size`` long except the last, which holds the
    remainder.

    Raises:
        IndexError: If ``index`` is outside ``[0, total_chunks)``.
    """
    total = count_chunks(file_size, chunk_size)
    if index < 0 or index >= total:
        raise IndexError(f"Part index {index} out of range [0, {total})")
    start = index * chunk_size
    return min(chunk_size, file_size - start)


def part_sizes(file_size: int, chunk_size: int) -> list[int]:
    """Byte lengths of every part, in index order."""
    return [
        part_size(file_size, chunk_size, index)
        for index in range(count_chunks(file_size, chunk_size))
    ]


def iter_file_parts(
    file_path: str,
    chunk_size: int,
) -> Generator[tuple[int, bytes], None, None]:
    """Iterate over the parts of a file on disk.

    Args:
        file_path: Path to the file to read.
        chunk_size: Size of each part in bytes.

    Yields:
        Tuples of (part_index, part_data), with 0-based indices.
    """
    index = 0
    with open(file_path, "rb") as f:
        while True:
            chunk = f.read(chunk_size)
            if not chunk:
                break
            yield index, chunk
            index += 1
