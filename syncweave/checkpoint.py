"""Checkpoints for resumable transfers and their on-disk text format."""

from __future__ import annotations

import hashlib
import os
import time
from dataclasses import dataclass, field

DEFAULT_CHUNK_SIZE = 1024 * 1024
_READ_BLOCK = 8192


def file_checksum(path: str | os.PathLike[str]) -> str:
    """Return the hex SHA-256 of a file's contents, or "" if it cannot be read."""
    digest = hashlib.sha256()
    try:
        with open(path, "rb") as handle:
            for block in iter(lambda: handle.read(_READ_BLOCK), b""):
                digest.update(block)
    except OSError:
        return ""
    return digest.hexdigest()


def generate_transfer_id(file_path: str) -> str:
    """Derive a short hex identifier from a file path and the current clock."""
    seed = f"{file_path}_{time.monotonic_ns()}".encode("utf-8", "surrogateescape")
    return hashlib.blake2b(seed, digest_size=8).hexdigest()


@dataclass
class TransferCheckpoint:
    """Saved state of a partially completed transfer."""

    file_path: str = ""
    total_size: int = 0
    transfer_id: str = ""
    transferred_bytes: int = 0
    chunk_size: int = DEFAULT_CHUNK_SIZE
    completed_chunks: list[int] = field(default_factory=list)
    last_checkpoint: float = field(default_factory=time.monotonic)
    checksum: str = ""
    retry_attempts: int = 0
    peer_id: str = ""
    is_upload: bool = False

    def __post_init__(self) -> None:
        if not self.transfer_id and self.file_path:
            self.transfer_id = generate_transfer_id(self.file_path)

    def total_chunks(self) -> int:
        """Number of chunks the file is split into."""
        return -(-self.total_size // self.chunk_size)

    def missing_chunks(self) -> list[int]:
        """Indices of chunks not yet completed, in ascending order."""
        done = set(self.completed_chunks)
        return [index for index in range(self.total_chunks()) if index not in done]

    def next_chunk(self) -> int:
        """First incomplete chunk, or total_chunks() when every chunk is done."""
        return next(iter(self.missing_chunks()), self.total_chunks())

    def progress(self) -> float:
        """Fraction of bytes transferred, 0.0 for an empty transfer."""
        if self.total_size <= 0:
            return 0.0
        return self.transferred_bytes / self.total_size

    def to_text(self) -> str:
        """Serialise to the line-oriented checkpoint file format."""
        lines = [
            self.file_path,
            self.transfer_id,
            str(self.total_size),
            str(self.transferred_bytes),
            str(self.chunk_size),
            self.checksum,
            str(self.retry_attempts),
            self.peer_id,
            "1" if self.is_upload else "0",
            str(len(self.completed_chunks)),
            "".join(f"{chunk} " for chunk in self.completed_chunks),
        ]
        return "\n".join(lines) + "\n"

    @classmethod
    def from_text(cls, text: str) -> TransferCheckpoint:
        """Parse the checkpoint file format; raise ValueError when malformed."""
        lines = text.split("\n")
        if len(lines) < 10:
            raise ValueError("checkpoint text is truncated")
        try:
            total_size = int(lines[2])
            transferred = int(lines[3])
            chunk_size = int(lines[4])
            retries = int(lines[6])
            upload_flag = int(lines[8])
            count = int(lines[9])
            tokens = lines[10].split() if len(lines) > 10 else []
            chunks = [int(token) for token in tokens]
        except ValueError as exc:
            raise ValueError(f"malformed checkpoint field: {exc}") from exc
        if count < 0 or len(chunks) < count:
            raise ValueError("checkpoint chunk list is shorter than its count")
        if chunk_size <= 0:
            raise ValueError("checkpoint chunk size must be positive")
        return cls(
            file_path=lines[0],
            total_size=total_size,
            transfer_id=lines[1],
            transferred_bytes=transferred,
            chunk_size=chunk_size,
            completed_chunks=chunks[:count],
            checksum=lines[5],
            retry_attempts=retries,
            peer_id=lines[7],
            is_upload=upload_flag == 1,
        )


@dataclass
class DisconnectionEvent:
    """A peer disconnection and, once it happens, the matching reconnection."""

    peer_id: str
    reason: str = ""
    disconnect_time: float = field(default_factory=time.monotonic)
    reconnect_time: float | None = None
    recovered: bool = False