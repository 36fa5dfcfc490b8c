"""On-disk storage of version snapshots, optionally gzip-compressed."""

from __future__ import annotations

import gzip
import hashlib
import os
import shutil
import time
from pathlib import Path

DEFAULT_VERSION_DIR = ".syncweave/versions"
COMPRESSED_SUFFIX = ".gz"
_BLOCK = 8192
_UNSAFE_CHARS = '/\\:*?"<>|'
_SANITIZE_TABLE = str.maketrans({char: "_" for char in _UNSAFE_CHARS})


def generate_version_id(file_path: str) -> str:
    """Derive a short hex identifier from a file path and the wall clock."""
    seed = f"{file_path}_{time.time_ns()}".encode("utf-8", "surrogateescape")
    return hashlib.blake2b(seed, digest_size=8).hexdigest()


def sanitize_file_name(name: str) -> str:
    """Replace characters that are unsafe in file names with underscores."""
    return name.translate(_SANITIZE_TABLE)


class VersionStore:
    """A directory holding one snapshot file per version identifier."""

    def __init__(self, root: str | os.PathLike[str] = DEFAULT_VERSION_DIR) -> None:
        self.root = Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def path_for(self, version_id: str) -> Path:
        """Location of the uncompressed snapshot for a version."""
        return self.root / version_id

    def _compressed_path(self, version_id: str) -> Path:
        return self.root / f"{version_id}{COMPRESSED_SUFFIX}"

    def store(self, source: str | os.PathLike[str], version_id: str) -> Path:
        """Copy a file into the store, replacing any earlier snapshot; raise OSError on failure."""
        target = self.path_for(version_id)
        shutil.copyfile(source, target)
        return target

    def retrieve(self, version_id: str, destination: str | os.PathLike[str]) -> None:
        """Write a snapshot's contents to destination, decompressing when needed."""
        compressed = self._compressed_path(version_id)
        original = self.path_for(version_id)
        if compressed.exists():
            with gzip.open(compressed, "rb") as src, open(destination, "wb") as dst:
                shutil.copyfileobj(src, dst, _BLOCK)
        elif original.exists():
            shutil.copyfile(original, destination)
        else:
            raise FileNotFoundError(f"no stored snapshot for version {version_id!r}")

    def compress(self, version_id: str) -> Path:
        """Gzip a snapshot and drop the uncompressed copy."""
        original = self.path_for(version_id)
        compressed = self._compressed_path(version_id)
        with open(original, "rb") as src:
            try:
                with gzip.open(compressed, "wb") as dst:
                    shutil.copyfileobj(src, dst, _BLOCK)
            except OSError:
                compressed.unlink(missing_ok=True)
                raise
        original.unlink()
        return compressed

    def decompress(self, version_id: str) -> Path:
        """Restore the uncompressed snapshot and drop the gzip copy."""
        compressed = self._compressed_path(version_id)
        original = self.path_for(version_id)
        with gzip.open(compressed, "rb") as src:
            try:
                with open(original, "wb") as dst:
                    shutil.copyfileobj(src, dst, _BLOCK)
            except OSError:
                original.unlink(missing_ok=True)
                raise
        compressed.unlink()
        return original

    def delete(self, version_id: str) -> bool:
        """Remove both forms of a snapshot; True when the uncompressed file existed."""
        original = self.path_for(version_id)
        existed = original.exists()
        original.unlink(missing_ok=True)
        self._compressed_path(version_id).unlink(missing_ok=True)
        return existed

    def export(self, version_id: str, destination: str | os.PathLike[str]) -> None:
        """Copy the uncompressed snapshot to destination; raise OSError if absent."""
        shutil.copyfile(self.path_for(version_id), destination)