"""Version history: creation, retention, tagging and restoration of file snapshots."""

from __future__ import annotations

import dataclasses
import os
import threading
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from pathlib import Path

from syncweave.checkpoint import file_checksum
from syncweave.version_store import DEFAULT_VERSION_DIR, VersionStore, generate_version_id
from syncweave.versions import FileVersion, VersionPolicy

_CLEANUP_INTERVAL = 3600.0
_COMPRESS_AFTER = timedelta(hours=24)
_COMPRESSION = "gzip"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _copy_version(version: FileVersion) -> FileVersion:
    return dataclasses.replace(version, tags=set(version.tags))


def _copy_policy(policy: VersionPolicy) -> VersionPolicy:
    return dataclasses.replace(
        policy, important_file_patterns=list(policy.important_file_patterns)
    )


class VersionHistoryManager:
    """Keeps snapshots of files and applies the retention policy to them."""

    def __init__(
        self,
        policy: VersionPolicy | None = None,
        storage_dir: str | os.PathLike[str] = DEFAULT_VERSION_DIR,
        *,
        clock: Callable[[], datetime] = _utc_now,
    ) -> None:
        self._policy = _copy_policy(policy) if policy is not None else VersionPolicy()
        self._store = VersionStore(storage_dir)
        self._clock = clock
        self._lock = threading.RLock()
        self._by_file: dict[str, list[FileVersion]] = {}
        self._index: dict[str, FileVersion] = {}
        self._tags: dict[str, set[str]] = {}

        self._automatic_cleanup = True
        self._running = False
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self.on_version_created: Callable[[FileVersion], None] | None = None
        self.on_version_deleted: Callable[[str], None] | None = None
        self.on_version_restored: Callable[[FileVersion, str], None] | None = None

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._running

    def start(self) -> None:
        """Start periodic cleanup when automatic cleanup is enabled."""
        if self._running:
            return
        self._running = True
        if self._automatic_cleanup:
            self._stop_event.clear()
            self._thread = threading.Thread(target=self._cleanup_loop, daemon=True)
            self._thread.start()

    def stop(self) -> None:
        """Stop periodic cleanup and wait for the worker to finish."""
        if not self._running:
            return
        self._running = False
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join()
            self._thread = None

    def __enter__(self) -> VersionHistoryManager:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _cleanup_loop(self) -> None:
        while not self._stop_event.is_set():
            self.cleanup_old_versions()
            self._stop_event.wait(_CLEANUP_INTERVAL)

    @property
    def automatic_cleanup(self) -> bool:
        return self._automatic_cleanup

    @automatic_cleanup.setter
    def automatic_cleanup(self, enable: bool) -> None:
        self._automatic_cleanup = enable
        if enable and not self._running:
            self.start()
        elif not enable and self._running:
            self.stop()

    # Creation, deletion, restoration

    def create_version(
        self, file_path: str, commit_message: str = "", modified_by: str = ""
    ) -> FileVersion:
        """Snapshot a file; raise OSError when it cannot be stored."""
        now = self._clock()
        try:
            size = os.path.getsize(file_path)
        except OSError:
            size = 0
        with self._lock:
            version_id = generate_version_id(file_path)
            attempt = 0
            while version_id in self._index:
                attempt += 1
                version_id = generate_version_id(f"{file_path}#{attempt}")
            version = FileVersion(
                file_path=file_path,
                checksum=file_checksum(file_path),
                version_id=version_id,
                file_size=size,
                created_at=now,
                last_modified=now,
                modified_by=modified_by,
                commit_message=commit_message,
            )
            self._store.store(file_path, version_id)
            self._by_file.setdefault(file_path, []).append(version)
            self._index[version_id] = version
        if self.on_version_created is not None:
            self.on_version_created(_copy_version(version))
        return _copy_version(version)

    def _remove(self, version: FileVersion) -> bool:
        existed = self._store.delete(version.version_id)
        self._index.pop(version.version_id, None)
        versions = self._by_file.get(version.file_path)
        if versions is not None:
            versions[:] = [v for v in versions if v.version_id != version.version_id]
            if not versions:
                del self._by_file[version.file_path]
        for tag in list(self._tags):
            self._tags[tag].discard(version.version_id)
            if not self._tags[tag]:
                del self._tags[tag]
        if self.on_version_deleted is not None:
            self.on_version_deleted(version.version_id)
        return existed

    def _require(self, version_id: str) -> FileVersion:
        version = self._index.get(version_id)
        if version is None:
            raise KeyError(version_id)
        return version

    def delete_version(self, version_id: str) -> bool:
        """Forget a version; True when its uncompressed snapshot existed."""
        with self._lock:
            return self._remove(self._require(version_id))

    def restore_version(self, version_id: str, restore_path: str = "") -> Path:
        """Write a version back to restore_path, or to its original path."""
        with self._lock:
            version = _copy_version(self._require(version_id))
            target = Path(restore_path) if restore_path else Path(version.file_path)
            self._store.retrieve(version_id, target)
        if self.on_version_restored is not None:
            self.on_version_restored(version, str(target))
        return target

    # Queries

    def versions_for(self, file_path: str) -> list[FileVersion]:
        with self._lock:
            return [_copy_version(v) for v in self._by_file.get(file_path, [])]

    def version_count(self, file_path: str) -> int:
        with self._lock:
            return len(self._by_file.get(file_path, []))

    def latest_version(self, file_path: str) -> FileVersion | None:
        """Most recently created version of a file, or None."""
        with self._lock:
            versions = self._by_file.get(file_path)
            if not versions:
                return None
            return _copy_version(max(versions, key=lambda v: v.created_at))

    def get_version(self, version_id: str) -> FileVersion | None:
        with self._lock:
            version = self._index.get(version_id)
            return _copy_version(version) if version is not None else None

    def _all_versions(self) -> list[FileVersion]:
        return [v for path in sorted(self._by_file) for v in self._by_file[path]]

    def versions_between(self, start: datetime, end: datetime) -> list[FileVersion]:
        """Versions created within [start, end], oldest first."""
        with self._lock:
            found = [v for v in self._all_versions() if start <= v.created_at <= end]
            return [_copy_version(v) for v in sorted(found, key=lambda v: v.created_at)]

    def compare_versions(self, first_id: str, second_id: str) -> bool:
        """True when both versions exist and have the same checksum."""
        with self._lock:
            first = self._index.get(first_id)
            second = self._index.get(second_id)
            if first is None or second is None:
                return False
            return first.checksum == second.checksum

    # Tags

    def add_tag(self, version_id: str, tag: str) -> None:
        with self._lock:
            version = self._index.get(version_id)
            if version is not None:
                version.tags.add(tag)
                self._tags.setdefault(tag, set()).add(version_id)

    def remove_tag(self, version_id: str, tag: str) -> None:
        with self._lock:
            version = self._index.get(version_id)
            if version is None:
                return
            version.tags.discard(tag)
            ids = self._tags.get(tag)
            if ids is not None:
                ids.discard(version_id)
                if not ids:
                    del self._tags[tag]

    def version_tags(self, version_id: str) -> set[str]:
        with self._lock:
            version = self._index.get(version_id)
            return set(version.tags) if version is not None else set()

    def versions_with_tag(self, tag: str) -> list[FileVersion]:
        """Versions carrying a tag, ordered by version id."""
        with self._lock:
            return [
                _copy_version(self._index[vid])
                for vid in sorted(self._tags.get(tag, ()))
                if vid in self._index
            ]

    # Policy

    @property
    def policy(self) -> VersionPolicy:
        with self._lock:
            return _copy_policy(self._policy)

    def set_policy(self, policy: VersionPolicy) -> None:
        """Replace the retention policy and apply it at once."""
        with self._lock:
            self._policy = _copy_policy(policy)
            self._enforce_policy()

    def is_important(self, version: FileVersion) -> bool:
        with self._lock:
            return self._policy.is_important(version)

    def _enforce_policy(self) -> None:
        if self._policy.max_versions > 0:
            self.cleanup_by_count()
        if self._policy.max_age > timedelta(0):
            self.cleanup_by_age()
        if self._policy.compress_old_versions:
            cutoff = self._clock() - _COMPRESS_AFTER
            for version in list(self._index.values()):
                if version.created_at < cutoff and not version.compressed:
                    try:
                        self.compress_version(version.version_id)
                    except OSError:
                        continue

    # Cleanup

    def cleanup_old_versions(self) -> list[str]:
        """Apply age and count limits; return the ids removed."""
        with self._lock:
            return self.cleanup_by_age() + self.cleanup_by_count()

    def cleanup_by_count(self) -> list[str]:
        """Drop the oldest unimportant versions beyond max_versions (0 = no limit)."""
        removed: list[str] = []
        with self._lock:
            limit = self._policy.max_versions
            if limit <= 0:
                return removed
            for path in list(self._by_file):
                versions = sorted(self._by_file.get(path, []), key=lambda v: v.created_at)
                excess = len(versions) - limit
                for version in versions[: max(0, excess)]:
                    if not self._policy.is_important(version):
                        self._remove(version)
                        removed.append(version.version_id)
        return removed

    def cleanup_by_age(self) -> list[str]:
        """Drop unimportant versions older than max_age (zero = no limit)."""
        removed: list[str] = []
        with self._lock:
            max_age = self._policy.max_age
            if max_age <= timedelta(0):
                return removed
            now = self._clock()
            for version in self._all_versions():
                if now - version.created_at > max_age and not self._policy.is_important(version):
                    self._remove(version)
                    removed.append(version.version_id)
        return removed

    def delete_versions_before(self, file_path: str, before: datetime) -> list[str]:
        """Delete every version of a file created before a moment; return their ids."""
        with self._lock:
            doomed = [v for v in self._by_file.get(file_path, []) if v.created_at < before]
            for version in doomed:
                self._remove(version)
            return [v.version_id for v in doomed]

    # Compression and export

    def compress_version(self, version_id: str) -> None:
        """Gzip a version's snapshot; no-op if already compressed."""
        with self._lock:
            version = self._require(version_id)
            if version.compressed:
                return
            self._store.compress(version_id)
            version.compressed = True
            version.compression_algorithm = _COMPRESSION

    def decompress_version(self, version_id: str) -> None:
        """Restore a version's uncompressed snapshot; no-op if not compressed."""
        with self._lock:
            version = self._require(version_id)
            if not version.compressed:
                return
            self._store.decompress(version_id)
            version.compressed = False
            version.compression_algorithm = ""

    def is_compressed(self, version_id: str) -> bool:
        with self._lock:
            version = self._index.get(version_id)
            return version is not None and version.compressed

    def export_version(self, version_id: str, export_path: str | os.PathLike[str]) -> None:
        """Copy a version's uncompressed snapshot; raise OSError if it is absent."""
        with self._lock:
            self._store.export(version_id, export_path)

    # Bulk queries and statistics

    def recent_versions(self, limit: int = 50) -> list[FileVersion]:
        """Newest versions first, at most limit of them."""
        with self._lock:
            ordered = sorted(self._all_versions(), key=lambda v: v.created_at, reverse=True)
            return [_copy_version(v) for v in ordered[:limit]]

    def search(self, query: str) -> list[FileVersion]:
        """Versions whose path or commit message contains the query."""
        with self._lock:
            return [_copy_version(v) for v in self._all_versions() if v.matches(query)]

    def total_versions(self) -> int:
        with self._lock:
            return sum(len(versions) for versions in self._by_file.values())

    def statistics(self) -> dict[str, int]:
        """Totals of versions and versioned files, and the mean per file."""
        with self._lock:
            total = self.total_versions()
            stats = {"total_versions": total, "files_with_versions": len(self._by_file)}
            if self._by_file:
                stats["avg_versions_per_file"] = total // len(self._by_file)
            return stats