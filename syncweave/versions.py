"""Records describing stored file versions and the retention policy."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

IMPORTANT_TAGS = frozenset({"important", "critical"})


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class FileVersion:
    """One saved version of a file."""

    file_path: str = ""
    checksum: str = ""
    version_id: str = ""
    file_size: int = 0
    created_at: datetime = field(default_factory=_utc_now)
    last_modified: datetime | None = None
    modified_by: str = ""
    commit_message: str = ""
    compressed: bool = False
    compression_algorithm: str = ""
    tags: set[str] = field(default_factory=set)

    def __post_init__(self) -> None:
        if self.last_modified is None:
            self.last_modified = self.created_at

    def matches(self, query: str) -> bool:
        """Whether the query occurs in the file path or the commit message."""
        return query in self.file_path or query in self.commit_message


@dataclass
class VersionPolicy:
    """Retention rules for file versions; a zero max_age means no age limit."""

    enable_versioning: bool = True
    max_versions: int = 10
    max_age: timedelta = field(default_factory=lambda: timedelta(hours=24 * 30))
    important_file_patterns: list[str] = field(default_factory=list)
    compress_old_versions: bool = True
    compression_algorithm: str = "gzip"

    def is_important(self, version: FileVersion) -> bool:
        """Important versions match a protected pattern or carry an important tag."""
        if any(pattern in version.file_path for pattern in self.important_file_patterns):
            return True
        return any(tag in IMPORTANT_TAGS for tag in version.tags)