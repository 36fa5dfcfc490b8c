"""Rule-based selection of which files to sync and with what priority."""

from __future__ import annotations

import dataclasses
import enum
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from syncweave.patterns import is_regex_pattern, matches_pattern

DEFAULT_CONFLICT_STRATEGY = "latest"


class SyncPriority(enum.IntEnum):
    """Sync priority levels, higher values first."""

    LOW = 0
    NORMAL = 1
    HIGH = 2
    CRITICAL = 3


@dataclass
class SyncRule:
    """A pattern with the priority and inclusion it gives matching files."""

    pattern: str = ""
    priority: SyncPriority = SyncPriority.NORMAL
    include: bool = True
    active_hours: int = 0
    max_size: int = 0
    tags: list[str] = field(default_factory=list)


def _copy_rule(rule: SyncRule) -> SyncRule:
    return dataclasses.replace(rule, tags=list(rule.tags))


class SelectiveSyncManager:
    """Decides per file whether to sync it, using ordered include/exclude rules."""

    def __init__(self, default_conflict_strategy: Any = DEFAULT_CONFLICT_STRATEGY) -> None:
        self._lock = threading.RLock()
        self._rules: list[SyncRule] = []
        self._default_priority = SyncPriority.NORMAL
        self._conflict_rules: dict[str, Any] = {}
        self._default_conflict_strategy = default_conflict_strategy
        self._sync_hours: list[int] = []
        self._max_sync_file_size = 0
        self._file_tags: dict[str, set[str]] = {}
        self._synced_files = 0
        self._total_sync_attempts = 0
        self._sync_cache: dict[tuple[str, int], bool] = {}
        self._priority_cache: dict[str, SyncPriority] = {}

    def _clear_caches(self) -> None:
        self._sync_cache.clear()
        self._priority_cache.clear()

    # Rules

    def add_rule(self, rule: SyncRule) -> None:
        """Add a rule, replacing any rule with the same pattern; empty patterns are ignored."""
        if not self.is_valid_rule(rule):
            return
        with self._lock:
            new_rule = _copy_rule(rule)
            for position, existing in enumerate(self._rules):
                if existing.pattern == rule.pattern:
                    self._rules[position] = new_rule
                    break
            else:
                self._rules.append(new_rule)
            self._clear_caches()

    def remove_rule(self, pattern: str) -> None:
        with self._lock:
            self._rules = [rule for rule in self._rules if rule.pattern != pattern]
            self._clear_caches()

    def clear_rules(self) -> None:
        with self._lock:
            self._rules.clear()
            self._clear_caches()

    def rules(self) -> list[SyncRule]:
        """Copies of the rules in the order they are applied."""
        with self._lock:
            return [_copy_rule(rule) for rule in self._rules]

    @property
    def rule_count(self) -> int:
        with self._lock:
            return len(self._rules)

    # Decisions

    def should_sync(self, file_path: str, file_size: int = 0) -> bool:
        """Apply every matching rule in order; the last applicable one decides."""
        with self._lock:
            key = (file_path, file_size)
            cached = self._sync_cache.get(key)
            if cached is not None:
                return cached
            decision = True
            for rule in self._rules:
                if not matches_pattern(file_path, rule.pattern):
                    continue
                if rule.max_size > 0 and file_size > rule.max_size:
                    continue
                decision = rule.include
            self._sync_cache[key] = decision
            return decision

    def file_priority(self, file_path: str) -> SyncPriority:
        """Highest priority among the default and every matching rule."""
        with self._lock:
            cached = self._priority_cache.get(file_path)
            if cached is not None:
                return cached
            priority = max(
                (rule.priority for rule in self._rules if matches_pattern(file_path, rule.pattern)),
                default=self._default_priority,
            )
            priority = SyncPriority(max(priority, self._default_priority))
            self._priority_cache[file_path] = priority
            return priority

    def matching_rules(self, file_path: str) -> list[SyncRule]:
        with self._lock:
            return [
                _copy_rule(rule)
                for rule in self._rules
                if matches_pattern(file_path, rule.pattern)
            ]

    # Conflict resolution

    def add_conflict_rule(self, pattern: str, strategy: Any) -> None:
        with self._lock:
            self._conflict_rules[pattern] = strategy

    def conflict_strategy(self, file_path: str) -> Any:
        """Strategy of the first matching pattern in pattern order, else the default."""
        with self._lock:
            for pattern in sorted(self._conflict_rules):
                if matches_pattern(file_path, pattern):
                    return self._conflict_rules[pattern]
            return self._default_conflict_strategy

    # Priorities

    @property
    def default_priority(self) -> SyncPriority:
        with self._lock:
            return self._default_priority

    @default_priority.setter
    def default_priority(self, priority: SyncPriority) -> None:
        with self._lock:
            self._default_priority = SyncPriority(priority)
            self._clear_caches()

    def set_file_type_priority(self, file_type: str, priority: SyncPriority) -> None:
        """Give every file with this extension a priority through a '*.ext' rule."""
        self.add_rule(SyncRule(f"*.{file_type}", SyncPriority(priority)))

    def file_type_priority(self, file_type: str) -> SyncPriority:
        pattern = f"*.{file_type}"
        with self._lock:
            for rule in self._rules:
                if rule.pattern == pattern:
                    return rule.priority
            return self._default_priority

    # Time and size limits

    @property
    def sync_hours(self) -> list[int]:
        with self._lock:
            return list(self._sync_hours)

    @sync_hours.setter
    def sync_hours(self, hours: list[int]) -> None:
        with self._lock:
            self._sync_hours = list(hours)

    def is_active_hour(self, now: datetime | None = None) -> bool:
        """Whether the hour of now (local time by default) permits syncing."""
        with self._lock:
            hours = list(self._sync_hours)
        if not hours:
            return True
        moment = now if now is not None else datetime.now()
        return moment.hour in hours

    @property
    def max_sync_file_size(self) -> int:
        with self._lock:
            return self._max_sync_file_size

    @max_sync_file_size.setter
    def max_sync_file_size(self, max_size: int) -> None:
        with self._lock:
            self._max_sync_file_size = max_size

    # Tags

    def add_tag(self, file_path: str, tag: str) -> None:
        with self._lock:
            self._file_tags.setdefault(file_path, set()).add(tag)

    def remove_tag(self, file_path: str, tag: str) -> None:
        with self._lock:
            tags = self._file_tags.get(file_path)
            if tags is None:
                return
            tags.discard(tag)
            if not tags:
                del self._file_tags[file_path]

    def has_tag(self, file_path: str, tag: str) -> bool:
        with self._lock:
            return tag in self._file_tags.get(file_path, ())

    def tags_for(self, file_path: str) -> set[str]:
        with self._lock:
            return set(self._file_tags.get(file_path, ()))

    # Statistics and validation

    @property
    def synced_file_count(self) -> int:
        with self._lock:
            return self._synced_files

    def sync_efficiency(self) -> float:
        """Share of sync attempts that synced a file; 1.0 before any attempt."""
        with self._lock:
            if self._total_sync_attempts == 0:
                return 1.0
            return self._synced_files / self._total_sync_attempts

    def is_valid_rule(self, rule: SyncRule) -> bool:
        return bool(rule.pattern)

    def validate_pattern(self, pattern: str) -> str:
        """Return an error description for a bad pattern, or "" when it is usable."""
        if not pattern:
            return "pattern is empty"
        if is_regex_pattern(pattern):
            try:
                re.compile(pattern[1:-1])
            except re.error as exc:
                return f"invalid regular expression: {exc}"
        return ""