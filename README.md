# syncweave

Building blocks for a file synchroniser, using only the standard library:

- `syncweave.patterns`: path matching with shell globs (`*`, `?`), `/regex/`
  patterns and literal substrings (`matches_pattern`, `is_glob_pattern`,
  `is_regex_pattern`).
- `syncweave.selective_sync`: ordered include/exclude rules with priorities and
  size limits, conflict-strategy rules, file tags and allowed sync hours
  (`SelectiveSyncManager`, `SyncRule`, `SyncPriority`).
- `syncweave.bandwidth` and `syncweave.bandwidth_models`: upload and download
  limits, burst allowance, allowed hours, rate measurement over a rolling
  ten-sample window and adaptive adjustment of limits (`BandwidthLimiter`,
  `BandwidthConfig`, `ThrottledTransfer`, `TransferStats`), plus the
  `format_speed` and `format_size` helpers.
- `syncweave.checkpoint` and `syncweave.resume`: chunked transfer checkpoints
  kept in memory and as `.ckpt` text files, retry limits, recovery statistics
  and a per-peer disconnection history (`TransferCheckpoint`,
  `DisconnectionEvent`, `ResumableTransferManager`, `file_checksum`).
- `syncweave.versions`, `syncweave.version_store` and
  `syncweave.version_history`: file snapshots with SHA-256 checksums, tags,
  gzip compression, export, and retention by count and by age
  (`FileVersion`, `VersionPolicy`, `VersionStore`, `VersionHistoryManager`).

## Installation

```
pip install .
```

For running the tests:

```
pip install ".[test]"
pytest
```

## Examples

Selective sync:

```python
from syncweave.selective_sync import SelectiveSyncManager, SyncPriority, SyncRule

rules = SelectiveSyncManager()
rules.add_rule(SyncRule("*.tmp", include=False))
rules.add_rule(SyncRule("*.doc", SyncPriority.HIGH))

rules.should_sync("cache/x.tmp")           # False
rules.file_priority("notes/report.doc")    # SyncPriority.HIGH
rules.conflict_strategy("notes/report.doc")  # "latest" unless a rule says otherwise
```

Every matching rule is applied in order and the last one whose size limit
permits it decides; files that match no rule are synced.

Bandwidth:

```python
from syncweave.bandwidth import BandwidthLimiter, format_size, format_speed
from syncweave.bandwidth_models import BandwidthConfig

limiter = BandwidthLimiter(BandwidthConfig(max_upload_speed=64 * 1024, enable_throttling=True))
limiter.is_bandwidth_available(True, 1024)   # True while the measured rate leaves room
format_speed(2048)                           # "2 KB/s"
format_size(3 * 1024 * 1024)                 # "3 MB"
```

`start()` runs a background thread that measures rates once a second; the
limiter can also be used as a context manager.

Resumable transfers:

```python
from syncweave.resume import ResumableTransferManager

transfers = ResumableTransferManager("state/checkpoints")
checkpoint = transfers.create_checkpoint("data/big.iso", 3 * 1024 * 1024, "peer-1")
transfers.mark_chunk_complete(checkpoint.transfer_id, 0)
transfers.transfer_progress(checkpoint.transfer_id)   # 0.333...
```

Version history:

```python
from syncweave.version_history import VersionHistoryManager

history = VersionHistoryManager(storage_dir="state/versions")
version = history.create_version("notes/report.doc", "first draft", "peer-1")
history.restore_version(version.version_id, "restored/report.doc")
```

By default checkpoints go to `.syncweave/checkpoints` and stored versions to
`.syncweave/versions`, relative to the working directory.

## What the package does not do

It moves no data between machines: there is no networking, peer discovery or
transfer protocol, no component that ties the rule, bandwidth, checkpoint and
version pieces into one running synchroniser, and no command-line program.
The pieces are meant to be called from an application that does the actual
transfers.