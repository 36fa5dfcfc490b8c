"""Checkpoint-based recovery of interrupted transfers."""

from __future__ import annotations

import dataclasses
import os
import threading
import time
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path

from syncweave.checkpoint import DisconnectionEvent, TransferCheckpoint, file_checksum

DEFAULT_CHECKPOINT_DIR = ".syncweave/checkpoints"
CHECKPOINT_SUFFIX = ".ckpt"
DEFAULT_MAX_AGE = timedelta(weeks=1)
_RECOVERY_INTERVAL = 30.0


def _copy(checkpoint: TransferCheckpoint) -> TransferCheckpoint:
    return dataclasses.replace(checkpoint, completed_chunks=list(checkpoint.completed_chunks))


def _whole_hours(seconds: float) -> timedelta:
    return timedelta(hours=int(seconds // 3600))


class ResumableTransferManager:
    """Keeps checkpoints of transfers in memory and on disk and recovers them."""

    def __init__(
        self,
        checkpoint_dir: str | os.PathLike[str] = DEFAULT_CHECKPOINT_DIR,
        *,
        max_checkpoint_age: timedelta = DEFAULT_MAX_AGE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._dir = Path(checkpoint_dir)
        self._dir.mkdir(parents=True, exist_ok=True)
        self._max_age = max_checkpoint_age
        self._clock = clock
        self._lock = threading.RLock()
        self._active: dict[str, TransferCheckpoint] = {}
        self._completed: dict[str, TransferCheckpoint] = {}
        self._retries: dict[str, int] = {}
        self._history: dict[str, list[DisconnectionEvent]] = {}
        self._max_retries = 3
        self._recovered = 0
        self._failed = 0

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

        self.on_transfer_complete: Callable[[str, bool], None] | None = None
        self.on_transfer_progress: Callable[[str, float], None] | None = None
        self.on_transfer_error: Callable[[str, str], None] | None = None

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        """Start periodic recovery of interrupted transfers."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._recovery_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        thread.join()
        self._thread = None

    def __enter__(self) -> ResumableTransferManager:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _recovery_loop(self) -> None:
        while not self._stop_event.is_set():
            self.recover_interrupted_transfers()
            self._stop_event.wait(_RECOVERY_INTERVAL)

    # Checkpoints

    def _file_for(self, transfer_id: str) -> Path:
        return self._dir / f"{transfer_id}{CHECKPOINT_SUFFIX}"

    def create_checkpoint(
        self, file_path: str, file_size: int, peer_id: str, is_upload: bool = True
    ) -> TransferCheckpoint:
        """Start tracking a new transfer and persist its checkpoint."""
        checkpoint = TransferCheckpoint(
            file_path=file_path, total_size=file_size, peer_id=peer_id, is_upload=is_upload
        )
        self.save_checkpoint(checkpoint)
        return self.load_checkpoint(checkpoint.transfer_id) or checkpoint

    def save_checkpoint(self, checkpoint: TransferCheckpoint) -> None:
        """Record a checkpoint as current and write it to disk; raise OSError on failure."""
        with self._lock:
            stored = _copy(checkpoint)
            stored.last_checkpoint = self._clock()
            self._active[stored.transfer_id] = stored
            self._file_for(stored.transfer_id).write_text(stored.to_text(), encoding="utf-8")

    def load_checkpoint(self, transfer_id: str) -> TransferCheckpoint | None:
        """The active checkpoint, else the one on disk, else None."""
        with self._lock:
            active = self._active.get(transfer_id)
            if active is not None:
                return _copy(active)
            path = self._file_for(transfer_id)
            try:
                text = path.read_text(encoding="utf-8")
            except FileNotFoundError:
                return None
            checkpoint = TransferCheckpoint.from_text(text)
            checkpoint.last_checkpoint = self._clock()
            return checkpoint

    def remove_checkpoint(self, transfer_id: str) -> bool:
        """Forget a checkpoint everywhere; True when its file existed."""
        with self._lock:
            self._active.pop(transfer_id, None)
            self._completed.pop(transfer_id, None)
            path = self._file_for(transfer_id)
            existed = path.exists()
            path.unlink(missing_ok=True)
            return existed

    def has_checkpoint(self, transfer_id: str) -> bool:
        with self._lock:
            return transfer_id in self._active or self._file_for(transfer_id).exists()

    # Resumption and recovery

    def _is_stale(self, checkpoint: TransferCheckpoint) -> bool:
        return _whole_hours(self._clock() - checkpoint.last_checkpoint) > self._max_age

    def resume_transfer(self, transfer_id: str) -> bool:
        """Try to recover a transfer from its checkpoint."""
        checkpoint = self.load_checkpoint(transfer_id)
        if checkpoint is None or not checkpoint.transfer_id:
            return False
        if self._is_stale(checkpoint):
            self._notify_error(transfer_id, "Transfer is too old to resume")
            return False
        return self._attempt_recovery(checkpoint)

    def resume_transfer_from_file(self, file_path: str, peer_id: str) -> bool:
        """Resume the transfer whose id is derived from a path and a peer."""
        transfer_id = f"{file_path}_{peer_id}".replace("/", "_").replace("\\", "_")
        return self.resume_transfer(transfer_id)

    def recover_interrupted_transfers(self) -> bool:
        """Attempt recovery of every active transfer; True when all succeeded."""
        with self._lock:
            pending = [_copy(c) for c in self._active.values()]
        results = [self._attempt_recovery(checkpoint) for checkpoint in pending]
        return all(results)

    def _attempt_recovery(self, checkpoint: TransferCheckpoint) -> bool:
        transfer_id = checkpoint.transfer_id
        with self._lock:
            self._retries[transfer_id] = self._retries.get(transfer_id, 0) + 1
            exceeded = self._retries[transfer_id] > self._max_retries
        if exceeded:
            self._notify_error(transfer_id, "Max retry attempts exceeded")
            return False
        if checkpoint.checksum:
            current = file_checksum(checkpoint.file_path)
            if current and current != checkpoint.checksum:
                self._notify_error(transfer_id, "File integrity check failed")
                return False
        self._notify_complete(transfer_id, True)
        with self._lock:
            self._completed[transfer_id] = _copy(checkpoint)
            self._active.pop(transfer_id, None)
        return True

    def _notify_complete(self, transfer_id: str, success: bool) -> None:
        with self._lock:
            if success:
                self._recovered += 1
            else:
                self._failed += 1
        if self.on_transfer_complete is not None:
            self.on_transfer_complete(transfer_id, success)

    def _notify_error(self, transfer_id: str, error: str) -> None:
        with self._lock:
            self._failed += 1
        if self.on_transfer_error is not None:
            self.on_transfer_error(transfer_id, error)

    def pending_transfers(self) -> list[TransferCheckpoint]:
        """Active checkpoints ordered by transfer id."""
        with self._lock:
            return [_copy(self._active[tid]) for tid in sorted(self._active)]

    def failed_transfers(self) -> list[TransferCheckpoint]:
        """Active checkpoints that have used up their retries."""
        with self._lock:
            return [
                _copy(self._active[tid])
                for tid in sorted(self._retries)
                if self._retries[tid] >= self._max_retries and tid in self._active
            ]

    # Network events

    def handle_disconnection(self, peer_id: str, reason: str = "") -> None:
        with self._lock:
            self._history.setdefault(peer_id, []).append(
                DisconnectionEvent(peer_id=peer_id, reason=reason, disconnect_time=self._clock())
            )

    def handle_reconnection(self, peer_id: str) -> None:
        """Mark the peer's latest disconnection as recovered."""
        with self._lock:
            events = self._history.get(peer_id)
            if events and not events[-1].recovered:
                events[-1].recovered = True
                events[-1].reconnect_time = self._clock()

    def connection_history(self, peer_id: str) -> list[DisconnectionEvent]:
        with self._lock:
            return [dataclasses.replace(e) for e in self._history.get(peer_id, [])]

    # Retries

    @property
    def max_retry_attempts(self) -> int:
        with self._lock:
            return self._max_retries

    @max_retry_attempts.setter
    def max_retry_attempts(self, value: int) -> None:
        with self._lock:
            self._max_retries = value

    def reset_retry_count(self, transfer_id: str) -> None:
        with self._lock:
            self._retries[transfer_id] = 0

    # Chunks, integrity and progress

    def mark_chunk_complete(self, transfer_id: str, chunk_index: int) -> bool:
        """Record a finished chunk; False if it was already recorded, KeyError if unknown."""
        with self._lock:
            checkpoint = self._active.get(transfer_id)
            if checkpoint is None:
                raise KeyError(transfer_id)
            if chunk_index in checkpoint.completed_chunks:
                return False
            updated = _copy(checkpoint)
            updated.completed_chunks.append(chunk_index)
            remaining = updated.total_size - chunk_index * updated.chunk_size
            updated.transferred_bytes += max(0, min(updated.chunk_size, remaining))
            self.save_checkpoint(updated)
        if self.on_transfer_progress is not None:
            self.on_transfer_progress(transfer_id, updated.progress())
        return True

    def verify_integrity(self, checkpoint: TransferCheckpoint) -> bool:
        return file_checksum(checkpoint.file_path) == checkpoint.checksum

    def transfer_progress(self, transfer_id: str) -> float:
        with self._lock:
            checkpoint = self._active.get(transfer_id)
            return checkpoint.progress() if checkpoint is not None else 0.0

    def estimated_time_remaining(self, transfer_id: str) -> timedelta:
        """Estimate from the rate since the last checkpoint; zero when unknown."""
        with self._lock:
            checkpoint = self._active.get(transfer_id)
            if checkpoint is None or checkpoint.transferred_bytes <= 0 or checkpoint.total_size <= 0:
                return timedelta(0)
            elapsed = int(self._clock() - checkpoint.last_checkpoint)
            if elapsed <= 0:
                return timedelta(0)
            rate = checkpoint.transferred_bytes / elapsed
            remaining = max(0, checkpoint.total_size - checkpoint.transferred_bytes)
            return timedelta(seconds=int(remaining / rate))

    # Cleanup

    def cleanup_old_checkpoints(self, max_age: timedelta = DEFAULT_MAX_AGE) -> list[str]:
        """Drop checkpoints and checkpoint files older than max_age; return dropped ids."""
        with self._lock:
            now = self._clock()
            dropped = [
                tid
                for tid, checkpoint in self._active.items()
                if _whole_hours(now - checkpoint.last_checkpoint) > max_age
            ]
            for tid in dropped:
                del self._active[tid]
            wall_now = time.time()
            for path in self._dir.glob(f"*{CHECKPOINT_SUFFIX}"):
                try:
                    age = wall_now - path.stat().st_mtime
                except OSError:
                    continue
                if _whole_hours(age) > max_age:
                    path.unlink(missing_ok=True)
            return dropped

    def cleanup_completed_transfers(self) -> list[str]:
        """Move fully transferred checkpoints out of the active set; return their ids."""
        with self._lock:
            done = [
                tid
                for tid, checkpoint in self._active.items()
                if checkpoint.transferred_bytes >= checkpoint.total_size
            ]
            for tid in done:
                self._completed[tid] = self._active.pop(tid)
            return done

    # Statistics

    @property
    def total_pending_transfers(self) -> int:
        with self._lock:
            return len(self._active)

    @property
    def total_recovered_transfers(self) -> int:
        with self._lock:
            return self._recovered

    def recovery_success_rate(self) -> float:
        """Recovered share of all recovery outcomes; 0.0 before any."""
        with self._lock:
            total = self._recovered + self._failed
            return self._recovered / total if total else 0.0