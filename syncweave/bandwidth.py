"""Bandwidth limiting with rolling rate measurement and adaptive limits."""

from __future__ import annotations

import dataclasses
import threading
import time
from collections import deque
from collections.abc import Callable

from syncweave.bandwidth_models import BandwidthConfig, ThrottledTransfer, TransferStats

_KIB = 1024
_MIB = 1024 * 1024
_GIB = 1024 * 1024 * 1024

_RATE_WINDOW = 10
_MONITOR_INTERVAL = 1.0
_WAIT_INTERVAL = 0.1

_HIGH_UTILIZATION = 0.8
_LOW_UTILIZATION = 0.3
_REDUCE_FACTOR = 0.8
_INCREASE_FACTOR = 1.1


def format_speed(bytes_per_second: int) -> str:
    """Render a transfer speed using whole B/s, KB/s or MB/s."""
    if bytes_per_second < _KIB:
        return f"{bytes_per_second} B/s"
    if bytes_per_second < _MIB:
        return f"{bytes_per_second // _KIB} KB/s"
    return f"{bytes_per_second // _MIB} MB/s"


def format_size(num_bytes: int) -> str:
    """Render a byte count using whole B, KB, MB or GB."""
    if num_bytes < _KIB:
        return f"{num_bytes} B"
    if num_bytes < _MIB:
        return f"{num_bytes // _KIB} KB"
    if num_bytes < _GIB:
        return f"{num_bytes // _MIB} MB"
    return f"{num_bytes // _GIB} GB"


def _copy_config(config: BandwidthConfig) -> BandwidthConfig:
    return dataclasses.replace(config, allowed_hours=list(config.allowed_hours))


def _local_hour() -> int:
    return time.localtime().tm_hour


class BandwidthLimiter:
    """Tracks transfers, measures their rates and enforces speed limits."""

    def __init__(
        self,
        config: BandwidthConfig | None = None,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        hour_source: Callable[[], int] = _local_hour,
    ) -> None:
        self._config = _copy_config(config) if config is not None else BandwidthConfig()
        self._config_lock = threading.RLock()
        self._transfers_lock = threading.RLock()
        self._clock = clock
        self._sleep = sleep
        self._hour_source = hour_source

        self._active: list[ThrottledTransfer] = []
        self._stats: dict[str, TransferStats] = {}
        self._snapshots: dict[str, int] = {}

        self._current_upload = 0.0
        self._current_download = 0.0
        self._average_upload = 0.0
        self._average_download = 0.0
        self._recent_upload: deque[float] = deque(maxlen=_RATE_WINDOW)
        self._recent_download: deque[float] = deque(maxlen=_RATE_WINDOW)
        self._last_update = clock()

        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # Lifecycle

    @property
    def running(self) -> bool:
        return self._thread is not None

    def start(self) -> None:
        """Start the background monitoring thread; no-op when already running."""
        if self._thread is not None:
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._monitoring_loop, daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the monitoring thread and wait for it to finish."""
        thread = self._thread
        if thread is None:
            return
        self._stop_event.set()
        thread.join()
        self._thread = None

    def __enter__(self) -> BandwidthLimiter:
        self.start()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.stop()

    def _monitoring_loop(self) -> None:
        while not self._stop_event.is_set():
            self.update_rates()
            self.update_network_conditions()
            self._stop_event.wait(_MONITOR_INTERVAL)

    # Configuration

    @property
    def config(self) -> BandwidthConfig:
        with self._config_lock:
            return _copy_config(self._config)

    @config.setter
    def config(self, new_config: BandwidthConfig) -> None:
        with self._config_lock:
            self._config = _copy_config(new_config)

    @property
    def adaptive_throttling(self) -> bool:
        with self._config_lock:
            return self._config.adaptive_throttling

    @adaptive_throttling.setter
    def adaptive_throttling(self, enable: bool) -> None:
        with self._config_lock:
            self._config.adaptive_throttling = enable

    @property
    def allowed_hours(self) -> list[int]:
        with self._config_lock:
            return list(self._config.allowed_hours)

    @allowed_hours.setter
    def allowed_hours(self, hours: list[int]) -> None:
        with self._config_lock:
            self._config.allowed_hours = list(hours)

    # Rates

    @property
    def current_upload_rate(self) -> float:
        return self._current_upload

    @property
    def current_download_rate(self) -> float:
        return self._current_download

    @property
    def average_upload_rate(self) -> float:
        return self._average_upload

    @property
    def average_download_rate(self) -> float:
        return self._average_download

    def _current_rate(self, is_upload: bool) -> float:
        return self._current_upload if is_upload else self._current_download

    def _max_speed(self, is_upload: bool) -> int:
        with self._config_lock:
            return self._config.max_upload_speed if is_upload else self._config.max_download_speed

    # Transfers

    @property
    def active_transfers(self) -> list[ThrottledTransfer]:
        with self._transfers_lock:
            return list(self._active)

    def _find(self, file_path: str) -> ThrottledTransfer | None:
        return next((t for t in self._active if t.file_path == file_path), None)

    def track_transfer(self, transfer: ThrottledTransfer) -> None:
        """Register a transfer, or refresh its progress if already tracked."""
        now = self._clock()
        with self._transfers_lock:
            existing = self._find(transfer.file_path)
            if existing is None:
                self._active.append(transfer)
                self._snapshots[transfer.file_path] = transfer.transferred_bytes
            elif existing is not transfer:
                self._active[self._active.index(existing)] = transfer
            stats = self._stats.get(transfer.file_path)
            if stats is None:
                stats = TransferStats(start_time=now)
                self._stats[transfer.file_path] = stats
            stats.bytes_transferred = transfer.transferred_bytes
            stats.total_bytes = transfer.file_size
            stats.last_update_time = now

    def throttle_transfer(self, transfer: ThrottledTransfer, bytes_to_transfer: int) -> bool:
        """Apply limits before sending a block; False when the transfer may not proceed."""
        with self._config_lock:
            if not self._config.enable_throttling:
                return True
            burst = self._config.burst_allowance
        if transfer.paused or transfer.completed:
            return False
        if self._max_speed(transfer.is_upload) == 0:
            return True
        if bytes_to_transfer <= burst:
            return True
        self._limit_transfer_rate(transfer.is_upload)
        return True

    def _limit_transfer_rate(self, is_upload: bool) -> None:
        max_speed = self._max_speed(is_upload)
        if max_speed == 0:
            return
        current = self._current_rate(is_upload)
        if current > max_speed:
            sleep_ms = int((current - max_speed) / max_speed * 1000)
            if sleep_ms > 0:
                self._sleep(sleep_ms / 1000)

    def _sleep_if_needed(self, is_upload: bool) -> None:
        max_speed = self._max_speed(is_upload)
        if max_speed == 0:
            return
        current = self._current_rate(is_upload)
        if current > max_speed * 0.9:
            slow_down = max_speed / max(1.0, current)
            sleep_ms = int((1.0 - slow_down) * 100)
            if sleep_ms > 0:
                self._sleep(sleep_ms / 1000)

    def pause_transfer(self, file_path: str) -> None:
        with self._transfers_lock:
            transfer = self._find(file_path)
            if transfer is not None:
                transfer.paused = True

    def resume_transfer(self, file_path: str) -> None:
        with self._transfers_lock:
            transfer = self._find(file_path)
            if transfer is not None:
                transfer.paused = False

    def cancel_transfer(self, file_path: str) -> None:
        """Forget every transfer for the path, along with its statistics."""
        with self._transfers_lock:
            self._active = [t for t in self._active if t.file_path != file_path]
            self._stats.pop(file_path, None)
            self._snapshots.pop(file_path, None)

    def transfer_statistics(self) -> list[TransferStats]:
        """Copies of all transfer statistics, ordered by file path."""
        with self._transfers_lock:
            return [dataclasses.replace(self._stats[path]) for path in sorted(self._stats)]

    def transfer_stats(self, file_path: str) -> TransferStats:
        """Statistics for one path, or a fresh empty record when unknown."""
        with self._transfers_lock:
            stats = self._stats.get(file_path)
            return dataclasses.replace(stats) if stats is not None else TransferStats()

    # Availability

    def is_bandwidth_available(self, is_upload: bool, bytes_needed: int) -> bool:
        with self._config_lock:
            if not self._config.enable_throttling:
                return True
        max_speed = self._max_speed(is_upload)
        if max_speed == 0:
            return True
        return self._current_rate(is_upload) + bytes_needed <= max_speed

    def wait_for_bandwidth(self, is_upload: bool, bytes_needed: int) -> None:
        """Block until the requested bytes fit within the limit."""
        while not self.is_bandwidth_available(is_upload, bytes_needed):
            self._sleep(_WAIT_INTERVAL)

    def is_transfer_allowed(self) -> bool:
        """Whether the current local hour is one of the allowed hours."""
        with self._config_lock:
            hours = list(self._config.allowed_hours)
        if not hours:
            return True
        return self._hour_source() in hours

    # Measurement and adaptation

    def update_rates(self) -> None:
        """Recompute current rates from progress since the last update, then averages."""
        now = self._clock()
        elapsed = now - self._last_update
        if elapsed <= 0.0:
            return
        upload_bytes = 0
        download_bytes = 0
        with self._transfers_lock:
            for transfer in self._active:
                stats = self._stats.get(transfer.file_path)
                if stats is None:
                    continue
                previous = self._snapshots.get(transfer.file_path, stats.bytes_transferred)
                delta = max(0, stats.bytes_transferred - previous)
                self._snapshots[transfer.file_path] = stats.bytes_transferred
                stats.current_speed = int(delta / elapsed)
                total_elapsed = now - stats.start_time
                if total_elapsed > 0:
                    stats.transfer_rate = stats.bytes_transferred / total_elapsed
                    stats.average_speed = int(stats.transfer_rate)
                if transfer.is_upload:
                    upload_bytes += delta
                else:
                    download_bytes += delta
        self._current_upload = upload_bytes / elapsed
        self._current_download = download_bytes / elapsed
        self._last_update = now
        self._calculate_averages()

    def _calculate_averages(self) -> None:
        self._recent_upload.append(self._current_upload)
        self._recent_download.append(self._current_download)
        self._average_upload = sum(self._recent_upload) / len(self._recent_upload)
        self._average_download = sum(self._recent_download) / len(self._recent_download)

    def network_utilization(self) -> float:
        """Mean of upload and download utilisation relative to their limits."""
        with self._config_lock:
            max_up = self._config.max_upload_speed
            max_down = self._config.max_download_speed
        upload = self._current_upload / max_up if max_up > 0 else 0.0
        download = self._current_download / max_down if max_down > 0 else 0.0
        return (upload + download) / 2.0

    def update_network_conditions(self) -> None:
        """Scale limits down under heavy use and up under light use, if adaptive."""
        if not self.adaptive_throttling:
            return
        utilization = self.network_utilization()
        if utilization > _HIGH_UTILIZATION:
            factor = _REDUCE_FACTOR
        elif utilization < _LOW_UTILIZATION:
            factor = _INCREASE_FACTOR
        else:
            return
        with self._config_lock:
            if self._config.max_upload_speed > 0:
                self._config.max_upload_speed = int(self._config.max_upload_speed * factor)
            if self._config.max_download_speed > 0:
                self._config.max_download_speed = int(self._config.max_download_speed * factor)

    def adjust_priorities(self) -> list[ThrottledTransfer]:
        """Order transfers largest-remaining first, unfinished before finished."""
        with self._transfers_lock:
            self._active.sort(key=lambda t: (-(t.file_size - t.transferred_bytes), t.completed))
            return list(self._active)