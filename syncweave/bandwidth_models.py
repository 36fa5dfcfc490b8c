"""Configuration and bookkeeping records for bandwidth throttling."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

DEFAULT_BURST_ALLOWANCE = 1024 * 1024


@dataclass
class BandwidthConfig:
    """Throttling limits; a speed of 0 means unlimited."""

    max_upload_speed: int = 0
    max_download_speed: int = 0
    burst_allowance: int = DEFAULT_BURST_ALLOWANCE
    allowed_hours: list[int] = field(default_factory=list)
    enable_throttling: bool = False
    adaptive_throttling: bool = False


@dataclass
class TransferStats:
    """Byte counts and speeds observed for one transfer."""

    bytes_transferred: int = 0
    total_bytes: int = 0
    transfer_rate: float = 0.0
    start_time: float = field(default_factory=time.monotonic)
    last_update_time: float | None = None
    current_speed: int = 0
    average_speed: int = 0

    def __post_init__(self) -> None:
        if self.last_update_time is None:
            self.last_update_time = self.start_time


@dataclass
class ThrottledTransfer:
    """A transfer subject to bandwidth limits."""

    file_path: str = ""
    file_size: int = 0
    is_upload: bool = False
    transferred_bytes: int = 0
    start_time: float = field(default_factory=time.monotonic)
    last_transfer_time: float | None = None
    completed: bool = False
    paused: bool = False

    def __post_init__(self) -> None:
        if self.last_transfer_time is None:
            self.last_transfer_time = self.start_time

    def remaining_bytes(self) -> int:
        """Bytes still to transfer, never negative."""
        return max(0, self.file_size - self.transferred_bytes)