import pytest

from syncweave.bandwidth import BandwidthLimiter, format_size, format_speed
from syncweave.bandwidth_models import BandwidthConfig, ThrottledTransfer


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def make_limiter(config=None, hour=12):
    clock = FakeClock()
    sleeps: list[float] = []
    limiter = BandwidthLimiter(
        config, clock=clock, sleep=sleeps.append, hour_source=lambda: hour
    )
    return limiter, clock, sleeps


def push_rate(limiter, clock, transfer, num_bytes):
    """Advance one second and report num_bytes of progress."""
    clock.now += 1.0
    transfer.transferred_bytes += num_bytes
    limiter.track_transfer(transfer)
    limiter.update_rates()


def test_format_speed_units():
    assert format_speed(512) == "512 B/s"
    assert format_speed(5 * 1024) == "5 KB/s"
    assert format_speed(7 * 1024 * 1024) == "7 MB/s"
    assert format_speed(1023).endswith(" B/s")


def test_format_size_units():
    assert format_size(100) == "100 B"
    assert format_size(3 * 1024) == "3 KB"
    assert format_size(4 * 1024 * 1024) == "4 MB"
    assert format_size(2 * 1024 * 1024 * 1024) == "2 GB"


def test_throttle_disabled_always_allows():
    limiter, _, _ = make_limiter()
    transfer = ThrottledTransfer("a", 10, True, paused=True)
    assert limiter.throttle_transfer(transfer, 10**9) is True


def test_throttle_rejects_paused_and_completed():
    limiter, _, _ = make_limiter(BandwidthConfig(max_upload_speed=100, enable_throttling=True))
    assert limiter.throttle_transfer(ThrottledTransfer("a", 10, True, paused=True), 1) is False
    assert limiter.throttle_transfer(ThrottledTransfer("b", 10, True, completed=True), 1) is False


def test_throttle_unlimited_and_burst_do_not_sleep():
    config = BandwidthConfig(max_upload_speed=0, enable_throttling=True, burst_allowance=10)
    limiter, _, sleeps = make_limiter(config)
    assert limiter.throttle_transfer(ThrottledTransfer("a", 10, True), 10**6) is True
    limiter.config = BandwidthConfig(max_upload_speed=100, enable_throttling=True, burst_allowance=50)
    assert limiter.throttle_transfer(ThrottledTransfer("a", 10, True), 50) is True
    assert sleeps == []


def test_throttle_sleeps_when_rate_exceeds_limit():
    config = BandwidthConfig(max_upload_speed=100, enable_throttling=True, burst_allowance=10)
    limiter, clock, sleeps = make_limiter(config)
    transfer = ThrottledTransfer("up", 10_000, True)
    limiter.track_transfer(transfer)
    push_rate(limiter, clock, transfer, 300)
    assert limiter.throttle_transfer(transfer, 50) is True
    assert len(sleeps) == 1
    assert sleeps[0] > 0


def test_update_rates_measures_progress_per_direction():
    limiter, clock, _ = make_limiter()
    upload = ThrottledTransfer("up", 10_000, True)
    download = ThrottledTransfer("down", 10_000, False)
    limiter.track_transfer(upload)
    limiter.track_transfer(download)
    clock.now += 1.0
    upload.transferred_bytes = 1000
    download.transferred_bytes = 400
    limiter.track_transfer(upload)
    limiter.track_transfer(download)
    limiter.update_rates()
    assert limiter.current_upload_rate == 1000
    assert limiter.current_download_rate == 400
    assert limiter.average_upload_rate == limiter.current_upload_rate


def test_update_rates_ignores_zero_elapsed():
    limiter, clock, _ = make_limiter()
    transfer = ThrottledTransfer("up", 10_000, True)
    limiter.track_transfer(transfer)
    transfer.transferred_bytes = 500
    limiter.track_transfer(transfer)
    limiter.update_rates()
    assert limiter.current_upload_rate == 0.0


def test_average_window_holds_ten_samples():
    limiter, clock, _ = make_limiter()
    transfer = ThrottledTransfer("up", 10**6, True)
    limiter.track_transfer(transfer)
    push_rate(limiter, clock, transfer, 1000)
    for _ in range(9):
        push_rate(limiter, clock, transfer, 0)
    assert limiter.average_upload_rate > 0
    push_rate(limiter, clock, transfer, 0)
    assert limiter.average_upload_rate == 0.0


def test_bandwidth_availability():
    limiter, _, _ = make_limiter(BandwidthConfig(max_upload_speed=100, enable_throttling=True))
    assert limiter.is_bandwidth_available(True, 100) is True
    assert limiter.is_bandwidth_available(True, 101) is False
    assert limiter.is_bandwidth_available(False, 10**9) is True


def test_wait_for_bandwidth_returns_when_available():
    limiter, _, sleeps = make_limiter(BandwidthConfig(max_upload_speed=100, enable_throttling=True))
    limiter.wait_for_bandwidth(True, 50)
    assert sleeps == []


def test_pause_resume_cancel():
    limiter, _, _ = make_limiter()
    transfer = ThrottledTransfer("file.bin", 100, False)
    limiter.track_transfer(transfer)
    limiter.pause_transfer("file.bin")
    assert limiter.active_transfers[0].paused is True
    limiter.resume_transfer("file.bin")
    assert limiter.active_transfers[0].paused is False
    limiter.cancel_transfer("file.bin")
    assert limiter.active_transfers == []
    assert limiter.transfer_statistics() == []


def test_transfer_stats_known_and_unknown():
    limiter, _, _ = make_limiter()
    limiter.track_transfer(ThrottledTransfer("b", 200, True, transferred_bytes=20))
    limiter.track_transfer(ThrottledTransfer("a", 100, True))
    stats = limiter.transfer_stats("b")
    assert (stats.bytes_transferred, stats.total_bytes) == (20, 200)
    assert limiter.transfer_stats("missing").bytes_transferred == 0
    assert [s.total_bytes for s in limiter.transfer_statistics()] == [100, 200]


def test_adaptive_raises_limits_when_idle():
    config = BandwidthConfig(max_upload_speed=1000, max_download_speed=2000, adaptive_throttling=True)
    limiter, _, _ = make_limiter(config)
    limiter.update_network_conditions()
    assert limiter.config.max_upload_speed > 1000
    assert limiter.config.max_download_speed > 2000


def test_adaptive_lowers_limits_under_load():
    config = BandwidthConfig(max_upload_speed=1000, adaptive_throttling=True)
    limiter, clock, _ = make_limiter(config)
    transfer = ThrottledTransfer("up", 10**6, True)
    limiter.track_transfer(transfer)
    push_rate(limiter, clock, transfer, 5000)
    limiter.update_network_conditions()
    assert limiter.config.max_upload_speed < 1000
    assert limiter.config.max_download_speed == 0


def test_non_adaptive_keeps_limits():
    limiter, _, _ = make_limiter(BandwidthConfig(max_upload_speed=1000))
    limiter.update_network_conditions()
    assert limiter.config.max_upload_speed == 1000


def test_network_utilization_averages_directions():
    limiter, clock, _ = make_limiter(BandwidthConfig(max_upload_speed=1000))
    transfer = ThrottledTransfer("up", 10**6, True)
    limiter.track_transfer(transfer)
    push_rate(limiter, clock, transfer, 1000)
    assert limiter.network_utilization() == pytest.approx(0.5)


def test_transfer_allowed_by_hours():
    limiter, _, _ = make_limiter(hour=3)
    assert limiter.is_transfer_allowed() is True
    limiter.allowed_hours = [3, 4]
    assert limiter.is_transfer_allowed() is True
    limiter.allowed_hours = [5]
    assert limiter.is_transfer_allowed() is False


def test_adjust_priorities_orders_by_remaining_then_unfinished():
    limiter, _, _ = make_limiter()
    limiter.track_transfer(ThrottledTransfer("small", 10, True))
    limiter.track_transfer(ThrottledTransfer("done", 500, True, completed=True))
    limiter.track_transfer(ThrottledTransfer("open", 500, True))
    ordered = [t.file_path for t in limiter.adjust_priorities()]
    assert ordered == ["open", "done", "small"]


def test_config_getter_returns_copy():
    limiter, _, _ = make_limiter(BandwidthConfig(allowed_hours=[1]))
    snapshot = limiter.config
    snapshot.allowed_hours.append(2)
    snapshot.max_upload_speed = 99
    assert limiter.allowed_hours == [1]
    assert limiter.config.max_upload_speed == 0


def test_start_and_stop_thread():
    limiter = BandwidthLimiter()
    limiter.start()
    assert limiter.running is True
    limiter.stop()
    assert limiter.running is False