import time

import pytest

from syncweave.checkpoint import (
    DEFAULT_CHUNK_SIZE,
    DisconnectionEvent,
    TransferCheckpoint,
    file_checksum,
    generate_transfer_id,
)


def test_file_checksum_known_vector(tmp_path):
    target = tmp_path / "data.bin"
    target.write_bytes(b"abc")
    assert file_checksum(target) == (
        "ba7816bf8f01cfea414140de5dae2223b00361a396177a9cb410ff61f20015ad"
    )


def test_file_checksum_missing_file_is_empty(tmp_path):
    assert file_checksum(tmp_path / "absent") == ""


def test_file_checksum_is_stable_and_content_sensitive(tmp_path):
    first = tmp_path / "a"
    second = tmp_path / "b"
    first.write_bytes(b"x" * 20000)
    second.write_bytes(b"x" * 19999 + b"y")
    assert file_checksum(first) == file_checksum(first)
    assert file_checksum(first) != file_checksum(second)


def test_generate_transfer_id_is_hex():
    ident = generate_transfer_id("some/file.txt")
    assert len(ident) == 16
    int(ident, 16)


def test_checkpoint_generates_id_when_missing():
    checkpoint = TransferCheckpoint("docs/report.pdf", 100)
    assert len(checkpoint.transfer_id) == 16


def test_checkpoint_keeps_explicit_id():
    checkpoint = TransferCheckpoint("docs/report.pdf", 100, transfer_id="abc")
    assert checkpoint.transfer_id == "abc"


def test_empty_checkpoint_has_no_id():
    checkpoint = TransferCheckpoint()
    assert checkpoint.transfer_id == ""
    assert checkpoint.chunk_size == 1024 * 1024


def test_chunk_count_covers_size():
    checkpoint = TransferCheckpoint("f", 10, transfer_id="t", chunk_size=4)
    count = checkpoint.total_chunks()
    assert (count - 1) * checkpoint.chunk_size < checkpoint.total_size
    assert count * checkpoint.chunk_size >= checkpoint.total_size


def test_zero_size_has_no_chunks():
    checkpoint = TransferCheckpoint("f", 0, transfer_id="t")
    assert checkpoint.total_chunks() == 0
    assert checkpoint.missing_chunks() == []
    assert checkpoint.next_chunk() == 0


def test_missing_chunks_partition():
    checkpoint = TransferCheckpoint(
        "f", 5 * DEFAULT_CHUNK_SIZE, transfer_id="t", completed_chunks=[0, 3]
    )
    missing = checkpoint.missing_chunks()
    assert set(missing) | {0, 3} == set(range(checkpoint.total_chunks()))
    assert not set(missing) & {0, 3}
    assert missing == sorted(missing)
    assert checkpoint.next_chunk() == missing[0]


def test_next_chunk_when_complete():
    checkpoint = TransferCheckpoint("f", 9, transfer_id="t", chunk_size=3)
    checkpoint.completed_chunks = list(range(checkpoint.total_chunks()))
    assert checkpoint.missing_chunks() == []
    assert checkpoint.next_chunk() == checkpoint.total_chunks()


def test_progress():
    checkpoint = TransferCheckpoint("f", 200, transfer_id="t", transferred_bytes=200)
    assert checkpoint.progress() == 1.0
    checkpoint.transferred_bytes = 0
    assert checkpoint.progress() == 0.0
    assert TransferCheckpoint().progress() == 0.0


def test_text_round_trip():
    original = TransferCheckpoint(
        "dir/file name.txt",
        3 * DEFAULT_CHUNK_SIZE,
        transfer_id="abc123",
        transferred_bytes=DEFAULT_CHUNK_SIZE,
        completed_chunks=[2, 0],
        checksum="deadbeef",
        retry_attempts=2,
        peer_id="peer-7",
        is_upload=True,
    )
    restored = TransferCheckpoint.from_text(original.to_text())
    assert restored.file_path == original.file_path
    assert restored.transfer_id == original.transfer_id
    assert restored.total_size == original.total_size
    assert restored.transferred_bytes == original.transferred_bytes
    assert restored.chunk_size == original.chunk_size
    assert restored.completed_chunks == original.completed_chunks
    assert restored.checksum == original.checksum
    assert restored.retry_attempts == original.retry_attempts
    assert restored.peer_id == original.peer_id
    assert restored.is_upload is True


def test_text_layout():
    checkpoint = TransferCheckpoint("p", 4, transfer_id="id", is_upload=False)
    lines = checkpoint.to_text().split("\n")
    assert lines[0] == "p"
    assert lines[1] == "id"
    assert lines[8] == "0"
    assert lines[9] == "0"


def test_round_trip_empty_checksum_and_peer():
    original = TransferCheckpoint("p", 4, transfer_id="id")
    restored = TransferCheckpoint.from_text(original.to_text())
    assert restored.checksum == ""
    assert restored.peer_id == ""
    assert restored.completed_chunks == []


def test_from_text_truncated():
    with pytest.raises(ValueError):
        TransferCheckpoint.from_text("only\ntwo\n")


def test_from_text_bad_number():
    text = TransferCheckpoint("p", 4, transfer_id="id").to_text()
    lines = text.split("\n")
    lines[2] = "many"
    with pytest.raises(ValueError):
        TransferCheckpoint.from_text("\n".join(lines))


def test_from_text_short_chunk_list():
    text = TransferCheckpoint("p", 4, transfer_id="id", completed_chunks=[0]).to_text()
    lines = text.split("\n")
    lines[9] = "5"
    with pytest.raises(ValueError):
        TransferCheckpoint.from_text("\n".join(lines))


def test_disconnection_event_times():
    before = time.monotonic()
    event = DisconnectionEvent("peer", "timeout")
    after = time.monotonic()
    assert before <= event.disconnect_time <= after
    assert event.reconnect_time is None
    assert event.recovered is False
    assert event.reason == "timeout"