"""
Tests for the single-session guard.
"""

import os
import threading

import pytest

from review_watch.guard import ReviewGuard


def test_acquire_and_release(tmp_path):
    guard = ReviewGuard(tmp_path / "marker")

    assert guard.acquire()
    assert guard.is_busy()
    assert guard.marker_path.exists()

    guard.release()

    assert not guard.is_busy()
    assert not guard.marker_path.exists()


def test_second_guard_is_busy(tmp_path):
    first = ReviewGuard(tmp_path / "marker")
    second = ReviewGuard(tmp_path / "marker")

    assert first.acquire()
    assert not second.acquire()

    # Releasing a guard that never acquired leaves the marker alone
    second.release()
    assert first.marker_path.exists()

    first.release()
    assert second.acquire()
    second.release()


def test_hold_releases_on_exception(tmp_path):
    guard = ReviewGuard(tmp_path / "marker")

    with pytest.raises(RuntimeError):
        with guard.hold() as acquired:
            assert acquired
            raise RuntimeError("boom")

    assert not guard.marker_path.exists()


def test_hold_releases_on_keyboard_interrupt(tmp_path):
    guard = ReviewGuard(tmp_path / "marker")

    with pytest.raises(KeyboardInterrupt):
        with guard.hold():
            raise KeyboardInterrupt

    assert not guard.is_busy()


def test_hold_when_busy_yields_false(tmp_path):
    owner = ReviewGuard(tmp_path / "marker")
    owner.acquire()
    other = ReviewGuard(tmp_path / "marker")

    with other.hold() as acquired:
        assert not acquired

    # The owner's marker survives the failed attempt
    assert owner.marker_path.exists()
    owner.release()


def test_stale_marker_is_reclaimed(tmp_path, monkeypatch):
    marker = tmp_path / "marker"
    marker.write_text("999999\n")
    monkeypatch.setattr("review_watch.guard._pid_alive", lambda pid: False)

    guard = ReviewGuard(marker)

    assert guard.acquire()
    guard.release()


def test_marker_of_live_process_is_respected(tmp_path, monkeypatch):
    marker = tmp_path / "marker"
    marker.write_text("999999\n")
    monkeypatch.setattr("review_watch.guard._pid_alive", lambda pid: True)

    assert not ReviewGuard(marker).acquire()
    assert marker.exists()


def test_unreadable_marker_counts_as_busy(tmp_path):
    marker = tmp_path / "marker"
    marker.write_text("")

    assert not ReviewGuard(marker).acquire()


def test_reclaimed_marker_is_not_taken_twice(tmp_path, monkeypatch):
    marker = tmp_path / "marker"
    marker.write_text("999999\n")
    monkeypatch.setattr("review_watch.guard._pid_alive", lambda pid: pid != 999999)
    first = ReviewGuard(marker)
    second = ReviewGuard(marker)

    assert first.acquire()
    assert not second.acquire()
    assert marker.read_text().strip() == str(os.getpid())

    first.release()


def test_concurrent_reclaim_has_single_winner(tmp_path, monkeypatch):
    marker = tmp_path / "marker"
    marker.write_text("999999\n")
    monkeypatch.setattr("review_watch.guard._pid_alive", lambda pid: pid != 999999)

    guards = [ReviewGuard(marker) for _ in range(8)]
    barrier = threading.Barrier(len(guards))
    results = []

    def contend(guard):
        barrier.wait()
        results.append(guard.acquire())

    threads = [threading.Thread(target=contend, args=(guard,)) for guard in guards]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    assert results.count(True) == 1
    assert marker.exists()

    for guard in guards:
        guard.release()
    assert not marker.exists()
