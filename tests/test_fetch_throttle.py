"""Tests for FetchThrottle."""

from datetime import timedelta
from pathlib import Path

from vecna.core.fetch_throttle import FetchThrottle


class FakeClock:
    def __init__(self, now: float = 1_700_000_000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs).total_seconds()


class TestFetchThrottle:
    def test_fetch_due_without_cache(self, temp_directory: Path):
        throttle = FetchThrottle(cache_dir=temp_directory / "cache")

        assert throttle.should_fetch("/repo") is True

    def test_fresh_fetch_is_reused(self, temp_directory: Path):
        clock = FakeClock()
        throttle = FetchThrottle(cache_dir=temp_directory / "cache", clock=clock)

        throttle.record_fetch("/repo")
        clock.advance(minutes=14)

        assert throttle.should_fetch("/repo") is False

    def test_stale_fetch_is_due(self, temp_directory: Path):
        clock = FakeClock()
        throttle = FetchThrottle(cache_dir=temp_directory / "cache", clock=clock)

        throttle.record_fetch("/repo")
        clock.advance(minutes=16)

        assert throttle.should_fetch("/repo") is True

    def test_custom_window(self, temp_directory: Path):
        clock = FakeClock()
        throttle = FetchThrottle(
            cache_dir=temp_directory / "cache", window=timedelta(minutes=1), clock=clock
        )

        throttle.record_fetch("/repo")
        clock.advance(seconds=61)

        assert throttle.should_fetch("/repo") is True

    def test_repositories_are_independent(self, temp_directory: Path):
        throttle = FetchThrottle(cache_dir=temp_directory / "cache")

        throttle.record_fetch("/repo-a")

        assert throttle.should_fetch("/repo-a") is False
        assert throttle.should_fetch("/repo-b") is True

    def test_cache_stores_epoch_milliseconds(self, temp_directory: Path):
        cache_dir = temp_directory / "cache"
        throttle = FetchThrottle(cache_dir=cache_dir, clock=FakeClock(1_700_000_000.5))

        throttle.record_fetch("/repo")

        files = list(cache_dir.glob("last-fetch-*"))
        assert len(files) == 1
        assert files[0].read_text() == "1700000000500"

    def test_corrupt_cache_means_fetch_due(self, temp_directory: Path):
        cache_dir = temp_directory / "cache"
        throttle = FetchThrottle(cache_dir=cache_dir)
        throttle.record_fetch("/repo")

        for cache_file in cache_dir.glob("last-fetch-*"):
            cache_file.write_text("not a number")

        assert throttle.should_fetch("/repo") is True

    def test_record_failure_does_not_raise(self, temp_directory: Path):
        blocker = temp_directory / "blocker"
        blocker.write_text("a file where the cache dir should be")
        throttle = FetchThrottle(cache_dir=blocker / "cache")

        throttle.record_fetch("/repo")

        assert throttle.should_fetch("/repo") is True
