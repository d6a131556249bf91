"""Time-boxed cache deciding when a network fetch is due.

Remote-branch and ahead/behind checks run on every list and switch. Fetching
each time would make the tool slow on poor connections, so the last fetch time
per repository is kept in a tiny file and reused for a short window.
"""

import hashlib
import logging
import time
from datetime import timedelta
from pathlib import Path
from typing import Callable, Optional

from vecna.config import get_config_dir
from vecna.utils.io import atomic_write_text

logger = logging.getLogger(__name__)

DEFAULT_WINDOW = timedelta(minutes=15)


class FetchThrottle:
    """Tracks the last fetch time of each repository."""

    CACHE_PREFIX = "last-fetch-"

    def __init__(
        self,
        cache_dir: Optional[Path] = None,
        window: timedelta = DEFAULT_WINDOW,
        clock: Callable[[], float] = time.time,
    ):
        self.cache_dir = cache_dir or get_config_dir() / "cache"
        self.window = window
        self._clock = clock

    def _cache_file(self, repo_path: str | Path) -> Path:
        digest = hashlib.md5(str(repo_path).encode("utf-8")).hexdigest()
        return self.cache_dir / f"{self.CACHE_PREFIX}{digest}"

    def _now_ms(self) -> int:
        return int(self._clock() * 1000)

    def should_fetch(self, repo_path: str | Path) -> bool:
        """
        Decide whether a fetch is due for repo_path.

        Returns True when nothing is cached, the cached value is unreadable, or
        it is older than the window.
        """
        cache_file = self._cache_file(repo_path)
        try:
            last_fetch = int(cache_file.read_text(encoding="utf-8").strip())
        except (OSError, ValueError):
            return True

        elapsed_ms = self._now_ms() - last_fetch
        return elapsed_ms > self.window.total_seconds() * 1000

    def record_fetch(self, repo_path: str | Path) -> None:
        """Remember that repo_path was fetched just now. Never raises."""
        try:
            atomic_write_text(self._cache_file(repo_path), str(self._now_ms()))
        except OSError as e:
            logger.warning(f"Could not update fetch cache: {e}")
