"""Analysis result caching keyed by file identity."""

import hashlib
import os
import pickle
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Dict, Optional

from .logging_config import get_logger
from .models import TrackAnalysis

logger = get_logger(__name__)

# Bump this when TrackAnalysis schema changes to invalidate stale cache
CACHE_VERSION = 3


def cache_key(file_path: str, fingerprint: str = "") -> str:
    """Build a cache key from path, modification time, size and config.

    Raises:
        OSError: If the file cannot be stat'ed.
    """
    path = os.path.abspath(file_path)
    st = os.stat(path)
    raw = f"{path}|{st.st_mtime_ns}|{st.st_size}|{fingerprint}"
    return hashlib.md5(raw.encode()).hexdigest()


class AnalysisCache(ABC):
    """Key-value store for TrackAnalysis results.

    Writes are once per key; a later `set` for an existing key is ignored.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[TrackAnalysis]:
        """Get cached result, returning None if missing or stale."""

    @abstractmethod
    def set(self, key: str, result: TrackAnalysis):
        """Cache result under key."""

    @abstractmethod
    def clear(self):
        """Clear all cached results."""


class MemoryCache(AnalysisCache):
    """In-process cache, mostly for tests."""

    def __init__(self):
        self._entries: Dict[str, TrackAnalysis] = {}

    def get(self, key: str) -> Optional[TrackAnalysis]:
        return self._entries.get(key)

    def set(self, key: str, result: TrackAnalysis):
        self._entries.setdefault(key, result)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)


class DiskCache(AnalysisCache):
    """Pickle-file cache on disk."""

    def __init__(self, cache_dir: Optional[Path] = None):
        """Initialize cache.

        Args:
            cache_dir: Directory for cache files. Defaults to ./.mixengine/cache
        """
        if cache_dir is None:
            cache_dir = Path.cwd() / ".mixengine" / "cache"

        self.cache_dir = Path(cache_dir)
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        logger.debug("Cache directory: %s", self.cache_dir)

    def _file(self, key: str) -> Path:
        return self.cache_dir / f"{key}.pkl"

    def get(self, key: str) -> Optional[TrackAnalysis]:
        cache_file = self._file(key)
        try:
            if not cache_file.exists():
                logger.debug("Cache miss: %s", key)
                return None

            with open(cache_file, "rb") as f:
                result = pickle.load(f)

            if not isinstance(result, TrackAnalysis):
                logger.debug("Cache stale (not TrackAnalysis): %s", key)
                cache_file.unlink(missing_ok=True)
                return None
            if getattr(result, "version", 0) < CACHE_VERSION:
                logger.debug("Cache stale (version %s < %s): %s", result.version, CACHE_VERSION, key)
                cache_file.unlink(missing_ok=True)
                return None

            logger.debug("Cache hit: %s", key)
            return result
        except Exception as e:
            logger.warning("Cache read error: %s", e)
            return None

    def set(self, key: str, result: TrackAnalysis):
        cache_file = self._file(key)
        if cache_file.exists():
            return
        tmp_file = cache_file.with_suffix(".tmp")
        try:
            with open(tmp_file, "wb") as f:
                pickle.dump(result, f)
            os.replace(tmp_file, cache_file)
            logger.debug("Cached result: %s", key)
        except Exception as e:
            logger.warning("Cache write error: %s", e)
            tmp_file.unlink(missing_ok=True)

    def clear(self):
        for cache_file in self.cache_dir.glob("*.pkl"):
            cache_file.unlink()
        logger.info("Cache cleared")
